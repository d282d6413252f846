"""
Case activity blueprint.

Endpoints:
    GET  /api/v1/cases/<case_id>/activities     newest-first history
         ?activity_type=PHASE_COMPLETED&limit=50
    POST /api/v1/cases/<case_id>/activities     append one entry (201)
"""

import logging

from flask import Blueprint, jsonify, request

import docket.services.activity_service as activities
from docket.blueprints import int_field, json_body, resolve_user_id, text_field
from docket.utils.errors import E, api_error, register_error_handlers

logger = logging.getLogger(__name__)

activity_bp = Blueprint("activity", __name__, url_prefix="/api/v1/cases")
register_error_handlers(activity_bp)


@activity_bp.route("/<int:case_id>/activities", methods=["GET"])
def list_activities(case_id):
    limit = request.args.get("limit", type=int)
    items = activities.list_activities(
        case_id,
        activity_type=request.args.get("activity_type") or None,
        limit=limit,
    )
    return jsonify({"activities": [a.to_dict() for a in items], "total": len(items)})


@activity_bp.route("/<int:case_id>/activities", methods=["POST"])
def record_activity(case_id):
    """Append an activity entry.

    Body: {activity_type?, reference_id?, reference_type?, description?,
           user_id?, metadata?}
    A missing activity_type is recorded as OTHER.
    """
    data, err = json_body()
    if err:
        return err
    activity_type = data.get("activity_type")
    if activity_type is not None and not isinstance(activity_type, str):
        return api_error(E.VALIDATION_INVALID, "activity_type must be a string", status=400)
    if activity_type and len(activity_type) > 50:
        return api_error(E.VALIDATION_INVALID, "activity_type must be ≤ 50 characters", status=400)
    reference_id, err = int_field(data, "reference_id")
    if err:
        return err
    user_id, err = resolve_user_id(data)
    if err:
        return err

    entry = activities.record_activity(
        case_id,
        activity_type,
        reference_id=reference_id,
        reference_type=text_field(data, "reference_type"),
        description=text_field(data, "description"),
        user_id=user_id,
        metadata=data.get("metadata"),
    )
    return jsonify(entry.to_dict()), 201
