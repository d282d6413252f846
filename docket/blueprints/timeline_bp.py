"""
Case timeline blueprint.

Endpoints:
    POST /api/v1/cases/<case_id>/timeline                              initialize
    GET  /api/v1/cases/<case_id>/timeline                              read
    PUT  /api/v1/cases/<case_id>/timeline/current-phase                move pointer
    POST /api/v1/cases/<case_id>/timeline/phases/<order>/complete      complete
    POST /api/v1/cases/<case_id>/timeline/phases/<order>/skip          skip

Malformed bodies are rejected here with 400; the phase engine owns every
business rule and the transaction.
"""

import logging

from flask import Blueprint, jsonify

import docket.services.phase_engine as engine
from docket.blueprints import int_field, json_body, resolve_user_id, text_field
from docket.utils.errors import E, api_error, register_error_handlers

logger = logging.getLogger(__name__)

timeline_bp = Blueprint("timeline", __name__, url_prefix="/api/v1/cases")
register_error_handlers(timeline_bp)


@timeline_bp.route("/<int:case_id>/timeline", methods=["POST"])
def initialize_timeline(case_id):
    """Create the case's timeline (idempotent).

    Body: {case_type, user_id?}
    Returns: timeline view, 201 when created, 200 when it already existed.
    """
    data, err = json_body()
    if err:
        return err
    case_type = text_field(data, "case_type")
    if not case_type:
        return api_error(E.VALIDATION_REQUIRED, "case_type is required")
    user_id, err = resolve_user_id(data)
    if err:
        return err

    timeline, created = engine.initialize_timeline(case_id, case_type, user_id)
    return jsonify(engine.timeline_view(timeline)), 201 if created else 200


@timeline_bp.route("/<int:case_id>/timeline", methods=["GET"])
def get_timeline(case_id):
    return jsonify(engine.get_timeline(case_id))


@timeline_bp.route("/<int:case_id>/timeline/current-phase", methods=["PUT"])
def update_current_phase(case_id):
    """Move the current pointer.

    Body: {phase_order, notes?, user_id?, case_type?}
    ``case_type`` lets the call initialize a missing timeline first.
    """
    data, err = json_body()
    if err:
        return err
    phase_order, err = int_field(data, "phase_order", required=True)
    if err:
        return err
    user_id, err = resolve_user_id(data)
    if err:
        return err

    timeline = engine.update_current_phase(
        case_id,
        phase_order,
        text_field(data, "notes"),
        user_id,
        case_type=text_field(data, "case_type"),
    )
    return jsonify(engine.timeline_view(timeline))


@timeline_bp.route("/<int:case_id>/timeline/phases/<int:phase_order>/complete", methods=["POST"])
def complete_phase(case_id, phase_order):
    data, err = json_body()
    if err:
        return err
    user_id, err = resolve_user_id(data)
    if err:
        return err
    timeline = engine.complete_phase(case_id, phase_order, text_field(data, "notes"), user_id)
    return jsonify(engine.timeline_view(timeline))


@timeline_bp.route("/<int:case_id>/timeline/phases/<int:phase_order>/skip", methods=["POST"])
def skip_phase(case_id, phase_order):
    data, err = json_body()
    if err:
        return err
    user_id, err = resolve_user_id(data)
    if err:
        return err
    reason = text_field(data, "reason")
    if not reason:
        logger.info("Phase %s skipped without a reason", phase_order, extra={"case_id": case_id})
    timeline = engine.skip_phase(case_id, phase_order, reason, user_id)
    return jsonify(engine.timeline_view(timeline))
