"""
Timeline template catalog blueprint.

Endpoints:
    GET  /api/v1/timeline/case-types                  registered case types
    GET  /api/v1/timeline/templates/<case_type>       one template
    GET  /api/v1/timeline/resolve?case_type=...       free-form -> canonical
    POST /api/v1/timeline/templates/reload            re-read the catalog file
"""

import logging

from flask import Blueprint, jsonify, request

from docket.services.template_registry import get_registry
from docket.utils.errors import E, api_error, register_error_handlers

logger = logging.getLogger(__name__)

template_bp = Blueprint("templates", __name__, url_prefix="/api/v1/timeline")
register_error_handlers(template_bp)


@template_bp.route("/case-types", methods=["GET"])
def list_case_types():
    case_types = get_registry().list_case_types()
    return jsonify({"case_types": case_types, "total": len(case_types)})


@template_bp.route("/templates/<case_type>", methods=["GET"])
def get_template(case_type):
    return jsonify(get_registry().get_template(case_type).to_dict())


@template_bp.route("/resolve", methods=["GET"])
def resolve_case_type():
    raw = (request.args.get("case_type") or "").strip()
    if not raw:
        return api_error(E.VALIDATION_REQUIRED, "case_type query parameter is required")
    return jsonify({"case_type": raw, "template": get_registry().resolve_case_type(raw)})


@template_bp.route("/templates/reload", methods=["POST"])
def reload_templates():
    """Swap in a freshly validated catalog; the old one stays on failure."""
    registry = get_registry()
    count = registry.reload()
    logger.info("Template catalog reloaded: %d template(s)", count)
    return jsonify({"status": "reloaded", "templates": count,
                    "case_types": registry.list_case_types()})
