"""Standardised API error responses.

Usage
-----
    from docket.utils.errors import api_error, E

    return api_error(E.VALIDATION_REQUIRED, "phase_order is required")
    return api_error(E.INVALID_PHASE, "Phase 3 is not active", details={...})

Blueprints call ``register_error_handlers(bp)`` once so that every service
exception from ``docket.core.exceptions`` maps onto the same envelope.
"""

from __future__ import annotations

import logging

from flask import jsonify, request
from werkzeug.exceptions import HTTPException

from docket.core.exceptions import (
    ConcurrentModificationError,
    ConflictError,
    InvalidPhaseError,
    NotFoundError,
    TemplateConfigError,
    TemplateNotFoundError,
    ValidationError,
)

logger = logging.getLogger(__name__)


# ── Error code constants ──────────────────────────────────────────────
class E:
    """Machine-readable error code constants."""

    # Validation – HTTP 400 / 422
    VALIDATION_REQUIRED = "ERR_VALIDATION_REQUIRED"
    VALIDATION_INVALID = "ERR_VALIDATION_INVALID"

    # Not-found – HTTP 404
    NOT_FOUND = "ERR_NOT_FOUND"
    TEMPLATE_NOT_FOUND = "ERR_TEMPLATE_NOT_FOUND"

    # Conflict – HTTP 409
    CONFLICT_DUPLICATE = "ERR_CONFLICT_DUPLICATE"
    CONFLICT_CONCURRENT = "ERR_CONFLICT_CONCURRENT"
    INVALID_PHASE = "ERR_INVALID_PHASE"

    # Server – HTTP 500
    TEMPLATE_CONFIG = "ERR_TEMPLATE_CONFIG"
    INTERNAL = "ERR_INTERNAL"


# ── Default HTTP status mapping ───────────────────────────────────────
_DEFAULT_STATUS: dict[str, int] = {
    E.VALIDATION_REQUIRED: 400,
    E.VALIDATION_INVALID: 422,
    E.NOT_FOUND: 404,
    E.TEMPLATE_NOT_FOUND: 404,
    E.CONFLICT_DUPLICATE: 409,
    E.CONFLICT_CONCURRENT: 409,
    E.INVALID_PHASE: 409,
    E.TEMPLATE_CONFIG: 500,
    E.INTERNAL: 500,
}


def api_error(
    code: str,
    message: str,
    *,
    status: int | None = None,
    details: dict | None = None,
):
    """Return a standard JSON error response.

    Parameters
    ----------
    code : str
        Machine-readable error code (use ``E.*`` constants).
    message : str
        Human-readable explanation for developers / UI.
    status : int, optional
        HTTP status override.  Falls back to ``_DEFAULT_STATUS[code]``,
        then to ``400``.
    details : dict, optional
        Extra structured payload.

    Returns
    -------
    tuple[Response, int]
        ``(jsonify(body), http_status)`` – drop-in for Flask views.
    """

    http_status = status or _DEFAULT_STATUS.get(code, 400)

    body: dict = {
        "error": message,
        "code": code,
    }
    if details:
        body["details"] = details

    return jsonify(body), http_status


def register_error_handlers(bp) -> None:
    """Attach the service exception → HTTP mapping to a blueprint.

    Handler lookup walks the exception MRO, so the subclasses
    (``TemplateNotFoundError``, ``InvalidPhaseError``) win over their bases.
    """

    @bp.errorhandler(TemplateNotFoundError)
    def _handle_template_not_found(error: TemplateNotFoundError):
        return api_error(E.TEMPLATE_NOT_FOUND, str(error), details={"case_type": error.case_type})

    @bp.errorhandler(NotFoundError)
    def _handle_not_found(error: NotFoundError):
        return api_error(E.NOT_FOUND, str(error))

    @bp.errorhandler(InvalidPhaseError)
    def _handle_invalid_phase(error: InvalidPhaseError):
        return api_error(E.INVALID_PHASE, str(error), details=error.details)

    @bp.errorhandler(ValidationError)
    def _handle_validation(error: ValidationError):
        return api_error(E.VALIDATION_INVALID, str(error), details=error.details)

    @bp.errorhandler(ConflictError)
    def _handle_conflict(error: ConflictError):
        return api_error(E.CONFLICT_DUPLICATE, str(error), details={"field": error.field})

    @bp.errorhandler(ConcurrentModificationError)
    def _handle_concurrent(error: ConcurrentModificationError):
        logger.warning("Concurrent modification surfaced to caller: %s", error,
                       extra={"case_id": error.case_id})
        return api_error(
            E.CONFLICT_CONCURRENT, str(error),
            details={"case_id": error.case_id, "retryable": True},
        )

    @bp.errorhandler(TemplateConfigError)
    def _handle_template_config(error: TemplateConfigError):
        logger.error("Template catalog rejected: %s", error)
        return api_error(E.TEMPLATE_CONFIG, str(error))

    @bp.errorhandler(Exception)
    def _handle_unexpected(error: Exception):
        if isinstance(error, HTTPException):
            return jsonify({"error": error.description or error.name}), error.code
        logger.exception("Unexpected error in %s endpoint=%s", bp.name, request.endpoint)
        return api_error(E.INTERNAL, "Internal server error")
