"""
Health check blueprint.

Endpoints:
    GET /api/v1/health        alias of /ready
    GET /api/v1/health/ready  simple 200 for load balancers
    GET /api/v1/health/live   dependency status (DB, template catalog)
"""

import logging
import time

from flask import Blueprint, current_app, jsonify

from docket.models import db
from docket.services.template_registry import get_registry

logger = logging.getLogger(__name__)

health_bp = Blueprint("health", __name__, url_prefix="/api/v1/health")


@health_bp.route("", methods=["GET"])
@health_bp.route("/ready", methods=["GET"])
def ready():
    """Simple readiness probe, always 200 if app is running."""
    return jsonify({"status": "ok"}), 200


@health_bp.route("/live", methods=["GET"])
def live():
    """Detailed liveness check with dependency status."""
    checks = {}
    overall = True

    # ── Database ─────────────────────────────────────────────────────
    try:
        t0 = time.perf_counter()
        db.session.execute(db.text("SELECT 1"))
        db_ms = (time.perf_counter() - t0) * 1000
        checks["database"] = {"status": "ok", "latency_ms": round(db_ms, 1)}
    except Exception as exc:
        checks["database"] = {"status": "error", "detail": str(exc)}
        overall = False
        logger.error("Health check: database failed: %s", exc)

    # ── Template catalog ─────────────────────────────────────────────
    registry = get_registry()
    count = len(registry)
    checks["templates"] = {
        "status": "ok" if count else "empty",
        "count": count,
        "source": registry.path.name if registry.path else None,
    }
    if not count:
        overall = False

    checks["app"] = {
        "name": "Docket Case Timeline Service",
        "debug": current_app.debug,
        "testing": current_app.testing,
    }

    status_code = 200 if overall else 503
    return jsonify({
        "status": "healthy" if overall else "degraded",
        "checks": checks,
    }), status_code
