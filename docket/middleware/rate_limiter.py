"""
Rate limiting configuration.

Applies per-blueprint rate limits using Flask-Limiter. The Limiter instance
is created in docket/__init__.py with no default limits; this module applies
limits per route category.

Usage:
    from docket.middleware.rate_limiter import init_rate_limits
    init_rate_limits(app, limiter)
"""

import logging

logger = logging.getLogger(__name__)

READ_LIMIT = "300/minute"
WRITE_METHODS = ["POST", "PUT", "PATCH", "DELETE"]


def init_rate_limits(app, limiter):
    """
    Apply rate limits to API blueprints.

    Limits (per remote IP):
        - Timeline / activity writes:  TIMELINE_WRITE_RATE_LIMIT (reads unlimited)
        - Template catalog:            300/minute
        - Health check:                exempt

    Rate limiting is disabled in testing mode.
    """
    if app.config.get("TESTING"):
        app.logger.info("Rate limiter disabled (TESTING=True)")
        return

    write_limit = app.config.get("TIMELINE_WRITE_RATE_LIMIT", "120/minute")
    for bp_name in ("timeline", "activity"):
        bp = app.blueprints.get(bp_name)
        if bp:
            limiter.limit(write_limit, methods=WRITE_METHODS)(bp)

    bp = app.blueprints.get("templates")
    if bp:
        limiter.limit(READ_LIMIT)(bp)

    bp = app.blueprints.get("health")
    if bp:
        limiter.exempt(bp)

    app.logger.info("Rate limiter configured: timeline/activity writes %s, templates %s",
                    write_limit, READ_LIMIT)
