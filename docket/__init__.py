"""
Docket: Case Timeline Service
Flask Application Factory.

Usage:
    from docket import create_app
    app = create_app()           # defaults to "development"
    app = create_app("testing")  # explicit config
"""

import logging
import os

import click
from flask import Flask, request
from flask_cors import CORS
from flask_limiter import Limiter
from flask_limiter.util import get_remote_address
from flask_migrate import Migrate
from sqlalchemy import event as _sa_event, engine as _sa_engine

from docket.config import config
from docket.core.exceptions import TemplateConfigError
from docket.middleware.logging_config import configure_logging
from docket.middleware.rate_limiter import init_rate_limits
from docket.middleware.timing import init_request_timing
from docket.models import db
from docket.services.template_registry import init_template_registry, load_template_file

logger = logging.getLogger(__name__)


# ── SQLite FK enforcement (global engine event) ─────────────────────────
@_sa_event.listens_for(_sa_engine.Engine, "connect")
def _enable_sqlite_fk(dbapi_conn, connection_record):
    """Enable foreign key enforcement for SQLite connections."""
    if "sqlite" in type(dbapi_conn).__module__:
        cursor = dbapi_conn.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()


migrate = Migrate()
# Storage comes from RATELIMIT_STORAGE_URI: Redis in production, memory otherwise
limiter = Limiter(
    key_func=get_remote_address,
    default_limits=[],  # no global limit; limits are per-blueprint
)


def create_app(config_name=None, overrides=None):
    """
    Create and configure the Flask application.

    Args:
        config_name: Configuration environment name.
                     One of: "development", "testing", "production".
                     Defaults to APP_ENV env var, or "development" if unset.
        overrides:   Optional mapping applied on top of the config class
                     (e.g. a different SQLALCHEMY_DATABASE_URI in tests).

    Returns:
        Configured Flask application instance.
    """
    if config_name is None:
        config_name = os.getenv("APP_ENV", "development")

    app = Flask(__name__, instance_relative_config=True)
    # Instantiated so ProductionConfig can refuse to start without its env vars
    app.config.from_object(config[config_name]())
    if overrides:
        app.config.update(overrides)
    os.makedirs(app.instance_path, exist_ok=True)

    # ── Structured logging (must be first) ───────────────────────────────
    configure_logging(app)

    # ── Extensions ───────────────────────────────────────────────────────
    db.init_app(app)
    migrate.init_app(app, db)
    limiter.init_app(app)
    cors_origins = app.config.get("CORS_ORIGINS", "*")
    if cors_origins and cors_origins != "*":
        CORS(app, origins=[o.strip() for o in cors_origins.split(",") if o.strip()])
    else:
        CORS(app)

    # ── Request timing middleware ────────────────────────────────────────
    init_request_timing(app)

    # ── Template catalog (fails fast on an invalid file) ─────────────────
    init_template_registry(app)

    # ── Models (so create_all / autogenerate see every table) ────────────
    from docket.models import activity as _activity_models  # noqa: F401
    from docket.models import timeline as _timeline_models  # noqa: F401

    with app.app_context():
        db.create_all()

    # ── Blueprints ───────────────────────────────────────────────────────
    from docket.blueprints.activity_bp import activity_bp
    from docket.blueprints.health_bp import health_bp
    from docket.blueprints.template_bp import template_bp
    from docket.blueprints.timeline_bp import timeline_bp

    app.register_blueprint(health_bp)
    app.register_blueprint(template_bp)
    app.register_blueprint(timeline_bp)
    app.register_blueprint(activity_bp)

    # ── CLI commands ─────────────────────────────────────────────────────
    @app.cli.command("validate-timeline-templates")
    @click.argument("path", required=False)
    def validate_timeline_templates_cmd(path):
        """Load and validate a template catalog (default: TIMELINE_TEMPLATES_PATH)."""
        path = path or app.config["TIMELINE_TEMPLATES_PATH"]
        try:
            catalog = load_template_file(path)
        except TemplateConfigError as exc:
            raise click.ClickException(str(exc)) from exc
        for case_type, template in catalog.items():
            click.echo(f"{case_type}: {template.phase_count} phase(s)")
        click.echo(f"OK: {len(catalog)} template(s) in {path}")

    @app.cli.command("purge-case")
    @click.argument("case_id", type=int)
    def purge_case_cmd(case_id):
        """Delete a case's timeline and activity log."""
        from docket.services.phase_engine import purge_case
        result = purge_case(case_id)
        click.echo(f"Purged case {case_id}: {result}")

    # ── Error handlers ───────────────────────────────────────────────────
    @app.errorhandler(404)
    def not_found(e):
        return {"error": "Not found", "path": request.path}, 404

    @app.errorhandler(500)
    def server_error(e):
        logger.error("500 error: %s", e, exc_info=True)
        return {"error": "Internal server error"}, 500

    @app.errorhandler(405)
    def method_not_allowed(e):
        return {"error": "Method not allowed"}, 405

    @app.errorhandler(429)
    def rate_limited(e):
        return {"error": "Too many requests", "retry_after": e.description}, 429

    # ── Rate limiting (after blueprints registered) ──────────────────────
    init_rate_limits(app, limiter)

    return app
