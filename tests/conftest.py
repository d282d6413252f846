"""
Shared pytest fixtures for the Docket test suite.

Provides:
    - app: Flask application (session-scoped)
    - _setup_db: Database table creation/teardown (session-scoped)
    - session: Per-test DB cleanup w/ rollback + recreate, fixture catalog (autouse)
    - client: Flask test client (function-scoped)
    - registry: the app's TemplateRegistry loaded with the fixture catalog
    - pi_timeline: case 42 initialized on the "PI" template
"""

from pathlib import Path

import pytest

from docket import create_app
from docket.models import db as _db
from docket.services.template_registry import get_registry

FIXTURES = Path(__file__).parent / "fixtures"
FIXTURE_TEMPLATES = FIXTURES / "timeline_templates.yaml"


# ── App & DB fixtures ────────────────────────────────────────────────────


@pytest.fixture(scope="session")
def app():
    """Create the Flask application once per test session."""
    application = create_app("testing", {"TIMELINE_TEMPLATES_PATH": str(FIXTURE_TEMPLATES)})
    return application


@pytest.fixture(scope="session")
def _setup_db(app):
    """Create all tables at session start, drop at end."""
    with app.app_context():
        _db.create_all()
    yield
    with app.app_context():
        _db.drop_all()


@pytest.fixture(autouse=True)
def session(app, _setup_db):
    """Per-test: open app context, rollback after test, recreate tables."""
    with app.app_context():
        # Tests may reload or swap the catalog; start each from the fixture file
        get_registry(app).load_file(FIXTURE_TEMPLATES)
        yield
        _db.session.rollback()
        _db.drop_all()
        _db.create_all()


@pytest.fixture()
def client(app):
    """Flask test client."""
    return app.test_client()


@pytest.fixture()
def registry(app):
    return get_registry(app)


# ── Convenience fixtures ─────────────────────────────────────────────────


@pytest.fixture()
def pi_timeline():
    """Case 42 initialized on the three-phase "PI" template."""
    from docket.services.phase_engine import initialize_timeline

    timeline, created = initialize_timeline(42, "PI", user_id=7)
    assert created
    return timeline
