"""
Shared pytest fixtures for the Clinic Launch Orchestration Engine test suite.

Provides:
    - app: Flask application (session-scoped)
    - _setup_db: Database table creation/teardown (session-scoped)
    - session: Per-test DB cleanup w/ rollback + recreate (autouse)
    - client: Flask test client (function-scoped)
    - launch: Launch created from the standard template (started 30 days ago)
    - make_task / make_risk / make_deliverable: factory helpers bound to ``launch``
"""

from datetime import date, timedelta

import pytest

from app import create_app
from app.models import db as _db
from app.services import launch_service as svc


# ── App & DB fixtures ────────────────────────────────────────────────────


@pytest.fixture(scope="session")
def app():
    """Create the Flask application once per test session."""
    application = create_app("testing")
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
        yield
        _db.session.rollback()
        _db.drop_all()
        _db.create_all()


@pytest.fixture()
def client(app):
    """Flask test client."""
    return app.test_client()


# ── Domain fixtures ──────────────────────────────────────────────────────


TODAY = date.today()


@pytest.fixture()
def launch():
    """Launch opening in 60 days, started 30 days ago."""
    created = svc.create_launch_from_template({
        "clinic_id": "clinic-001",
        "launch_name": "Downtown Clinic",
        "launch_code": "LCH-001",
        "target_open_date": (TODAY + timedelta(days=60)).isoformat(),
    })
    return svc.start_launch(created.id, today=TODAY - timedelta(days=30))


@pytest.fixture()
def phase0(launch):
    return svc.get_phases(launch.id)[0]


@pytest.fixture()
def make_task(launch):
    def _make(**kw):
        payload = {"task_name": "Task"}
        payload.update(kw)
        return svc.create_task(launch.id, payload)
    return _make


@pytest.fixture()
def make_risk(launch):
    def _make(**kw):
        payload = {"risk_title": "Risk", "severity": "medium"}
        payload.update(kw)
        return svc.create_risk(launch.id, payload)
    return _make


@pytest.fixture()
def make_deliverable(launch):
    def _make(**kw):
        payload = {"deliverable_name": "Deliverable"}
        payload.update(kw)
        return svc.create_deliverable(launch.id, payload)
    return _make
