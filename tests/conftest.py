"""
Shared pytest fixtures for the Action Plan Tracker test suite.

Provides:
    - app: Flask application (session-scoped)
    - _setup_db: Database table creation/teardown (session-scoped)
    - session: Per-test DB cleanup w/ rollback + recreate (autouse)
    - client: Flask test client (function-scoped)
    - admin / leader / staff / executive: CallerContext per role
    - failure_reasons: seeded gap categories
    - make_plan: ORM factory that bypasses the lifecycle guards
    - set_policy: write policy settings and commit
    - evidence: opaque attachment list builder
"""

import pytest

from app import create_app
from app.models import db as _db
from app.models.action_plan import ActionPlan
from app.services import plan_settings, plan_store
from app.services.capabilities import caller_for_role


FAILURE_REASONS = ("Resource Constraint", "Vendor Delay", "Other")


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
        plan_store._inflight.clear()
        yield
        plan_store._inflight.clear()
        _db.session.rollback()
        _db.drop_all()
        _db.create_all()


@pytest.fixture()
def client(app):
    """Flask test client."""
    return app.test_client()


# ── Callers ──────────────────────────────────────────────────────────────


@pytest.fixture()
def admin():
    return caller_for_role("u-admin", "admin")


@pytest.fixture()
def leader():
    return caller_for_role("u-leader", "leader", department_code="FIN")


@pytest.fixture()
def staff():
    return caller_for_role("u-staff", "staff", department_code="FIN")


@pytest.fixture()
def executive():
    return caller_for_role("u-exec", "executive")


# ── Convenience fixtures ─────────────────────────────────────────────────


@pytest.fixture()
def failure_reasons():
    """Seed the gap categories a Not Achieved transition picks from."""
    for order, label in enumerate(FAILURE_REASONS):
        plan_settings.add_failure_reason(label, "u-admin", sort_order=order)
    _db.session.commit()
    return list(FAILURE_REASONS)


@pytest.fixture()
def set_policy():
    """Apply policy changes the way an administrator would, then commit."""

    def _set(**changes):
        plan_settings.update_policy_settings(changes, "u-admin")
        _db.session.commit()
        return plan_settings.load_policy_settings()

    return _set


@pytest.fixture()
def make_plan():
    """Create an ActionPlan row directly at an arbitrary state (bypasses guards)."""

    def _make(**overrides):
        values = {
            "department_code": "FIN",
            "month": "Jan",
            "year": 2026,
            "action_plan": "Close Q4 reconciliation backlog",
            "indicator": "Backlog at zero",
            "pic": "Dana",
            "category": "High",
            "status": "Open",
            "submission_status": "draft",
            "attachments": [],
        }
        values.update(overrides)
        plan = ActionPlan(**values)
        _db.session.add(plan)
        _db.session.commit()
        return plan

    return _make


@pytest.fixture()
def evidence():
    """Build an opaque attachment list with *count* links."""

    def _evidence(count=1):
        return [
            {"type": "link", "url": f"https://docs.example.com/evidence/{i}", "title": f"Evidence {i}"}
            for i in range(count)
        ]

    return _evidence
