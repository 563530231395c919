"""
Shared pytest fixtures for the Repairflow test suite.

Provides:
    - app: Flask application (session-scoped)
    - _setup_db: Database table creation/teardown (session-scoped)
    - session: Per-test DB cleanup w/ rollback + recreate (autouse)
    - client: Flask test client (function-scoped)
    - make_user / make_issue: ORM factories committing straight to the DB
    - people: one active user per role plus a pending associate
"""

import pytest

from repairflow import create_app
from repairflow.models import db as _db
from repairflow.models.issue import STATUS_REPORTED, Issue, IssueHistory
from repairflow.models.user import User


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


# ── Factories ────────────────────────────────────────────────────────────


@pytest.fixture()
def make_user():
    """Factory: make_user("t1", role="tenant", status="active", debt=0.0)."""

    def _make(username, *, role="tenant", status="active", debt=0.0):
        user = User(username=username, role=role, status=status, debt=debt)
        _db.session.add(user)
        _db.session.commit()
        return user

    return _make


@pytest.fixture()
def make_issue():
    """Factory: an issue for ``tenant`` with one "report" history entry."""

    def _make(tenant, *, status=STATUS_REPORTED, assignee=None, cost=None,
              title="Leaking tap", description="Kitchen sink drips constantly"):
        issue = Issue(
            tenant_id=tenant.id,
            title=title,
            description=description,
            status=status,
            assignee_id=assignee.id if assignee is not None else None,
            cost=cost,
        )
        issue.history.append(IssueHistory(actor=tenant.username, action="report", note="Issue reported"))
        _db.session.add(issue)
        _db.session.commit()
        return issue

    return _make


@pytest.fixture()
def people(make_user):
    """One active identity per role, plus a pending associate."""
    return {
        "tenant": make_user("tenant1", role="tenant"),
        "manager": make_user("manager1", role="manager"),
        "director": make_user("director1", role="director"),
        "admin": make_user("admin1", role="admin"),
        "associate": make_user("assoc1", role="associate"),
        "pending_associate": make_user("assoc_pending", role="associate", status="pending"),
    }
