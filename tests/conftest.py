"""
Shared pytest fixtures for the TestHub UAT test suite.

Provides:
    - app: Flask application (session-scoped)
    - _setup_db: Database table creation/teardown (session-scoped)
    - session: Per-test DB cleanup w/ rollback + recreate (autouse)
    - client: Flask test client (function-scoped)
    - staff_headers: identity headers for the internal API
    - uat_session: active session with an invite token
    - guest / second_guest: reviewers of uat_session
    - make_collaborator: factory for collaborators with a given role
    - item_with_steps: item with two test steps and one info step
"""

import pytest

from testhub import create_app
from testhub.models import db as _db
from testhub.services import checklist_service, session_service


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


@pytest.fixture()
def staff_headers():
    return {"X-User-Id": "staff-1", "X-User-Name": "Sam Staff"}


# ── Convenience fixtures ─────────────────────────────────────────────────


@pytest.fixture()
def uat_session():
    """An active session created by staff-1."""
    s = session_service.create_session(
        {"name": "Website launch review", "description": "Marketing site go-live"},
        created_by_id="staff-1",
    )
    session_service.change_status(s, "active")
    _db.session.commit()
    return s


@pytest.fixture()
def guest(uat_session):
    g = session_service.add_guest(uat_session, "Dana Reviewer", "Dana@Example.com")
    _db.session.commit()
    return g


@pytest.fixture()
def second_guest(uat_session):
    g = session_service.add_guest(uat_session, "Lee Reviewer", "lee@example.com")
    _db.session.commit()
    return g


@pytest.fixture()
def make_collaborator(uat_session):
    """Return a factory: make_collaborator("editor") → SessionCollaborator."""
    counter = {"n": 0}

    def _make(role="editor", target=None):
        counter["n"] += 1
        c = session_service.add_collaborator(
            target or uat_session,
            f"Collaborator {counter['n']}",
            f"collab{counter['n']}@example.com",
            role,
            invited_by_id="staff-1",
        )
        _db.session.commit()
        return c

    return _make


@pytest.fixture()
def item_with_steps(uat_session):
    """Item with steps: [test "Open homepage", test "Submit form", info "Read notes"]."""
    item = checklist_service.create_item(uat_session, {
        "title": "Contact form",
        "instructions": "Check the contact form end to end",
        "internal_note": "Client is picky about the button colour",
        "next_action": "Ping design team",
    })
    checklist_service.create_step(item, {"title": "Open homepage"})
    checklist_service.create_step(item, {"title": "Submit form", "expected_result": "Thank-you page"})
    checklist_service.create_step(item, {"title": "Read notes", "step_type": "info"})
    _db.session.commit()
    return item
