"""
Shared pytest fixtures for the KO Assets rights review test suite.

Provides:
    - app: Flask application (session-scoped)
    - _setup_db: Database table creation/teardown (session-scoped)
    - session: Per-test DB cleanup w/ rollback + recreate (autouse)
    - client: Flask test client (function-scoped)
    - seed_user: factory storing a user with permission tokens
    - auth_headers: factory returning a Bearer header for an email
    - rights_request: factory storing an unassigned rights request
"""

import pytest

from koassets import create_app
from koassets.models import db as _db
from koassets.models.rights_request import RightsRequest, STATUS_NOT_STARTED
from koassets.services.jwt_service import generate_session_token
from koassets.services.permission_service import invalidate_all_cache
from koassets.services.user_service import set_user_permissions


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
        # Users are recreated per test with the same emails; drop cached
        # capability sets so no decision leaks between tests.
        invalidate_all_cache()
        yield
        invalidate_all_cache()
        _db.session.rollback()
        _db.drop_all()
        _db.create_all()


@pytest.fixture()
def client(app):
    """Flask test client."""
    return app.test_client()


# ── Convenience fixtures ─────────────────────────────────────────────────


@pytest.fixture()
def seed_user():
    """Store a configured user: ``seed_user("a@coca-cola.com", "rr")``."""
    def _seed(email, permissions="", name=""):
        user = set_user_permissions(email, permissions, name=name or email.split("@")[0])
        _db.session.commit()
        return user
    return _seed


@pytest.fixture()
def auth_headers():
    """Bearer header carrying a signed session for ``email``."""
    def _headers(email, **claims):
        session = {
            "sub": f"oid-{email}",
            "name": email.split("@")[0].title(),
            "email": email.lower(),
            "country": "US",
            "usertype": "Employee",
            "company": "The Coca-Cola Company",
        }
        session.update(claims)
        return {"Authorization": f"Bearer {generate_session_token(session)}"}
    return _headers


@pytest.fixture()
def rights_request():
    """Store an unassigned request submitted by ``submitter``."""
    counter = {"n": 0}

    def _create(submitter="submitter@coca-cola.com", request_id=None, **fields):
        counter["n"] += 1
        rr = RightsRequest(
            id=request_id or f"17000000000{counter['n']:03d}",
            submitter_email=submitter,
            status=fields.pop("status", STATUS_NOT_STARTED),
            name=fields.pop("name", "Agency One"),
            assets=fields.pop("assets", [{"name": "hero.jpg", "assetId": "urn:aaid:aem:1"}]),
            details=fields.pop("details", {}),
            rights_check_results={},
            version=1,
            **fields,
        )
        _db.session.add(rr)
        _db.session.commit()
        return rr
    return _create
