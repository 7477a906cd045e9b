"""
Shared pytest fixtures for the CRM backend test suite.

Provides:
    - app: Flask application (session-scoped)
    - _setup_db: Database table creation/teardown (session-scoped)
    - session: Per-test DB cleanup w/ rollback + recreate (autouse)
    - client: Flask test client (function-scoped)
    - admin_user / manager_user / basic_user: active users per role
    - admin_headers / manager_headers / user_headers: bearer auth headers
    - field_factory: creates custom field definitions through the API
"""

import pytest

from crm import create_app
from crm.models import db as _db
from crm.models.auth import User
from crm.services.jwt_service import generate_access_token
from crm.utils.crypto import hash_password

TEST_PASSWORD = "Passw0rd!"
_password_hash = None


def _hashed_password() -> str:
    # bcrypt is slow on purpose; hash once per session
    global _password_hash
    if _password_hash is None:
        _password_hash = hash_password(TEST_PASSWORD)
    return _password_hash


def make_user(username: str, role: str, is_active: bool = True) -> User:
    user = User(
        username=username,
        email=f"{username}@example.com",
        password_hash=_hashed_password(),
        role=role,
        is_active=is_active,
    )
    _db.session.add(user)
    _db.session.commit()
    return user


def bearer(user: User) -> dict:
    token = generate_access_token(user.id, user.username, user.role)
    return {"Authorization": f"Bearer {token}"}


# ── App & DB fixtures ────────────────────────────────────────────────────


@pytest.fixture(scope="session")
def app():
    """Create the Flask application once per test session."""
    return create_app("testing")


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
        # Tables are recreated per test; a cached package snapshot would leak across tests
        app.extensions["package_registry"].invalidate()
        yield
        _db.session.rollback()
        _db.drop_all()
        _db.create_all()


@pytest.fixture()
def client(app):
    """Flask test client."""
    return app.test_client()


# ── Users & tokens ───────────────────────────────────────────────────────


@pytest.fixture()
def admin_user():
    return make_user("admin", "admin")


@pytest.fixture()
def manager_user():
    return make_user("manager", "manager")


@pytest.fixture()
def basic_user():
    return make_user("basic", "user")


@pytest.fixture()
def admin_headers(admin_user):
    return bearer(admin_user)


@pytest.fixture()
def manager_headers(manager_user):
    return bearer(manager_user)


@pytest.fixture()
def user_headers(basic_user):
    return bearer(basic_user)


# ── Domain helpers ───────────────────────────────────────────────────────


@pytest.fixture()
def field_factory(client, manager_headers):
    """Create a custom field through the API and return its id."""

    def _create(label, module="leads", field_type="TEXT", options=None):
        payload = {"module": module, "field_label": label, "field_type": field_type}
        if options is not None:
            payload["options"] = options
        res = client.post("/api/v1/custom-fields", json=payload, headers=manager_headers)
        assert res.status_code == 201, res.get_json()
        return res.get_json()["id"]

    return _create


@pytest.fixture()
def user_factory():
    """Create an extra user: ``user_factory(username, role, is_active=True)``."""
    return make_user


@pytest.fixture()
def login_password():
    return TEST_PASSWORD


@pytest.fixture()
def headers_for():
    """Build bearer headers for any user object."""
    return bearer
