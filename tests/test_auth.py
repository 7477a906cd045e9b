"""
Auth & user administration — Tests

Login, token verification, token error codes, role hierarchy and the
admin-only user endpoints.
"""

from datetime import datetime, timedelta, timezone

import jwt
import pytest

from crm.middleware.permission_required import role_satisfies
from crm.models import db
from crm.models.auth import User
from crm.services.jwt_service import ALGORITHM, decode_access_token, generate_access_token

API = "/api/v1"


def _token(app, **claims):
    payload = {
        "sub": "1",
        "username": "admin",
        "role": "admin",
        "type": "access",
        "iat": datetime.now(timezone.utc),
        "exp": datetime.now(timezone.utc) + timedelta(minutes=5),
    }
    payload.update(claims)
    return jwt.encode(payload, app.config["JWT_SECRET_KEY"], algorithm=ALGORITHM)


# ═══════════════════════════════════════════════════════════════
# Login / verify
# ═══════════════════════════════════════════════════════════════


class TestLogin:
    def test_login_success(self, client, manager_user, login_password):
        res = client.post(f"{API}/auth/login", json={"username": "manager", "password": login_password})
        assert res.status_code == 200
        body = res.get_json()
        assert body["user"]["role"] == "manager"
        assert "password_hash" not in body["user"]

        payload = decode_access_token(body["token"])
        assert payload["sub"] == str(manager_user.id)
        assert payload["role"] == "manager"

    def test_login_stamps_last_login(self, client, basic_user, login_password):
        client.post(f"{API}/auth/login", json={"username": "basic", "password": login_password})
        db.session.expire_all()
        assert db.session.get(User, basic_user.id).last_login is not None

    def test_wrong_password(self, client, basic_user):
        res = client.post(f"{API}/auth/login", json={"username": "basic", "password": "nope-nope"})
        assert res.status_code == 401
        assert res.get_json()["code"] == "INVALID_CREDENTIALS"

    def test_unknown_user(self, client, login_password):
        res = client.post(f"{API}/auth/login", json={"username": "ghost", "password": login_password})
        assert res.status_code == 401

    def test_inactive_user_cannot_login(self, client, user_factory, login_password):
        user_factory("retired", "user", is_active=False)
        res = client.post(f"{API}/auth/login", json={"username": "retired", "password": login_password})
        assert res.status_code == 401

    def test_missing_credentials(self, client):
        res = client.post(f"{API}/auth/login", json={"username": "basic"})
        assert res.status_code == 400
        assert res.get_json()["code"] == "ERR_VALIDATION_REQUIRED"

    def test_non_json_body_rejected(self, client):
        res = client.post(f"{API}/auth/login", data="username=x", content_type="text/plain")
        assert res.status_code == 415


class TestVerify:
    def test_verify_returns_user(self, client, user_headers):
        res = client.get(f"{API}/auth/verify", headers=user_headers)
        assert res.status_code == 200
        body = res.get_json()
        assert body["success"] is True
        assert body["user"]["username"] == "basic"

    def test_missing_token(self, client):
        res = client.get(f"{API}/auth/verify")
        assert res.status_code == 401
        assert res.get_json() == {"error": "Access token required", "code": "TOKEN_REQUIRED"}

    def test_expired_token(self, app, client, basic_user):
        past = datetime.now(timezone.utc) - timedelta(hours=2)
        token = _token(app, sub=str(basic_user.id), iat=past, exp=past + timedelta(minutes=1))
        res = client.get(f"{API}/auth/verify", headers={"Authorization": f"Bearer {token}"})
        assert res.status_code == 401
        assert res.get_json()["code"] == "TOKEN_EXPIRED"

    def test_tampered_token(self, client, user_headers):
        headers = {"Authorization": user_headers["Authorization"] + "x"}
        res = client.get(f"{API}/auth/verify", headers=headers)
        assert res.status_code == 403
        assert res.get_json()["code"] == "TOKEN_INVALID"

    def test_wrong_token_type(self, app, client, basic_user):
        token = _token(app, sub=str(basic_user.id), type="refresh")
        res = client.get(f"{API}/auth/verify", headers={"Authorization": f"Bearer {token}"})
        assert res.status_code == 403

    def test_non_numeric_subject(self, app, client):
        token = _token(app, sub="not-a-number")
        res = client.get(f"{API}/auth/verify", headers={"Authorization": f"Bearer {token}"})
        assert res.status_code == 403

    def test_deactivated_user_token_rejected(self, client, basic_user, headers_for):
        headers = headers_for(basic_user)
        basic_user.is_active = False
        db.session.commit()
        res = client.get(f"{API}/auth/verify", headers=headers)
        assert res.status_code == 401
        assert res.get_json()["code"] == "USER_INACTIVE"


# ═══════════════════════════════════════════════════════════════
# Roles
# ═══════════════════════════════════════════════════════════════


class TestRoleHierarchy:
    @pytest.mark.parametrize(
        "role, min_role, expected",
        [
            ("admin", "manager", True),
            ("admin", "user", True),
            ("manager", "manager", True),
            ("manager", "admin", False),
            ("user", "manager", False),
            (None, "user", False),
            ("guest", "user", False),
        ],
    )
    def test_role_satisfies(self, role, min_role, expected):
        assert role_satisfies(role, min_role) is expected

    def test_demotion_applies_before_token_expiry(self, client, manager_user):
        token = generate_access_token(manager_user.id, manager_user.username, "manager")
        manager_user.role = "user"
        db.session.commit()
        res = client.post(
            f"{API}/custom-fields",
            json={"module": "leads", "field_label": "X", "field_type": "TEXT"},
            headers={"Authorization": f"Bearer {token}"},
        )
        assert res.status_code == 403
        assert res.get_json()["code"] == "ERR_FORBIDDEN"


# ═══════════════════════════════════════════════════════════════
# User administration
# ═══════════════════════════════════════════════════════════════


class TestUsersAdmin:
    def test_list_requires_admin(self, client, manager_headers):
        res = client.get(f"{API}/users", headers=manager_headers)
        assert res.status_code == 403

    def test_list_users(self, client, admin_headers, basic_user):
        res = client.get(f"{API}/users", headers=admin_headers)
        assert res.status_code == 200
        assert [u["username"] for u in res.get_json()] == ["admin", "basic"]

    def test_create_user(self, client, admin_headers):
        res = client.post(
            f"{API}/users",
            json={"username": "sam", "email": "Sam@Example.com", "password": "longenough", "role": "manager"},
            headers=admin_headers,
        )
        assert res.status_code == 201
        user = res.get_json()["user"]
        assert user["email"] == "sam@example.com"
        assert user["role"] == "manager"

        login = client.post(f"{API}/auth/login", json={"username": "sam", "password": "longenough"})
        assert login.status_code == 200

    @pytest.mark.parametrize(
        "payload",
        [
            {"username": "sam", "email": "sam@example.com"},
            {"username": "sam", "email": "not-an-email", "password": "longenough"},
            {"username": "sam", "email": "sam@example.com", "password": "short"},
            {"username": "sam", "email": "sam@example.com", "password": "longenough", "role": "root"},
        ],
    )
    def test_create_user_validation(self, client, admin_headers, payload):
        res = client.post(f"{API}/users", json=payload, headers=admin_headers)
        assert res.status_code == 400

    def test_duplicate_username(self, client, admin_headers, basic_user):
        res = client.post(
            f"{API}/users",
            json={"username": "basic", "email": "other@example.com", "password": "longenough"},
            headers=admin_headers,
        )
        assert res.status_code == 409
        assert res.get_json()["details"] == {"username": "basic"}

    def test_deactivate_user(self, client, admin_headers, basic_user):
        res = client.delete(f"{API}/users/{basic_user.id}", headers=admin_headers)
        assert res.status_code == 200
        db.session.expire_all()
        assert db.session.get(User, basic_user.id).is_active is False

    def test_cannot_deactivate_self(self, client, admin_headers, admin_user):
        res = client.delete(f"{API}/users/{admin_user.id}", headers=admin_headers)
        assert res.status_code == 400

    def test_deactivate_missing(self, client, admin_headers):
        res = client.delete(f"{API}/users/999", headers=admin_headers)
        assert res.status_code == 404
