"""
JWT Auth Middleware — Parses JWT from Authorization header, sets g.jwt_*.

The hook never rejects a request by itself. It records what it found:
    g.jwt_user_id  — int user id from a valid token, else None
    g.jwt_role     — role claim from a valid token, else None
    g.jwt_error    — None, or the E.* code of a missing/expired/invalid token

Route decorators in crm.middleware.permission_required turn that into
401/403 responses for the endpoints that need a user.
"""

import logging

import jwt as pyjwt
from flask import g, request

from crm.services.jwt_service import decode_access_token
from crm.utils.errors import E

logger = logging.getLogger(__name__)

# Paths that skip JWT parsing entirely
JWT_SKIP_PREFIXES = (
    "/api/v1/auth/login",
    "/api/v1/health",
)


def init_jwt_middleware(app):
    """Register JWT middleware as a before_request hook."""

    @app.before_request
    def _jwt_auth():
        g.jwt_user_id = None
        g.jwt_role = None
        g.jwt_error = E.TOKEN_REQUIRED

        path = request.path
        if not path.startswith("/api/v1/") or path.startswith(JWT_SKIP_PREFIXES):
            return

        auth_header = request.headers.get("Authorization", "")
        scheme, _, token = auth_header.partition(" ")
        if scheme.lower() != "bearer" or not token.strip():
            return

        try:
            payload = decode_access_token(token.strip())
            g.jwt_user_id = int(payload["sub"])
            g.jwt_role = payload.get("role")
            g.jwt_error = None
        except pyjwt.ExpiredSignatureError:
            g.jwt_error = E.TOKEN_EXPIRED
        except (pyjwt.InvalidTokenError, KeyError, ValueError) as exc:
            logger.debug("Rejected bearer token: %s", exc)
            g.jwt_error = E.TOKEN_INVALID
