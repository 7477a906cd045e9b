"""
Permission Decorators — JWT-aware role decorators for route protection.

Usage:
    @bp.route("/chain-rules", methods=["GET"])
    @require_auth
    def list_chain_rules():
        ...

    @bp.route("/chain-rules", methods=["POST"])
    @require_role("manager")
    def create_chain_rule():
        ...

Both decorators load the token's user and expose it as ``g.current_user``.
The role check uses the role stored on the user row, so a demotion takes
effect before the token expires.
"""

import functools
import logging

from flask import g

from crm.services.user_service import get_active_user
from crm.utils.errors import E, api_error

logger = logging.getLogger(__name__)

# Role hierarchy: admin > manager > user
ROLE_HIERARCHY = {
    "admin": {"admin", "manager", "user"},
    "manager": {"manager", "user"},
    "user": {"user"},
}

_TOKEN_MESSAGES = {
    E.TOKEN_REQUIRED: "Access token required",
    E.TOKEN_EXPIRED: "Token expired",
    E.TOKEN_INVALID: "Invalid token",
}


def role_satisfies(role: str | None, min_role: str) -> bool:
    """True if ``role`` ranks at or above ``min_role``."""
    return min_role in ROLE_HIERARCHY.get(role or "", set())


def _authenticate():
    """Resolve g.current_user; return an error response tuple on failure."""
    error = getattr(g, "jwt_error", E.TOKEN_REQUIRED)
    if error is not None:
        return api_error(error, _TOKEN_MESSAGES.get(error, "Invalid token"))

    user = get_active_user(g.jwt_user_id)
    if user is None:
        return api_error(E.USER_INACTIVE, "User not found or inactive")
    g.current_user = user
    return None


def require_auth(f):
    """Decorator: require a valid bearer token for an active user."""

    @functools.wraps(f)
    def decorated(*args, **kwargs):
        failure = _authenticate()
        if failure is not None:
            return failure
        return f(*args, **kwargs)

    return decorated


def require_role(min_role: str):
    """
    Decorator: require an authenticated user whose role is at least ``min_role``.

    Args:
        min_role: "user", "manager" or "admin".
    """
    if min_role not in ROLE_HIERARCHY:
        raise ValueError(f"Unknown role {min_role!r}")

    def decorator(f):
        @functools.wraps(f)
        def decorated(*args, **kwargs):
            failure = _authenticate()
            if failure is not None:
                return failure
            user = g.current_user
            if not role_satisfies(user.role, min_role):
                logger.warning(
                    "User %d denied: role '%s' below '%s' on %s",
                    user.id, user.role, min_role, f.__name__,
                )
                return api_error(E.FORBIDDEN, "Insufficient permissions")
            return f(*args, **kwargs)
        return decorated
    return decorator
