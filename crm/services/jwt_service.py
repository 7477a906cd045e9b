"""
Access tokens (PyJWT, HS256).

Claims: sub (user id as a string), username, role, type="access", iat, exp, jti.
Lifetime comes from JWT_ACCESS_EXPIRES (seconds, default 3600).
"""

import uuid
from datetime import datetime, timedelta, timezone

import jwt
from flask import current_app

ALGORITHM = "HS256"
TOKEN_TYPE = "access"
_REQUIRED_CLAIMS = ["sub", "exp", "iat", "type"]


def _secret() -> str:
    return current_app.config.get("JWT_SECRET_KEY") or current_app.config["SECRET_KEY"]


def generate_access_token(user_id: int, username: str, role: str) -> str:
    issued = datetime.now(timezone.utc)
    lifetime = timedelta(seconds=current_app.config.get("JWT_ACCESS_EXPIRES", 3600))
    claims = {
        "sub": str(user_id),
        "username": username,
        "role": role,
        "type": TOKEN_TYPE,
        "iat": issued,
        "exp": issued + lifetime,
        "jti": uuid.uuid4().hex,
    }
    return jwt.encode(claims, _secret(), algorithm=ALGORITHM)


def decode_access_token(token: str) -> dict:
    """Verify signature, expiry and token type; return the claims.

    Raises:
        jwt.ExpiredSignatureError: The token is past ``exp``.
        jwt.InvalidTokenError: Anything else wrong with it.
    """
    claims = jwt.decode(
        token, _secret(), algorithms=[ALGORITHM], options={"require": _REQUIRED_CLAIMS}
    )
    if claims["type"] != TOKEN_TYPE:
        raise jwt.InvalidTokenError(f"Expected an {TOKEN_TYPE} token, got {claims['type']!r}")
    return claims
