"""
Auth Blueprint — login and token verification.

Endpoints:
    POST /api/v1/auth/login   — Username + password → JWT access token
    GET  /api/v1/auth/verify  — Current user from the bearer token
"""

import logging

from flask import Blueprint, g, jsonify

from crm import limiter
from crm.blueprints import json_body, register_error_handlers
from crm.middleware.permission_required import require_auth
from crm.middleware.rate_limiter import login_limit
from crm.services.jwt_service import generate_access_token
from crm.services.user_service import authenticate_user
from crm.utils.errors import E, api_error

logger = logging.getLogger(__name__)

auth_bp = Blueprint("auth", __name__, url_prefix="/api/v1/auth")
register_error_handlers(auth_bp, logger)


@auth_bp.route("/login", methods=["POST"])
@limiter.limit(login_limit)
def login():
    """Issue an access token for valid credentials of an active user."""
    data = json_body()
    username = (data.get("username") or "").strip()
    password = data.get("password") or ""
    if not username or not password:
        return api_error(E.VALIDATION_REQUIRED, "Username and password are required")

    user = authenticate_user(username, password)
    if user is None:
        return api_error(E.INVALID_CREDENTIALS, "Invalid username or password")

    token = generate_access_token(user.id, user.username, user.role)
    return jsonify({"token": token, "user": user.to_dict()}), 200


@auth_bp.route("/verify", methods=["GET"])
@require_auth
def verify():
    return jsonify({"success": True, "user": g.current_user.to_dict()})
