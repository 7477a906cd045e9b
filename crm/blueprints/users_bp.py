"""
User administration (admin only).

Endpoints:
    GET/POST  /api/v1/users          -- List / create
    DELETE    /api/v1/users/<uid>    -- Deactivate
"""

import logging

from flask import Blueprint, g, jsonify

from crm.blueprints import json_body, register_error_handlers
from crm.core.exceptions import ValidationError
from crm.middleware.permission_required import require_role
from crm.services import user_service

logger = logging.getLogger(__name__)

users_bp = Blueprint("users", __name__, url_prefix="/api/v1")
register_error_handlers(users_bp, logger)


@users_bp.route("/users", methods=["GET"])
@require_role("admin")
def list_users():
    return jsonify(user_service.list_users())


@users_bp.route("/users", methods=["POST"])
@require_role("admin")
def create_user():
    return jsonify({"user": user_service.create_user(json_body())}), 201


@users_bp.route("/users/<int:uid>", methods=["DELETE"])
@require_role("admin")
def deactivate_user(uid):
    if uid == g.current_user.id:
        raise ValidationError("You cannot deactivate your own account.")
    user_service.deactivate_user(uid)
    return jsonify({"message": "User deactivated successfully."})
