"""
Custom Fields — definitions per module and values per record.

Blueprint: custom_fields_bp
Prefix: /api/v1

Endpoints:
  Custom Field Definitions:
    GET/POST        /custom-fields                             -- List (?module=) / create
    GET/PUT/DELETE  /custom-fields/<fid>                       -- Single definition CRUD

  Custom Field Values:
    GET/PUT  /custom-fields/values/<module>/<record_id>        -- Get/set values for a record
"""

import logging

from flask import Blueprint, jsonify, request

from crm.blueprints import json_body, register_error_handlers
from crm.middleware.permission_required import require_auth, require_role
from crm.services.custom_fields_service import (
    create_field_definition,
    delete_field_definition,
    get_field_definition,
    get_record_values,
    list_field_definitions,
    save_record_values,
    update_field_definition,
)

logger = logging.getLogger(__name__)

custom_fields_bp = Blueprint("custom_fields", __name__, url_prefix="/api/v1")
register_error_handlers(custom_fields_bp, logger)


# ═════════════════════════════════════════════════════════════════════════
# Custom Field Definitions
# ═════════════════════════════════════════════════════════════════════════


@custom_fields_bp.route("/custom-fields", methods=["GET"])
@require_auth
def list_definitions():
    return jsonify(list_field_definitions(request.args.get("module")))


@custom_fields_bp.route("/custom-fields", methods=["POST"])
@require_role("manager")
def create_definition():
    return jsonify(create_field_definition(json_body())), 201


@custom_fields_bp.route("/custom-fields/<int:fid>", methods=["GET"])
@require_auth
def get_definition(fid):
    return jsonify(get_field_definition(fid))


@custom_fields_bp.route("/custom-fields/<int:fid>", methods=["PUT"])
@require_role("manager")
def update_definition(fid):
    return jsonify(update_field_definition(fid, json_body()))


@custom_fields_bp.route("/custom-fields/<int:fid>", methods=["DELETE"])
@require_role("manager")
def delete_definition(fid):
    return jsonify(delete_field_definition(fid))


# ═════════════════════════════════════════════════════════════════════════
# Custom Field Values
# ═════════════════════════════════════════════════════════════════════════


@custom_fields_bp.route("/custom-fields/values/<module>/<int:record_id>", methods=["GET"])
@require_auth
def get_values(module, record_id):
    return jsonify({"values": get_record_values(module, record_id)})


@custom_fields_bp.route("/custom-fields/values/<module>/<int:record_id>", methods=["PUT"])
@require_role("user")
def set_values(module, record_id):
    """Body: {"values": {field_name: value}}; chain rules fill in their targets."""
    data = json_body()
    return jsonify(save_record_values(module, record_id, data.get("values", {})))
