"""
Chain Rules — field automation between custom fields.

Blueprint: chain_rules_bp
Prefix: /api/v1

Endpoints:
  Rules:
    GET/POST        /chain-rules                 -- List (?module=) / create
    GET/PUT/DELETE  /chain-rules/<rid>           -- Single rule
    PUT             /chain-rules/<rid>/status    -- Activate / deactivate

  Evaluation:
    POST /chain-rules/evaluate                   -- Dry run against posted values
    POST /chain-rules/read-only-fields           -- Targets locked by firing rules
    POST /chain-rules/trigger/<module>/<rid>     -- Re-run rules on a stored record
"""

import logging

from flask import Blueprint, jsonify, request

from crm.blueprints import json_body, register_error_handlers
from crm.core.exceptions import ValidationError
from crm.middleware.permission_required import require_auth, require_role
from crm.models.custom_fields import MODULES
from crm.services import chain_rule_engine, chain_rule_service

logger = logging.getLogger(__name__)

chain_rules_bp = Blueprint("chain_rules", __name__, url_prefix="/api/v1")
register_error_handlers(chain_rules_bp, logger)


def _module_arg(value) -> str:
    if value not in MODULES:
        raise ValidationError('Module must be either "leads" or "accounts".')
    return value


def _values_arg(data: dict, key: str) -> dict:
    values = data.get(key) or {}
    if not isinstance(values, dict):
        raise ValidationError(f"{key} must be an object keyed by field name.")
    return values


# ═════════════════════════════════════════════════════════════════════════
# Rules
# ═════════════════════════════════════════════════════════════════════════


@chain_rules_bp.route("/chain-rules", methods=["GET"])
@require_auth
def list_chain_rules():
    module = request.args.get("module")
    if module:
        _module_arg(module)
    return jsonify(chain_rule_service.list_rules(module))


@chain_rules_bp.route("/chain-rules/<int:rid>", methods=["GET"])
@require_auth
def get_chain_rule(rid):
    return jsonify(chain_rule_service.get_rule(rid))


@chain_rules_bp.route("/chain-rules", methods=["POST"])
@require_role("manager")
def create_chain_rule():
    result = chain_rule_service.create_rule(json_body())
    return jsonify(result), 201


@chain_rules_bp.route("/chain-rules/<int:rid>", methods=["PUT"])
@require_role("manager")
def update_chain_rule(rid):
    return jsonify(chain_rule_service.update_rule(rid, json_body()))


@chain_rules_bp.route("/chain-rules/<int:rid>/status", methods=["PUT"])
@require_role("manager")
def set_chain_rule_status(rid):
    data = json_body()
    return jsonify(chain_rule_service.set_rule_active(rid, data.get("is_active")))


@chain_rules_bp.route("/chain-rules/<int:rid>", methods=["DELETE"])
@require_role("manager")
def delete_chain_rule(rid):
    return jsonify(chain_rule_service.delete_rule(rid))


# ═════════════════════════════════════════════════════════════════════════
# Evaluation
# ═════════════════════════════════════════════════════════════════════════


@chain_rules_bp.route("/chain-rules/evaluate", methods=["POST"])
@require_auth
def evaluate_chain_rules():
    """Dry run: body {module, values, record_id?}. Nothing is stored."""
    data = json_body()
    module = _module_arg(data.get("module"))
    record_id = data.get("record_id")
    if record_id is not None and (isinstance(record_id, bool) or not isinstance(record_id, int)):
        raise ValidationError("record_id must be an integer.")
    return jsonify(chain_rule_engine.apply_chain_rules(module, _values_arg(data, "values"), record_id))


@chain_rules_bp.route("/chain-rules/read-only-fields", methods=["POST"])
@require_auth
def read_only_fields():
    """Body {module, current_data}."""
    data = json_body()
    module = _module_arg(data.get("module"))
    return jsonify(chain_rule_engine.get_read_only_fields(module, _values_arg(data, "current_data")))


@chain_rules_bp.route("/chain-rules/trigger/<module>/<int:record_id>", methods=["POST"])
@require_role("manager")
def trigger_chain_rules(module, record_id):
    _module_arg(module)
    return jsonify(chain_rule_engine.trigger_chain_rules_for_record(module, record_id))
