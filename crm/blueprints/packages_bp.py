"""
Integration packages — registry of enabled messaging integrations.

Endpoints:
    GET   /api/v1/packages            -- All packages, secrets masked (admin)
    GET   /api/v1/packages/enabled    -- Current registry snapshot (any user)
    GET   /api/v1/packages/<name>     -- One package, secrets masked (admin)
    PUT   /api/v1/packages/<name>     -- Create / update a package (admin)
    POST  /api/v1/packages/refresh    -- Rebuild the snapshot now (admin)
"""

import logging

from flask import Blueprint, jsonify

from crm.blueprints import json_body, register_error_handlers
from crm.middleware.permission_required import require_auth, require_role
from crm.services import package_registry

logger = logging.getLogger(__name__)

packages_bp = Blueprint("packages", __name__, url_prefix="/api/v1/packages")
register_error_handlers(packages_bp, logger)


def _snapshot_payload(snapshot) -> dict:
    return {name: pkg.to_dict() for name, pkg in snapshot.items()}


@packages_bp.route("", methods=["GET"])
@require_role("admin")
def list_packages():
    return jsonify(package_registry.list_packages())


@packages_bp.route("/enabled", methods=["GET"])
@require_auth
def enabled_packages():
    snapshot = package_registry.get_registry().snapshot()
    return jsonify({"packages": _snapshot_payload(snapshot)})


@packages_bp.route("/refresh", methods=["POST"])
@require_role("admin")
def refresh_packages():
    snapshot = package_registry.get_registry().refresh()
    return jsonify({"packages": _snapshot_payload(snapshot)})


@packages_bp.route("/<name>", methods=["GET"])
@require_role("admin")
def get_package(name):
    return jsonify(package_registry.get_package(name))


@packages_bp.route("/<name>", methods=["PUT"])
@require_role("admin")
def upsert_package(name):
    return jsonify(package_registry.upsert_package(name, json_body()))
