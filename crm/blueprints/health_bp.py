"""
Health probes (no auth, not rate limited, not request-logged).

    GET /api/v1/health/ready  — process is up
    GET /api/v1/health/live   — database round-trip and package registry state; 503 if degraded
"""

import logging
import time

from flask import Blueprint, current_app, jsonify
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError

from crm.models import db

logger = logging.getLogger(__name__)

health_bp = Blueprint("health", __name__, url_prefix="/api/v1/health")


def _database_check() -> dict:
    started = time.perf_counter()
    try:
        db.session.execute(text("SELECT 1"))
    except SQLAlchemyError as exc:
        db.session.rollback()
        logger.error("Health check: database unreachable: %s", exc)
        return {"status": "error"}
    return {"status": "ok", "latency_ms": round((time.perf_counter() - started) * 1000, 1)}


def _registry_check() -> dict:
    registry = current_app.extensions.get("package_registry")
    if registry is None:
        return {"status": "missing"}
    return {
        "status": "ok",
        "refresh_seconds": registry.refresh_seconds,
        "snapshot_age_seconds": registry.snapshot_age(),
    }


@health_bp.route("/ready", methods=["GET"])
def ready():
    return jsonify({"status": "ok"}), 200


@health_bp.route("/live", methods=["GET"])
def live():
    checks = {
        "database": _database_check(),
        "package_registry": _registry_check(),
        "app": {"debug": current_app.debug, "testing": current_app.testing},
    }
    healthy = all(c.get("status", "ok") == "ok" for c in checks.values())
    return jsonify({
        "status": "healthy" if healthy else "degraded",
        "checks": checks,
    }), 200 if healthy else 503
