"""
Startup diagnostics.

Runs once from the app factory (not under TESTING): checks the database,
the schema, the encryption key and the package registry, then logs a banner
and one WARNING per problem found.
"""

import logging
import sys

from flask import Flask
from sqlalchemy import func, inspect as sa_inspect, select, text
from sqlalchemy.exc import SQLAlchemyError

from crm.models import db

logger = logging.getLogger(__name__)

_BANNER_WIDTH = 62


def _check_database(app: Flask, issues: list[str]) -> list[tuple[str, str]]:
    uri = str(app.config.get("SQLALCHEMY_DATABASE_URI", ""))
    kind = "PostgreSQL" if uri.startswith("postgresql") else "SQLite" if uri.startswith("sqlite") else "other"
    try:
        db.session.execute(text("SELECT 1"))
    except SQLAlchemyError as exc:
        issues.append(f"Database unreachable: {exc}")
        return [("Database", f"{kind} (FAILED)")]

    present = set(sa_inspect(db.engine).get_table_names())
    missing = sorted(set(db.metadata.tables) - present)
    if missing:
        issues.append(f"Missing tables {', '.join(missing)}; run 'flask db upgrade'")
        return [("Database", f"{kind} (ok)"), ("Schema", f"{len(missing)} table(s) missing")]

    from crm.models.chain_rules import ChainRule
    from crm.models.custom_fields import CustomFieldDefinition

    fields = db.session.scalar(select(func.count()).select_from(CustomFieldDefinition))
    rules = db.session.scalar(
        select(func.count()).select_from(ChainRule).where(ChainRule.is_active.is_(True))
    )
    return [
        ("Database", f"{kind} (ok)"),
        ("Schema", f"{len(present)} tables"),
        ("Fields", str(fields)),
        ("Active rules", str(rules)),
    ]


def _check_encryption(app: Flask, issues: list[str]) -> list[tuple[str, str]]:
    from crm.utils.crypto import encryption_keys_valid

    if not app.config.get("ENCRYPTION_KEY"):
        issues.append("ENCRYPTION_KEY not set; package credentials cannot be stored")
        return [("Encryption", "NOT SET")]
    if not encryption_keys_valid(app.config["ENCRYPTION_KEY"]):
        issues.append("ENCRYPTION_KEY is not a valid Fernet key list")
        return [("Encryption", "INVALID")]
    return [("Encryption", "configured")]


def _check_packages(app: Flask, issues: list[str]) -> list[tuple[str, str]]:
    registry = app.extensions.get("package_registry")
    if registry is None:
        issues.append("Package registry not initialised")
        return [("Packages", "missing")]
    try:
        enabled = len(registry.refresh())
    except (SQLAlchemyError, RuntimeError) as exc:
        db.session.rollback()
        issues.append(f"Package registry could not load: {exc}")
        return [("Packages", "FAILED")]
    return [("Packages", f"{enabled} enabled, refresh {registry.refresh_seconds}s")]


def _banner(rows: list[tuple[str, str]]) -> str:
    inner = _BANNER_WIDTH - 2
    lines = [
        "╔" + "═" * inner + "╗",
        "║" + "  CRM Field Automation Backend: startup".ljust(inner) + "║",
        "╠" + "═" * inner + "╣",
    ]
    lines += ["║" + f"  {label:<13}: {value}".ljust(inner)[:inner] + "║" for label, value in rows]
    lines.append("╚" + "═" * inner + "╝")
    return "\n" + "\n".join(lines)


def run_startup_diagnostics(app: Flask):
    """Log the startup banner and any configuration problems."""
    if app.config.get("TESTING"):
        return

    issues: list[str] = []
    py = ".".join(str(part) for part in sys.version_info[:3])
    limiter = "memory" if app.config.get("REDIS_URL", "memory://").startswith("memory://") else "redis"
    rows = [("Python", py), ("Debug", str(app.debug)), ("Limiter", limiter)]

    with app.app_context():
        rows += _check_database(app, issues)
        rows += _check_encryption(app, issues)
        rows += _check_packages(app, issues)

    logger.info(_banner(rows))
    for issue in issues:
        logger.warning("Startup issue: %s", issue)
    if not issues:
        logger.info("All startup checks passed")
