"""
Integration package registry.

Holds an immutable snapshot of the enabled integration packages (SMS consent,
WhatsApp, Mailchimp, calendaring) with their decrypted API credentials.

Readers call ``snapshot()`` and get a read-only mapping that never changes
under them. A refresh builds a complete new mapping from the database and
swaps the reference under a lock. The snapshot is rebuilt when it is older
than PACKAGE_REFRESH_SECONDS or when ``refresh()`` is called.

Usage:
    from crm.services.package_registry import get_registry

    pkg = get_registry().get("whatsapp")
    if pkg is not None:
        token = pkg.api_config["access_token"]
"""

import logging
import re
import threading
import time
from dataclasses import dataclass
from types import MappingProxyType

from cryptography.fernet import InvalidToken
from flask import current_app

from crm.core.exceptions import NotFoundError, ValidationError
from crm.core.transaction import atomic
from crm.models import db
from crm.models.package import IntegrationPackage
from crm.utils.crypto import decrypt_secret, encrypt_secret, rotate_secret

logger = logging.getLogger(__name__)

DEFAULT_REFRESH_SECONDS = 300
_NAME_RE = re.compile(r"^[a-z][a-z0-9_]{1,49}$")


@dataclass(frozen=True)
class PackageSnapshot:
    """One enabled package as seen by readers."""

    name: str
    display_name: str
    config: MappingProxyType
    api_config: MappingProxyType

    def to_dict(self) -> dict:
        return {
            "name": self.name,
            "display_name": self.display_name,
            "config": dict(self.config),
            "has_config": bool(self.api_config),
        }


_EMPTY = MappingProxyType({})


class PackageRegistry:
    """Process-scoped holder of the current package snapshot."""

    def __init__(self, refresh_seconds: int = DEFAULT_REFRESH_SECONDS) -> None:
        self.refresh_seconds = refresh_seconds
        self._lock = threading.Lock()
        self._snapshot: MappingProxyType = _EMPTY
        self._loaded_at: float | None = None

    # ── reads ────────────────────────────────────────────────────────────

    def snapshot(self) -> MappingProxyType:
        """Return the current name → PackageSnapshot mapping, rebuilding it if stale."""
        if self._is_stale():
            self.refresh()
        return self._snapshot

    def get(self, name: str) -> PackageSnapshot | None:
        return self.snapshot().get(name)

    # ── refresh ──────────────────────────────────────────────────────────

    def snapshot_age(self) -> float | None:
        """Seconds since the last rebuild, or None if never loaded / invalidated."""
        loaded_at = self._loaded_at
        return None if loaded_at is None else round(time.monotonic() - loaded_at, 1)

    def _is_stale(self) -> bool:
        loaded_at = self._loaded_at
        return loaded_at is None or time.monotonic() - loaded_at >= self.refresh_seconds

    def refresh(self) -> MappingProxyType:
        """Rebuild the snapshot from the database and publish it."""
        with self._lock:
            snapshot = _build_snapshot()
            self._snapshot = snapshot
            self._loaded_at = time.monotonic()
        logger.info("Package registry refreshed enabled=%d", len(snapshot))
        return snapshot

    def invalidate(self) -> None:
        """Force the next read to rebuild the snapshot."""
        with self._lock:
            self._loaded_at = None


def _decrypt_api_config(name: str, api_config: dict) -> dict:
    decrypted = {}
    for key, value in (api_config or {}).items():
        if not isinstance(value, str):
            decrypted[key] = value
            continue
        try:
            decrypted[key] = decrypt_secret(value)
        except InvalidToken:
            logger.warning("Package %s: api_config key %s cannot be decrypted; skipped", name, key)
    return decrypted


def _build_snapshot() -> MappingProxyType:
    rows = (
        IntegrationPackage.query
        .filter_by(is_enabled=True, status="active")
        .order_by(IntegrationPackage.name)
        .all()
    )
    packages = {}
    for row in rows:
        packages[row.name] = PackageSnapshot(
            name=row.name,
            display_name=row.display_name,
            config=MappingProxyType(dict(row.config or {})),
            api_config=MappingProxyType(_decrypt_api_config(row.name, row.api_config)),
        )
    return MappingProxyType(packages)


def get_registry() -> PackageRegistry:
    """Return the registry attached to the current app by ``init_registry``."""
    return current_app.extensions["package_registry"]


def init_registry(app) -> PackageRegistry:
    registry = PackageRegistry(app.config.get("PACKAGE_REFRESH_SECONDS", DEFAULT_REFRESH_SECONDS))
    app.extensions["package_registry"] = registry
    return registry


# ──────────────────────────────────────────────────────────────────────────────
# Package administration
# ──────────────────────────────────────────────────────────────────────────────

def list_packages() -> list[dict]:
    """Return every package, secrets masked, ordered by display name."""
    rows = IntegrationPackage.query.order_by(IntegrationPackage.display_name).all()
    return [p.to_dict() for p in rows]


def get_package(name: str) -> dict:
    row = IntegrationPackage.query.filter_by(name=name).first()
    if row is None:
        raise NotFoundError(resource="Package", resource_id=name)
    return row.to_dict()


def upsert_package(name: str, data: dict) -> dict:
    """Create or update a package, encrypt its string credentials and refresh the registry.

    ``api_config`` replaces the stored credentials when supplied; omitting it
    keeps them. An enabled package without credentials is stored with
    status "error" and stays out of the snapshot.

    Raises:
        ValidationError: Bad name, or non-object config/api_config.
    """
    if not _NAME_RE.match(name or ""):
        raise ValidationError("Package name must be a lowercase slug.")
    config = data.get("config")
    api_config = data.get("api_config")
    if config is not None and not isinstance(config, dict):
        raise ValidationError("config must be an object.")
    if api_config is not None and not isinstance(api_config, dict):
        raise ValidationError("api_config must be an object.")
    is_enabled = data.get("is_enabled")
    if is_enabled is not None and not isinstance(is_enabled, bool):
        raise ValidationError("is_enabled must be a boolean.")

    with atomic():
        row = IntegrationPackage.query.filter_by(name=name).first()
        if row is None:
            row = IntegrationPackage(
                name=name,
                display_name=data.get("display_name") or name.replace("_", " ").title(),
                config={},
                api_config={},
            )
            db.session.add(row)
        elif data.get("display_name"):
            row.display_name = data["display_name"]

        if is_enabled is not None:
            row.is_enabled = is_enabled
        if config is not None:
            row.config = config
        if api_config is not None:
            row.api_config = {
                k: encrypt_secret(v) if isinstance(v, str) and v else v
                for k, v in api_config.items()
            }

        if not row.is_enabled:
            row.status = "inactive"
        elif not row.api_config:
            row.status = "error"
        else:
            row.status = "active"
        db.session.flush()
        result = row.to_dict()

    logger.info("Package upserted name=%s enabled=%s status=%s", name, result["is_enabled"], result["status"])
    get_registry().refresh()
    return result


def rotate_package_credentials() -> int:
    """Re-encrypt every stored credential under the primary ENCRYPTION_KEY.

    Returns:
        Number of credential values rewritten.

    Raises:
        cryptography.fernet.InvalidToken: A value no configured key can read;
            nothing is written in that case.
    """
    rotated = 0
    with atomic():
        for row in IntegrationPackage.query.order_by(IntegrationPackage.id).all():
            if not row.api_config:
                continue
            new_config = {}
            for key, value in row.api_config.items():
                if isinstance(value, str) and value:
                    new_config[key] = rotate_secret(value)
                    rotated += 1
                else:
                    new_config[key] = value
            row.api_config = new_config
    logger.info("Package credentials rotated values=%d", rotated)
    get_registry().refresh()
    return rotated
