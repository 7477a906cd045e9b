"""Integration packages — SMS consent, WhatsApp, Mailchimp, calendaring."""

from datetime import datetime, timezone

from crm.models import db

PACKAGE_STATUSES = ("active", "inactive", "error")


class IntegrationPackage(db.Model):
    __tablename__ = "packages"

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(50), unique=True, nullable=False)
    display_name = db.Column(db.String(100), nullable=False)
    is_enabled = db.Column(db.Boolean, nullable=False, default=False)
    status = db.Column(db.String(20), nullable=False, default="inactive")
    config = db.Column(db.JSON, default=dict)
    # String values are Fernet ciphertext; see crm.utils.crypto.
    api_config = db.Column(db.JSON, default=dict)
    created_at = db.Column(db.DateTime, default=lambda: datetime.now(timezone.utc))
    updated_at = db.Column(
        db.DateTime,
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )

    def to_dict(self):
        """Serialize without secrets: api_config keys only, values masked."""
        return {
            "id": self.id,
            "name": self.name,
            "display_name": self.display_name,
            "is_enabled": bool(self.is_enabled),
            "status": self.status,
            "config": self.config or {},
            "api_config": {k: "********" for k in (self.api_config or {})},
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }
