"""Custom field definitions and the values stored against lead/account records."""

from datetime import datetime, timezone

from sqlalchemy import (
    JSON,
    Boolean,
    Column,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import relationship

from crm.models import db

MODULES = ("leads", "accounts")
FIELD_TYPES = ("TEXT", "TEXTAREA", "NUMBER", "DATE", "BOOLEAN", "SELECT", "RADIO", "MULTISELECT")
OPTION_FIELD_TYPES = frozenset({"SELECT", "RADIO", "MULTISELECT"})


def _utcnow():
    return datetime.now(timezone.utc)


# ── Custom Field Definition ──────────────────────────────────────

class CustomFieldDefinition(db.Model):
    """Dynamic field definition for one business module."""

    __tablename__ = "custom_field_definitions"

    id = Column(Integer, primary_key=True)
    module = Column(String(20), nullable=False)  # leads | accounts
    field_name = Column(String(100), nullable=False)
    field_label = Column(String(255), nullable=False)
    field_type = Column(String(20), nullable=False, default="TEXT")
    placeholder = Column(Text, nullable=True)
    is_required = Column(Boolean, default=False)
    # Owned by the chain-rule manager; never written from request payloads.
    is_read_only = Column(Boolean, nullable=False, default=False)
    options = Column(JSON, nullable=True)
    created_at = Column(DateTime(timezone=True), default=_utcnow)
    updated_at = Column(DateTime(timezone=True), default=_utcnow, onupdate=_utcnow)

    values = relationship(
        "CustomFieldValue",
        backref="definition",
        cascade="all, delete-orphan",
        passive_deletes=True,
        lazy="dynamic",
    )

    __table_args__ = (
        UniqueConstraint("module", "field_name", name="uq_cfd_module_field_name"),
        Index("ix_cfd_module", "module"),
    )

    def to_dict(self):
        return {
            "id": self.id,
            "module": self.module,
            "field_name": self.field_name,
            "field_label": self.field_label,
            "field_type": self.field_type,
            "placeholder": self.placeholder,
            "is_required": bool(self.is_required),
            "is_read_only": bool(self.is_read_only),
            "options": self.options,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }


# ── Custom Field Value ───────────────────────────────────────────

class CustomFieldValue(db.Model):
    """Stored value of a custom field on one lead or account record."""

    __tablename__ = "custom_field_values"

    id = Column(Integer, primary_key=True)
    definition_id = Column(
        Integer,
        ForeignKey("custom_field_definitions.id", ondelete="CASCADE"),
        nullable=False,
    )
    record_id = Column(Integer, nullable=False)
    module = Column(String(20), nullable=False)
    value = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), default=_utcnow)
    updated_at = Column(DateTime(timezone=True), default=_utcnow, onupdate=_utcnow)

    __table_args__ = (
        UniqueConstraint("definition_id", "record_id", "module", name="uq_cfv_definition_record"),
        Index("ix_cfv_record_module", "record_id", "module"),
    )

    def to_dict(self):
        return {
            "id": self.id,
            "definition_id": self.definition_id,
            "record_id": self.record_id,
            "module": self.module,
            "value": self.value,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }
