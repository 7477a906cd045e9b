"""Chain rules — field automation from a source field to a target field."""

from datetime import datetime, timezone

from sqlalchemy import (
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

COMPARISON_OPERATORS = (
    "equals",
    "not_equals",
    "contains",
    "greater_than",
    "less_than",
    "is_empty",
    "is_not_empty",
)
VALUELESS_OPERATORS = frozenset({"is_empty", "is_not_empty"})
RULE_TYPES = ("simple", "bulk_mapping")
RULE_NAME_LENGTH = 255
MAPPING_VALUE_LENGTH = 255


def _utcnow():
    return datetime.now(timezone.utc)


class ChainRule(db.Model):
    """When the source field matches, the target field receives a value."""

    __tablename__ = "chain_rules"

    id = Column(Integer, primary_key=True)
    rule_name = Column(String(RULE_NAME_LENGTH), nullable=False)
    module = Column(String(20), nullable=False)
    source_field_id = Column(
        Integer,
        ForeignKey("custom_field_definitions.id", ondelete="CASCADE"),
        nullable=False,
    )
    target_field_id = Column(
        Integer,
        ForeignKey("custom_field_definitions.id", ondelete="CASCADE"),
        nullable=False,
    )
    comparison_operator = Column(String(20), nullable=False, default="equals")
    rule_type = Column(String(20), nullable=False, default="simple")  # simple | bulk_mapping
    trigger_value = Column(Text, nullable=True)
    target_value = Column(Text, nullable=True)
    is_active = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime(timezone=True), default=_utcnow)
    updated_at = Column(DateTime(timezone=True), default=_utcnow, onupdate=_utcnow)

    source_field = relationship("CustomFieldDefinition", foreign_keys=[source_field_id])
    target_field = relationship("CustomFieldDefinition", foreign_keys=[target_field_id])
    value_maps = relationship(
        "ChainRuleValueMap",
        backref="rule",
        cascade="all, delete-orphan",
        passive_deletes=True,
        order_by="ChainRuleValueMap.id",
    )

    __table_args__ = (
        UniqueConstraint("rule_name", "module", name="uq_chain_rule_name_module"),
        Index("ix_chain_rules_module_active", "module", "is_active"),
        Index("ix_chain_rules_source_field", "source_field_id"),
        Index("ix_chain_rules_target_field", "target_field_id"),
    )

    def to_dict(self):
        d = {
            "id": self.id,
            "rule_name": self.rule_name,
            "module": self.module,
            "source_field_id": self.source_field_id,
            "target_field_id": self.target_field_id,
            "comparison_operator": self.comparison_operator,
            "rule_type": self.rule_type,
            "trigger_value": self.trigger_value,
            "target_value": self.target_value,
            "is_active": bool(self.is_active),
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }
        for prefix, field in (("source", self.source_field), ("target", self.target_field)):
            d[f"{prefix}_field_label"] = field.field_label if field else None
            d[f"{prefix}_field_name"] = field.field_name if field else None
            d[f"{prefix}_field_type"] = field.field_type if field else None
        if self.rule_type == "bulk_mapping":
            d["mappings"] = [m.to_dict() for m in self.value_maps]
        else:
            d["mappings"] = None
        return d


class ChainRuleValueMap(db.Model):
    """One trigger → target row of a bulk_mapping rule."""

    __tablename__ = "chain_rule_value_maps"

    id = Column(Integer, primary_key=True)
    rule_id = Column(
        Integer,
        ForeignKey("chain_rules.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    trigger_value = Column(String(MAPPING_VALUE_LENGTH), nullable=False)
    target_value = Column(String(MAPPING_VALUE_LENGTH), nullable=False)
    created_at = Column(DateTime(timezone=True), default=_utcnow)

    __table_args__ = (
        UniqueConstraint("rule_id", "trigger_value", name="uq_value_map_rule_trigger"),
    )

    def to_dict(self):
        return {
            "trigger_value": self.trigger_value,
            "target_value": self.target_value,
        }
