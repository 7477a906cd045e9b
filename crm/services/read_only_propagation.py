"""
Read-only propagation for chain-rule target fields.

Invariant maintained by every caller:
    CustomFieldDefinition.is_read_only is true exactly while at least one
    active ChainRule has it as target_field_id.

These helpers never commit; callers run them inside ``atomic()`` together
with the rule mutation that changed the targeting set.
"""

import logging
from collections.abc import Iterable

from sqlalchemy import exists, select, update

from crm.models import db
from crm.models.chain_rules import ChainRule
from crm.models.custom_fields import CustomFieldDefinition

logger = logging.getLogger(__name__)


def lock_fields(field_ids: Iterable[int | None]) -> None:
    """Row-lock field definitions (SELECT ... FOR UPDATE) in ascending id order.

    Serializes concurrent rule mutations that touch the same target field.
    SQLite has no row locks; the statement is emitted without FOR UPDATE there.
    """
    ids = sorted({fid for fid in field_ids if fid is not None})
    if not ids:
        return
    db.session.execute(
        select(CustomFieldDefinition.id)
        .where(CustomFieldDefinition.id.in_(ids))
        .order_by(CustomFieldDefinition.id)
        .with_for_update()
    )


def set_read_only(field_id: int, is_read_only: bool) -> None:
    db.session.execute(
        update(CustomFieldDefinition)
        .where(CustomFieldDefinition.id == field_id)
        .values(is_read_only=is_read_only)
    )
    logger.debug("Field id=%s is_read_only=%s", field_id, is_read_only)


def is_field_targeted(field_id: int, exclude_rule_id: int | None = None) -> bool:
    """True if any active rule (other than ``exclude_rule_id``) targets the field."""
    conditions = [
        ChainRule.target_field_id == field_id,
        ChainRule.is_active.is_(True),
    ]
    if exclude_rule_id is not None:
        conditions.append(ChainRule.id != exclude_rule_id)
    return bool(db.session.scalar(select(exists().where(*conditions))))


def release_if_untargeted(field_id: int, exclude_rule_id: int | None = None) -> bool:
    """Clear the read-only flag unless another active rule still targets the field.

    Returns:
        True if the flag was cleared.
    """
    if is_field_targeted(field_id, exclude_rule_id=exclude_rule_id):
        return False
    set_read_only(field_id, False)
    return True


def recompute(field_ids: Iterable[int]) -> None:
    """Set each field's flag from the current active rule set."""
    for field_id in sorted(set(field_ids)):
        set_read_only(field_id, is_field_targeted(field_id))
