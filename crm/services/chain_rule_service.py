"""
Chain Rule service layer.

Owns every mutation of ChainRule / ChainRuleValueMap and the read-only flag
of their target fields. Each mutating function runs its statements inside a
single ``atomic()`` block: the rule row, its value mappings and the
read-only flags are committed together or not at all.
"""

import logging

from sqlalchemy import delete, insert, select
from sqlalchemy.orm import joinedload, selectinload

from crm.core.exceptions import ConflictError, NotFoundError, ValidationError
from crm.core.patch import Patch
from crm.core.transaction import atomic
from crm.models import db
from crm.models.chain_rules import (
    COMPARISON_OPERATORS,
    MAPPING_VALUE_LENGTH,
    RULE_NAME_LENGTH,
    RULE_TYPES,
    VALUELESS_OPERATORS,
    ChainRule,
    ChainRuleValueMap,
)
from crm.models.custom_fields import MODULES, CustomFieldDefinition
from crm.services import read_only_propagation as read_only

logger = logging.getLogger(__name__)

_UPDATABLE_COLUMNS = (
    "rule_name",
    "comparison_operator",
    "target_field_id",
    "trigger_value",
    "target_value",
)


# ──────────────────────────────────────────────────────────────────────────────
# Validation helpers
# ──────────────────────────────────────────────────────────────────────────────

def _clean(value) -> str | None:
    """Normalise a scalar payload value to stripped text; blank becomes None."""
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def _is_missing(value) -> bool:
    return value is None or (isinstance(value, str) and not value.strip())


def _parse_id(value, label: str) -> int:
    if isinstance(value, bool):
        raise ValidationError(f"{label} must be an integer id.")
    try:
        return int(value)
    except (TypeError, ValueError) as exc:
        raise ValidationError(f"{label} must be an integer id.") from exc


def _validate_rule_name(rule_name: str) -> None:
    if len(rule_name) > RULE_NAME_LENGTH:
        raise ValidationError(f"Rule name must be {RULE_NAME_LENGTH} characters or fewer.")


def _validate_operator(operator: str) -> None:
    if operator not in COMPARISON_OPERATORS:
        raise ValidationError(
            f"Invalid comparison operator. Must be one of: {', '.join(COMPARISON_OPERATORS)}"
        )


def _validate_simple(operator: str, trigger_value, target_value) -> tuple[str | None, str]:
    """Return the (trigger, target) pair to store for a simple rule."""
    trigger = _clean(trigger_value)
    target = _clean(target_value)
    needs_trigger = operator not in VALUELESS_OPERATORS
    if needs_trigger and trigger is None:
        raise ValidationError("Trigger value is required for this comparison operator.")
    if target is None:
        raise ValidationError("Target value is required for simple rules.")
    return (trigger if needs_trigger else None), target


def _validate_mappings(bulk_mappings) -> list[dict]:
    """Return cleaned mapping rows for a bulk_mapping rule."""
    if not isinstance(bulk_mappings, list) or not bulk_mappings:
        raise ValidationError("Bulk mappings are required for bulk mapping rules.")

    cleaned = []
    seen = set()
    for mapping in bulk_mappings:
        if not isinstance(mapping, dict):
            raise ValidationError("Each bulk mapping must have both trigger_value and target_value.")
        trigger = _clean(mapping.get("trigger_value"))
        target = _clean(mapping.get("target_value"))
        if trigger is None or target is None:
            raise ValidationError("Each bulk mapping must have both trigger_value and target_value.")
        if len(trigger) > MAPPING_VALUE_LENGTH or len(target) > MAPPING_VALUE_LENGTH:
            raise ValidationError(f"Bulk mapping values must be {MAPPING_VALUE_LENGTH} characters or fewer.")
        if trigger in seen:
            raise ValidationError(
                "Duplicate trigger values are not allowed in bulk mappings.",
                details={"trigger_value": trigger},
            )
        seen.add(trigger)
        cleaned.append({"trigger_value": trigger, "target_value": target})
    return cleaned


def _load_module_field(field_id: int, module: str, label: str) -> CustomFieldDefinition:
    field = db.session.get(CustomFieldDefinition, field_id)
    if field is None or field.module != module:
        raise ValidationError(f"{label} field does not exist in module '{module}'.")
    return field


def _ensure_unique_name(rule_name: str, module: str, exclude_id: int | None = None) -> None:
    q = ChainRule.query.filter_by(rule_name=rule_name, module=module)
    if exclude_id is not None:
        q = q.filter(ChainRule.id != exclude_id)
    if q.first() is not None:
        raise ConflictError("ChainRule", "rule_name", rule_name)


def _insert_mappings(rule_id: int, mappings: list[dict]) -> None:
    db.session.execute(
        insert(ChainRuleValueMap),
        [{"rule_id": rule_id, **m} for m in mappings],
    )


def _get_rule_or_404(rule_id: int) -> ChainRule:
    rule = db.session.get(ChainRule, rule_id)
    if rule is None:
        raise NotFoundError(resource="ChainRule", resource_id=rule_id)
    return rule


def _lock_rule(rule_id: int) -> ChainRule:
    """Row-lock the rule and reload it, so its current target is the one we release."""
    rule = db.session.scalar(
        select(ChainRule)
        .where(ChainRule.id == rule_id)
        .with_for_update()
        .execution_options(populate_existing=True)
    )
    if rule is None:
        raise NotFoundError(resource="ChainRule", resource_id=rule_id)
    return rule


# ──────────────────────────────────────────────────────────────────────────────
# Reads
# ──────────────────────────────────────────────────────────────────────────────

def _rule_query():
    return ChainRule.query.options(
        joinedload(ChainRule.source_field),
        joinedload(ChainRule.target_field),
        selectinload(ChainRule.value_maps),
    )


def list_rules(module: str | None = None) -> list[dict]:
    """Return all rules with joined field metadata and, for bulk rules, their mappings.

    Args:
        module: Optional module filter ("leads" / "accounts").

    Returns:
        List of serialized rules ordered by module, then rule_name.
    """
    q = _rule_query()
    if module:
        q = q.filter(ChainRule.module == module)
    rules = q.order_by(ChainRule.module, ChainRule.rule_name).all()
    return [r.to_dict() for r in rules]


def get_rule(rule_id: int) -> dict:
    rule = _rule_query().filter(ChainRule.id == rule_id).first()
    if rule is None:
        raise NotFoundError(resource="ChainRule", resource_id=rule_id)
    return rule.to_dict()


# ──────────────────────────────────────────────────────────────────────────────
# Mutations
# ──────────────────────────────────────────────────────────────────────────────

def create_rule(data: dict) -> dict:
    """Create a simple or bulk_mapping rule and mark its target field read-only.

    Args:
        data: Request payload with rule_name, module, source_field_id,
              target_field_id, comparison_operator, rule_type and either
              trigger_value/target_value or bulk_mappings.

    Returns:
        ``{"id": <new rule id>, "message": ...}``

    Raises:
        ValidationError: Missing fields, source == target, bad operator/type,
            missing trigger/target values or malformed mappings.
        ConflictError: rule_name already used in the module.
    """
    rule_name = _clean(data.get("rule_name"))
    module = _clean(data.get("module"))
    raw_source = data.get("source_field_id")
    raw_target = data.get("target_field_id")

    if not rule_name or not module or _is_missing(raw_source) or _is_missing(raw_target):
        raise ValidationError("Rule name, module, source field, and target field are required.")

    _validate_rule_name(rule_name)
    source_id = _parse_id(raw_source, "source_field_id")
    target_id = _parse_id(raw_target, "target_field_id")
    if source_id == target_id:
        raise ValidationError("Source and target fields cannot be the same.")

    if module not in MODULES:
        raise ValidationError('Module must be either "leads" or "accounts".')
    operator = _clean(data.get("comparison_operator")) or "equals"
    _validate_operator(operator)
    rule_type = _clean(data.get("rule_type")) or "simple"
    if rule_type not in RULE_TYPES:
        raise ValidationError(f"Invalid rule type. Must be one of: {', '.join(RULE_TYPES)}")

    mappings: list[dict] = []
    if rule_type == "bulk_mapping":
        mappings = _validate_mappings(data.get("bulk_mappings"))
        trigger_value, target_value = None, None
    else:
        trigger_value, target_value = _validate_simple(
            operator, data.get("trigger_value"), data.get("target_value")
        )

    _load_module_field(source_id, module, "Source")
    _load_module_field(target_id, module, "Target")
    _ensure_unique_name(rule_name, module)

    with atomic():
        read_only.lock_fields([target_id])
        rule = ChainRule(
            rule_name=rule_name,
            module=module,
            source_field_id=source_id,
            target_field_id=target_id,
            comparison_operator=operator,
            rule_type=rule_type,
            trigger_value=trigger_value,
            target_value=target_value,
            is_active=True,
        )
        db.session.add(rule)
        db.session.flush()
        if mappings:
            _insert_mappings(rule.id, mappings)
        read_only.set_read_only(target_id, True)
        rule_id = rule.id

    logger.info(
        "ChainRule created id=%s module=%s type=%s target=%s mappings=%d",
        rule_id, module, rule_type, target_id, len(mappings),
    )
    return {
        "id": rule_id,
        "message": "Chain rule created successfully. Target field is now read-only.",
    }


def update_rule(rule_id: int, data: dict) -> dict:
    """Update a rule, replace its mappings and move the read-only flag if the target changed.

    module, source_field_id and rule_type are fixed at creation and ignored here.
    The rule row is locked before its current target is read, so a concurrent
    retarget of the same rule cannot leave a stale field read-only.

    Raises:
        NotFoundError: If the rule does not exist.
        ValidationError: Missing/invalid fields or mappings.
        ConflictError: New rule_name already used in the module.
    """
    rule = _get_rule_or_404(rule_id)

    rule_name = _clean(data.get("rule_name"))
    operator = _clean(data.get("comparison_operator"))
    raw_target = data.get("target_field_id")
    if not rule_name or _is_missing(raw_target) or not operator:
        raise ValidationError("Rule name, target field, and comparison operator are required.")

    _validate_rule_name(rule_name)
    target_id = _parse_id(raw_target, "target_field_id")
    _validate_operator(operator)

    patch = Patch(_UPDATABLE_COLUMNS)
    patch.set("rule_name", rule_name)
    patch.set("comparison_operator", operator)
    patch.set("target_field_id", target_id)

    mappings: list[dict] = []
    if rule.rule_type == "bulk_mapping":
        mappings = _validate_mappings(data.get("bulk_mappings"))
        patch.set("trigger_value", None)
        patch.set("target_value", None)
    else:
        trigger_value, target_value = _validate_simple(
            operator, data.get("trigger_value"), data.get("target_value")
        )
        patch.set("trigger_value", trigger_value)
        patch.set("target_value", target_value)

    if target_id == rule.source_field_id:
        raise ValidationError("Source and target fields cannot be the same.")
    if target_id != rule.target_field_id:
        _load_module_field(target_id, rule.module, "Target")
    if rule_name != rule.rule_name:
        _ensure_unique_name(rule_name, rule.module, exclude_id=rule_id)

    with atomic():
        rule = _lock_rule(rule_id)
        old_target_id = rule.target_field_id
        is_active = bool(rule.is_active)
        read_only.lock_fields([old_target_id, target_id])
        patch.apply_to(ChainRule, rule_id)

        if rule.rule_type == "bulk_mapping":
            db.session.execute(
                delete(ChainRuleValueMap).where(ChainRuleValueMap.rule_id == rule_id)
            )
            _insert_mappings(rule_id, mappings)

        if target_id != old_target_id:
            if is_active:
                read_only.set_read_only(target_id, True)
            else:
                read_only.recompute([target_id])
            read_only.release_if_untargeted(old_target_id, exclude_rule_id=rule_id)

    # Bulk statements bypass the identity map; drop the stale mapping collection.
    db.session.expire(rule)
    logger.info(
        "ChainRule updated id=%s target=%s->%s mappings=%d",
        rule_id, old_target_id, target_id, len(mappings),
    )
    return {"message": "Chain rule updated successfully."}


def set_rule_active(rule_id: int, is_active) -> dict:
    """Activate or deactivate a rule and keep its target's read-only flag consistent."""
    if not isinstance(is_active, bool):
        raise ValidationError("is_active must be a boolean.")

    with atomic():
        rule = _lock_rule(rule_id)
        if bool(rule.is_active) == is_active:
            return {"message": "Chain rule status unchanged.", "is_active": is_active}
        target_id = rule.target_field_id
        read_only.lock_fields([target_id])
        rule.is_active = is_active
        db.session.flush()
        if is_active:
            read_only.set_read_only(target_id, True)
        else:
            read_only.release_if_untargeted(target_id, exclude_rule_id=rule_id)

    logger.info("ChainRule id=%s is_active=%s", rule_id, is_active)
    state = "activated" if is_active else "deactivated"
    return {"message": f"Chain rule {state} successfully.", "is_active": is_active}


def delete_rule(rule_id: int) -> dict:
    """Delete a rule and its mappings; release the target unless still targeted.

    Raises:
        NotFoundError: If the rule does not exist.
    """
    with atomic():
        target_id = _lock_rule(rule_id).target_field_id
        read_only.lock_fields([target_id])
        db.session.execute(
            delete(ChainRuleValueMap).where(ChainRuleValueMap.rule_id == rule_id)
        )
        db.session.execute(delete(ChainRule).where(ChainRule.id == rule_id))
        read_only.release_if_untargeted(target_id)

    logger.info("ChainRule deleted id=%s target=%s", rule_id, target_id)
    return {"message": "Chain rule deleted successfully. Target field read-only status updated."}
