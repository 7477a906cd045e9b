"""
Chain rule evaluation.

Applies the active rules of a module to a record's field values and reports
which target fields receive which values. Evaluation is read-only except for
``trigger_chain_rules_for_record``, which writes the computed values back.
"""

import logging
from dataclasses import dataclass

from sqlalchemy import select
from sqlalchemy.orm import aliased, selectinload

from crm.core.exceptions import NotFoundError
from crm.core.transaction import atomic
from crm.models import db
from crm.models.chain_rules import ChainRule
from crm.models.custom_fields import CustomFieldDefinition, CustomFieldValue

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class _LoadedRule:
    id: int
    rule_name: str
    rule_type: str
    comparison_operator: str
    source_field: str
    target_field: str
    trigger_value: str | None
    target_value: str | None
    mappings: tuple


def _is_empty(value) -> bool:
    return value is None or value == ""


def _to_float(value) -> float | None:
    if isinstance(value, bool):
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


def evaluate_condition(value, operator: str, trigger) -> bool:
    """Test a source value against a rule's trigger.

    Equality compares string forms, so a stored ``"5"`` equals a trigger
    of ``5``. A missing value never equals anything.
    """
    if operator == "equals":
        return value is not None and str(value) == str(trigger)
    if operator == "not_equals":
        return value is None or str(value) != str(trigger)
    if operator == "contains":
        if _is_empty(value) or trigger is None:
            return False
        return str(trigger).lower() in str(value).lower()
    if operator in ("greater_than", "less_than"):
        left, right = _to_float(value), _to_float(trigger)
        if left is None or right is None:
            return False
        return left > right if operator == "greater_than" else left < right
    if operator == "is_empty":
        return _is_empty(value)
    if operator == "is_not_empty":
        return not _is_empty(value)
    return False


def evaluate_bulk_mapping(value, mappings, operator: str = "equals") -> str | None:
    """Look up the target value for ``value`` in a bulk mapping table.

    Exact (string) trigger matches win. With the ``contains`` operator the
    first trigger found inside the value, ignoring case, is used instead.

    Returns:
        The mapped target value, or None if nothing matches.
    """
    if not mappings or value is None:
        return None

    text = str(value)
    for mapping in mappings:
        if mapping["trigger_value"] == text:
            return mapping["target_value"]

    if operator == "contains" and text:
        lowered = text.lower()
        for mapping in mappings:
            if mapping["trigger_value"].lower() in lowered:
                return mapping["target_value"]
    return None


def _load_active_rules(module: str) -> list[_LoadedRule]:
    source = aliased(CustomFieldDefinition)
    target = aliased(CustomFieldDefinition)
    stmt = (
        select(ChainRule, source.field_name, target.field_name)
        .join(source, ChainRule.source_field_id == source.id)
        .join(target, ChainRule.target_field_id == target.id)
        .where(ChainRule.module == module, ChainRule.is_active.is_(True))
        .options(selectinload(ChainRule.value_maps))
        .order_by(ChainRule.id)
    )
    rules = []
    for rule, source_name, target_name in db.session.execute(stmt):
        rules.append(
            _LoadedRule(
                id=rule.id,
                rule_name=rule.rule_name,
                rule_type=rule.rule_type,
                comparison_operator=rule.comparison_operator,
                source_field=source_name,
                target_field=target_name,
                trigger_value=rule.trigger_value,
                target_value=rule.target_value,
                mappings=tuple(m.to_dict() for m in rule.value_maps),
            )
        )
    return rules


def _rule_result(rule: _LoadedRule, data: dict) -> str | None:
    """Value the rule assigns to its target for ``data``, or None if it does not fire."""
    source_value = data.get(rule.source_field)
    if rule.rule_type == "bulk_mapping":
        return evaluate_bulk_mapping(source_value, rule.mappings, rule.comparison_operator)
    if evaluate_condition(source_value, rule.comparison_operator, rule.trigger_value):
        return rule.target_value
    return None


def stored_values(module: str, record_id: int) -> dict:
    """Return ``{field_name: raw stored value}`` for one record."""
    rows = db.session.execute(
        select(CustomFieldDefinition.field_name, CustomFieldValue.value)
        .join(CustomFieldValue, CustomFieldValue.definition_id == CustomFieldDefinition.id)
        .where(CustomFieldValue.record_id == record_id, CustomFieldValue.module == module)
    )
    return {name: value for name, value in rows}


def apply_chain_rules(module: str, record_data: dict, record_id: int | None = None) -> dict:
    """Evaluate every active rule of ``module`` against a record.

    Args:
        module: "leads" or "accounts".
        record_data: Incoming field values keyed by field_name.
        record_id: When given, the record's stored values are used for any
            field ``record_data`` does not supply.

    Returns:
        ``{"updates": {target_field: value}, "applied_rules": [...]}``.
        When two rules hit the same target, the one with the higher id wins.
    """
    data = stored_values(module, record_id) if record_id is not None else {}
    data.update(record_data or {})

    updates: dict = {}
    applied: list[dict] = []
    for rule in _load_active_rules(module):
        value = _rule_result(rule, data)
        if value is None:
            continue
        updates[rule.target_field] = value
        applied.append({
            "rule_id": rule.id,
            "rule_name": rule.rule_name,
            "rule_type": rule.rule_type,
            "source_field": rule.source_field,
            "target_field": rule.target_field,
            "target_value": value,
        })

    if applied:
        logger.debug("Chain rules applied module=%s record=%s count=%d", module, record_id, len(applied))
    return {"updates": updates, "applied_rules": applied}


def get_read_only_fields(module: str, current_data: dict | None = None) -> dict:
    """Return the targets whose rules currently fire for ``current_data``.

    A form uses this to lock the fields a rule is filling in.
    """
    data = current_data or {}
    read_only: list[str] = []
    computed: dict = {}
    for rule in _load_active_rules(module):
        value = _rule_result(rule, data)
        if value is None:
            continue
        if rule.target_field not in computed:
            read_only.append(rule.target_field)
        computed[rule.target_field] = value
    return {"read_only_fields": read_only, "computed_values": computed}


def trigger_chain_rules_for_record(module: str, record_id: int) -> dict:
    """Re-run the rules over a record's stored values and persist the results.

    Raises:
        NotFoundError: If the record has no stored custom field values.
    """
    current = stored_values(module, record_id)
    if not current:
        raise NotFoundError(resource="Record", resource_id=f"{module}/{record_id}")

    result = apply_chain_rules(module, current)
    updates = result["updates"]
    if updates:
        definitions = dict(
            db.session.execute(
                select(CustomFieldDefinition.field_name, CustomFieldDefinition.id)
                .where(CustomFieldDefinition.module == module)
            ).all()
        )
        with atomic():
            for field_name, value in updates.items():
                definition_id = definitions.get(field_name)
                if definition_id is not None:
                    upsert_value(definition_id, module, record_id, value)
        logger.info(
            "Chain rules triggered module=%s record=%s updates=%d",
            module, record_id, len(updates),
        )
    return result


def upsert_value(definition_id: int, module: str, record_id: int, value) -> None:
    """Insert or overwrite one stored value. Caller owns the transaction."""
    if isinstance(value, bool):
        value = "1" if value else "0"
    row = CustomFieldValue.query.filter_by(
        definition_id=definition_id, record_id=record_id, module=module
    ).first()
    if row is None:
        db.session.add(
            CustomFieldValue(
                definition_id=definition_id, record_id=record_id, module=module, value=value
            )
        )
    else:
        row.value = value
