"""
Custom field definitions and per-record values — service layer.

Centralises all ORM queries and mutations for CustomFieldDefinition and
CustomFieldValue so that blueprints remain HTTP-only. Every commit in this
module happens through ``atomic()``.
"""

import json
import logging
import re
from datetime import datetime

from sqlalchemy import delete, or_, select

from crm.core.exceptions import ConflictError, NotFoundError, ValidationError
from crm.core.patch import Patch
from crm.core.transaction import atomic
from crm.models import db
from crm.models.chain_rules import ChainRule, ChainRuleValueMap
from crm.models.custom_fields import (
    FIELD_TYPES,
    MODULES,
    OPTION_FIELD_TYPES,
    CustomFieldDefinition,
    CustomFieldValue,
)
from crm.services import chain_rule_engine
from crm.services import read_only_propagation as read_only

logger = logging.getLogger(__name__)

_UPDATABLE_COLUMNS = ("field_label", "field_name", "placeholder", "is_required", "options")
_TRUE_STRINGS = frozenset({"1", "true", "yes", "on"})
_FALSE_STRINGS = frozenset({"0", "false", "no", "off", ""})


# ──────────────────────────────────────────────────────────────────────────────
# Helpers
# ──────────────────────────────────────────────────────────────────────────────

def generate_field_name(label) -> str:
    """Derive the machine name of a field from its label.

    >>> generate_field_name("Lead Source (Web)")
    'lead_source_web'
    """
    name = str(label).lower()
    name = re.sub(r"\s+", "_", name)
    name = re.sub(r"[^\w-]+", "", name, flags=re.ASCII)
    name = re.sub(r"--+", "_", name)
    return name.strip("-")


def validate_options(field_type: str, options) -> list[str] | None:
    """Return the options to store for ``field_type``.

    Raises:
        ValidationError: Options missing for a choice type, malformed,
            duplicated, or supplied for a non-choice type.
    """
    if field_type in OPTION_FIELD_TYPES:
        if not isinstance(options, list) or not options:
            raise ValidationError(f"Options are required for {field_type} field type.")
        if any(not isinstance(o, str) or not o.strip() for o in options):
            raise ValidationError("All options must be non-empty strings.")
        if len(set(options)) != len(options):
            raise ValidationError("Duplicate options are not allowed.")
        return list(options)
    if options:
        raise ValidationError(
            "Options are only allowed for SELECT, RADIO, and MULTISELECT field types."
        )
    return None


def _validate_is_required(value) -> bool:
    if not isinstance(value, bool):
        raise ValidationError("is_required must be a boolean.")
    return value


def _ensure_unique_name(module: str, field_name: str, exclude_id: int | None = None) -> None:
    q = CustomFieldDefinition.query.filter_by(module=module, field_name=field_name)
    if exclude_id is not None:
        q = q.filter(CustomFieldDefinition.id != exclude_id)
    if q.first() is not None:
        raise ConflictError("CustomField", "field_name", field_name)


def _get_or_404(fid: int) -> CustomFieldDefinition:
    field = db.session.get(CustomFieldDefinition, fid)
    if field is None:
        raise NotFoundError(resource="CustomField", resource_id=fid)
    return field


def _validate_module(module) -> str:
    if module not in MODULES:
        raise ValidationError('Module must be either "leads" or "accounts".')
    return module


# ──────────────────────────────────────────────────────────────────────────────
# Field definitions
# ──────────────────────────────────────────────────────────────────────────────

def list_field_definitions(module: str | None = None) -> list[dict]:
    """Return field definitions ordered by module, then label."""
    q = CustomFieldDefinition.query
    if module:
        q = q.filter_by(module=module)
    q = q.order_by(CustomFieldDefinition.module, CustomFieldDefinition.field_label)
    return [f.to_dict() for f in q.all()]


def get_field_definition(fid: int) -> dict:
    return _get_or_404(fid).to_dict()


def create_field_definition(data: dict) -> dict:
    """Persist a new field definition.

    ``field_name`` is derived from the label; ``is_read_only`` in the payload
    is ignored.

    Raises:
        ValidationError: Missing module/label/type, unknown values or bad options.
        ConflictError: The derived field_name already exists in the module.
    """
    module = data.get("module")
    label = data.get("field_label")
    field_label = label.strip() if isinstance(label, str) else ""
    field_type = data.get("field_type")
    if not module or not field_label or not field_type:
        raise ValidationError("Module, field label, and field type are required.")
    _validate_module(module)
    if field_type not in FIELD_TYPES:
        raise ValidationError(f"Invalid field type. Must be one of: {', '.join(FIELD_TYPES)}")
    options = validate_options(field_type, data.get("options"))

    field_name = generate_field_name(field_label)
    if not field_name:
        raise ValidationError("Field label must contain valid characters.")
    is_required = _validate_is_required(data.get("is_required", False))
    _ensure_unique_name(module, field_name)

    with atomic():
        field = CustomFieldDefinition(
            module=module,
            field_name=field_name,
            field_label=field_label,
            field_type=field_type,
            placeholder=data.get("placeholder") or None,
            is_required=is_required,
            is_read_only=False,
            options=options,
        )
        db.session.add(field)
        db.session.flush()
        fid = field.id

    logger.info("CustomFieldDefinition created id=%s module=%s name=%s", fid, module, field_name)
    return {"id": fid, "field_name": field_name, "message": "Custom field created successfully."}


def update_field_definition(fid: int, data: dict) -> dict:
    """Relabel a field and patch its placeholder, is_required flag and options.

    ``field_type`` and ``module`` are fixed at creation. Columns missing from
    the payload are left untouched.
    """
    field = _get_or_404(fid)

    label = data.get("field_label")
    if not isinstance(label, str) or not label.strip():
        raise ValidationError("Field label is required.")
    label = label.strip()
    field_name = generate_field_name(label)
    if not field_name:
        raise ValidationError("Field label must contain valid characters.")

    patch = Patch.from_payload(data, _UPDATABLE_COLUMNS)
    patch.set("field_label", label)
    patch.set("field_name", field_name)
    if "placeholder" in patch:
        patch.set("placeholder", patch.get("placeholder") or None)
    if "is_required" in patch:
        _validate_is_required(patch.get("is_required"))
    if field.field_type in OPTION_FIELD_TYPES or "options" in patch:
        patch.set("options", validate_options(field.field_type, patch.get("options", None)))

    if field_name != field.field_name:
        _ensure_unique_name(field.module, field_name, exclude_id=fid)

    with atomic():
        if patch.apply_to(CustomFieldDefinition, fid) == 0:
            raise NotFoundError(resource="CustomField", resource_id=fid)

    logger.info("CustomFieldDefinition updated id=%s columns=%s", fid, sorted(patch.values()))
    return {"message": "Custom field updated successfully."}


def delete_field_definition(fid: int) -> dict:
    """Delete a field, its stored values and every rule that uses it.

    Fields targeted by the removed rules get their read-only flag recomputed.
    """
    _get_or_404(fid)

    rules = db.session.execute(
        select(ChainRule.id, ChainRule.target_field_id).where(
            or_(ChainRule.source_field_id == fid, ChainRule.target_field_id == fid)
        )
    ).all()
    rule_ids = [r.id for r in rules]
    other_targets = {r.target_field_id for r in rules if r.target_field_id != fid}

    with atomic():
        read_only.lock_fields([fid, *other_targets])
        if rule_ids:
            db.session.execute(
                delete(ChainRuleValueMap).where(ChainRuleValueMap.rule_id.in_(rule_ids))
            )
            db.session.execute(delete(ChainRule).where(ChainRule.id.in_(rule_ids)))
        db.session.execute(delete(CustomFieldValue).where(CustomFieldValue.definition_id == fid))
        result = db.session.execute(
            delete(CustomFieldDefinition).where(CustomFieldDefinition.id == fid)
        )
        if result.rowcount == 0:
            raise NotFoundError(resource="CustomField", resource_id=fid)
        read_only.recompute(other_targets)

    logger.info(
        "CustomFieldDefinition deleted id=%s rules_removed=%d recomputed=%s",
        fid, len(rule_ids), sorted(other_targets),
    )
    return {
        "success": True,
        "message": "Custom field and all its associated data have been deleted.",
    }


# ──────────────────────────────────────────────────────────────────────────────
# Record values
# ──────────────────────────────────────────────────────────────────────────────

def coerce_value(field: CustomFieldDefinition, value) -> str | None:
    """Convert a client value into its stored text form for ``field``.

    Raises:
        ValidationError: The value does not fit the field type.
    """
    if value is None or (isinstance(value, str) and value == ""):
        return None

    ftype = field.field_type
    label = field.field_name
    if ftype in ("TEXT", "TEXTAREA"):
        if isinstance(value, (dict, list)):
            raise ValidationError(f"'{label}' must be text.")
        return str(value)

    if ftype == "NUMBER":
        if isinstance(value, bool):
            raise ValidationError(f"'{label}' must be a number.")
        try:
            float(value)
        except (TypeError, ValueError) as exc:
            raise ValidationError(f"'{label}' must be a number.") from exc
        return str(value).strip()

    if ftype == "DATE":
        try:
            return datetime.fromisoformat(str(value).strip()).date().isoformat()
        except ValueError as exc:
            raise ValidationError(f"'{label}' must be a date (YYYY-MM-DD).") from exc

    if ftype == "BOOLEAN":
        if isinstance(value, bool):
            return "1" if value else "0"
        text = str(value).strip().lower()
        if text in _TRUE_STRINGS:
            return "1"
        if text in _FALSE_STRINGS:
            return "0"
        raise ValidationError(f"'{label}' must be a boolean.")

    options = field.options or []
    if ftype == "MULTISELECT":
        if not isinstance(value, list):
            raise ValidationError(f"'{label}' must be a list of options.")
        invalid = [v for v in value if v not in options]
        if invalid:
            raise ValidationError(
                f"Invalid option(s) for '{label}'.", details={label: invalid}
            )
        return json.dumps(value)

    # SELECT / RADIO
    if value not in options:
        raise ValidationError(f"Invalid option for '{label}'.", details={label: value})
    return str(value)


def get_record_values(module: str, record_id: int) -> dict:
    """Return ``{field_name: stored value}`` for one record."""
    _validate_module(module)
    return chain_rule_engine.stored_values(module, record_id)


def save_record_values(module: str, record_id: int, values: dict) -> dict:
    """Store client values for a record after applying the module's chain rules.

    Values produced by a rule override whatever the client sent for that
    target field and are stored as produced.

    Returns:
        ``{"values": <all stored values>, "applied_rules": [...]}``
    """
    _validate_module(module)
    if not isinstance(values, dict):
        raise ValidationError("Values must be an object keyed by field name.")

    definitions = {
        f.field_name: f
        for f in CustomFieldDefinition.query.filter_by(module=module).all()
    }
    unknown = sorted(set(values) - set(definitions))
    if unknown:
        raise ValidationError(
            "Unknown custom field(s) for this module.", details={"unknown_fields": unknown}
        )

    to_store = {name: coerce_value(definitions[name], v) for name, v in values.items()}
    result = chain_rule_engine.apply_chain_rules(module, to_store, record_id)
    to_store.update(result["updates"])

    with atomic():
        for name, stored in to_store.items():
            chain_rule_engine.upsert_value(definitions[name].id, module, record_id, stored)

    logger.info(
        "Record values saved module=%s record=%s fields=%d rules=%d",
        module, record_id, len(to_store), len(result["applied_rules"]),
    )
    return {
        "values": chain_rule_engine.stored_values(module, record_id),
        "applied_rules": result["applied_rules"],
    }
