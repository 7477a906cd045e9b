"""
Column patches for partial updates.

A ``Patch`` records which columns a request actually supplied. Absent
columns are never written, so a partial update cannot null out data the
caller did not mention.

Usage:
    patch = Patch.from_payload(data, ("field_label", "placeholder"))
    patch.set("field_name", slugify(data["field_label"]))
    patch.apply_to(CustomFieldDefinition, field_id)
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from typing import Any

from sqlalchemy import update

from crm.models import db


class _Unset:
    """Marker for a column the caller did not supply."""

    _instance = None

    def __new__(cls):
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __repr__(self) -> str:
        return "UNSET"

    def __bool__(self) -> bool:
        return False


UNSET = _Unset()


class Patch:
    """Ordered set of column assignments, each either present or absent."""

    def __init__(self, allowed: Iterable[str]) -> None:
        self._allowed = tuple(allowed)
        self._values: dict[str, Any] = {}

    @classmethod
    def from_payload(cls, payload: Mapping[str, Any], allowed: Iterable[str]) -> "Patch":
        """Build a patch from the keys of ``payload`` that are in ``allowed``."""
        patch = cls(allowed)
        for column in patch._allowed:
            if column in payload:
                patch.set(column, payload[column])
        return patch

    def set(self, column: str, value: Any) -> "Patch":
        if column not in self._allowed:
            raise KeyError(f"Column {column!r} is not patchable")
        self._values[column] = value
        return self

    def get(self, column: str, default: Any = UNSET) -> Any:
        return self._values.get(column, default)

    def __contains__(self, column: str) -> bool:
        return column in self._values

    def __bool__(self) -> bool:
        return bool(self._values)

    def values(self) -> dict[str, Any]:
        """Return a copy of the columns that are set."""
        return dict(self._values)

    def statement(self, model, pk: int):
        """Build an UPDATE for ``model`` row ``pk`` that names only the set columns."""
        return update(model).where(model.id == pk).values(**self._values)

    def apply_to(self, model, pk: int, session=None) -> int:
        """Execute the UPDATE; returns the number of rows matched.

        An empty patch issues no statement and reports zero rows.
        """
        if not self._values:
            return 0
        session = session or db.session
        result = session.execute(
            self.statement(model, pk),
            execution_options={"synchronize_session": "fetch"},
        )
        return result.rowcount

    def __repr__(self) -> str:
        return f"Patch({self._values!r})"
