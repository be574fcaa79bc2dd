"""
The respondent's committed field values.

A fill session owns exactly one store. Only two writers touch it: the
orchestrator applying an accepted extraction result, and the
clarification controller committing a validated answer.
"""

from __future__ import annotations

from types import MappingProxyType
from typing import Iterable, Mapping

from voicefill.logging_config import get_logger
from voicefill.schemas.form import FieldSpec, FieldValue

logger = get_logger(__name__)


class FieldValueStore:
    def __init__(self, fields: Iterable[FieldSpec]) -> None:
        self._field_ids = frozenset(f.id for f in fields)
        self._values: FieldValue = {}

    def __contains__(self, field_id: object) -> bool:
        return field_id in self._values

    def __len__(self) -> int:
        return len(self._values)

    def get(self, field_id: str) -> str:
        return self._values.get(field_id, "")

    def merge(self, updates: Mapping[str, str]) -> FieldValue:
        """
        Apply an extraction result.

        Empty values never overwrite a committed one, and keys that are
        not fields of this form are dropped. Returns what changed.
        """
        changed: FieldValue = {}
        unknown = [key for key in updates if key not in self._field_ids]
        if unknown:
            logger.warning("unknown_fields_dropped", field_ids=unknown)

        for field_id, value in updates.items():
            if field_id not in self._field_ids:
                continue
            value = (value or "").strip()
            if not value or self._values.get(field_id) == value:
                continue
            self._values[field_id] = value
            changed[field_id] = value
        return changed

    def commit(self, field_id: str, value: str) -> None:
        """Set one field from a confirmed answer. Empty answers are refused."""
        if field_id not in self._field_ids:
            raise KeyError(f"Unknown field id: {field_id!r}")
        if not value.strip():
            raise ValueError(f"Refusing to commit an empty value for {field_id!r}")
        self._values[field_id] = value

    def snapshot(self) -> FieldValue:
        return dict(self._values)

    def frozen(self) -> Mapping[str, str]:
        """Read-only copy for hand-off to the submission collaborator."""
        return MappingProxyType(dict(self._values))
