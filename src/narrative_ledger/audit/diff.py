"""Per-field change detection between entry versions."""

import json
from typing import Any

from pydantic import BaseModel

from narrative_ledger.models.audit import FieldChange
from narrative_ledger.models.entry import NARRATIVE_FIELDS

DIFF_FIELDS: tuple[str, ...] = (*NARRATIVE_FIELDS, "status", "tags")

# Derived fields are recomputed on every save and excluded from snapshots
_SNAPSHOT_EXCLUDE = {"embedding"}


def _comparable(name: str, value: Any) -> Any:
    if name == "tags":
        # Tag order is irrelevant
        return sorted(value or [])
    return value


def _serialize(value: Any) -> str:
    return json.dumps(value, sort_keys=True, default=str)


def diff(old: BaseModel, new: BaseModel) -> list[FieldChange]:
    """Return one FieldChange per tracked field whose serialized value differs."""
    changes: list[FieldChange] = []
    for name in DIFF_FIELDS:
        old_value = _comparable(name, getattr(old, name, None))
        new_value = _comparable(name, getattr(new, name, None))
        if _serialize(old_value) != _serialize(new_value):
            changes.append(FieldChange(field=name, old_value=old_value, new_value=new_value))
    return changes


def snapshot(entry: BaseModel) -> list[FieldChange]:
    """Full dump of an entry as field changes from nothing, for creates and deletes."""
    data = entry.model_dump(mode="json", exclude=_SNAPSHOT_EXCLUDE)
    return [
        FieldChange(field=name, old_value=None, new_value=value) for name, value in data.items()
    ]
