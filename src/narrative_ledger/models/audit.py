"""Audit trail models."""

from datetime import datetime
from enum import StrEnum
from typing import Any

from pydantic import BaseModel, Field


class AuditAction(StrEnum):
    """Mutations recorded in the audit trail."""

    CREATE = "create"
    UPDATE = "update"
    DELETE = "delete"
    PUBLISH = "publish"
    ARCHIVE = "archive"


class Severity(StrEnum):
    """Audit record severity."""

    INFO = "info"
    WARNING = "warning"
    CRITICAL = "critical"


class FieldChange(BaseModel):
    """One changed field between two versions of an entry."""

    field: str
    old_value: Any = None
    new_value: Any = None


class AuditLogEntry(BaseModel):
    """An append-only record of one mutation. Never modified after write."""

    sequence: int = 0
    timestamp: datetime
    action: AuditAction
    entry_id: str
    author_role: str | None = None
    field_changes: list[FieldChange] = Field(default_factory=list)
    metadata: dict[str, Any] = Field(default_factory=dict)
    severity: Severity = Severity.INFO
    batch_id: str | None = None

    model_config = {"frozen": True}


class AuditQuery(BaseModel):
    """Filters for querying or exporting the audit trail."""

    start: datetime | None = None
    end: datetime | None = None
    action: AuditAction | None = None
    severity: Severity | None = None
    entry_id: str | None = None
    author_role: str | None = None
    limit: int | None = Field(default=None, ge=1)
