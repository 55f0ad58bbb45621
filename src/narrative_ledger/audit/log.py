"""Append-only audit trail: bounded in-memory ring buffer plus durable stream."""

import asyncio
import csv
import io
import json
import logging
import uuid
from collections import deque
from collections.abc import Sequence
from datetime import UTC, datetime
from typing import Any, Literal

from narrative_ledger.db.backend import Database
from narrative_ledger.db.queries import get_recent_audit, insert_audit, max_audit_sequence
from narrative_ledger.models.audit import (
    AuditAction,
    AuditLogEntry,
    AuditQuery,
    FieldChange,
    Severity,
)

logger = logging.getLogger(__name__)
# Audit writes that could not be persisted land here instead of failing the mutation
fallback_logger = logging.getLogger("narrative_ledger.audit.fallback")

DEFAULT_CAPACITY = 1000

_CSV_COLUMNS = (
    "sequence",
    "timestamp",
    "action",
    "entry_id",
    "author_role",
    "severity",
    "batch_id",
    "field_changes",
    "metadata",
)


class AuditLog:
    """Owns every audit record. Records are never mutated or removed once written.

    The ring buffer keeps the newest ``capacity`` records for querying; once
    full, the oldest drop off. Appends are serialized by a lock so sequence
    numbers and buffer order always agree.
    """

    def __init__(self, db: Database | None = None, capacity: int = DEFAULT_CAPACITY):
        """Initialize with an optional durable backend and the buffer capacity."""
        if capacity < 1:
            raise ValueError("capacity must be at least 1")
        self._db = db
        self._buffer: deque[AuditLogEntry] = deque(maxlen=capacity)
        self._lock = asyncio.Lock()
        self._next_sequence = 1

    @property
    def capacity(self) -> int:
        return self._buffer.maxlen or 0

    def __len__(self) -> int:
        return len(self._buffer)

    async def load(self) -> None:
        """Re-hydrate the buffer from the durable stream."""
        if self._db is None:
            return
        async with self._lock:
            records = await get_recent_audit(self._db, self.capacity)
            self._buffer.clear()
            self._buffer.extend(records)
            self._next_sequence = await max_audit_sequence(self._db) + 1
        logger.info("Loaded %d audit record(s)", len(records))

    @staticmethod
    def build(
        action: AuditAction,
        entry_id: str,
        author_role: str | None,
        field_changes: list[FieldChange] | None = None,
        metadata: dict[str, Any] | None = None,
        severity: Severity = Severity.INFO,
    ) -> AuditLogEntry:
        """Build an unsequenced record; ``append`` assigns sequence and timestamp."""
        return AuditLogEntry(
            timestamp=datetime.now(UTC),
            action=action,
            entry_id=entry_id,
            author_role=author_role,
            field_changes=field_changes or [],
            metadata=metadata or {},
            severity=severity,
        )

    async def append(self, record: AuditLogEntry) -> AuditLogEntry:
        """Append a single record. Never raises on buffer pressure or storage failure."""
        written = await self.append_batch([record])
        return written[0]

    async def append_batch(self, records: Sequence[AuditLogEntry]) -> list[AuditLogEntry]:
        """Append records as one unit sharing a batch id, contiguous in sequence order."""
        if not records:
            return []
        batch_id = uuid.uuid4().hex if len(records) > 1 else None
        async with self._lock:
            now = datetime.now(UTC)
            written: list[AuditLogEntry] = []
            for record in records:
                stamped = record.model_copy(
                    update={
                        "sequence": self._next_sequence,
                        "timestamp": now,
                        "batch_id": batch_id or record.batch_id,
                    }
                )
                self._next_sequence += 1
                self._buffer.append(stamped)
                written.append(stamped)
            await self._persist(written)
        return written

    async def _persist(self, records: list[AuditLogEntry]) -> None:
        if self._db is None:
            return
        try:
            async with self._db.transaction():
                for record in records:
                    await insert_audit(self._db, record)
        except Exception:
            for record in records:
                fallback_logger.error(
                    "Unpersisted audit record: %s", record.model_dump_json(), exc_info=True
                )

    def query(self, query: AuditQuery | None = None) -> list[AuditLogEntry]:
        """Linear scan of the buffer, oldest first."""
        records = list(self._buffer)
        if query is None:
            return records
        results = [r for r in records if _matches(r, query)]
        if query.limit is not None:
            results = results[-query.limit :]
        return results

    def export(
        self, fmt: Literal["json", "csv"] = "json", query: AuditQuery | None = None
    ) -> bytes:
        """Serialize matching records for compliance export."""
        records = self.query(query)
        if fmt == "json":
            payload = [r.model_dump(mode="json") for r in records]
            return json.dumps(payload, indent=2).encode("utf-8")
        if fmt == "csv":
            buf = io.StringIO()
            writer = csv.writer(buf)
            writer.writerow(_CSV_COLUMNS)
            for r in records:
                writer.writerow(
                    [
                        r.sequence,
                        r.timestamp.isoformat(),
                        r.action.value,
                        r.entry_id,
                        r.author_role or "",
                        r.severity.value,
                        r.batch_id or "",
                        json.dumps([c.model_dump(mode="json") for c in r.field_changes]),
                        json.dumps(r.metadata, default=str),
                    ]
                )
            return buf.getvalue().encode("utf-8")
        raise ValueError(f"Unsupported export format: {fmt}")


def _matches(record: AuditLogEntry, query: AuditQuery) -> bool:
    if query.start is not None and record.timestamp < _aware(query.start):
        return False
    if query.end is not None and record.timestamp > _aware(query.end):
        return False
    if query.action is not None and record.action != query.action:
        return False
    if query.severity is not None and record.severity != query.severity:
        return False
    if query.entry_id is not None and record.entry_id != query.entry_id:
        return False
    return query.author_role is None or record.author_role == query.author_role


def _aware(moment: datetime) -> datetime:
    return moment if moment.tzinfo is not None else moment.replace(tzinfo=UTC)
