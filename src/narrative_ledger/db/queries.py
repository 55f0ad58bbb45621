"""Query helpers for common database operations.

Helpers that write do not commit; callers wrap them in ``db.transaction()``.
"""

import json
from datetime import UTC, datetime

from narrative_ledger.db.backend import Database, Row
from narrative_ledger.models.audit import AuditLogEntry, FieldChange
from narrative_ledger.models.entry import EntryRevision, LedgerEntry, Reference


def row_to_entry(row: Row) -> LedgerEntry:
    """Convert a database row to a LedgerEntry."""
    return LedgerEntry(
        id=row["id"],
        revision=row["revision"],
        created_at=datetime.fromisoformat(row["created_at"]),
        updated_at=datetime.fromisoformat(row["updated_at"]),
        date=row["event_date"],
        title=row["title"],
        executive_summary=row["executive_summary"],
        what_changed=row["what_changed"],
        decisions_rationale=row["decisions_rationale"],
        risks_mitigations=row["risks_mitigations"],
        narrative_extended=row["narrative_extended"],
        type=row["entry_type"],
        tags=json.loads(row["tags"]),
        author=row["author"],
        status=row["status"],
        supersedes_entry_id=row["supersedes_entry_id"],
        references=[Reference(**r) for r in json.loads(row["refs"])],
        embedding=json.loads(row["embedding"]),
        integrity_hash=row["integrity_hash"],
    )


def _entry_params(entry: LedgerEntry) -> tuple[object, ...]:
    return (
        entry.revision,
        entry.created_at.isoformat() if entry.created_at else _now_iso(),
        entry.updated_at.isoformat() if entry.updated_at else _now_iso(),
        entry.date,
        entry.title,
        entry.executive_summary,
        entry.what_changed,
        entry.decisions_rationale,
        entry.risks_mitigations,
        entry.narrative_extended,
        entry.type.value,
        json.dumps(entry.tags),
        entry.author.value,
        entry.status.value,
        entry.supersedes_entry_id,
        json.dumps([r.model_dump(mode="json") for r in entry.references]),
        json.dumps(entry.embedding),
        entry.integrity_hash,
    )


async def insert_entry(db: Database, entry: LedgerEntry) -> None:
    """Insert a new ledger entry."""
    await db.execute(
        """INSERT INTO ledger_entries
        (revision, created_at, updated_at, event_date, title, executive_summary,
         what_changed, decisions_rationale, risks_mitigations, narrative_extended,
         entry_type, tags, author, status, supersedes_entry_id, refs, embedding,
         integrity_hash, id)
        VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)""",
        (*_entry_params(entry), entry.id),
    )


async def update_entry(db: Database, entry: LedgerEntry, expected_revision: int) -> bool:
    """Update an entry if its stored revision still matches.

    Returns False when the optimistic-concurrency check fails.
    """
    cursor = await db.execute(
        """UPDATE ledger_entries SET
        revision=?, created_at=?, updated_at=?, event_date=?, title=?, executive_summary=?,
        what_changed=?, decisions_rationale=?, risks_mitigations=?, narrative_extended=?,
        entry_type=?, tags=?, author=?, status=?, supersedes_entry_id=?, refs=?, embedding=?,
        integrity_hash=?
        WHERE id=? AND revision=?""",
        (*_entry_params(entry), entry.id, expected_revision),
    )
    return cursor.rowcount == 1


async def get_entry(db: Database, entry_id: str) -> LedgerEntry | None:
    """Get a single entry by ID."""
    cursor = await db.execute("SELECT * FROM ledger_entries WHERE id = ?", (entry_id,))
    row = await cursor.fetchone()
    return row_to_entry(row) if row else None


async def get_all_entries(db: Database) -> list[LedgerEntry]:
    """Get every stored entry, archived included."""
    cursor = await db.execute("SELECT * FROM ledger_entries ORDER BY id")
    return [row_to_entry(row) for row in await cursor.fetchall()]


async def delete_entry_cascade(db: Database, entry_id: str) -> None:
    """Hard-delete an entry and its revision history. The audit trail is kept."""
    await db.execute("DELETE FROM entry_revisions WHERE entry_id = ?", (entry_id,))
    await db.execute("DELETE FROM ledger_entries WHERE id = ?", (entry_id,))


async def insert_revision(db: Database, entry: LedgerEntry) -> None:
    """Record a content snapshot for the entry's current revision."""
    content = entry.model_dump(
        mode="json",
        exclude={"id", "revision", "status", "integrity_hash", "embedding", "created_at"},
    )
    await db.execute(
        """INSERT OR REPLACE INTO entry_revisions
        (entry_id, revision, status, integrity_hash, content, created_at)
        VALUES (?, ?, ?, ?, ?, ?)""",
        (
            entry.id,
            entry.revision,
            entry.status.value,
            entry.integrity_hash,
            json.dumps(content),
            entry.updated_at.isoformat() if entry.updated_at else _now_iso(),
        ),
    )


async def get_revisions(db: Database, entry_id: str) -> list[EntryRevision]:
    """Get all revisions of an entry, ordered by revision number."""
    cursor = await db.execute(
        """SELECT entry_id, revision, status, integrity_hash, content, created_at
        FROM entry_revisions WHERE entry_id = ? ORDER BY revision""",
        (entry_id,),
    )
    rows = await cursor.fetchall()
    return [
        EntryRevision(
            entry_id=row["entry_id"],
            revision=row["revision"],
            status=row["status"],
            integrity_hash=row["integrity_hash"],
            content=json.loads(row["content"]),
            created_at=datetime.fromisoformat(row["created_at"]),
        )
        for row in rows
    ]


async def insert_audit(db: Database, record: AuditLogEntry) -> None:
    """Append one audit record to the durable stream."""
    await db.execute(
        """INSERT INTO audit_log
        (sequence, timestamp, action, entry_id, author_role, field_changes, metadata,
         severity, batch_id)
        VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)""",
        (
            record.sequence,
            record.timestamp.isoformat(),
            record.action.value,
            record.entry_id,
            record.author_role,
            json.dumps([c.model_dump(mode="json") for c in record.field_changes]),
            json.dumps(record.metadata, default=str),
            record.severity.value,
            record.batch_id,
        ),
    )


async def get_recent_audit(db: Database, limit: int) -> list[AuditLogEntry]:
    """Get the newest ``limit`` audit records in sequence order."""
    cursor = await db.execute(
        """SELECT * FROM (
            SELECT * FROM audit_log ORDER BY sequence DESC LIMIT ?
        ) ORDER BY sequence""",
        (limit,),
    )
    rows = await cursor.fetchall()
    return [
        AuditLogEntry(
            sequence=row["sequence"],
            timestamp=datetime.fromisoformat(row["timestamp"]),
            action=row["action"],
            entry_id=row["entry_id"],
            author_role=row["author_role"],
            field_changes=[FieldChange(**c) for c in json.loads(row["field_changes"])],
            metadata=json.loads(row["metadata"]),
            severity=row["severity"],
            batch_id=row["batch_id"],
        )
        for row in rows
    ]


async def max_audit_sequence(db: Database) -> int:
    """Return the highest persisted audit sequence number, or 0."""
    cursor = await db.execute("SELECT COALESCE(MAX(sequence), 0) FROM audit_log")
    row = await cursor.fetchone()
    return int(row[0]) if row else 0


def _now_iso() -> str:
    return datetime.now(UTC).isoformat()
