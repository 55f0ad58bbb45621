"""Tests for ledger query helpers."""

from datetime import UTC, datetime

import pytest

from narrative_ledger.audit.log import AuditLog
from narrative_ledger.db.queries import (
    delete_entry_cascade,
    get_all_entries,
    get_entry,
    get_recent_audit,
    get_revisions,
    insert_audit,
    insert_entry,
    insert_revision,
    max_audit_sequence,
    update_entry,
)
from narrative_ledger.models.audit import AuditAction, FieldChange
from narrative_ledger.models.entry import LedgerEntry, Reference


def _make_entry(**kwargs) -> LedgerEntry:
    now = datetime(2025, 1, 1, 12, 0, tzinfo=UTC)
    defaults = {
        "id": "01JTEST",
        "created_at": now,
        "updated_at": now,
        "date": "2025-01-01 00:00:00",
        "title": "Deploy • cache fix",
        "executive_summary": "Fixed the TTL bug that evicted keys.",
        "what_changed": "TTL read from config.",
        "decisions_rationale": "Ops can tune it.",
        "risks_mitigations": "Bounds checked.",
        "type": "Incident",
        "author": "mini-lux",
        "tags": ["cache"],
        "references": [Reference(id="a1b2c3d", type="commit-hash", description="Fix")],
        "embedding": [0.1, 0.2],
        "integrity_hash": "abc",
    }
    defaults.update(kwargs)
    return LedgerEntry(**defaults)


async def _insert(db, entry: LedgerEntry) -> None:
    async with db.transaction():
        await insert_entry(db, entry)
        await insert_revision(db, entry)


@pytest.mark.asyncio
async def test_insert_and_get(db):
    entry = _make_entry()
    await _insert(db, entry)
    assert await get_entry(db, entry.id) == entry


@pytest.mark.asyncio
async def test_get_missing(db):
    assert await get_entry(db, "nope") is None


@pytest.mark.asyncio
async def test_get_all(db):
    await _insert(db, _make_entry(id="b"))
    await _insert(db, _make_entry(id="a"))
    assert [e.id for e in await get_all_entries(db)] == ["a", "b"]


@pytest.mark.asyncio
async def test_update_checks_revision(db):
    entry = _make_entry()
    await _insert(db, entry)
    updated = entry.model_copy(update={"revision": 2, "title": "Deploy • cache fix v2"})

    async with db.transaction():
        assert await update_entry(db, updated, expected_revision=5) is False
    async with db.transaction():
        assert await update_entry(db, updated, expected_revision=1) is True

    stored = await get_entry(db, entry.id)
    assert stored.revision == 2
    assert stored.title == "Deploy • cache fix v2"


@pytest.mark.asyncio
async def test_revisions(db):
    entry = _make_entry()
    await _insert(db, entry)
    second = entry.model_copy(update={"revision": 2, "what_changed": "TTL from env."})
    async with db.transaction():
        await insert_revision(db, second)

    revisions = await get_revisions(db, entry.id)
    assert [r.revision for r in revisions] == [1, 2]
    assert revisions[1].content["what_changed"] == "TTL from env."
    assert "embedding" not in revisions[0].content


@pytest.mark.asyncio
async def test_delete_cascade(db):
    entry = _make_entry()
    await _insert(db, entry)
    async with db.transaction():
        await delete_entry_cascade(db, entry.id)
    assert await get_entry(db, entry.id) is None
    assert await get_revisions(db, entry.id) == []


@pytest.mark.asyncio
async def test_audit_round_trip(db):
    assert await max_audit_sequence(db) == 0
    async with db.transaction():
        for seq in (1, 2, 3):
            record = AuditLog.build(
                AuditAction.UPDATE,
                "01JTEST",
                "lux",
                field_changes=[FieldChange(field="title", old_value="a", new_value="b")],
                metadata={"revision": seq},
            ).model_copy(update={"sequence": seq})
            await insert_audit(db, record)

    assert await max_audit_sequence(db) == 3
    recent = await get_recent_audit(db, 2)
    assert [r.sequence for r in recent] == [2, 3]
    assert recent[0].field_changes[0].new_value == "b"
    assert recent[1].metadata == {"revision": 3}
