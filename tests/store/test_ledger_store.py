"""Tests for the ledger store and its lifecycle engine."""

import asyncio
import json

import pytest

from narrative_ledger.audit.log import AuditLog
from narrative_ledger.db.connection import create_connection
from narrative_ledger.db.queries import get_entry
from narrative_ledger.errors import (
    AuthorizationError,
    LifecycleError,
    NotFoundError,
    PersistenceError,
    ValidationError,
)
from narrative_ledger.models.audit import AuditAction, AuditQuery, Severity
from narrative_ledger.models.entry import EntryDraft, EntryStatus, EntryType
from narrative_ledger.models.search import EntryFilter
from narrative_ledger.store.ledger_store import LedgerStore, compute_integrity_hash
from tests.conftest import FAST_RETRY, make_draft

# --- save: create ---


@pytest.mark.asyncio
async def test_end_to_end_save_then_publish(ledger, audit):
    draft = EntryDraft(
        title="Deploy • cache fix",
        executive_summary="Fixed TTL bug",
        what_changed="...",
        decisions_rationale="...",
        risks_mitigations="...",
        author="mini-lux",
        type="Incident",
        date="2025-01-01 00:00:00",
    )
    before = len(audit)
    entry = await ledger.save(draft)
    assert entry.revision == 1
    assert entry.status == EntryStatus.DRAFT

    published = await ledger.publish(entry.id, "mini-lux")
    assert published.status == EntryStatus.PUBLISHED
    assert len(audit) == before + 2
    assert [r.action for r in audit.query()][-2:] == [AuditAction.CREATE, AuditAction.PUBLISH]


@pytest.mark.asyncio
async def test_create_sets_derived_fields(ledger):
    entry = await ledger.save(make_draft())
    assert len(entry.id) == 26
    assert entry.type == EntryType.INCIDENT
    assert len(entry.embedding) == 32
    assert entry.integrity_hash == compute_integrity_hash(entry)
    assert entry.created_at is not None
    assert entry.created_at == entry.updated_at


@pytest.mark.asyncio
async def test_create_persists(ledger, db):
    entry = await ledger.save(make_draft())
    stored = await get_entry(db, entry.id)
    assert stored is not None
    assert stored.title == entry.title
    assert stored.references == entry.references
    assert stored.embedding == entry.embedding


@pytest.mark.asyncio
async def test_create_audit_has_snapshot(ledger, audit):
    entry = await ledger.save(make_draft())
    record = audit.query(AuditQuery(entry_id=entry.id))[0]
    assert record.action == AuditAction.CREATE
    assert record.author_role == "mini-lux"
    fields = {c.field for c in record.field_changes}
    assert {"title", "executive_summary", "references"} <= fields
    assert record.metadata["revision"] == 1


@pytest.mark.asyncio
async def test_validation_failure_writes_nothing(ledger, audit, db):
    with pytest.raises(ValidationError) as exc_info:
        await ledger.save(make_draft(title=None, date="bad"))
    assert set(exc_info.value.fields) == {"title", "date"}
    assert await ledger.list() == []
    assert len(audit) == 0
    cursor = await db.execute("SELECT COUNT(*) FROM ledger_entries")
    assert (await cursor.fetchone())[0] == 0


@pytest.mark.asyncio
async def test_create_published_requires_publish_role(ledger):
    with pytest.raises(AuthorizationError):
        await ledger.save(make_draft(status="published", author="scribe"))


@pytest.mark.asyncio
async def test_unknown_role_cannot_create(ledger, audit):
    with pytest.raises(AuthorizationError):
        await ledger.save(make_draft(), role="intruder")
    assert await ledger.list() == []
    assert len(audit) == 0


@pytest.mark.asyncio
async def test_unknown_role_cannot_update(ledger, audit):
    entry = await ledger.save(make_draft())
    with pytest.raises(AuthorizationError):
        await ledger.save(EntryDraft(id=entry.id, title="Deploy • renamed"), role="intruder")
    assert (await ledger.get(entry.id)).revision == 1
    assert [r.action for r in audit.query()] == [AuditAction.CREATE]


@pytest.mark.asyncio
async def test_create_published_logs_create_and_publish(ledger, audit):
    entry = await ledger.save(make_draft(status="published"), role="lux")
    assert entry.status == EntryStatus.PUBLISHED
    records = audit.query(AuditQuery(entry_id=entry.id))
    assert [r.action for r in records] == [AuditAction.CREATE, AuditAction.PUBLISH]
    assert records[0].batch_id == records[1].batch_id is not None


@pytest.mark.asyncio
async def test_create_archived_rejected(ledger):
    with pytest.raises(LifecycleError):
        await ledger.save(make_draft(status="superseded"))


@pytest.mark.asyncio
async def test_sensitive_content_is_advisory(ledger, audit):
    entry = await ledger.save(make_draft(what_changed="Rotated password: hunter2 on the box"))
    record = audit.query(AuditQuery(entry_id=entry.id))[0]
    assert record.severity == Severity.WARNING
    assert record.metadata["sensitive_content"] == ["password"]
    assert await ledger.sensitive_findings(entry.id) == ["password"]


@pytest.mark.asyncio
async def test_unavailable_embedder_stores_empty_vector(ledger, embedder):
    embedder.available = False
    entry = await ledger.save(make_draft())
    assert entry.embedding == []


# --- save: update ---


@pytest.mark.asyncio
async def test_update_increments_revision_and_merges(ledger):
    entry = await ledger.save(make_draft())
    updated = await ledger.save(EntryDraft(id=entry.id, what_changed="TTL moved to settings."))
    assert updated.revision == 2
    assert updated.what_changed == "TTL moved to settings."
    assert updated.title == entry.title
    assert updated.created_at == entry.created_at
    assert updated.integrity_hash != entry.integrity_hash
    fetched = await ledger.get(entry.id)
    assert fetched.revision == 2


@pytest.mark.asyncio
async def test_update_audit_records_diff(ledger, audit):
    entry = await ledger.save(make_draft())
    await ledger.save(EntryDraft(id=entry.id, title="Deploy • cache TTL fix"))
    record = audit.query(AuditQuery(entry_id=entry.id, action=AuditAction.UPDATE))[0]
    assert [c.field for c in record.field_changes] == ["title"]


@pytest.mark.asyncio
async def test_unchanged_save_still_bumps_revision(ledger, audit):
    entry = await ledger.save(make_draft())
    again = await ledger.save(EntryDraft(id=entry.id))
    assert again.revision == 2
    assert again.integrity_hash == entry.integrity_hash
    record = audit.query(AuditQuery(action=AuditAction.UPDATE))[0]
    assert record.field_changes == []


@pytest.mark.asyncio
async def test_update_validation_failure_keeps_old_version(ledger):
    entry = await ledger.save(make_draft())
    with pytest.raises(ValidationError):
        await ledger.save(EntryDraft(id=entry.id, executive_summary=""))
    assert (await ledger.get(entry.id)).revision == 1


@pytest.mark.asyncio
async def test_unknown_id_upserts_with_caller_id(ledger):
    entry = await ledger.save(make_draft(id="external-42"))
    assert entry.id == "external-42"
    assert entry.revision == 1


@pytest.mark.asyncio
async def test_unknown_id_rejected_when_upsert_disabled(db, templates, audit, embedder, monitor):
    store = LedgerStore(
        db, templates, audit, embedder, monitor, upsert_unknown_ids=False, retry=FAST_RETRY
    )
    await store.start()
    with pytest.raises(NotFoundError):
        await store.save(make_draft(id="missing"))
    created = await store.save(make_draft())
    assert created.revision == 1


@pytest.mark.asyncio
async def test_published_cannot_return_to_draft(ledger):
    entry = await ledger.save(make_draft())
    await ledger.publish(entry.id, "lux")
    with pytest.raises(LifecycleError):
        await ledger.save(EntryDraft(id=entry.id, status="draft"))


@pytest.mark.asyncio
async def test_published_entries_remain_editable(ledger):
    entry = await ledger.save(make_draft())
    await ledger.publish(entry.id, "lux")
    updated = await ledger.save(EntryDraft(id=entry.id, risks_mitigations="None remaining."))
    assert updated.status == EntryStatus.PUBLISHED
    assert updated.revision == 2


@pytest.mark.asyncio
async def test_archive_via_save_rejected(ledger):
    entry = await ledger.save(make_draft())
    with pytest.raises(LifecycleError):
        await ledger.save(EntryDraft(id=entry.id, status="archived"))


@pytest.mark.asyncio
async def test_publish_via_save(ledger, audit):
    entry = await ledger.save(make_draft())
    updated = await ledger.save(EntryDraft(id=entry.id, status="published"), role="lux")
    assert updated.status == EntryStatus.PUBLISHED
    actions = [r.action for r in audit.query(AuditQuery(entry_id=entry.id))]
    assert actions == [AuditAction.CREATE, AuditAction.UPDATE, AuditAction.PUBLISH]


@pytest.mark.asyncio
async def test_concurrent_updates_to_one_entry_are_serialized(ledger):
    entry = await ledger.save(make_draft())
    await asyncio.gather(
        *(ledger.save(EntryDraft(id=entry.id, what_changed=f"Change {i}")) for i in range(10))
    )
    final = await ledger.get(entry.id)
    assert final.revision == 11
    revisions = await ledger.revisions(entry.id)
    assert [r.revision for r in revisions] == list(range(1, 12))


@pytest.mark.asyncio
async def test_concurrent_creates(ledger):
    entries = await asyncio.gather(
        *(ledger.save(make_draft(title=f"Deploy • service {i}")) for i in range(10))
    )
    assert len({e.id for e in entries}) == 10
    assert len(await ledger.list()) == 10


# --- reads ---


@pytest.mark.asyncio
async def test_get_unknown(ledger):
    assert await ledger.get("nope") is None
    with pytest.raises(NotFoundError):
        await ledger.require("nope")


@pytest.mark.asyncio
async def test_list_orders_by_date_then_created(ledger):
    old = await ledger.save(make_draft(date="2024-06-01 00:00:00"))
    first = await ledger.save(make_draft(date="2025-01-01 00:00:00"))
    second = await ledger.save(make_draft(date="2025-01-01 00:00:00"))
    assert [e.id for e in await ledger.list()] == [second.id, first.id, old.id]


@pytest.mark.asyncio
async def test_list_filters(ledger):
    await ledger.save(make_draft(type="Decision", tags=["arch"], author="lux"))
    incident = await ledger.save(make_draft(date="2025-03-01 00:00:00"))

    assert [e.id for e in await ledger.list(EntryFilter(type="Incident"))] == [incident.id]
    assert len(await ledger.list(EntryFilter(tags=["arch"]))) == 1
    assert len(await ledger.list(EntryFilter(author="lux"))) == 1
    assert len(await ledger.list(EntryFilter(date_from="2025-02-01 00:00:00"))) == 1
    assert len(await ledger.list(EntryFilter(limit=1))) == 1


@pytest.mark.asyncio
async def test_search(ledger):
    cache = await ledger.save(make_draft())
    await ledger.save(
        make_draft(
            title="Decision • adopt ULIDs",
            executive_summary="Ids sort by time now.",
            tags=["ids"],
        )
    )
    assert [e.id for e in await ledger.search("CACHE")] == [cache.id]
    assert len(await ledger.search("ulid")) == 1
    assert len(await ledger.search("ids")) == 1
    assert len(await ledger.search("")) == 2
    assert await ledger.search("nothing-matches") == []


@pytest.mark.asyncio
async def test_search_is_monitored(ledger, monitor):
    await ledger.search("cache")
    assert monitor.stats("search").count == 1


@pytest.mark.asyncio
async def test_writes_are_monitored(ledger, monitor):
    entry = await ledger.save(make_draft())
    await ledger.save(EntryDraft(id=entry.id, title="Deploy • cache fix v2"))
    assert monitor.stats("entry_creation").count == 1
    assert monitor.stats("entry_update").count == 1
    assert monitor.stats("reference_validation").count == 2


@pytest.mark.asyncio
async def test_find_similar_excludes_self_and_is_ordered(ledger):
    target = await ledger.save(make_draft())
    for i in range(4):
        await ledger.save(make_draft(title=f"Deploy • cache fix {i}"))
    results = await ledger.find_similar(target.id, top_k=3)
    assert len(results) == 3
    assert target.id not in {r.entry.id for r in results}
    scores = [r.score for r in results]
    assert scores == sorted(scores, reverse=True)


@pytest.mark.asyncio
async def test_find_similar_unknown(ledger):
    with pytest.raises(NotFoundError):
        await ledger.find_similar("nope")


@pytest.mark.asyncio
async def test_find_similar_to_draft(ledger):
    existing = await ledger.save(make_draft())
    results = await ledger.find_similar_to_draft(make_draft(), top_k=1)
    assert results[0].entry.id == existing.id
    assert results[0].score == pytest.approx(1.0)


# --- publish ---


@pytest.mark.asyncio
async def test_scribe_cannot_publish(ledger, audit):
    entry = await ledger.save(make_draft(author="scribe"))
    with pytest.raises(AuthorizationError):
        await ledger.publish(entry.id, "scribe")
    assert (await ledger.get(entry.id)).status == EntryStatus.DRAFT
    assert audit.query(AuditQuery(action=AuditAction.PUBLISH)) == []


@pytest.mark.asyncio
async def test_lux_publish_appends_exactly_one_record(ledger, audit):
    entry = await ledger.save(make_draft(author="scribe"))
    before = len(audit)
    published = await ledger.publish(entry.id, "lux")
    assert published.revision == entry.revision
    assert len(audit) == before + 1
    record = audit.query()[-1]
    assert record.action == AuditAction.PUBLISH
    assert record.metadata["baseline_revision"] == 1
    assert [c.field for c in record.field_changes] == ["status"]


@pytest.mark.asyncio
async def test_publish_twice_rejected(ledger):
    entry = await ledger.save(make_draft())
    await ledger.publish(entry.id, "lux")
    with pytest.raises(LifecycleError):
        await ledger.publish(entry.id, "lux")


@pytest.mark.asyncio
async def test_publish_unknown(ledger):
    with pytest.raises(NotFoundError):
        await ledger.publish("nope", "lux")


# --- supersede ---


@pytest.mark.asyncio
async def test_supersede_archives_old_and_links_new(ledger, db):
    old = await ledger.save(make_draft())
    await ledger.publish(old.id, "lux")
    result = await ledger.supersede(
        old.id, EntryDraft(executive_summary="Root cause was a stale config cache."), "scribe"
    )

    assert result.old.status == EntryStatus.ARCHIVED
    assert result.new.supersedes_entry_id == old.id
    assert result.new.status == EntryStatus.DRAFT
    assert result.new.title == old.title
    assert result.new.executive_summary == "Root cause was a stale config cache."

    assert (await ledger.get(old.id)).status == EntryStatus.ARCHIVED
    assert (await get_entry(db, old.id)).status == EntryStatus.ARCHIVED
    visible = [e.id for e in await ledger.list()]
    assert visible == [result.new.id]
    assert len(await ledger.list(EntryFilter(include_archived=True))) == 2


@pytest.mark.asyncio
async def test_supersede_shares_one_audit_batch(ledger, audit):
    old = await ledger.save(make_draft())
    result = await ledger.supersede(old.id, EntryDraft(), "lux")
    records = audit.query()[-2:]
    assert [r.action for r in records] == [AuditAction.CREATE, AuditAction.ARCHIVE]
    assert [r.entry_id for r in records] == [result.new.id, old.id]
    assert records[0].batch_id == records[1].batch_id is not None


@pytest.mark.asyncio
async def test_archived_entry_is_immutable(ledger):
    old = await ledger.save(make_draft())
    await ledger.supersede(old.id, EntryDraft(), "lux")
    with pytest.raises(LifecycleError):
        await ledger.save(EntryDraft(id=old.id, title="Deploy • edited later"))
    with pytest.raises(LifecycleError):
        await ledger.publish(old.id, "lux")
    with pytest.raises(LifecycleError):
        await ledger.supersede(old.id, EntryDraft(), "lux")


@pytest.mark.asyncio
async def test_superseded_entries_cannot_be_deleted(ledger):
    old = await ledger.save(make_draft())
    result = await ledger.supersede(old.id, EntryDraft(), "lux")
    with pytest.raises(LifecycleError):
        await ledger.delete(old.id, "lux")
    assert await ledger.get(old.id) is not None
    assert (await ledger.get(result.new.id)).supersedes_entry_id == old.id


@pytest.mark.asyncio
async def test_entry_pointing_at_an_unarchived_original_blocks_its_delete(ledger):
    original = await ledger.save(make_draft())
    await ledger.save(make_draft(supersedes_entry_id=original.id))
    with pytest.raises(LifecycleError):
        await ledger.delete(original.id, "lux")
    assert await ledger.get(original.id) is not None


@pytest.mark.asyncio
async def test_supersede_validation_failure_changes_nothing(ledger, audit):
    old = await ledger.save(make_draft())
    before = len(audit)
    with pytest.raises(ValidationError):
        await ledger.supersede(old.id, EntryDraft(title="x"), "lux")
    assert (await ledger.get(old.id)).status == EntryStatus.DRAFT
    assert len(await ledger.list()) == 1
    assert len(audit) == before


@pytest.mark.asyncio
async def test_supersede_rolls_back_when_old_changed_underneath(ledger, db):
    old = await ledger.save(make_draft())
    # Simulate a concurrent writer bumping the stored revision
    async with db.transaction():
        await db.execute("UPDATE ledger_entries SET revision = 7 WHERE id = ?", (old.id,))

    with pytest.raises(PersistenceError):
        await ledger.supersede(old.id, EntryDraft(), "lux")

    cursor = await db.execute("SELECT COUNT(*) FROM ledger_entries")
    assert (await cursor.fetchone())[0] == 1
    assert (await ledger.get(old.id)).status == EntryStatus.DRAFT
    assert len(await ledger.list()) == 1


@pytest.mark.asyncio
async def test_supersede_published_replacement_requires_role(ledger):
    old = await ledger.save(make_draft())
    with pytest.raises(AuthorizationError):
        await ledger.supersede(old.id, EntryDraft(status="published"), "scribe")
    result = await ledger.supersede(old.id, EntryDraft(status="published"), "mini-lux")
    assert result.new.status == EntryStatus.PUBLISHED


@pytest.mark.asyncio
async def test_readers_never_see_half_superseded_state(ledger):
    old = await ledger.save(make_draft())
    seen: list[int] = []

    async def reader():
        for _ in range(50):
            entries = await ledger.list()
            seen.append(len(entries))
            await asyncio.sleep(0)

    await asyncio.gather(reader(), ledger.supersede(old.id, EntryDraft(), "lux"))
    assert set(seen) == {1}


# --- delete ---


@pytest.mark.asyncio
async def test_only_lux_deletes(ledger):
    entry = await ledger.save(make_draft())
    with pytest.raises(AuthorizationError):
        await ledger.delete(entry.id, "mini-lux")
    assert await ledger.get(entry.id) is not None


@pytest.mark.asyncio
async def test_delete_removes_and_keeps_snapshot(ledger, audit, db):
    entry = await ledger.save(make_draft())
    await ledger.delete(entry.id, "lux")
    assert await ledger.get(entry.id) is None
    assert await get_entry(db, entry.id) is None
    assert await ledger.revisions(entry.id) == []

    record = audit.query()[-1]
    assert record.action == AuditAction.DELETE
    assert record.severity == Severity.WARNING
    snapshot = {c.field: c.old_value or c.new_value for c in record.field_changes}
    assert snapshot["title"] == entry.title


@pytest.mark.asyncio
async def test_delete_unknown(ledger):
    with pytest.raises(NotFoundError):
        await ledger.delete("nope", "lux")


@pytest.mark.asyncio
async def test_delete_drops_the_entry_lock(ledger):
    entry = await ledger.save(make_draft())
    assert entry.id in ledger._locks
    await ledger.delete(entry.id, "lux")
    assert entry.id not in ledger._locks
    assert ledger._lock_users == {}


@pytest.mark.asyncio
async def test_failed_creates_leave_no_locks(ledger):
    for _ in range(3):
        with pytest.raises(ValidationError):
            await ledger.save(make_draft(title=None))
    with pytest.raises(NotFoundError):
        await ledger.delete("nope", "lux")
    assert ledger._locks == {}
    assert ledger._lock_users == {}


# --- persistence and lifecycle ---


@pytest.mark.asyncio
async def test_restart_reloads_entries_and_audit(db, templates, embedder, monitor):
    first = LedgerStore(db, templates, AuditLog(db), embedder, monitor, retry=FAST_RETRY)
    await first.start()
    entry = await first.save(make_draft())
    await first.publish(entry.id, "lux")
    await first.close()

    audit = AuditLog(db)
    second = LedgerStore(db, templates, audit, embedder, monitor, retry=FAST_RETRY)
    await second.start()
    reloaded = await second.get(entry.id)
    assert reloaded.status == EntryStatus.PUBLISHED
    assert reloaded.integrity_hash == entry.integrity_hash
    assert len(audit) == 2


@pytest.mark.asyncio
async def test_revision_history(ledger):
    entry = await ledger.save(make_draft())
    await ledger.save(EntryDraft(id=entry.id, title="Deploy • cache fix v2"))
    history = await ledger.revisions(entry.id)
    assert [r.revision for r in history] == [1, 2]
    assert history[0].content["title"] == "Deploy • cache fix"
    assert history[1].content["title"] == "Deploy • cache fix v2"


@pytest.mark.asyncio
async def test_export_audit_log(ledger):
    await ledger.save(make_draft())
    payload = json.loads(ledger.export_audit_log("json"))
    assert payload[0]["action"] == "create"
    assert ledger.export_audit_log("csv").startswith(b"sequence,")


@pytest.mark.asyncio
async def test_export_import_entries(ledger, templates, embedder, monitor):
    entry = await ledger.save(make_draft())
    exported = await ledger.export_entries()

    other_db = await create_connection(":memory:")
    try:
        other_audit = AuditLog()
        other = LedgerStore(
            other_db, templates, other_audit, embedder, monitor, retry=FAST_RETRY
        )
        await other.start()
        imported = await other.import_entries(exported, role="lux")
        assert imported == [entry.id]
        assert (await other.get(entry.id)).title == entry.title
        assert other_audit.query()[0].metadata["imported"] is True

        # Re-importing skips ids that already exist
        assert await other.import_entries(exported) == []
    finally:
        await other_db.close()


@pytest.mark.asyncio
async def test_import_rejects_bad_payload(ledger):
    with pytest.raises(ValueError):
        await ledger.import_entries(json.dumps({"nope": []}))


@pytest.mark.asyncio
async def test_import_with_one_bad_record_imports_nothing(ledger, templates, embedder, monitor):
    await ledger.save(make_draft())
    good = json.loads(await ledger.export_entries())["entries"][0]
    bad = {**good, "id": "01J0000000000000000000BAD0", "date": "yesterday"}

    other_db = await create_connection(":memory:")
    try:
        other_audit = AuditLog()
        other = LedgerStore(other_db, templates, other_audit, embedder, monitor, retry=FAST_RETRY)
        await other.start()
        with pytest.raises(ValidationError):
            await other.import_entries(json.dumps({"entries": [good, bad]}), role="lux")
        assert await other.list() == []
        assert len(other_audit) == 0
        cursor = await other_db.execute("SELECT COUNT(*) FROM ledger_entries")
        assert (await cursor.fetchone())[0] == 0
    finally:
        await other_db.close()


@pytest.mark.asyncio
async def test_import_writes_one_audit_batch(ledger, templates, embedder, monitor):
    await ledger.save(make_draft())
    first = json.loads(await ledger.export_entries())["entries"][0]
    second = {**first, "id": "01J0000000000000000000SEC0", "title": "Deploy • second"}

    other_db = await create_connection(":memory:")
    try:
        other_audit = AuditLog()
        other = LedgerStore(other_db, templates, other_audit, embedder, monitor, retry=FAST_RETRY)
        await other.start()
        payload = json.dumps({"entries": [first, second]})
        imported = await other.import_entries(payload, role="lux")
        assert imported == [first["id"], second["id"]]
        records = other_audit.query()
        assert [r.entry_id for r in records] == imported
        assert records[0].batch_id == records[1].batch_id is not None
    finally:
        await other_db.close()


@pytest.mark.asyncio
async def test_import_refuses_unknown_role(ledger, templates, embedder, monitor):
    await ledger.save(make_draft())
    exported = await ledger.export_entries()

    other_db = await create_connection(":memory:")
    try:
        other = LedgerStore(other_db, templates, AuditLog(), embedder, monitor, retry=FAST_RETRY)
        await other.start()
        with pytest.raises(AuthorizationError):
            await other.import_entries(exported, role="intruder")
        assert await other.list() == []
    finally:
        await other_db.close()
