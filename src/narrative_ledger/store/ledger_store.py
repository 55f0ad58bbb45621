"""Entry store and lifecycle engine: draft -> published -> archived."""

from __future__ import annotations

import asyncio
import hashlib
import json
import logging
import time
from collections.abc import AsyncIterator, Callable
from contextlib import asynccontextmanager
from datetime import UTC, datetime
from typing import Any, Literal

from narrative_ledger.audit.authz import authorize
from narrative_ledger.audit.diff import diff, snapshot
from narrative_ledger.audit.log import AuditLog
from narrative_ledger.audit.sensitive import scan_for_sensitive_content
from narrative_ledger.db.backend import Database
from narrative_ledger.db.queries import (
    delete_entry_cascade,
    get_all_entries,
    get_revisions,
    insert_entry,
    insert_revision,
    update_entry,
)
from narrative_ledger.db.retry import RetryConfig, with_retry
from narrative_ledger.errors import LifecycleError, NotFoundError, PersistenceError, ValidationError
from narrative_ledger.models.audit import AuditAction, AuditLogEntry, AuditQuery, Severity
from narrative_ledger.models.entry import (
    EntryDraft,
    EntryRevision,
    EntryStatus,
    LedgerEntry,
    Role,
    SupersedeResult,
)
from narrative_ledger.models.search import EntryFilter, SimilarEntry
from narrative_ledger.monitor.performance import PerformanceMonitor
from narrative_ledger.search.embeddings import TextEmbedder
from narrative_ledger.search.similarity import rank_similar
from narrative_ledger.store.ids import new_entry_id
from narrative_ledger.templates.engine import TemplateEngine, ValidationReport

logger = logging.getLogger(__name__)

# Fields a caller may set; everything else is derived or owned by the store
CONTENT_FIELDS: tuple[str, ...] = (
    "date",
    "title",
    "executive_summary",
    "what_changed",
    "decisions_rationale",
    "risks_mitigations",
    "narrative_extended",
    "type",
    "tags",
    "author",
    "status",
    "supersedes_entry_id",
    "references",
)


def compute_integrity_hash(entry: LedgerEntry) -> str:
    """SHA-256 over the title, event date and narrative fields."""
    content = "".join(
        (
            entry.title,
            entry.date,
            entry.executive_summary,
            entry.what_changed,
            entry.decisions_rationale,
            entry.risks_mitigations,
        )
    )
    return hashlib.sha256(content.encode("utf-8")).hexdigest()


class LedgerStore:
    """Owns the entry collection and every mutation of it.

    Reads are served from an in-memory map of immutable snapshots that is
    swapped only after the database commit, so a reader always sees a whole
    entry, before or after an update, never a mix. Mutations of one entry id
    are serialized by a per-id lock; different ids proceed concurrently.
    """

    def __init__(
        self,
        db: Database,
        templates: TemplateEngine,
        audit: AuditLog,
        embedder: TextEmbedder,
        monitor: PerformanceMonitor,
        *,
        upsert_unknown_ids: bool = True,
        retry: RetryConfig | None = None,
    ):
        """Initialize with explicitly constructed collaborators."""
        self._db = db
        self._templates = templates
        self._audit = audit
        self._embedder = embedder
        self._monitor = monitor
        self._upsert_unknown_ids = upsert_unknown_ids
        self._retry = retry or RetryConfig()
        self._entries: dict[str, LedgerEntry] = {}
        self._locks: dict[str, asyncio.Lock] = {}
        self._lock_users: dict[str, int] = {}
        self._started = False

    # -- lifecycle --

    async def start(self) -> None:
        """Load persisted entries and the audit tail."""
        if self._started:
            return
        entries = await with_retry(
            lambda: get_all_entries(self._db), self._retry, description="load entries"
        )
        self._entries = {e.id: e for e in entries}
        await self._audit.load()
        self._started = True
        logger.info("Ledger store started with %d entries", len(self._entries))

    async def close(self) -> None:
        """Drop cached state. The database connection is owned by the caller."""
        self._entries.clear()
        self._locks.clear()
        self._lock_users.clear()
        self._started = False
        logger.info("Ledger store closed")

    @property
    def audit(self) -> AuditLog:
        return self._audit

    @property
    def templates(self) -> TemplateEngine:
        return self._templates

    # -- reads --

    async def get(self, entry_id: str) -> LedgerEntry | None:
        """Get a single entry by id, archived included."""
        return self._entries.get(entry_id)

    async def require(self, entry_id: str) -> LedgerEntry:
        """Get an entry or raise NotFoundError."""
        entry = self._entries.get(entry_id)
        if entry is None:
            raise NotFoundError(entry_id)
        return entry

    async def list(self, entry_filter: EntryFilter | None = None) -> list[LedgerEntry]:
        """Entries ordered by event date, newest first (ties: newest created first)."""
        f = entry_filter or EntryFilter()
        entries = [e for e in self._entries.values() if _matches_filter(e, f)]
        entries.sort(key=_sort_key, reverse=True)
        if f.limit is not None:
            entries = entries[: f.limit]
        return entries

    async def search(self, query: str) -> list[LedgerEntry]:
        """Case-insensitive substring match over title, executive summary and tags."""
        async with self._monitor.track("search", query=query):
            needle = query.strip().lower()
            entries = await self.list()
            if not needle:
                return entries
            return [e for e in entries if _matches_query(e, needle)]

    async def find_similar(self, entry_id: str, top_k: int = 5) -> list[SimilarEntry]:
        """Rank other non-archived entries by cosine similarity to the target's embedding."""
        target = await self.require(entry_id)
        async with self._monitor.track("similarity", entry_id=entry_id):
            return self._rank(target.embedding, top_k, exclude=target.id)

    async def find_similar_to_draft(self, draft: EntryDraft, top_k: int = 5) -> list[SimilarEntry]:
        """Rank stored entries against unsaved content, for duplicate checks before writing."""
        text = " ".join(
            part
            for part in (
                draft.title,
                draft.executive_summary,
                draft.decisions_rationale,
                draft.risks_mitigations,
            )
            if part
        )
        async with self._monitor.track("similarity"):
            vector = await self._embedder.embed(text) or []
            return self._rank(vector, top_k, exclude=draft.id)

    def _rank(self, vector: list[float], top_k: int, exclude: str | None) -> list[SimilarEntry]:
        if not vector:
            return []
        candidates = [
            (e, e.embedding)
            for e in self._entries.values()
            if e.id != exclude and not e.is_archived and e.embedding
        ]
        candidates.sort(key=lambda pair: _sort_key(pair[0]), reverse=True)
        return [
            SimilarEntry(entry=entry, score=score)
            for entry, score in rank_similar(vector, candidates, top_k)
        ]

    async def revisions(self, entry_id: str) -> list[EntryRevision]:
        """Stored content snapshots for an entry, oldest first."""
        return await get_revisions(self._db, entry_id)

    async def sensitive_findings(self, entry_id: str) -> list[str]:
        """Advisory sensitive-content pattern names found in an entry."""
        return scan_for_sensitive_content(await self.require(entry_id))

    def export_audit_log(
        self, fmt: Literal["json", "csv"] = "json", query: AuditQuery | None = None
    ) -> bytes:
        """Compliance export of the audit trail."""
        return self._audit.export(fmt, query)

    # -- writes --

    async def save(self, draft: EntryDraft, role: Role | str | None = None) -> LedgerEntry:
        """Create a new entry or merge an update onto an existing one.

        Unknown ids create a new entry under the caller's id when upserts are
        enabled; otherwise they raise NotFoundError. Raises ValidationError with
        every field-level problem and writes nothing when validation fails.
        """
        entry_id = draft.id or new_entry_id()
        async with self._locks_for(entry_id):
            existing = self._entries.get(entry_id)
            if existing is not None:
                async with self._monitor.track("entry_update", entry_id=entry_id):
                    return await self._update(existing, draft, role)
            if draft.id is not None and not self._upsert_unknown_ids:
                raise NotFoundError(draft.id)
            async with self._monitor.track("entry_creation", entry_id=entry_id):
                return await self._create(entry_id, draft, role)

    async def _create(
        self, entry_id: str, draft: EntryDraft, role: Role | str | None
    ) -> LedgerEntry:
        values = draft.provided()
        status = values.get("status") or EntryStatus.DRAFT
        if status == EntryStatus.ARCHIVED:
            raise LifecycleError("New entries cannot be created archived; use supersede")
        values["status"] = status

        candidate = EntryDraft(id=entry_id, **values)
        report = self._validated(candidate)
        actor = self._actor(AuditAction.CREATE, role, candidate)
        if status == EntryStatus.PUBLISHED:
            authorize(AuditAction.PUBLISH, actor)

        now = datetime.now(UTC)
        entry = await self._finalize(
            LedgerEntry(
                id=entry_id,
                revision=1,
                created_at=now,
                updated_at=now,
                **_content_of(candidate),
            )
        )
        await self._write(lambda: self._insert(entry), f"create {entry_id}")
        self._entries[entry_id] = entry

        records = [self._create_record(entry, actor, report.warnings)]
        if entry.status == EntryStatus.PUBLISHED:
            records.append(self._publish_record(None, entry, actor))
        await self._audit.append_batch(records)
        logger.info("Created entry %s: %s", entry_id, entry.title)
        return entry

    async def _update(
        self, existing: LedgerEntry, draft: EntryDraft, role: Role | str | None
    ) -> LedgerEntry:
        if existing.is_archived:
            raise LifecycleError(f"Entry {existing.id} is archived and cannot be modified")

        values = draft.provided()
        requested = values.get("status")
        if requested == EntryStatus.ARCHIVED:
            raise LifecycleError("Entries are archived by superseding them")
        if requested == EntryStatus.DRAFT and existing.status == EntryStatus.PUBLISHED:
            raise LifecycleError(f"Entry {existing.id} is published and cannot return to draft")

        merged = existing.model_dump(include=set(CONTENT_FIELDS))
        merged.update(values)
        candidate = EntryDraft(id=existing.id, **merged)
        report = self._validated(candidate)
        actor = self._actor(AuditAction.UPDATE, role, candidate)
        publishing = (
            requested == EntryStatus.PUBLISHED and existing.status == EntryStatus.DRAFT
        )
        if publishing:
            authorize(AuditAction.PUBLISH, actor)

        updated = await self._finalize(
            LedgerEntry(
                id=existing.id,
                revision=existing.revision + 1,
                created_at=existing.created_at,
                updated_at=datetime.now(UTC),
                **_content_of(candidate),
            )
        )
        await self._write(
            lambda: self._replace(updated, existing.revision), f"update {existing.id}"
        )
        self._entries[existing.id] = updated

        findings = scan_for_sensitive_content(updated)
        records = [
            AuditLog.build(
                AuditAction.UPDATE,
                updated.id,
                actor,
                field_changes=diff(existing, updated),
                metadata=_metadata(updated, report.warnings, findings),
                severity=Severity.WARNING if findings else Severity.INFO,
            )
        ]
        if publishing:
            records.append(self._publish_record(existing, updated, actor))
        await self._audit.append_batch(records)
        logger.info("Updated entry %s to r%d", updated.id, updated.revision)
        return updated

    async def publish(self, entry_id: str, role: Role | str | None) -> LedgerEntry:
        """Promote a draft to published. Only lux and mini-lux may publish."""
        actor = authorize(AuditAction.PUBLISH, role)
        async with self._locks_for(entry_id):
            entry = await self.require(entry_id)
            if entry.status != EntryStatus.DRAFT:
                raise LifecycleError(
                    f"Entry {entry_id} is {entry.status.value}; only drafts can be published"
                )
            report = self._templates.validate(entry)
            if not report.is_valid:
                raise ValidationError(report.errors)

            published = entry.model_copy(
                update={"status": EntryStatus.PUBLISHED, "updated_at": datetime.now(UTC)}
            )
            await self._write(
                lambda: self._replace(published, entry.revision), f"publish {entry_id}"
            )
            self._entries[entry_id] = published
            await self._audit.append(self._publish_record(entry, published, actor.value))
            logger.info("Published entry %s at r%d", entry_id, published.revision)
            return published

    async def supersede(
        self, old_id: str, draft: EntryDraft, role: Role | str | None
    ) -> SupersedeResult:
        """Replace an entry: create the replacement and archive the original as one unit.

        The replacement inherits any content field the draft leaves unset.
        Both records become visible together or not at all.
        """
        actor = authorize(AuditAction.ARCHIVE, role).value
        new_id = draft.id or new_entry_id()
        if new_id == old_id or new_id in self._entries:
            raise LifecycleError(f"Replacement id {new_id} is already in use")

        async with self._locks_for(old_id, new_id):
            old = await self.require(old_id)
            if old.is_archived:
                raise LifecycleError(f"Entry {old_id} is already archived")

            provided = draft.provided()
            if provided.get("status") == EntryStatus.ARCHIVED:
                raise LifecycleError("A replacement entry cannot be created archived")
            values = old.model_dump(include=set(CONTENT_FIELDS))
            values.update(provided)
            values["supersedes_entry_id"] = old_id
            values["status"] = provided.get("status") or EntryStatus.DRAFT
            candidate = EntryDraft(id=new_id, **values)
            report = self._validated(candidate)
            if candidate.status == EntryStatus.PUBLISHED:
                authorize(AuditAction.PUBLISH, actor)

            now = datetime.now(UTC)
            replacement = await self._finalize(
                LedgerEntry(
                    id=new_id, revision=1, created_at=now, updated_at=now, **_content_of(candidate)
                )
            )
            archived = old.model_copy(update={"status": EntryStatus.ARCHIVED, "updated_at": now})

            async def write_both() -> None:
                async with self._db.transaction():
                    await insert_entry(self._db, replacement)
                    await insert_revision(self._db, replacement)
                    if not await update_entry(self._db, archived, old.revision):
                        raise PersistenceError(f"Entry {old_id} changed during supersede")
                    await insert_revision(self._db, archived)

            await with_retry(write_both, self._retry, description=f"supersede {old_id}")
            # No await between these two assignments: readers see both or neither
            self._entries[new_id] = replacement
            self._entries[old_id] = archived

            records = [
                self._create_record(replacement, actor, report.warnings),
                AuditLog.build(
                    AuditAction.ARCHIVE,
                    old_id,
                    actor,
                    field_changes=diff(old, archived),
                    metadata={"superseded_by": new_id, "revision": old.revision},
                ),
            ]
            if replacement.status == EntryStatus.PUBLISHED:
                records.append(self._publish_record(None, replacement, actor))
            await self._audit.append_batch(records)
            logger.info("Entry %s superseded by %s", old_id, new_id)
            return SupersedeResult(old=archived, new=replacement)

    async def delete(self, entry_id: str, role: Role | str | None) -> None:
        """Hard-delete an entry. Only lux may delete; the audit record keeps a snapshot.

        Archived entries and entries another entry supersedes are part of a
        correction chain and cannot be deleted.
        """
        actor = authorize(AuditAction.DELETE, role)
        async with self._locks_for(entry_id):
            await self._delete(entry_id, actor)

    async def _delete(self, entry_id: str, actor: Role) -> None:
        entry = await self.require(entry_id)
        if entry.is_archived:
            raise LifecycleError(f"Entry {entry_id} is archived and cannot be deleted")
        successor = next(
            (e.id for e in self._entries.values() if e.supersedes_entry_id == entry_id), None
        )
        if successor is not None:
            raise LifecycleError(f"Entry {entry_id} is superseded by {successor}")

        async def remove() -> None:
            async with self._db.transaction():
                await delete_entry_cascade(self._db, entry_id)

        await self._write(remove, f"delete {entry_id}")
        del self._entries[entry_id]
        await self._audit.append(
            AuditLog.build(
                AuditAction.DELETE,
                entry_id,
                actor.value,
                field_changes=snapshot(entry),
                metadata={"revision": entry.revision, "status": entry.status.value},
                severity=Severity.WARNING,
            )
        )
        logger.info("Deleted entry %s", entry_id)

    # -- import / export --

    async def export_entries(self) -> str:
        """Serialize every entry, archived included, as JSON."""
        entries = sorted(self._entries.values(), key=lambda e: e.id)
        return json.dumps({"entries": [e.model_dump(mode="json") for e in entries]}, indent=2)

    async def import_entries(self, payload: str, role: Role | str | None = None) -> list[str]:
        """Load entries exported by ``export_entries``. Existing ids are skipped.

        Imported entries keep their ids, revisions and status; each gets a
        create audit record marked as imported. Every record is validated
        before anything is written, and the batch is written in one
        transaction: a bad record imports nothing.
        """
        data = json.loads(payload)
        raw_entries = data.get("entries") if isinstance(data, dict) else None
        if not isinstance(raw_entries, list):
            raise ValueError("Invalid format: 'entries' array not found")

        parsed: dict[str, tuple[LedgerEntry, str, list[str]]] = {}
        for raw in raw_entries:
            entry = LedgerEntry.model_validate(raw)
            if entry.id in parsed or entry.id in self._entries:
                logger.info("Skipping import of existing entry %s", entry.id)
                continue
            report = self._validated(entry)
            actor = self._actor(AuditAction.CREATE, role, entry)
            parsed[entry.id] = (entry, actor, report.warnings)

        async with self._locks_for(*parsed):
            pending: list[tuple[LedgerEntry, str, list[str]]] = []
            for entry_id, (entry, actor, warnings) in parsed.items():
                if entry_id in self._entries:
                    logger.info("Skipping import of existing entry %s", entry_id)
                    continue
                pending.append((await self._finalize(entry), actor, warnings))

            async def write_all() -> None:
                async with self._db.transaction():
                    for entry, _, _ in pending:
                        await insert_entry(self._db, entry)
                        await insert_revision(self._db, entry)

            if pending:
                await self._write(write_all, f"import {len(pending)} entries")
            records = []
            for entry, actor, warnings in pending:
                self._entries[entry.id] = entry
                record = self._create_record(entry, actor, warnings)
                metadata = {**record.metadata, "imported": True}
                records.append(record.model_copy(update={"metadata": metadata}))
            if records:
                await self._audit.append_batch(records)
        imported = [entry.id for entry, _, _ in pending]
        logger.info("Imported %d entries", len(imported))
        return imported

    # -- helpers --

    @asynccontextmanager
    async def _locks_for(self, *entry_ids: str) -> AsyncIterator[None]:
        """Hold the per-id locks of every given id.

        A lock is dropped once no task holds or awaits it and its entry no
        longer exists, so deleted and never-created ids do not pile up.
        """
        # Fixed acquisition order prevents deadlock between overlapping supersedes
        ordered = sorted(set(entry_ids))
        for entry_id in ordered:
            if entry_id not in self._locks:
                self._locks[entry_id] = asyncio.Lock()
            self._lock_users[entry_id] = self._lock_users.get(entry_id, 0) + 1
        acquired: list[asyncio.Lock] = []
        try:
            for entry_id in ordered:
                lock = self._locks[entry_id]
                await lock.acquire()
                acquired.append(lock)
            yield
        finally:
            for lock in reversed(acquired):
                lock.release()
            for entry_id in ordered:
                users = self._lock_users.pop(entry_id, 1) - 1
                if users:
                    self._lock_users[entry_id] = users
                elif entry_id not in self._entries:
                    self._locks.pop(entry_id, None)

    def _validated(self, candidate: EntryDraft | LedgerEntry) -> ValidationReport:
        started = time.perf_counter()
        report = self._templates.validate(candidate)
        self._monitor.record(
            "reference_validation",
            (time.perf_counter() - started) * 1000.0,
            entry_id=candidate.id,
        )
        if not report.is_valid:
            logger.info(
                "Rejected entry %s: %s", candidate.id, ", ".join(str(e) for e in report.errors)
            )
            raise ValidationError(report.errors)
        for warning in report.warnings:
            logger.debug("Entry %s: %s", candidate.id, warning)
        return report

    @staticmethod
    def _actor(
        action: AuditAction, role: Role | str | None, candidate: EntryDraft | LedgerEntry
    ) -> str:
        """The acting role: the caller's, else the entry author. Unknown roles are refused."""
        return authorize(action, role or candidate.author).value

    async def _finalize(self, entry: LedgerEntry) -> LedgerEntry:
        """Recompute the derived fields: integrity hash and embedding."""
        vector = await self._embed(entry)
        return entry.model_copy(
            update={"integrity_hash": compute_integrity_hash(entry), "embedding": vector}
        )

    async def _embed(self, entry: LedgerEntry) -> list[float]:
        try:
            vector = await self._embedder.embed(entry.embedding_text)
        except Exception:
            logger.warning("Failed to embed entry %s", entry.id, exc_info=True)
            return []
        return vector or []

    async def _write(self, operation: Callable[[], Any], description: str) -> None:
        await with_retry(operation, self._retry, description=description)

    async def _insert(self, entry: LedgerEntry) -> None:
        async with self._db.transaction():
            await insert_entry(self._db, entry)
            await insert_revision(self._db, entry)

    async def _replace(self, entry: LedgerEntry, expected_revision: int) -> None:
        async with self._db.transaction():
            if not await update_entry(self._db, entry, expected_revision):
                raise PersistenceError(f"Entry {entry.id} changed concurrently")
            await insert_revision(self._db, entry)

    @staticmethod
    def _create_record(entry: LedgerEntry, actor: str, warnings: list[str]) -> AuditLogEntry:
        findings = scan_for_sensitive_content(entry)
        return AuditLog.build(
            AuditAction.CREATE,
            entry.id,
            actor,
            field_changes=snapshot(entry),
            metadata=_metadata(entry, warnings, findings),
            severity=Severity.WARNING if findings else Severity.INFO,
        )

    @staticmethod
    def _publish_record(
        before: LedgerEntry | None, after: LedgerEntry, actor: str
    ) -> AuditLogEntry:
        return AuditLog.build(
            AuditAction.PUBLISH,
            after.id,
            actor,
            field_changes=diff(before, after) if before is not None else [],
            metadata={"baseline_revision": after.revision},
        )


def _content_of(candidate: EntryDraft | LedgerEntry) -> dict[str, Any]:
    data = candidate.model_dump(include=set(CONTENT_FIELDS))
    return {k: v for k, v in data.items() if v is not None}


def _metadata(entry: LedgerEntry, warnings: list[str], findings: list[str]) -> dict[str, Any]:
    metadata: dict[str, Any] = {"revision": entry.revision, "integrity_hash": entry.integrity_hash}
    if warnings:
        metadata["warnings"] = warnings
    if findings:
        metadata["sensitive_content"] = findings
    return metadata


def _sort_key(entry: LedgerEntry) -> tuple[str, datetime]:
    # The fixed date format sorts lexicographically in chronological order
    return entry.date, entry.created_at or datetime.min.replace(tzinfo=UTC)


def _matches_query(entry: LedgerEntry, needle: str) -> bool:
    return (
        needle in entry.title.lower()
        or needle in entry.executive_summary.lower()
        or any(needle in tag.lower() for tag in entry.tags)
    )


def _matches_filter(entry: LedgerEntry, f: EntryFilter) -> bool:
    if entry.is_archived and not (f.include_archived or f.status == EntryStatus.ARCHIVED):
        return False
    if f.status is not None and entry.status != f.status:
        return False
    if f.type is not None and entry.type != f.type:
        return False
    if f.author is not None and entry.author != f.author:
        return False
    if f.tags and not set(f.tags).issubset(entry.tags):
        return False
    if f.date_from is not None and entry.date < f.date_from:
        return False
    return f.date_to is None or entry.date <= f.date_to
