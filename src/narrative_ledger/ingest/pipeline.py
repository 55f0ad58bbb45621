"""Automated ingestion: turn repository lifecycle events into draft entries."""

import logging
from collections.abc import Iterable
from dataclasses import dataclass, field
from typing import Any

from pydantic import ValidationError as PayloadError

from narrative_ledger.config import (
    get_default_author,
    include_references,
    is_auto_publish,
    is_automation_enabled,
)
from narrative_ledger.dates import format_utc, from_iso
from narrative_ledger.errors import IngestionSkipped, LedgerError, ValidationError
from narrative_ledger.ingest.classifier import classify, keyword_tags
from narrative_ledger.ingest.sections import (
    RATIONALE_FALLBACK,
    RATIONALE_HEADINGS,
    RISKS_FALLBACK,
    RISKS_HEADINGS,
    WHAT_CHANGED_FALLBACK,
    WHAT_CHANGED_HEADINGS,
    extract_section,
    summarize,
)
from narrative_ledger.models.entry import (
    EntryDraft,
    EntryStatus,
    EntryType,
    LedgerEntry,
    Reference,
    ReferenceType,
)
from narrative_ledger.models.events import IssueEvent, PullRequestEvent, ReleaseEvent
from narrative_ledger.monitor.performance import PerformanceMonitor
from narrative_ledger.store.ledger_store import LedgerStore

logger = logging.getLogger(__name__)

EVENT_KINDS = ("pull_request", "issue", "release")


@dataclass
class IngestionConfig:
    """Switches for automated entry creation."""

    enabled: bool = True
    auto_publish: bool = False
    default_author: str = "mini-lux"
    include_references: bool = True

    @classmethod
    def from_env(cls) -> "IngestionConfig":
        return cls(
            enabled=is_automation_enabled(),
            auto_publish=is_auto_publish(),
            default_author=get_default_author(),
            include_references=include_references(),
        )


@dataclass
class IngestionReport:
    """Outcome of a batch of events."""

    created: list[str] = field(default_factory=list)
    skipped: list[str] = field(default_factory=list)


class IngestionPipeline:
    """Classifies events, extracts narrative sections and saves one entry per event."""

    def __init__(
        self,
        store: LedgerStore,
        config: IngestionConfig | None = None,
        monitor: PerformanceMonitor | None = None,
    ) -> None:
        """Initialize with the store entries are saved to."""
        self._store = store
        self._config = config or IngestionConfig()
        self._monitor = monitor or PerformanceMonitor()

    @property
    def config(self) -> IngestionConfig:
        return self._config

    async def ingest(self, kind: str, payload: dict[str, Any]) -> LedgerEntry:
        """Validate a raw webhook payload and ingest it.

        Raises IngestionSkipped for unknown kinds, malformed payloads and
        events whose trigger condition does not hold.
        """
        try:
            if kind == "pull_request":
                return await self.ingest_pull_request(PullRequestEvent.model_validate(payload))
            if kind == "issue":
                return await self.ingest_issue(IssueEvent.model_validate(payload))
            if kind == "release":
                return await self.ingest_release(ReleaseEvent.model_validate(payload))
        except PayloadError as e:
            raise IngestionSkipped(f"Malformed {kind} payload: {e.error_count()} error(s)") from e
        raise IngestionSkipped(f"Unsupported event kind {kind!r}")

    async def ingest_many(self, events: Iterable[tuple[str, dict[str, Any]]]) -> IngestionReport:
        """Ingest events one by one. Never raises; failures are logged and skipped."""
        report = IngestionReport()
        for kind, payload in events:
            try:
                entry = await self.ingest(kind, payload)
            except IngestionSkipped as e:
                logger.info("Skipped %s event: %s", kind, e.reason)
                report.skipped.append(e.reason)
            except LedgerError as e:
                logger.warning("Failed to save %s event: %s", kind, e)
                report.skipped.append(str(e))
            else:
                report.created.append(entry.id)
        return report

    async def ingest_pull_request(self, event: PullRequestEvent) -> LedgerEntry:
        """Create an entry from a merged pull request."""
        self._check_enabled()
        pr = event.pull_request
        if not pr.merged_at:
            raise IngestionSkipped(f"PR #{pr.number} is not merged")

        labels = [label.name for label in pr.labels]
        entry_type = classify(pr.title, labels, pr.body)
        references = [
            Reference(
                id=f"PR#{pr.number}",
                type=ReferenceType.EXTERNAL,
                url=pr.html_url,
                description=f"Pull Request #{pr.number}",
                timestamp=pr.merged_at,
            ),
            Reference(
                id=pr.head.sha[:7],
                type=ReferenceType.COMMIT_HASH,
                description=f"Merge commit for PR #{pr.number}",
            ),
        ]
        draft = self._draft(
            title=f"Deploy • {pr.title}",
            date=from_iso(pr.merged_at),
            executive_summary=summarize(
                pr.body, f"PR #{pr.number} was merged, implementing the described changes."
            ),
            what_changed=extract_section(pr.body, WHAT_CHANGED_HEADINGS, WHAT_CHANGED_FALLBACK),
            decisions_rationale=extract_section(pr.body, RATIONALE_HEADINGS, RATIONALE_FALLBACK),
            risks_mitigations=extract_section(pr.body, RISKS_HEADINGS, RISKS_FALLBACK),
            entry_type=entry_type,
            tags=["deploy", "automated", *keyword_tags(pr.title), *labels, entry_type.value],
            references=references,
        )
        return await self._save("pull_request", draft)

    async def ingest_issue(self, event: IssueEvent) -> LedgerEntry:
        """Create an entry from a closed issue."""
        self._check_enabled()
        issue = event.issue
        if event.action != "closed":
            raise IngestionSkipped(f"Issue #{issue.number} action is {event.action!r}")

        labels = [label.name.lower() for label in issue.labels]
        entry_type = classify(issue.title, labels)
        prefix = "Incident" if entry_type == EntryType.INCIDENT else "Milestone"
        draft = self._draft(
            title=f"{prefix} • {issue.title}",
            date=from_iso(issue.closed_at),
            executive_summary=(issue.body or "").strip()
            or f"Issue #{issue.number} resolved: {issue.title}",
            what_changed=f"Issue #{issue.number} was closed.",
            decisions_rationale="See issue discussion for context.",
            risks_mitigations="N/A",
            entry_type=entry_type,
            tags=["automated", *labels, entry_type.value],
            references=[
                Reference(
                    id=f"Issue#{issue.number}",
                    type=ReferenceType.EXTERNAL,
                    url=issue.html_url,
                    description=f"Issue #{issue.number}",
                )
            ],
        )
        return await self._save("issue", draft)

    async def ingest_release(self, event: ReleaseEvent) -> LedgerEntry:
        """Create a milestone entry from a published release."""
        self._check_enabled()
        release = event.release
        if event.action != "published":
            raise IngestionSkipped(f"Release {release.tag_name} action is {event.action!r}")

        draft = self._draft(
            title=f"Release • {release.name or release.tag_name}",
            date=from_iso(release.published_at),
            executive_summary=(release.body or "").strip()
            or f"Release {release.tag_name} published.",
            what_changed=f"Released version {release.tag_name}.",
            decisions_rationale="Milestone release per project roadmap.",
            risks_mitigations="Standard release process followed.",
            entry_type=EntryType.MILESTONE,
            tags=["release", "deploy", "milestone"],
            references=[
                Reference(
                    id=release.tag_name,
                    type=ReferenceType.EXTERNAL,
                    url=release.html_url,
                    description=f"Release {release.tag_name}",
                    timestamp=release.published_at,
                )
            ],
        )
        return await self._save("release", draft)

    def _check_enabled(self) -> None:
        if not self._config.enabled:
            raise IngestionSkipped("Automation is disabled")

    def _draft(
        self,
        *,
        title: str,
        date: str | None,
        executive_summary: str,
        what_changed: str,
        decisions_rationale: str,
        risks_mitigations: str,
        entry_type: EntryType,
        tags: list[str],
        references: list[Reference],
    ) -> EntryDraft:
        return EntryDraft(
            title=title,
            date=date or format_utc(),
            executive_summary=executive_summary,
            what_changed=what_changed,
            decisions_rationale=decisions_rationale,
            risks_mitigations=risks_mitigations,
            type=entry_type,
            tags=tags,
            author=self._config.default_author,
            status=EntryStatus.PUBLISHED if self._config.auto_publish else EntryStatus.DRAFT,
            references=references if self._config.include_references else [],
        )

    async def _save(self, kind: str, draft: EntryDraft) -> LedgerEntry:
        async with self._monitor.track("ingestion", kind=kind):
            try:
                entry = await self._store.save(draft, role=self._config.default_author)
            except ValidationError as e:
                raise IngestionSkipped(f"Malformed {kind} event: {e}") from e
        logger.info("Ingested %s event as %s entry %s", kind, entry.type.value, entry.id)
        return entry
