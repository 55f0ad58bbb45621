"""Ledger entry models."""

from datetime import datetime
from enum import StrEnum

from pydantic import BaseModel, Field, field_validator


class EntryType(StrEnum):
    """Classification of ledger entries."""

    DECISION = "Decision"
    INCIDENT = "Incident"
    MILESTONE = "Milestone"
    ROUTINE = "Routine"
    ROLLBACK = "Rollback"
    FLIP = "Flip"


class EntryStatus(StrEnum):
    """Lifecycle state. Archived entries have been superseded and are immutable."""

    DRAFT = "draft"
    PUBLISHED = "published"
    ARCHIVED = "archived"


class Role(StrEnum):
    """Fixed author roles."""

    LUX = "lux"
    MINI_LUX = "mini-lux"
    SCRIBE = "scribe"


class ReferenceType(StrEnum):
    """Kinds of external artifacts an entry can link to."""

    COMMIT_HASH = "commit-hash"
    DV_JOB = "dv-job"
    HUD_SNAPSHOT = "hud-snapshot"
    CONTROL_HUB_COMMENT = "control-hub-comment"
    EXTERNAL = "external"


NARRATIVE_FIELDS: tuple[str, ...] = (
    "title",
    "executive_summary",
    "what_changed",
    "decisions_rationale",
    "risks_mitigations",
)


def _normalize_status(value: object) -> object:
    # "superseded" is the historical name for archived
    if isinstance(value, str) and value.lower() == "superseded":
        return EntryStatus.ARCHIVED
    return value


def _dedupe_tags(tags: list[str]) -> list[str]:
    seen: set[str] = set()
    result: list[str] = []
    for tag in tags:
        tag = tag.strip()
        if tag and tag not in seen:
            seen.add(tag)
            result.append(tag)
    return result


class Reference(BaseModel):
    """A typed cross-link to an external artifact."""

    id: str = ""
    type: ReferenceType | str = ""
    description: str = ""
    url: str | None = None
    timestamp: str | None = None


class LedgerEntry(BaseModel):
    """A single narrative record with lifecycle state and derived fields."""

    id: str
    revision: int = 1
    created_at: datetime | None = None
    updated_at: datetime | None = None
    date: str
    title: str
    executive_summary: str
    what_changed: str
    decisions_rationale: str
    risks_mitigations: str
    narrative_extended: str | None = None
    type: EntryType
    tags: list[str] = Field(default_factory=list)
    author: Role
    status: EntryStatus = EntryStatus.DRAFT
    supersedes_entry_id: str | None = None
    references: list[Reference] = Field(default_factory=list)
    embedding: list[float] = Field(default_factory=list)
    integrity_hash: str = ""

    normalize_status = field_validator("status", mode="before")(_normalize_status)

    @field_validator("tags")
    @classmethod
    def unique_tags(cls, tags: list[str]) -> list[str]:
        return _dedupe_tags(tags)

    @property
    def embedding_text(self) -> str:
        """Text used for generating embeddings."""
        return " ".join(
            (self.title, self.executive_summary, self.decisions_rationale, self.risks_mitigations)
        )

    @property
    def is_archived(self) -> bool:
        return self.status == EntryStatus.ARCHIVED


class EntryDraft(BaseModel):
    """Caller-supplied entry content. Every field is optional so updates can be partial.

    Type, author, status and references are loosely typed here; the template
    engine reports bad values as field errors instead of pydantic raising.
    """

    id: str | None = None
    date: str | None = None
    title: str | None = None
    executive_summary: str | None = None
    what_changed: str | None = None
    decisions_rationale: str | None = None
    risks_mitigations: str | None = None
    narrative_extended: str | None = None
    type: EntryType | str | None = None
    tags: list[str] | None = None
    author: Role | str | None = None
    status: EntryStatus | str | None = None
    supersedes_entry_id: str | None = None
    references: list[Reference] | None = None

    normalize_status = field_validator("status", mode="before")(_normalize_status)

    @field_validator("tags")
    @classmethod
    def unique_tags(cls, tags: list[str] | None) -> list[str] | None:
        return _dedupe_tags(tags) if tags is not None else None

    def provided(self) -> dict[str, object]:
        """Fields the caller actually set, excluding the id."""
        return self.model_dump(exclude_unset=True, exclude={"id"})


class EntryRevision(BaseModel):
    """A snapshot of an entry's content at one revision."""

    entry_id: str
    revision: int
    status: EntryStatus
    integrity_hash: str
    content: dict[str, object]
    created_at: datetime | None = None


class SupersedeResult(BaseModel):
    """The archived original and its replacement."""

    old: LedgerEntry
    new: LedgerEntry
