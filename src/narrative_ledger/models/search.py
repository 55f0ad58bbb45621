"""Listing filters and similarity results."""

from pydantic import BaseModel, Field

from narrative_ledger.models.entry import EntryStatus, EntryType, LedgerEntry, Role


class EntryFilter(BaseModel):
    """Filters for listing entries. Archived entries are excluded unless asked for."""

    type: EntryType | None = None
    status: EntryStatus | None = None
    author: Role | None = None
    tags: list[str] | None = None
    date_from: str | None = None
    date_to: str | None = None
    include_archived: bool = False
    limit: int | None = Field(default=None, ge=1)


class SimilarEntry(BaseModel):
    """A single similarity result."""

    entry: LedgerEntry
    score: float
