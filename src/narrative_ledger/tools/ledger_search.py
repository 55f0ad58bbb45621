"""ledger_list, ledger_search and ledger_similar MCP tools — read paths."""

import logging
from typing import TYPE_CHECKING, Annotated

from fastmcp import FastMCP
from fastmcp.server.context import Context
from pydantic import Field

from narrative_ledger.errors import LedgerError
from narrative_ledger.models.entry import EntryStatus, EntryType, Role
from narrative_ledger.models.search import EntryFilter
from narrative_ledger.tools.formatters import (
    format_entry_compact,
    format_result_list,
    format_similar,
)

if TYPE_CHECKING:
    from narrative_ledger.store.ledger_store import LedgerStore

logger = logging.getLogger(__name__)


async def list_entries(store: "LedgerStore", entry_filter: EntryFilter) -> str:
    entries = await store.list(entry_filter)
    return format_result_list([format_entry_compact(e) for e in entries])


async def search_entries(store: "LedgerStore", query: str, limit: int = 20) -> str:
    entries = await store.search(query)
    header = f"Matches for {query!r}" if query.strip() else None
    return format_result_list([format_entry_compact(e) for e in entries[:limit]], header)


async def similar_entries(store: "LedgerStore", entry_id: str, top_k: int = 5) -> str:
    try:
        results = await store.find_similar(entry_id, top_k)
    except LedgerError as e:
        return f"Error: {e}"
    return format_result_list([format_similar(r) for r in results], f"Similar to {entry_id}")


def register_ledger_search(mcp: FastMCP) -> None:
    """Register the read-path tools with the MCP server."""

    @mcp.tool()
    async def ledger_list(
        entry_type: Annotated[EntryType | None, Field(description="Filter by entry type")] = None,
        status: Annotated[EntryStatus | None, Field(description="Filter by status")] = None,
        author: Annotated[Role | None, Field(description="Filter by author role")] = None,
        tags: Annotated[list[str] | None, Field(description="Entries must carry all tags")] = None,
        date_from: Annotated[
            str | None, Field(description="Earliest event date, 'YYYY-MM-DD HH:MM:SS'")
        ] = None,
        date_to: Annotated[
            str | None, Field(description="Latest event date, 'YYYY-MM-DD HH:MM:SS'")
        ] = None,
        include_archived: Annotated[
            bool, Field(description="Include superseded entries")
        ] = False,
        limit: Annotated[int, Field(description="Max results", ge=1, le=200)] = 50,
        ctx: Context | None = None,
    ) -> str:
        """List entries newest event first. Archived entries are hidden by default."""
        if ctx is None:
            raise RuntimeError("Context not injected")

        store: LedgerStore = ctx.lifespan_context["store"]
        entry_filter = EntryFilter(
            type=entry_type,
            status=status,
            author=author,
            tags=tags,
            date_from=date_from,
            date_to=date_to,
            include_archived=include_archived,
            limit=limit,
        )
        return await list_entries(store, entry_filter)

    @mcp.tool()
    async def ledger_search(
        query: Annotated[
            str, Field(description="Case-insensitive text matched against title, summary, tags")
        ],
        limit: Annotated[int, Field(description="Max results", ge=1, le=200)] = 20,
        ctx: Context | None = None,
    ) -> str:
        """Substring search over titles, executive summaries and tags.

        An empty query returns every non-archived entry, newest first.
        """
        if ctx is None:
            raise RuntimeError("Context not injected")

        store: LedgerStore = ctx.lifespan_context["store"]
        return await search_entries(store, query, limit)

    @mcp.tool()
    async def ledger_similar(
        entry_id: Annotated[str, Field(description="Entry to compare against")],
        top_k: Annotated[int, Field(description="Max results", ge=1, le=50)] = 5,
        ctx: Context | None = None,
    ) -> str:
        """Find the entries most similar to a given entry, by embedding cosine similarity.

        Use before writing to check whether a related story already exists.
        """
        if ctx is None:
            raise RuntimeError("Context not injected")

        store: LedgerStore = ctx.lifespan_context["store"]
        return await similar_entries(store, entry_id, top_k)
