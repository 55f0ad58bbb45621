"""ledger_get MCP tool — full entry retrieval by ID."""

import logging
from typing import TYPE_CHECKING, Annotated

from fastmcp import FastMCP
from fastmcp.server.context import Context
from pydantic import Field

from narrative_ledger.audit.sensitive import scan_for_sensitive_content
from narrative_ledger.tools.formatters import format_entry_full, format_result_list

if TYPE_CHECKING:
    from narrative_ledger.store.ledger_store import LedgerStore

logger = logging.getLogger(__name__)

_MAX_IDS = 20


async def get_entries(store: "LedgerStore", ids: list[str], with_history: bool = False) -> str:
    """Format full entries, marking unknown ids as not found."""
    if len(ids) > _MAX_IDS:
        return f"Error: Maximum {_MAX_IDS} IDs per request (got {len(ids)})."

    formatted: list[str] = []
    for eid in ids:
        entry = await store.get(eid)
        if entry is None:
            formatted.append(f"[{eid}] not found")
            continue
        text = format_entry_full(entry, scan_for_sensitive_content(entry))
        if with_history:
            revisions = await store.revisions(eid)
            history = ", ".join(f"r{r.revision} {r.status.value}" for r in revisions)
            text += f"\nHistory: {history or 'none'}"
        formatted.append(text)
    return format_result_list(formatted)


def register_ledger_get(mcp: FastMCP) -> None:
    """Register the ledger_get tool with the MCP server."""

    @mcp.tool()
    async def ledger_get(
        entry_id: Annotated[
            str | list[str],
            Field(description="Single entry ID or list of IDs (max 20)"),
        ],
        with_history: Annotated[
            bool, Field(description="Include the stored revision history")
        ] = False,
        ctx: Context | None = None,
    ) -> str:
        """Retrieve full details for one or more ledger entries by ID.

        Archived entries are still retrievable here; they are only hidden from
        listings and search.
        """
        if ctx is None:
            raise RuntimeError("Context not injected")

        store: LedgerStore = ctx.lifespan_context["store"]
        ids = [entry_id] if isinstance(entry_id, str) else list(entry_id)
        return await get_entries(store, ids, with_history)
