"""ledger_publish, ledger_supersede and ledger_delete MCP tools — lifecycle transitions."""

import logging
from typing import TYPE_CHECKING, Annotated

from fastmcp import FastMCP
from fastmcp.server.context import Context
from pydantic import Field

from narrative_ledger.errors import LedgerError, ValidationError
from narrative_ledger.models.entry import EntryDraft
from narrative_ledger.tools.formatters import format_entry_compact, format_validation_error

if TYPE_CHECKING:
    from narrative_ledger.store.ledger_store import LedgerStore

logger = logging.getLogger(__name__)


async def publish_entry(store: "LedgerStore", entry_id: str, role: str) -> str:
    try:
        entry = await store.publish(entry_id, role)
    except ValidationError as e:
        return format_validation_error(e)
    except LedgerError as e:
        return f"Error: {e}"
    return f"Published {entry.id} (r{entry.revision})\n{format_entry_compact(entry)}"


async def supersede_entry(
    store: "LedgerStore", old_id: str, draft: EntryDraft, role: str
) -> str:
    try:
        result = await store.supersede(old_id, draft, role)
    except ValidationError as e:
        return format_validation_error(e)
    except LedgerError as e:
        return f"Error: {e}"
    return (
        f"Superseded {result.old.id} with {result.new.id}\n"
        f"{format_entry_compact(result.new)}\n"
        f"  Archived: {result.old.title}"
    )


async def delete_entry(store: "LedgerStore", entry_id: str, role: str) -> str:
    try:
        await store.delete(entry_id, role)
    except LedgerError as e:
        return f"Error: {e}"
    return f"Deleted {entry_id}. A snapshot is kept in the audit log."


def register_ledger_lifecycle(mcp: FastMCP) -> None:
    """Register the lifecycle tools with the MCP server."""

    @mcp.tool()
    async def ledger_publish(
        entry_id: Annotated[str, Field(description="ID of the draft to publish")],
        role: Annotated[str, Field(description="Acting role: lux or mini-lux")],
        ctx: Context | None = None,
    ) -> str:
        """Promote a draft to published. Only lux and mini-lux may publish."""
        if ctx is None:
            raise RuntimeError("Context not injected")

        store: LedgerStore = ctx.lifespan_context["store"]
        return await publish_entry(store, entry_id, role)

    @mcp.tool()
    async def ledger_supersede(
        old_entry_id: Annotated[str, Field(description="ID of the entry being replaced")],
        role: Annotated[str, Field(description="Acting role: lux, mini-lux or scribe")],
        title: Annotated[str | None, Field(description="Replacement title")] = None,
        executive_summary: Annotated[
            str | None, Field(description="Replacement executive summary")
        ] = None,
        what_changed: Annotated[str | None, Field(description="Replacement changes")] = None,
        decisions_rationale: Annotated[
            str | None, Field(description="Replacement rationale")
        ] = None,
        risks_mitigations: Annotated[
            str | None, Field(description="Replacement risks and mitigations")
        ] = None,
        tags: Annotated[list[str] | None, Field(description="Replacement tags")] = None,
        status: Annotated[
            str | None, Field(description="draft (default) or published")
        ] = None,
        ctx: Context | None = None,
    ) -> str:
        """Replace an entry with a corrected one and archive the original, atomically.

        Fields you omit are carried over from the original. The original stays
        retrievable by ID but drops out of listings and search.
        """
        if ctx is None:
            raise RuntimeError("Context not injected")

        store: LedgerStore = ctx.lifespan_context["store"]
        values = {
            "title": title,
            "executive_summary": executive_summary,
            "what_changed": what_changed,
            "decisions_rationale": decisions_rationale,
            "risks_mitigations": risks_mitigations,
            "tags": tags,
            "status": status,
        }
        draft = EntryDraft(**{k: v for k, v in values.items() if v is not None})
        return await supersede_entry(store, old_entry_id, draft, role)

    @mcp.tool()
    async def ledger_delete(
        entry_id: Annotated[str, Field(description="ID of the entry to delete")],
        role: Annotated[str, Field(description="Acting role; only lux may delete")],
        ctx: Context | None = None,
    ) -> str:
        """Permanently delete an entry. Prefer ledger_supersede for corrections."""
        if ctx is None:
            raise RuntimeError("Context not injected")

        store: LedgerStore = ctx.lifespan_context["store"]
        return await delete_entry(store, entry_id, role)
