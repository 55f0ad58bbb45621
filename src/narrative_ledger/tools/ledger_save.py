"""ledger_save MCP tool — create and update ledger entries."""

import logging
from typing import TYPE_CHECKING, Annotated

from fastmcp import FastMCP
from fastmcp.server.context import Context
from pydantic import Field

from narrative_ledger.audit.sensitive import scan_for_sensitive_content
from narrative_ledger.errors import LedgerError, ValidationError
from narrative_ledger.models.entry import EntryDraft, Reference
from narrative_ledger.tools.formatters import format_save_result, format_validation_error

if TYPE_CHECKING:
    from narrative_ledger.store.ledger_store import LedgerStore

logger = logging.getLogger(__name__)


async def save_entry(store: "LedgerStore", draft: EntryDraft, role: str | None = None) -> str:
    """Save a draft and format the outcome, errors included."""
    is_update = draft.id is not None and await store.get(draft.id) is not None
    try:
        entry = await store.save(draft, role=role)
    except ValidationError as e:
        return format_validation_error(e)
    except LedgerError as e:
        return f"Error: {e}"
    warnings = store.templates.validate(entry).warnings
    return format_save_result(
        entry,
        is_update,
        warnings,
        findings=scan_for_sensitive_content(entry),
        quick_write=store.templates.check_quick_write_criteria(entry),
    )


def register_ledger_save(mcp: FastMCP) -> None:
    """Register the ledger_save tool with the MCP server."""

    @mcp.tool()
    async def ledger_save(
        title: Annotated[
            str | None, Field(description="Entry title, e.g. 'Deploy • cache fix'")
        ] = None,
        executive_summary: Annotated[
            str | None, Field(description="One or two sentences on what happened")
        ] = None,
        what_changed: Annotated[str | None, Field(description="Concrete changes made")] = None,
        decisions_rationale: Annotated[
            str | None, Field(description="Decisions taken and why")
        ] = None,
        risks_mitigations: Annotated[
            str | None, Field(description="Known risks and how they are mitigated")
        ] = None,
        entry_type: Annotated[
            str | None,
            Field(description="Decision, Incident, Milestone, Routine, Rollback, Flip"),
        ] = None,
        author: Annotated[str | None, Field(description="lux, mini-lux or scribe")] = None,
        date: Annotated[
            str | None,
            Field(description="When the event happened, UTC 'YYYY-MM-DD HH:MM:SS'"),
        ] = None,
        tags: Annotated[list[str] | None, Field(description="Freeform tags")] = None,
        references: Annotated[
            list[Reference] | None,
            Field(description="Typed links: commit-hash, dv-job, hud-snapshot, external, ..."),
        ] = None,
        narrative_extended: Annotated[
            str | None, Field(description="Optional long-form narrative")
        ] = None,
        status: Annotated[
            str | None, Field(description="draft (default) or published")
        ] = None,
        entry_id: Annotated[
            str | None,
            Field(description="ID of an existing entry to update; omit to create"),
        ] = None,
        role: Annotated[
            str | None, Field(description="Acting role; defaults to the entry author")
        ] = None,
        ctx: Context | None = None,
    ) -> str:
        """Create a ledger entry, or update one by passing entry_id.

        Updates merge only the fields you pass onto the stored entry and bump
        its revision. Every save is validated against the minimum template
        structure; all field errors are reported together.
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
            "type": entry_type,
            "author": author,
            "date": date,
            "tags": tags,
            "references": references,
            "narrative_extended": narrative_extended,
            "status": status,
        }
        # Only pass what the caller set so updates merge instead of clearing fields
        draft = EntryDraft(id=entry_id, **{k: v for k, v in values.items() if v is not None})
        return await save_entry(store, draft, role)
