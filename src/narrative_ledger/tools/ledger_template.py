"""ledger_template MCP tool — pre-filled drafts per entry type."""

import logging
from typing import TYPE_CHECKING, Annotated

from fastmcp import FastMCP
from fastmcp.server.context import Context
from pydantic import Field

from narrative_ledger.models.entry import EntryType

if TYPE_CHECKING:
    from narrative_ledger.templates.engine import TemplateEngine

logger = logging.getLogger(__name__)


def render_template(templates: "TemplateEngine", entry_type: EntryType) -> str:
    """Render a type's skeleton as labelled sections ready to edit."""
    draft = templates.create_from_template(entry_type)
    return "\n".join(
        [
            f"Template: {entry_type.value}",
            f"title: {draft.title}",
            f"date: {draft.date}",
            f"tags: {', '.join(draft.tags or [])}",
            "executive_summary:",
            f"  {draft.executive_summary}",
            "what_changed:",
            f"  {draft.what_changed}",
            "decisions_rationale:",
            f"  {draft.decisions_rationale}",
            "risks_mitigations:",
            f"  {draft.risks_mitigations}",
        ]
    )


def register_ledger_template(mcp: FastMCP) -> None:
    """Register the ledger_template tool with the MCP server."""

    @mcp.tool()
    async def ledger_template(
        entry_type: Annotated[
            EntryType,
            Field(description="Decision, Incident, Milestone, Routine, Rollback, Flip"),
        ],
        ctx: Context | None = None,
    ) -> str:
        """Get the skeleton for an entry type: title prefix, suggested tags, example text."""
        if ctx is None:
            raise RuntimeError("Context not injected")

        templates: TemplateEngine = ctx.lifespan_context["templates"]
        return render_template(templates, entry_type)
