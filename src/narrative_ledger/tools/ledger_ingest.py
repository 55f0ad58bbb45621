"""ledger_ingest MCP tool — turn repository webhook payloads into entries."""

import logging
from typing import TYPE_CHECKING, Annotated, Any, Literal

from fastmcp import FastMCP
from fastmcp.server.context import Context
from pydantic import Field

from narrative_ledger.errors import IngestionSkipped, LedgerError
from narrative_ledger.tools.formatters import format_entry_compact

if TYPE_CHECKING:
    from narrative_ledger.ingest.pipeline import IngestionPipeline

logger = logging.getLogger(__name__)


async def ingest_event(pipeline: "IngestionPipeline", kind: str, payload: dict[str, Any]) -> str:
    try:
        entry = await pipeline.ingest(kind, payload)
    except IngestionSkipped as e:
        logger.info("Skipped %s event: %s", kind, e.reason)
        return f"Skipped: {e.reason}"
    except LedgerError as e:
        return f"Error: {e}"
    return f"Created {entry.id} (r{entry.revision})\n{format_entry_compact(entry)}"


def register_ledger_ingest(mcp: FastMCP) -> None:
    """Register the ledger_ingest tool with the MCP server."""

    @mcp.tool()
    async def ledger_ingest(
        kind: Annotated[
            Literal["pull_request", "issue", "release"],
            Field(description="Event shape of the payload"),
        ],
        payload: Annotated[
            dict[str, Any],
            Field(description="Webhook body, e.g. {'action': 'closed', 'pull_request': {...}}"),
        ],
        ctx: Context | None = None,
    ) -> str:
        """Synthesize an entry from a merged PR, closed issue or published release.

        Events that do not qualify (unmerged PR, non-closing action, malformed
        payload) are skipped without creating anything.
        """
        if ctx is None:
            raise RuntimeError("Context not injected")

        pipeline: IngestionPipeline = ctx.lifespan_context["pipeline"]
        return await ingest_event(pipeline, kind, payload)
