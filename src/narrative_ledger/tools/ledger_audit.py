"""ledger_audit_export MCP tool — compliance export of the audit trail."""

import logging
from datetime import datetime
from typing import TYPE_CHECKING, Annotated, Literal

from fastmcp import FastMCP
from fastmcp.server.context import Context
from pydantic import Field

from narrative_ledger.models.audit import AuditAction, AuditQuery, Severity

if TYPE_CHECKING:
    from narrative_ledger.store.ledger_store import LedgerStore

logger = logging.getLogger(__name__)


def export_audit(
    store: "LedgerStore", fmt: Literal["json", "csv"], query: AuditQuery | None = None
) -> str:
    try:
        payload = store.export_audit_log(fmt, query)
    except ValueError as e:
        return f"Error: {e}"
    return payload.decode("utf-8")


def register_ledger_audit(mcp: FastMCP) -> None:
    """Register the ledger_audit_export tool with the MCP server."""

    @mcp.tool()
    async def ledger_audit_export(
        fmt: Annotated[Literal["json", "csv"], Field(description="Export format")] = "json",
        entry_id: Annotated[str | None, Field(description="Only records for this entry")] = None,
        action: Annotated[
            AuditAction | None,
            Field(description="create, update, delete, publish or archive"),
        ] = None,
        severity: Annotated[
            Severity | None, Field(description="info, warning or critical")
        ] = None,
        author_role: Annotated[str | None, Field(description="Only this role's actions")] = None,
        start: Annotated[datetime | None, Field(description="Earliest timestamp (ISO)")] = None,
        end: Annotated[datetime | None, Field(description="Latest timestamp (ISO)")] = None,
        limit: Annotated[int | None, Field(description="Newest N records", ge=1)] = None,
        ctx: Context | None = None,
    ) -> str:
        """Export audit records, oldest first, as JSON or CSV."""
        if ctx is None:
            raise RuntimeError("Context not injected")

        store: LedgerStore = ctx.lifespan_context["store"]
        query = AuditQuery(
            entry_id=entry_id,
            action=action,
            severity=severity,
            author_role=author_role,
            start=start,
            end=end,
            limit=limit,
        )
        return export_audit(store, fmt, query)
