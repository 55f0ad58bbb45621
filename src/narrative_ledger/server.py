"""FastMCP server with lifespan management and tool registration."""

import logging
import sys
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from typing import Any

from fastmcp import FastMCP

from narrative_ledger.audit.log import AuditLog
from narrative_ledger.config import (
    get_audit_capacity,
    get_db_path,
    get_embedder_kind,
    get_log_level,
    get_persist_retries,
    get_search_threshold_ms,
    upsert_unknown_ids,
)
from narrative_ledger.db.connection import create_connection
from narrative_ledger.db.retry import RetryConfig
from narrative_ledger.ingest.pipeline import IngestionConfig, IngestionPipeline
from narrative_ledger.monitor.performance import PerformanceMonitor
from narrative_ledger.search.embeddings import OllamaEmbedder, create_embedder
from narrative_ledger.store.ledger_store import LedgerStore
from narrative_ledger.templates.engine import TemplateEngine
from narrative_ledger.tools.ledger_audit import register_ledger_audit
from narrative_ledger.tools.ledger_get import register_ledger_get
from narrative_ledger.tools.ledger_ingest import register_ledger_ingest
from narrative_ledger.tools.ledger_lifecycle import register_ledger_lifecycle
from narrative_ledger.tools.ledger_save import register_ledger_save
from narrative_ledger.tools.ledger_search import register_ledger_search
from narrative_ledger.tools.ledger_template import register_ledger_template


@asynccontextmanager
async def lifespan(server: FastMCP) -> AsyncIterator[dict[str, Any]]:
    """Construct every ledger component and tear them down in reverse order."""
    # Configure logging to stderr (stdout is MCP stdio transport)
    logging.basicConfig(
        level=getattr(logging, get_log_level()),
        format="%(asctime)s %(name)s %(levelname)s %(message)s",
        stream=sys.stderr,
    )
    logger = logging.getLogger(__name__)

    db_path = get_db_path()
    logger.info("Opening database at %s", db_path)
    db = await create_connection(db_path)

    audit = AuditLog(db, capacity=get_audit_capacity())
    templates = TemplateEngine()
    embedder = create_embedder(get_embedder_kind())
    monitor = PerformanceMonitor({"search": get_search_threshold_ms()})
    store = LedgerStore(
        db,
        templates,
        audit,
        embedder,
        monitor,
        upsert_unknown_ids=upsert_unknown_ids(),
        retry=RetryConfig(max_attempts=get_persist_retries()),
    )
    pipeline = IngestionPipeline(store, IngestionConfig.from_env(), monitor)

    if isinstance(embedder, OllamaEmbedder):
        if await embedder.is_available():
            logger.info("Ollama available — using model embeddings")
        else:
            logger.warning("Ollama unavailable — similarity lookups degraded")

    await store.start()
    try:
        yield {
            "db": db,
            "audit": audit,
            "templates": templates,
            "embedder": embedder,
            "monitor": monitor,
            "store": store,
            "pipeline": pipeline,
        }
    finally:
        await store.close()
        await embedder.close()
        await db.close()
        logger.info("Database connection closed")


_INSTRUCTIONS = """\
The narrative ledger records the story of a system's operational history: \
deploys, incidents, decisions, rollbacks, feature-flag flips and milestones, \
each as a short structured narrative.

WRITING:
- ledger_template: Get the skeleton for an entry type before writing.
- ledger_save: Create a draft, or update one with entry_id. Every entry needs \
a title, date (UTC 'YYYY-MM-DD HH:MM:SS'), executive summary, what changed, \
decisions & rationale, and risks & mitigations.
- ledger_publish: Promote a draft. Only lux and mini-lux may publish.
- ledger_supersede: Correct a published story by replacing it; the original \
is archived, never lost.
- ledger_delete: Hard delete, lux only. Prefer supersede.

READING:
- ledger_list / ledger_search: Newest first; archived entries are hidden.
- ledger_get: Full entry by ID, archived included.
- ledger_similar: Related entries; check before writing to avoid duplicates.
- ledger_audit_export: Compliance export of every mutation (JSON or CSV).

AUTOMATION:
- ledger_ingest: Turn a merged PR, closed issue or published release \
webhook payload into a draft entry.
"""


def create_server() -> FastMCP:
    """Create and configure the MCP server with all tools."""
    mcp = FastMCP(
        "narrative-ledger",
        instructions=_INSTRUCTIONS,
        lifespan=lifespan,
    )

    register_ledger_save(mcp)
    register_ledger_get(mcp)
    register_ledger_search(mcp)
    register_ledger_lifecycle(mcp)
    register_ledger_audit(mcp)
    register_ledger_template(mcp)
    register_ledger_ingest(mcp)

    return mcp
