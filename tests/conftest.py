"""Shared test fixtures."""

import pytest_asyncio

from narrative_ledger.audit.log import AuditLog
from narrative_ledger.db.connection import create_connection
from narrative_ledger.db.retry import RetryConfig
from narrative_ledger.ingest.pipeline import IngestionConfig, IngestionPipeline
from narrative_ledger.models.entry import EntryDraft, Reference
from narrative_ledger.monitor.performance import PerformanceMonitor
from narrative_ledger.search.embeddings import CharAccumulationEmbedder
from narrative_ledger.store.ledger_store import LedgerStore
from narrative_ledger.templates.engine import TemplateEngine

# No real sleeping between persistence retries
FAST_RETRY = RetryConfig(max_attempts=3, backoff_factor=0.0)


def make_draft(**overrides) -> EntryDraft:
    """A fully valid draft; override any field."""
    values = {
        "title": "Deploy • cache fix",
        "date": "2025-01-01 00:00:00",
        "executive_summary": "Fixed the TTL bug that evicted hot cache keys early.",
        "what_changed": "Cache TTL now read from config instead of a constant.",
        "decisions_rationale": "Config-driven TTL lets ops tune without a deploy.",
        "risks_mitigations": "Risk: wrong TTL value. Mitigation: bounds check on load.",
        "type": "Incident",
        "author": "mini-lux",
        "tags": ["cache", "deploy"],
        "references": [
            Reference(id="a1b2c3d", type="commit-hash", description="Fix commit"),
        ],
    }
    values.update(overrides)
    return EntryDraft(**values)


class FakeEmbedder:
    """Deterministic embedder that can be switched off."""

    def __init__(self, dim: int = 32):
        self.dim = dim
        self.available = True
        self._inner = CharAccumulationEmbedder(dim)

    @property
    def dimension(self) -> int:
        return self.dim

    async def embed(self, text: str) -> list[float] | None:
        if not self.available:
            return None
        return await self._inner.embed(text)

    async def close(self) -> None:
        pass


@pytest_asyncio.fixture
async def db():
    """In-memory database with full schema."""
    conn = await create_connection(":memory:")
    yield conn
    await conn.close()


@pytest_asyncio.fixture
async def audit(db):
    """Audit log persisted to the in-memory DB."""
    return AuditLog(db, capacity=100)


@pytest_asyncio.fixture
async def templates():
    return TemplateEngine()


@pytest_asyncio.fixture
async def monitor():
    return PerformanceMonitor()


@pytest_asyncio.fixture
async def embedder():
    return FakeEmbedder()


@pytest_asyncio.fixture
async def ledger(db, templates, audit, embedder, monitor):
    """Started ledger store backed by the in-memory DB."""
    store = LedgerStore(db, templates, audit, embedder, monitor, retry=FAST_RETRY)
    await store.start()
    yield store
    await store.close()


@pytest_asyncio.fixture
async def pipeline(ledger, monitor):
    """Ingestion pipeline with default (draft, mini-lux) settings."""
    return IngestionPipeline(ledger, IngestionConfig(), monitor)
