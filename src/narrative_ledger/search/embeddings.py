"""Pluggable text embedders.

``CharAccumulationEmbedder`` is the default: a deterministic, dependency-free
surrogate that folds character code points into a fixed number of buckets.
It is order- and length-sensitive, not semantic. ``OllamaEmbedder`` swaps in a
real embedding model without touching the similarity ranking.
"""

import logging
from typing import Protocol, runtime_checkable

import httpx

from narrative_ledger.config import get_embedding_model, get_ollama_timeout, get_ollama_url

logger = logging.getLogger(__name__)

EMBEDDING_DIM = 32
_CHAR_SCALE = 0.0001


@runtime_checkable
class TextEmbedder(Protocol):
    """Protocol for text embedding backends with graceful degradation."""

    @property
    def dimension(self) -> int:
        """Length of the vectors produced."""
        ...

    async def embed(self, text: str) -> list[float] | None:
        """Embed text. Returns None if the backend is unavailable."""
        ...

    async def close(self) -> None:
        """Release resources."""
        ...


def char_accumulation_vector(text: str, dim: int = EMBEDDING_DIM) -> list[float]:
    """Fold each character's scaled code point into bucket ``position % dim``."""
    vector = [0.0] * dim
    for i, char in enumerate(text):
        bucket = i % dim
        vector[bucket] = (vector[bucket] + ord(char) * _CHAR_SCALE) % 1
    return vector


class CharAccumulationEmbedder:
    """Deterministic placeholder embedder. Pure computation, never unavailable."""

    def __init__(self, dim: int = EMBEDDING_DIM):
        """Initialize with the vector length."""
        self._dim = dim

    @property
    def dimension(self) -> int:
        return self._dim

    async def embed(self, text: str) -> list[float] | None:
        return char_accumulation_vector(text, self._dim)

    async def close(self) -> None:
        pass


class OllamaEmbedder:
    """Generates embeddings via a local Ollama server."""

    def __init__(self, dim: int = 768, http_client: httpx.AsyncClient | None = None):
        """Initialize with the expected vector length and optional HTTP client."""
        self._dim = dim
        self._http = http_client
        self._available: bool | None = None

    @property
    def dimension(self) -> int:
        return self._dim

    async def is_available(self) -> bool:
        """Check if Ollama is reachable. Only caches success — retries on failure."""
        if self._available is True:
            return True
        try:
            client = self._get_client()
            resp = await client.get(f"{get_ollama_url()}/api/tags", timeout=get_ollama_timeout())
            resp.raise_for_status()
            self._available = True
        except httpx.HTTPError:
            logger.warning("Ollama not available — similarity lookups degraded")
            self._available = None
        return self._available is True

    async def embed(self, text: str) -> list[float] | None:
        """Generate an embedding vector for the given text. Returns None if unavailable."""
        if not await self.is_available():
            return None
        try:
            client = self._get_client()
            resp = await client.post(
                f"{get_ollama_url()}/api/embed",
                json={"model": get_embedding_model(), "input": text},
                timeout=get_ollama_timeout(),
            )
            resp.raise_for_status()
            data = resp.json()
            # Ollama /api/embed returns {"embeddings": [[...]]}
            result: list[float] = data["embeddings"][0]
            return result
        except (httpx.HTTPError, KeyError, IndexError, ValueError):
            logger.warning("Embedding generation failed", exc_info=True)
            self._available = None
            return None

    def _get_client(self) -> httpx.AsyncClient:
        if self._http is None:
            self._http = httpx.AsyncClient()
        return self._http

    async def close(self) -> None:
        """Close the HTTP client if open."""
        if self._http is not None:
            await self._http.aclose()
            self._http = None


def create_embedder(kind: str) -> TextEmbedder:
    """Create an embedder for the given backend name, defaulting to character accumulation."""
    if kind == "ollama":
        return OllamaEmbedder()
    if kind != "hash":
        logger.warning("Unknown embedder %r — using character accumulation", kind)
    return CharAccumulationEmbedder()
