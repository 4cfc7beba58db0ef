"""Semantic store used for retrieval-augmented generation.

Wraps any LangChain ``VectorStore`` behind one small async contract::

    chunks = await store.similarity_search("refund policy", k=3, filter={"category": "billing"})

The default backing store is LangChain's ``InMemoryVectorStore``, seeded at
start-up from a markdown knowledge base that is split into one document per
``###`` section.  Query results are cached for a few minutes since the same
question tends to be asked repeatedly within a conversation.
"""

from __future__ import annotations

import json
import logging
import re
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from langchain_core.documents import Document
from langchain_core.embeddings import DeterministicFakeEmbedding, Embeddings
from langchain_core.vectorstores import InMemoryVectorStore, VectorStore

from src.config import EMBEDDING_MODEL, EMBEDDINGS_PROVIDER, OPENAI_API_KEY
from src.services.cache import TTLCache
from src.services.metrics import metrics

logger = logging.getLogger(__name__)

SEARCH_CACHE_TTL_SECONDS = 5 * 60
SEARCH_CACHE_MAX_BYTES = 5 * 1024 * 1024


class VectorStoreError(Exception):
    """Raised when the underlying vector store cannot be queried or written."""


@dataclass(frozen=True)
class ContextChunk:
    content: str
    metadata: dict[str, Any] = field(default_factory=dict)
    score: float | None = None


class SemanticStore:
    """Async similarity search over a LangChain vector store."""

    def __init__(
        self,
        vector_store: VectorStore,
        *,
        cache: TTLCache | None = None,
    ) -> None:
        self._store = vector_store
        self._cache = cache

    # ── Queries ──────────────────────────────────────────────────────

    async def similarity_search(
        self,
        query: str,
        k: int = 3,
        filter: dict[str, Any] | None = None,
    ) -> list[ContextChunk]:
        """Return up to *k* chunks most similar to *query*.

        Raises :class:`VectorStoreError` on any backend failure; callers
        decide whether that is fatal.
        """
        cache_key = self._cache_key(query, k, filter)
        if self._cache is not None:
            cached = self._cache.get(cache_key)
            if cached is not None:
                logger.debug("Semantic search cache hit (k=%d)", k)
                return [ContextChunk(**c) for c in cached]

        t0 = time.perf_counter()
        try:
            results = await self._store.asimilarity_search_with_score(
                query, k=k, filter=self._filter_arg(filter),
            )
        except Exception as exc:
            elapsed = (time.perf_counter() - t0) * 1000
            metrics.record_failure(
                "vector_store", "similarity_search",
                error_type=type(exc).__name__, latency_ms=elapsed,
            )
            raise VectorStoreError(f"Similarity search failed: {exc}") from exc

        elapsed = (time.perf_counter() - t0) * 1000
        metrics.record_success("vector_store", "similarity_search", latency_ms=elapsed)

        chunks = [
            ContextChunk(content=doc.page_content, metadata=dict(doc.metadata), score=float(score))
            for doc, score in results
        ]
        if self._cache is not None:
            self._cache.put(
                cache_key,
                [{"content": c.content, "metadata": c.metadata, "score": c.score} for c in chunks],
            )
        return chunks

    # ── Writes ───────────────────────────────────────────────────────

    async def add_documents(self, docs: list[Document]) -> int:
        """Index *docs* and drop cached query results.  Returns count added."""
        if not docs:
            logger.warning("No documents to add to vector store")
            return 0
        try:
            await self._store.aadd_documents(docs)
        except Exception as exc:
            raise VectorStoreError(f"Failed to add documents: {exc}") from exc
        if self._cache is not None:
            self._cache.clear()
        logger.info("Added %d documents to vector store", len(docs))
        return len(docs)

    async def ingest_markdown(self, path: str | Path) -> int:
        """Load a markdown knowledge base and index one document per section."""
        kb_path = Path(path)
        try:
            content = kb_path.read_text(encoding="utf-8")
        except FileNotFoundError:
            logger.warning("Knowledge base not found at %s, skipping ingestion", kb_path)
            return 0

        docs = [
            Document(
                page_content=f"{section['heading']}\n{section['body']}",
                metadata={"title": section["heading"], "source": kb_path.name},
            )
            for section in split_into_sections(content)
        ]
        return await self.add_documents(docs)

    # ── Internal ─────────────────────────────────────────────────────

    def _filter_arg(self, filter: dict[str, Any] | None) -> Any:
        """Translate a metadata filter into what the backing store expects.

        ``InMemoryVectorStore`` filters with a ``Document -> bool`` predicate;
        other stores take the metadata dict as-is.
        """
        if not filter:
            return None
        if isinstance(self._store, InMemoryVectorStore):
            return lambda doc: all(doc.metadata.get(k) == v for k, v in filter.items())
        return filter

    @staticmethod
    def _cache_key(query: str, k: int, filter: dict[str, Any] | None) -> str:
        return f"search:{k}:{json.dumps(filter or {}, sort_keys=True, default=str)}:{query}"


# ── Knowledge base parsing ──────────────────────────────────────────


def split_into_sections(content: str) -> list[dict[str, str]]:
    """Split a markdown document into ``###`` sections.

    Returns a list of dicts like:
      {"heading": "How do I cancel?", "body": "Cancellations are free..."}
    """
    sections: list[dict[str, str]] = []
    parts = re.split(r"###\s+(.+?)(?=\n)", content)

    # parts[0] is the preamble, then alternating heading/body pairs
    for i in range(1, len(parts), 2):
        heading = parts[i].strip()
        body = parts[i + 1].strip() if i + 1 < len(parts) else ""
        body = re.sub(r"\n---\s*$", "", body).strip()
        sections.append({"heading": heading, "body": body})

    return sections


# ── Builders ─────────────────────────────────────────────────────────


def build_embeddings(provider: str = EMBEDDINGS_PROVIDER) -> Embeddings:
    """Create the embeddings client selected by ``EMBEDDINGS_PROVIDER``."""
    if provider == "fake":
        return DeterministicFakeEmbedding(size=256)
    if provider == "openai":
        from langchain_openai import OpenAIEmbeddings  # noqa: PLC0415

        if not OPENAI_API_KEY:
            raise OSError("Missing required configuration: OPENAI_API_KEY (EMBEDDINGS_PROVIDER=openai).")
        return OpenAIEmbeddings(model=EMBEDDING_MODEL, api_key=OPENAI_API_KEY)
    raise ValueError(f"Unknown EMBEDDINGS_PROVIDER: {provider}")


def build_semantic_store(embeddings: Embeddings | None = None) -> SemanticStore:
    vector_store = InMemoryVectorStore(embedding=embeddings or build_embeddings())
    cache = TTLCache(max_bytes=SEARCH_CACHE_MAX_BYTES, ttl_seconds=SEARCH_CACHE_TTL_SECONDS)
    return SemanticStore(vector_store, cache=cache)
