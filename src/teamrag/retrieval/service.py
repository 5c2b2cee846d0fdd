"""Retrieval built on top of embedding stores."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import Protocol, Sequence

from teamrag.embeddings import EmbeddingStore
from teamrag.models import DocumentChunk


class RetrievalError(RuntimeError):
    """Raised when the vector store cannot answer a search or health check."""


@dataclass(frozen=True)
class RetrievalConfig:
    """Configuration for retrieval."""

    top_k: int = 6
    max_top_k: int = 50


class Retriever(Protocol):
    """Retrieve relevant chunks for a query string."""

    async def search(self, query: str, top_k: int) -> Sequence[DocumentChunk]:
        """Return up to ``top_k`` chunks ordered by descending score."""

    async def health_check(self) -> None:
        """Raise ``RetrievalError`` when the index is unreachable."""


class ChromaRetriever:
    """Retriever backed by a Chroma embedding store.

    The store client is synchronous, so calls run in a worker thread; cancelling
    the awaiting task abandons the thread's result rather than interrupting it.
    """

    def __init__(self, store: EmbeddingStore, config: RetrievalConfig | None = None) -> None:
        self._store = store
        self._config = config or RetrievalConfig()

    async def search(self, query: str, top_k: int | None = None) -> Sequence[DocumentChunk]:
        limit = max(1, min(top_k or self._config.top_k, self._config.max_top_k))
        try:
            items = await asyncio.to_thread(self._store.similarity_search, query, top_k=limit)
        except Exception as exc:
            raise RetrievalError(f"failed to search vector store: {exc}") from exc
        return sorted(items, key=lambda chunk: chunk.score or 0.0, reverse=True)

    async def health_check(self) -> None:
        try:
            await asyncio.to_thread(self._store.heartbeat)
        except Exception as exc:
            raise RetrievalError(f"vector store health check failed: {exc}") from exc
