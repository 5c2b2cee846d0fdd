"""Embedding backends for TeamRAG."""

from __future__ import annotations

import hashlib
import logging
import math
from dataclasses import dataclass
from typing import List, Protocol, Sequence, Tuple

import httpx

from teamrag.models import DocumentChunk

LOGGER = logging.getLogger(__name__)


class EmbeddingError(RuntimeError):
    """Raised when an embedding provider fails or is unreachable."""


@dataclass(frozen=True)
class EmbeddingConfig:
    """Configuration for embedding backends."""

    provider: str = "hash"
    model: str = "nomic-embed-text"
    dim: int = 768
    base_url: str = "http://localhost:11434"
    timeout_seconds: float = 60.0
    device: str | None = None
    normalize: bool = True


@dataclass(frozen=True)
class Embedding:
    """Vector representation of a document chunk."""

    chunk: DocumentChunk
    vector: Tuple[float, ...]


class EmbeddingBackend(Protocol):
    """Protocol describing embedding behaviour."""

    def embed_chunks(self, chunks: Sequence[DocumentChunk]) -> Sequence[Embedding]:
        """Return embeddings for the provided chunks."""

    def embed_query(self, query: str) -> Tuple[float, ...]:
        """Return embedding vector for a query string."""

    def health_check(self) -> None:
        """Raise ``EmbeddingError`` when the provider cannot serve requests."""


def _normalize(vector: Sequence[float]) -> Tuple[float, ...]:
    norm = math.sqrt(sum(value * value for value in vector)) or 1.0
    return tuple(value / norm for value in vector)


class HashEmbeddingBackend:
    """Deterministic lightweight embedding used for tests and offline runs."""

    def __init__(self, config: EmbeddingConfig | None = None) -> None:
        self._config = config or EmbeddingConfig()

    def _hash_to_vector(self, text: str) -> Tuple[float, ...]:
        digest = hashlib.sha256(text.encode("utf-8")).digest()
        repeat = (self._config.dim + len(digest) - 1) // len(digest)
        raw = (digest * repeat)[: self._config.dim]
        vector = [byte / 255.0 for byte in raw]
        if self._config.normalize:
            return _normalize(vector)
        return tuple(vector)

    def embed_chunks(self, chunks: Sequence[DocumentChunk]) -> Sequence[Embedding]:
        return [Embedding(chunk=chunk, vector=self._hash_to_vector(chunk.content)) for chunk in chunks]

    def embed_query(self, query: str) -> Tuple[float, ...]:
        return self._hash_to_vector(query)

    def health_check(self) -> None:
        return None


class HuggingFaceEmbeddingBackend:
    """Sentence-embedding models loaded through LangChain's HuggingFace wrapper."""

    def __init__(self, config: EmbeddingConfig | None = None) -> None:
        from langchain_community.embeddings import HuggingFaceEmbeddings

        self._config = config or EmbeddingConfig(model="BAAI/bge-small-en-v1.5", dim=384)
        model_kwargs = {"device": self._config.device} if self._config.device else {}
        self._client = HuggingFaceEmbeddings(
            model_name=self._config.model,
            model_kwargs=model_kwargs,
            encode_kwargs={"normalize_embeddings": self._config.normalize},
        )
        LOGGER.info("Loaded embedding model %s", self._config.model)

    def embed_chunks(self, chunks: Sequence[DocumentChunk]) -> Sequence[Embedding]:
        if not chunks:
            return []
        vectors = self._client.embed_documents([chunk.content for chunk in chunks])
        if len(vectors) != len(chunks):
            LOGGER.error("Embedding backend returned %d vectors for %d chunks", len(vectors), len(chunks))
            raise EmbeddingError("Mismatch between number of chunks and embedding vectors")
        if vectors and len(vectors[0]) != self._config.dim:
            LOGGER.warning(
                "Embedding dim mismatch: configured=%d, actual=%d",
                self._config.dim,
                len(vectors[0]),
            )
        return [Embedding(chunk=chunk, vector=tuple(vector)) for chunk, vector in zip(chunks, vectors)]

    def embed_query(self, query: str) -> Tuple[float, ...]:
        return tuple(self._client.embed_query(query))

    def health_check(self) -> None:
        return None


class OllamaEmbeddingBackend:
    """Embeddings served by an Ollama instance (``/api/embeddings``)."""

    def __init__(self, config: EmbeddingConfig | None = None, *, client: httpx.Client | None = None) -> None:
        self._config = config or EmbeddingConfig(provider="ollama")
        self._client = client or httpx.Client(
            base_url=self._config.base_url.rstrip("/"),
            timeout=self._config.timeout_seconds,
        )

    def embed_chunks(self, chunks: Sequence[DocumentChunk]) -> Sequence[Embedding]:
        return [Embedding(chunk=chunk, vector=self._embed(chunk.content)) for chunk in chunks]

    def embed_query(self, query: str) -> Tuple[float, ...]:
        return self._embed(query)

    def health_check(self) -> None:
        try:
            response = self._client.get("/api/tags")
            response.raise_for_status()
        except httpx.HTTPError as exc:
            raise EmbeddingError(f"ollama embedding service unreachable: {exc}") from exc

    def close(self) -> None:
        self._client.close()

    def _embed(self, text: str) -> Tuple[float, ...]:
        try:
            response = self._client.post("/api/embeddings", json={"model": self._config.model, "prompt": text})
            response.raise_for_status()
            vector: List[float] = response.json()["embedding"]
        except httpx.HTTPStatusError as exc:
            raise EmbeddingError(f"ollama embedding API error (status {exc.response.status_code})") from exc
        except (httpx.HTTPError, KeyError, ValueError) as exc:
            raise EmbeddingError(f"failed to embed text: {exc}") from exc
        if self._config.normalize:
            return _normalize(vector)
        return tuple(vector)


def build_embedding_backend(config: EmbeddingConfig) -> EmbeddingBackend:
    """Instantiate the embedding provider named by ``config.provider``."""

    if config.provider == "hash":
        return HashEmbeddingBackend(config)
    if config.provider == "huggingface":
        return HuggingFaceEmbeddingBackend(config)
    if config.provider == "ollama":
        return OllamaEmbeddingBackend(config)
    raise ValueError(f"unsupported embeddings provider: {config.provider}")
