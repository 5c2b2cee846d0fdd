"""Embedding services."""

from .service import (
    Embedding,
    EmbeddingBackend,
    EmbeddingConfig,
    EmbeddingError,
    HashEmbeddingBackend,
    HuggingFaceEmbeddingBackend,
    OllamaEmbeddingBackend,
    build_embedding_backend,
)
from .store import ChromaEmbeddingStore, EmbeddingStore

__all__ = [
    "Embedding",
    "EmbeddingBackend",
    "EmbeddingConfig",
    "EmbeddingError",
    "EmbeddingStore",
    "ChromaEmbeddingStore",
    "HashEmbeddingBackend",
    "HuggingFaceEmbeddingBackend",
    "OllamaEmbeddingBackend",
    "build_embedding_backend",
]
