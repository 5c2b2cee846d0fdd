"""Embedding store implementations."""

from __future__ import annotations

from pathlib import Path
from typing import Mapping, MutableMapping, Protocol, Sequence

import chromadb
from chromadb.api import ClientAPI
from chromadb.api.types import Documents, Embeddings as ChromaEmbeddings, IDs, Metadatas

from teamrag.embeddings.service import EmbeddingBackend
from teamrag.models import DocumentChunk, Scalar

# Keys written by the store itself; everything else round-trips as chunk metadata.
_RESERVED_KEYS = ("source_path", "source_title", "source_type", "chunk_index", "total_chunks")


class EmbeddingStore(Protocol):
    """Protocol for embedding persistence backends."""

    def upsert(self, chunks: Sequence[DocumentChunk]) -> Sequence[str]:
        """Persist embeddings for the provided chunks."""

    def delete_document(self, source_path: str) -> None:
        """Remove every chunk stored for ``source_path``."""

    def similarity_search(self, query: str, *, top_k: int = 5) -> Sequence[DocumentChunk]:
        """Return the top-k similar chunks for the query string, most relevant first."""

    def reset(self) -> None:
        """Remove all stored embeddings."""

    def count(self) -> int:
        """Return total number of stored chunks."""

    def heartbeat(self) -> None:
        """Raise when the store cannot be reached."""


class ChromaEmbeddingStore:
    """Chroma-backed embedding store."""

    def __init__(
        self,
        embedding_backend: EmbeddingBackend,
        collection_name: str = "teamrag_docs",
        *,
        client: ClientAPI | None = None,
        persist_directory: str | Path | None = None,
    ) -> None:
        if client is not None:
            self._client = client
        elif persist_directory is not None:
            self._client = chromadb.PersistentClient(path=str(persist_directory))
        else:
            self._client = chromadb.EphemeralClient()
        self._collection_name = collection_name
        self._collection = self._ensure_collection()
        self._backend = embedding_backend

    @property
    def collection_name(self) -> str:
        return self._collection_name

    def upsert(self, chunks: Sequence[DocumentChunk]) -> Sequence[str]:
        if not chunks:
            return []
        embeddings = self._backend.embed_chunks(chunks)
        ids: IDs = [embedding.chunk.id for embedding in embeddings]
        documents: Documents = [embedding.chunk.content for embedding in embeddings]
        metadatas: Metadatas = [self._serialize_chunk(embedding.chunk) for embedding in embeddings]
        vectors: ChromaEmbeddings = [list(embedding.vector) for embedding in embeddings]
        self._collection.upsert(ids=ids, documents=documents, embeddings=vectors, metadatas=metadatas)
        return list(ids)

    def delete_document(self, source_path: str) -> None:
        self._collection.delete(where={"source_path": source_path})

    def similarity_search(self, query: str, *, top_k: int = 5) -> Sequence[DocumentChunk]:
        if top_k <= 0:
            return []
        available = self.count()
        if available == 0:
            return []
        vector = list(self._backend.embed_query(query))
        results = self._collection.query(query_embeddings=[vector], n_results=min(top_k, available))
        return self._deserialize_results(results)

    def reset(self) -> None:
        self._client.delete_collection(self._collection_name)
        self._collection = self._ensure_collection()

    def count(self) -> int:
        return int(self._collection.count())

    def heartbeat(self) -> None:
        self._client.heartbeat()

    def _ensure_collection(self):
        return self._client.get_or_create_collection(
            name=self._collection_name,
            metadata={"hnsw:space": "cosine"},
        )

    @staticmethod
    def _serialize_chunk(chunk: DocumentChunk) -> MutableMapping[str, Scalar]:
        metadata: MutableMapping[str, Scalar] = {
            key: value for key, value in chunk.metadata.items() if value is not None
        }
        metadata.update(
            {
                "source_path": chunk.source_path,
                "source_title": chunk.source_title,
                "source_type": chunk.source_type,
                "chunk_index": chunk.chunk_index,
                "total_chunks": chunk.total_chunks,
            }
        )
        return metadata

    def _deserialize_results(self, results: Mapping[str, object]) -> Sequence[DocumentChunk]:
        ids = self._first(results.get("ids"))
        documents = self._first(results.get("documents"))
        metadatas = self._first(results.get("metadatas"))
        distances = self._first(results.get("distances"))
        retrieved: list[DocumentChunk] = []
        for position, chunk_id in enumerate(ids):
            document = documents[position] if position < len(documents) else ""
            metadata = metadatas[position] if position < len(metadatas) else None
            distance = distances[position] if position < len(distances) else None
            retrieved.append(self._deserialize_chunk(chunk_id, document or "", metadata or {}, distance))
        return retrieved

    @staticmethod
    def _deserialize_chunk(
        chunk_id: str,
        document: str,
        metadata: Mapping[str, Scalar],
        distance: float | None,
    ) -> DocumentChunk:
        total = int(metadata.get("total_chunks", 1) or 1)
        index = int(metadata.get("chunk_index", 0))
        score = 0.0 if distance is None else min(max(1.0 - float(distance), 0.0), 1.0)
        return DocumentChunk(
            id=chunk_id,
            content=document,
            source_path=str(metadata.get("source_path", "")),
            source_title=str(metadata.get("source_title", "")),
            source_type=str(metadata.get("source_type", "")),
            chunk_index=index if 0 <= index < total else 0,
            total_chunks=total,
            metadata={key: value for key, value in metadata.items() if key not in _RESERVED_KEYS},
            score=score,
        )

    @staticmethod
    def _first(value: object) -> list:
        if isinstance(value, list) and value:
            return list(value[0] or [])
        return []


__all__ = ["ChromaEmbeddingStore", "EmbeddingStore"]
