"""Wiring of configured services shared by the CLI and the HTTP API."""

from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Awaitable, Callable, List

import chromadb

from teamrag.config import Settings
from teamrag.embeddings import (
    ChromaEmbeddingStore,
    EmbeddingBackend,
    EmbeddingConfig,
    build_embedding_backend,
)
from teamrag.ingestion import FileDocumentIngestor, IngestionConfig, IngestionReport
from teamrag.models import DocumentChunk, HealthStatus
from teamrag.retrieval import ChromaRetriever, RetrievalConfig
from teamrag.services.generation import GenerationBackend, build_generator
from teamrag.services.prompts import PromptBuilder, PromptBuilderConfig
from teamrag.services.query import QueryConfig, QueryService
from teamrag.services.safety import SafetyGuard


@dataclass(frozen=True)
class AppDependencies:
    settings: Settings
    ingestor: FileDocumentIngestor
    embeddings: EmbeddingBackend
    store: ChromaEmbeddingStore
    retriever: ChromaRetriever
    generator: GenerationBackend
    classifier: GenerationBackend | None
    guard: SafetyGuard
    query_service: QueryService

    def ingest_file(self, path: Path, *, chunk_tokens: int = 0, chunk_overlap: int = 0) -> List[DocumentChunk]:
        """Chunk and index one file; ``0`` sizes fall back to configuration."""

        config = self.ingestor.config.with_overrides(chunk_tokens, chunk_overlap)
        chunks = self.ingestor.ingest_file(path, config=config)
        self._replace_documents(chunks)
        return chunks

    def ingest_directory(self, root: Path, *, chunk_tokens: int = 0, chunk_overlap: int = 0) -> IngestionReport:
        config = self.ingestor.config.with_overrides(chunk_tokens, chunk_overlap)
        report = self.ingestor.ingest_directory(root, config=config)
        self._replace_documents(report.chunks)
        return report

    def _replace_documents(self, chunks: List[DocumentChunk]) -> None:
        # drop chunks left over from an earlier, longer version of each document
        for source_path in dict.fromkeys(chunk.source_path for chunk in chunks):
            self.store.delete_document(source_path)
        self.store.upsert(chunks)

    async def health_check(self) -> List[HealthStatus]:
        statuses = [
            await _check_component(f"LLM Backend ({self.settings.backend})", self.generator.health_check),
            await _check_component("Vector Database (Chroma)", self.retriever.health_check),
            await _check_component(
                f"Embeddings ({self.settings.embeddings})",
                lambda: asyncio.to_thread(self.embeddings.health_check),
            ),
        ]
        if self.guard.enabled and self.classifier is not None and self.classifier is not self.generator:
            statuses.append(await _check_component("Safety Gate", self.classifier.health_check))
        else:
            statuses.append(
                HealthStatus(name="Safety Gate", healthy=True, message="Enabled" if self.guard.enabled else "Disabled")
            )
        return statuses

    async def aclose(self) -> None:
        await self.generator.aclose()
        if self.classifier is not None and self.classifier is not self.generator:
            await self.classifier.aclose()
        close = getattr(self.embeddings, "close", None)
        if close is not None:
            close()


async def _check_component(name: str, check: Callable[[], Awaitable[None]]) -> HealthStatus:
    start = time.perf_counter()
    try:
        await check()
    except Exception as exc:
        return HealthStatus(name=name, healthy=False, message=str(exc), latency_ms=(time.perf_counter() - start) * 1000)
    return HealthStatus(name=name, healthy=True, latency_ms=(time.perf_counter() - start) * 1000)


def build_dependencies(settings: Settings, *, chroma_client=None) -> AppDependencies:
    """Instantiate every service named by ``settings``."""

    ingestor = FileDocumentIngestor(
        IngestionConfig(chunk_tokens=settings.chunk_tokens, chunk_overlap=settings.chunk_overlap),
    )
    embeddings = build_embedding_backend(
        EmbeddingConfig(
            provider=settings.embeddings,
            model=settings.embedding_model,
            dim=settings.embedding_dim,
            base_url=settings.ollama_url,
            device=settings.local_device,
        ),
    )
    if chroma_client is None and settings.chroma_host:
        chroma_client = chromadb.HttpClient(
            host=settings.chroma_host,
            port=settings.chroma_port or 8000,
            ssl=settings.chroma_ssl,
        )
    store = ChromaEmbeddingStore(
        embeddings,
        collection_name=settings.collection,
        client=chroma_client,
        persist_directory=None if chroma_client else settings.chroma_persist_dir,
    )
    retriever = ChromaRetriever(store, RetrievalConfig(top_k=settings.top_k))

    model = settings.local_model if settings.backend == "transformers" else settings.ollama_model
    generator = build_generator(
        settings.backend,
        model=model,
        base_url=settings.ollama_url,
        timeout_seconds=settings.request_timeout_seconds,
        device=settings.local_device,
    )
    classifier: GenerationBackend | None = None
    if settings.safety:
        if settings.backend == "ollama":
            classifier = build_generator(
                "ollama",
                model=settings.guard_model,
                base_url=settings.ollama_url,
                timeout_seconds=settings.request_timeout_seconds,
            )
        else:
            # local backends have no separate guard model loaded
            classifier = generator
    guard = SafetyGuard(classifier, enabled=settings.safety)

    query_service = QueryService(
        retriever=retriever,
        generator=generator,
        guard=guard,
        prompt_builder=PromptBuilder(PromptBuilderConfig(system_prompt_path=settings.system_prompt_path)),
        config=QueryConfig(
            top_k=settings.top_k,
            temperature=settings.temperature,
            top_p=settings.top_p,
            max_tokens=settings.max_tokens,
            stream=settings.stream_generation,
            timeout_seconds=settings.query_timeout_seconds,
        ),
    )
    return AppDependencies(
        settings=settings,
        ingestor=ingestor,
        embeddings=embeddings,
        store=store,
        retriever=retriever,
        generator=generator,
        classifier=classifier,
        guard=guard,
        query_service=query_service,
    )
