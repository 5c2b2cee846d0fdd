from __future__ import annotations

import asyncio
from uuid import uuid4

import chromadb

from teamrag.config import Settings
from teamrag.runtime import build_dependencies
from teamrag.services.generation import OllamaGenerator, TemplateGenerator


def _settings(**overrides) -> Settings:
    values = {"environment": "test", "embeddings": "hash", "collection": f"rt-{uuid4().hex[:8]}"}
    values.update(overrides)
    return Settings(**values)


def _build(settings: Settings):
    return build_dependencies(settings, chroma_client=chromadb.EphemeralClient())


def test_ollama_backend_uses_separate_guard_model():
    deps = _build(_settings(backend="ollama", safety=True))

    assert isinstance(deps.generator, OllamaGenerator)
    assert isinstance(deps.classifier, OllamaGenerator)
    assert deps.generator.model == "llama3.1:8b"
    assert deps.classifier.model == "llama-guard3:1b"
    assert deps.guard.enabled
    asyncio.run(deps.aclose())


def test_local_backend_reuses_generator_for_classification():
    deps = _build(_settings(backend="template", safety=True))

    assert isinstance(deps.generator, TemplateGenerator)
    assert deps.classifier is deps.generator


def test_safety_off_builds_no_classifier():
    deps = _build(_settings(backend="template", safety=False))

    assert deps.classifier is None
    assert not deps.guard.enabled
    statuses = asyncio.run(deps.health_check())
    assert [status.name for status in statuses] == [
        "LLM Backend (template)",
        "Vector Database (Chroma)",
        "Embeddings (hash)",
        "Safety Gate",
    ]
    assert all(status.healthy for status in statuses)


def test_ingest_directory_indexes_chunks(tmp_path):
    (tmp_path / "a.txt").write_text("alpha " * 300, encoding="utf-8")
    deps = _build(_settings(backend="template", safety=False))

    report = deps.ingest_directory(tmp_path, chunk_tokens=100, chunk_overlap=10)

    assert report.succeeded == 1
    assert deps.store.count() == len(report.chunks) > 1


def test_reingesting_shorter_document_drops_stale_chunks(tmp_path):
    document = tmp_path / "runbook.txt"
    document.write_text("restart the agent " * 100, encoding="utf-8")
    other = tmp_path / "oncall.txt"
    other.write_text("page the secondary", encoding="utf-8")
    deps = _build(_settings(backend="template", safety=False))

    first = deps.ingest_file(document, chunk_tokens=100, chunk_overlap=10)
    deps.ingest_file(other)
    document.write_text("restart the agent", encoding="utf-8")
    second = deps.ingest_file(document, chunk_tokens=100, chunk_overlap=10)

    assert len(first) > 1
    assert len(second) == 1
    assert deps.store.count() == 2
    results = deps.store.similarity_search("restart the agent", top_k=5)
    assert {chunk.total_chunks for chunk in results} == {1}
