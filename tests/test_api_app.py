"""Tests for the FastAPI application."""

from __future__ import annotations

from dataclasses import replace
from io import BytesIO
from pathlib import Path
from uuid import uuid4

import chromadb
from fastapi.testclient import TestClient

from teamrag.api.app import create_app
from teamrag.config import Settings
from teamrag.models import PipelineState
from teamrag.runtime import AppDependencies, build_dependencies
from teamrag.services.query import PipelineCancelledError, PipelineError, QueryService
from teamrag.services.safety import SafetyGuard

from conftest import ScriptedClassifier, StubGenerator, StubRetriever


def make_settings(tmp_path: Path, **overrides) -> Settings:
    values = {
        "environment": "test",
        "backend": "template",
        "embeddings": "hash",
        "embedding_dim": 32,
        "safety": False,
        "collection": f"api-{uuid4().hex[:8]}",
        "upload_dir": tmp_path / "uploads",
    }
    values.update(overrides)
    return Settings(**values)


def make_dependencies(settings: Settings) -> AppDependencies:
    return build_dependencies(settings, chroma_client=chromadb.EphemeralClient())


def create_test_client(tmp_path: Path, **overrides) -> TestClient:
    settings = make_settings(tmp_path, **overrides)
    return TestClient(create_app(settings=settings, dependencies=make_dependencies(settings)))


class FailingQueryService:
    def __init__(self, error: Exception) -> None:
        self.error = error

    async def answer(self, question, *, temperature=0.0, top_k=None, timeout=None):
        raise self.error


def client_with_query_service(tmp_path: Path, service) -> TestClient:
    settings = make_settings(tmp_path)
    deps = replace(make_dependencies(settings), query_service=service)
    return TestClient(create_app(settings=settings, dependencies=deps))


def test_upload_query_and_stats_flow(tmp_path: Path) -> None:
    client = create_test_client(tmp_path)

    content = b"The deploy agent is restarted with systemctl restart deploy-agent."
    response = client.post("/documents", files=[("files", ("deploy-runbook.txt", BytesIO(content), "text/plain"))])
    assert response.status_code == 201, response.text
    payload = response.json()
    assert payload["total_chunks"] == 1
    assert payload["documents"][0]["title"] == "Deploy Runbook"
    assert payload["documents"][0]["source_path"].endswith("deploy-runbook.txt")

    stats = client.get("/index/stats").json()
    assert stats["total_chunks"] == 1

    response = client.post("/query", json={"question": "How is the deploy agent restarted?", "top_k": 3})
    assert response.status_code == 200, response.text
    data = response.json()
    assert data["blocked"] is False
    assert data["answer"].startswith("Summary: The deploy agent is restarted")
    assert data["sources"][0]["source_title"] == "Deploy Runbook"
    assert 0.0 <= data["sources"][0]["score"] <= 1.0
    assert data["retrieval_ms"] is not None


def test_reupload_replaces_chunks(tmp_path: Path) -> None:
    client = create_test_client(tmp_path)
    files = [("files", ("notes.md", BytesIO(b"# Notes\nfirst version"), "text/markdown"))]

    client.post("/documents", files=files)
    client.post("/documents", files=[("files", ("notes.md", BytesIO(b"# Notes\nsecond version"), "text/markdown"))])

    assert client.get("/index/stats").json()["total_chunks"] == 1


def test_reset_index(tmp_path: Path) -> None:
    client = create_test_client(tmp_path)
    client.post("/documents", files=[("files", ("a.txt", BytesIO(b"alpha"), "text/plain"))])

    response = client.delete("/index")

    assert response.status_code == 204
    assert client.get("/index/stats").json()["total_chunks"] == 0


def test_unsupported_upload_is_415(tmp_path: Path) -> None:
    client = create_test_client(tmp_path)
    response = client.post("/documents", files=[("files", ("image.png", BytesIO(b"\x89PNG"), "image/png"))])
    assert response.status_code == 415


def test_empty_upload_is_422(tmp_path: Path) -> None:
    client = create_test_client(tmp_path)
    response = client.post("/documents", files=[("files", ("blank.txt", BytesIO(b"   "), "text/plain"))])
    assert response.status_code == 422
    assert "correlation_id" in response.json()


def test_oversized_upload_is_413(tmp_path: Path) -> None:
    client = create_test_client(tmp_path, max_upload_size_mb=0)
    response = client.post("/documents", files=[("files", ("big.txt", BytesIO(b"data"), "text/plain"))])
    assert response.status_code == 413


def test_api_key_is_enforced(tmp_path: Path) -> None:
    client = create_test_client(tmp_path, api_key="secret")

    assert client.post("/query", json={"question": "hi"}).status_code == 401
    response = client.post("/query", json={"question": "hi"}, headers={"X-API-Key": "secret"})
    assert response.status_code == 200


def test_blocked_query_is_200(tmp_path: Path) -> None:
    service = QueryService(StubRetriever(), StubGenerator(), SafetyGuard(ScriptedClassifier("unsafe S10")))
    client = client_with_query_service(tmp_path, service)

    response = client.post("/query", json={"question": "hateful"})

    assert response.status_code == 200
    data = response.json()
    assert data["blocked"] is True
    assert data["category"] == "S10"
    assert data["sources"] == []


def test_pipeline_error_is_502_with_stage(tmp_path: Path) -> None:
    error = PipelineError(PipelineState.GENERATE, RuntimeError("ollama down"))
    client = client_with_query_service(tmp_path, FailingQueryService(error))

    response = client.post("/query", json={"question": "q"})

    assert response.status_code == 502
    assert response.json()["stage"] == "generate"


def test_cancelled_query_is_504(tmp_path: Path) -> None:
    error = PipelineCancelledError(PipelineState.RETRIEVE, TimeoutError())
    client = client_with_query_service(tmp_path, FailingQueryService(error))

    response = client.post("/query", json={"question": "q"})

    assert response.status_code == 504
    assert response.json()["stage"] == "retrieve"


def test_health_and_metrics(tmp_path: Path) -> None:
    client = create_test_client(tmp_path)

    response = client.get("/healthz", headers={"X-Request-ID": "req-1"})
    assert response.status_code == 200
    assert response.json()["environment"] == "test"
    assert response.headers["X-Correlation-ID"] == "req-1"

    ready = client.get("/healthz/ready")
    assert ready.status_code == 200, ready.text
    names = [component["name"] for component in ready.json()["components"]]
    assert "Vector Database (Chroma)" in names
    assert {"name": "Safety Gate", "healthy": True, "message": "Disabled", "latency_ms": None} in ready.json()[
        "components"
    ]

    metrics = client.get("/metrics")
    assert metrics.status_code == 200
    assert "teamrag_" in metrics.text


def test_invalid_query_payload_is_422(tmp_path: Path) -> None:
    client = create_test_client(tmp_path)
    assert client.post("/query", json={"question": ""}).status_code == 422
    assert client.post("/query", json={"question": "q", "top_k": 0}).status_code == 422
