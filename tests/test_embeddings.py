from __future__ import annotations

import json
import math

import httpx
import pytest

from teamrag.embeddings.service import (
    EmbeddingConfig,
    EmbeddingError,
    HashEmbeddingBackend,
    OllamaEmbeddingBackend,
    build_embedding_backend,
)

from conftest import make_chunk


def test_hash_embedding_dim_matches_config():
    backend = HashEmbeddingBackend(EmbeddingConfig(dim=64))
    vec = backend.embed_query("hello world")
    assert isinstance(vec, tuple)
    assert len(vec) == 64
    assert math.isclose(math.sqrt(sum(v * v for v in vec)), 1.0)


def test_hash_embedding_chunks_returns_vectors():
    backend = HashEmbeddingBackend(EmbeddingConfig(dim=32))
    chunks = [make_chunk(0, content="alpha"), make_chunk(0, content="beta")]
    embeddings = backend.embed_chunks(chunks)
    assert len(embeddings) == 2
    assert len(embeddings[0].vector) == 32
    assert embeddings[0].vector == backend.embed_query("alpha")
    assert embeddings[0].vector != embeddings[1].vector


def _ollama(handler) -> OllamaEmbeddingBackend:
    client = httpx.Client(transport=httpx.MockTransport(handler), base_url="http://ollama.test")
    return OllamaEmbeddingBackend(EmbeddingConfig(provider="ollama", model="nomic-embed-text"), client=client)


def test_ollama_embeddings_request_and_normalize():
    def handler(request: httpx.Request) -> httpx.Response:
        body = json.loads(request.content)
        assert request.url.path == "/api/embeddings"
        assert body == {"model": "nomic-embed-text", "prompt": "restart agent"}
        return httpx.Response(200, json={"embedding": [3.0, 4.0]})

    assert _ollama(handler).embed_query("restart agent") == pytest.approx((0.6, 0.8))


def test_ollama_embedding_errors_are_wrapped():
    backend = _ollama(lambda request: httpx.Response(404, json={"error": "model not found"}))

    with pytest.raises(EmbeddingError):
        backend.embed_query("x")
    with pytest.raises(EmbeddingError):
        backend.health_check()


def test_build_embedding_backend():
    assert isinstance(build_embedding_backend(EmbeddingConfig(provider="hash")), HashEmbeddingBackend)
    with pytest.raises(ValueError):
        build_embedding_backend(EmbeddingConfig(provider="word2vec"))
