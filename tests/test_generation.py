from __future__ import annotations

import asyncio
import json

import httpx
import pytest

from teamrag.models import GenerationOptions, StreamToken
from teamrag.services.generation import (
    BackendError,
    BackendUnavailableError,
    OllamaGenerator,
    TemplateGenerator,
    build_generator,
    collect_stream,
)


async def _tokens(*tokens: StreamToken):
    for token in tokens:
        yield token


def _ollama(handler) -> OllamaGenerator:
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler), base_url="http://ollama.test")
    return OllamaGenerator("http://ollama.test", "llama3.1:8b", client=client)


def test_collect_stream_concatenates_until_done():
    text = asyncio.run(
        collect_stream(
            _tokens(
                StreamToken(text="Hello"),
                StreamToken(text=", world"),
                StreamToken(done=True),
                StreamToken(text="ignored"),
            )
        )
    )
    assert text == "Hello, world"


def test_collect_stream_raises_carried_error():
    with pytest.raises(BackendError):
        asyncio.run(collect_stream(_tokens(StreamToken(text="partial"), StreamToken(error=RuntimeError("boom")))))


def test_collect_stream_closes_producer_after_done():
    closed = []

    async def producer():
        try:
            yield StreamToken(text="done early")
            yield StreamToken(done=True)
            yield StreamToken(text="never read")
        finally:
            closed.append(True)

    assert asyncio.run(collect_stream(producer())) == "done early"
    assert closed == [True]


def test_template_generator_summarises_first_source():
    prompt = "Based on context:\n\n### Source 1 - Runbook:\nUse the blue button.\n\n---\n\nQuestion: ?"
    generator = TemplateGenerator()

    assert asyncio.run(generator.generate(prompt, GenerationOptions())) == "Summary: Use the blue button."
    streamed = asyncio.run(collect_stream(generator.generate_stream(prompt, GenerationOptions())))
    assert streamed == "Summary: Use the blue button."


def test_template_generator_without_context():
    answer = asyncio.run(TemplateGenerator().generate("Question: ?", GenerationOptions()))
    assert "not have enough relevant context" in answer


def test_ollama_generate_sends_options():
    seen: dict = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen.update(json.loads(request.content))
        assert request.url.path == "/api/generate"
        return httpx.Response(200, json={"response": "pong", "done": True})

    options = GenerationOptions(system_prompt="be brief", temperature=0.2, top_p=0.8, max_tokens=32, stop_sequences=("END",))
    answer = asyncio.run(_ollama(handler).generate("ping", options))

    assert answer == "pong"
    assert seen["model"] == "llama3.1:8b"
    assert seen["stream"] is False
    assert seen["system"] == "be brief"
    assert seen["options"] == {"temperature": 0.2, "top_p": 0.8, "num_predict": 32, "stop": ["END"]}


def test_ollama_generate_http_error_is_backend_error():
    generator = _ollama(lambda request: httpx.Response(500, text="model crashed"))

    with pytest.raises(BackendError) as excinfo:
        asyncio.run(generator.generate("ping", GenerationOptions()))

    assert not isinstance(excinfo.value, BackendUnavailableError)
    assert "500" in str(excinfo.value)


def test_ollama_connect_error_is_unavailable():
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    with pytest.raises(BackendUnavailableError):
        asyncio.run(_ollama(handler).generate("ping", GenerationOptions()))


def test_ollama_stream_yields_tokens_in_order():
    lines = [
        json.dumps({"response": "Re", "done": False}),
        json.dumps({"response": "start", "done": False}),
        json.dumps({"response": "", "done": True}),
    ]

    def handler(request: httpx.Request) -> httpx.Response:
        assert json.loads(request.content)["stream"] is True
        return httpx.Response(200, content="\n".join(lines).encode())

    generator = _ollama(handler)
    text = asyncio.run(collect_stream(generator.generate_stream("ping", GenerationOptions())))

    assert text == "Restart"


def test_ollama_stream_error_is_carried_in_token():
    generator = _ollama(lambda request: httpx.Response(503, text="loading"))

    async def first_token():
        async for token in generator.generate_stream("ping", GenerationOptions()):
            return token

    token = asyncio.run(first_token())
    assert isinstance(token.error, BackendError)


def test_ollama_health_check_requires_model():
    listed = _ollama(lambda request: httpx.Response(200, json={"models": [{"name": "llama3.1:8b"}]}))
    missing = _ollama(lambda request: httpx.Response(200, json={"models": [{"name": "mistral:7b"}]}))

    asyncio.run(listed.health_check())
    with pytest.raises(BackendUnavailableError):
        asyncio.run(missing.health_check())


def test_build_generator_variants():
    assert isinstance(build_generator("template", model="unused"), TemplateGenerator)
    assert isinstance(build_generator("ollama", model="llama3.1:8b"), OllamaGenerator)
    with pytest.raises(ValueError):
        build_generator("gpt", model="x")  # type: ignore[arg-type]
