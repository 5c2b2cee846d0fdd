from __future__ import annotations

import asyncio
from typing import Sequence

import pytest

from teamrag.models import DocumentChunk, PipelineState
from teamrag.retrieval import RetrievalError
from teamrag.services.generation import BackendUnavailableError
from teamrag.services.query import PipelineCancelledError, PipelineError, QueryConfig, QueryService
from teamrag.services.safety import SafetyGuard, refusal_message

from conftest import ScriptedClassifier, StubGenerator, StubRetriever


def _service(retriever, generator, *, classifier=None, **config) -> QueryService:
    guard = SafetyGuard(classifier, enabled=classifier is not None)
    return QueryService(retriever, generator, guard, config=QueryConfig(**config))


def test_answer_runs_every_stage(chunks):
    retriever = StubRetriever(chunks)
    generator = StubGenerator()
    service = _service(retriever, generator, classifier=ScriptedClassifier("safe", "safe"))

    result = asyncio.run(service.answer("How do I restart the agent?"))

    assert result.state is PipelineState.DONE
    assert not result.blocked
    assert result.text.startswith("Run `systemctl restart deploy-agent`.")
    assert "**Sources:**" in result.text
    assert list(result.sources) == chunks
    assert retriever.calls == [("How do I restart the agent?", 6)]
    prompt, options = generator.calls[0]
    assert "### Source 1 - Deploy Runbook:" in prompt
    assert options.system_prompt
    assert result.retrieval_ms is not None and result.generation_ms is not None
    assert result.latency_ms >= 0


def test_unsafe_input_short_circuits(chunks):
    retriever = StubRetriever(chunks)
    generator = StubGenerator()
    service = _service(retriever, generator, classifier=ScriptedClassifier("unsafe S1"))

    result = asyncio.run(service.answer("something violent"))

    assert result.state is PipelineState.ABORT_UNSAFE
    assert result.blocked
    assert result.sources == ()
    assert result.text == refusal_message("S1")
    assert result.verdict.category == "S1"
    assert retriever.calls == []
    assert generator.calls == []


def test_unsafe_output_drops_answer_and_sources(chunks):
    generator = StubGenerator(reply="harmful text")
    service = _service(StubRetriever(chunks), generator, classifier=ScriptedClassifier("safe", "unsafe S9"))

    result = asyncio.run(service.answer("innocent question"))

    assert result.state is PipelineState.ABORT_UNSAFE
    assert result.sources == ()
    assert "harmful text" not in result.text
    assert "S9" in result.text


def test_unparseable_classifier_reply_blocks():
    service = _service(StubRetriever(), StubGenerator(), classifier=ScriptedClassifier("maybe?"))

    result = asyncio.run(service.answer("question"))

    assert result.blocked
    assert result.text == refusal_message(None)


def test_empty_retrieval_continues_ungrounded():
    generator = StubGenerator(reply="I am not sure.")
    service = _service(StubRetriever([]), generator)

    result = asyncio.run(service.answer("unknown topic"))

    assert result.state is PipelineState.DONE
    assert result.text == "I am not sure."
    assert result.sources == ()
    assert "### Source" not in generator.calls[0][0]


def test_zero_temperature_uses_configured_default():
    generator = StubGenerator()
    service = _service(StubRetriever(), generator, temperature=0.4)

    asyncio.run(service.answer("q", temperature=0.0))
    asyncio.run(service.answer("q", temperature=1.3))

    assert generator.calls[0][1].temperature == 0.4
    assert generator.calls[1][1].temperature == 1.3


def test_generation_options_follow_config():
    generator = StubGenerator()
    service = _service(StubRetriever(), generator, top_p=0.5, max_tokens=64, stop_sequences=("###",))

    asyncio.run(service.answer("q"))

    options = generator.calls[0][1]
    assert options.top_p == 0.5
    assert options.max_tokens == 64
    assert options.stop_sequences == ("###",)


def test_top_k_override_is_passed_to_retriever(chunks):
    retriever = StubRetriever(chunks)
    service = _service(retriever, StubGenerator(), top_k=4)

    asyncio.run(service.answer("q"))
    asyncio.run(service.answer("q", top_k=1))

    assert [call[1] for call in retriever.calls] == [4, 1]


def test_streaming_mode_collects_tokens(chunks):
    generator = StubGenerator(reply="streamed answer")
    service = _service(StubRetriever(chunks), generator, stream=True)

    result = asyncio.run(service.answer("q"))

    assert result.text.startswith("streamed answer")


def test_retrieval_failure_names_stage():
    service = _service(StubRetriever(error=RetrievalError("index offline")), StubGenerator())

    with pytest.raises(PipelineError) as excinfo:
        asyncio.run(service.answer("q"))

    assert excinfo.value.stage is PipelineState.RETRIEVE
    assert isinstance(excinfo.value.cause, RetrievalError)


def test_backend_failure_names_stage():
    generator = StubGenerator(error=BackendUnavailableError("ollama unreachable"))
    service = _service(StubRetriever(), generator)

    with pytest.raises(PipelineError) as excinfo:
        asyncio.run(service.answer("q"))

    assert excinfo.value.stage is PipelineState.GENERATE
    assert "ollama unreachable" in str(excinfo.value)


def test_classifier_failure_names_stage():
    classifier = ScriptedClassifier()

    async def broken(prompt, options):
        raise ConnectionError("guard down")

    classifier.generate = broken
    service = _service(StubRetriever(), StubGenerator(), classifier=classifier)

    with pytest.raises(PipelineError) as excinfo:
        asyncio.run(service.answer("q"))

    assert excinfo.value.stage is PipelineState.INPUT_CHECK


class SlowRetriever(StubRetriever):
    async def search(self, query: str, top_k: int) -> Sequence[DocumentChunk]:
        await asyncio.sleep(5)
        return []


def test_deadline_cancels_with_stage():
    generator = StubGenerator()
    service = _service(SlowRetriever(), generator)

    with pytest.raises(PipelineCancelledError) as excinfo:
        asyncio.run(service.answer("q", timeout=0.05))

    assert excinfo.value.stage is PipelineState.RETRIEVE
    assert generator.calls == []


def test_concurrent_answers_are_independent(chunks):
    service = _service(StubRetriever(chunks), StubGenerator())

    async def run_all():
        return await asyncio.gather(*(service.answer(f"question {i}") for i in range(5)))

    results = asyncio.run(run_all())

    assert len({result.query_id for result in results}) == 5
    assert all(result.state is PipelineState.DONE for result in results)
