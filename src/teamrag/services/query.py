"""Query orchestration: safety gate, retrieval, generation and formatting."""

from __future__ import annotations

import asyncio
import time
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Iterator, Sequence
from uuid import NAMESPACE_URL, uuid5

from teamrag.metrics.observability import PipelineMetrics, get_logger
from teamrag.models import GenerationOptions, PipelineResult, PipelineState, SafetyVerdict
from teamrag.retrieval.service import Retriever
from teamrag.services.generation import GenerationBackend, collect_stream
from teamrag.services.prompts import PromptBuilder
from teamrag.services.safety import SafetyGuard, refusal_message


class PipelineError(RuntimeError):
    """A query failed; ``stage`` names the pipeline state that raised."""

    def __init__(self, stage: PipelineState, cause: BaseException) -> None:
        super().__init__(f"{stage.value} failed: {cause}")
        self.stage = stage
        self.cause = cause


class PipelineCancelledError(PipelineError):
    """The caller's deadline expired while ``stage`` was running."""


@dataclass(frozen=True)
class QueryConfig:
    """Generation defaults and limits applied to every query."""

    top_k: int = 6
    temperature: float = 0.6
    top_p: float = 0.9
    max_tokens: int = 1024
    stop_sequences: Sequence[str] = ()
    stream: bool = False
    timeout_seconds: float | None = None


@dataclass
class _PipelineRun:
    question: str
    state: PipelineState = PipelineState.INPUT_CHECK
    started: float = field(default_factory=time.perf_counter)
    retrieval_ms: float | None = None
    generation_ms: float | None = None

    @property
    def query_id(self) -> str:
        return uuid5(NAMESPACE_URL, self.question).hex

    def elapsed_ms(self) -> float:
        return (time.perf_counter() - self.started) * 1000


class QueryService:
    """Runs one question through the pipeline.

    ``INPUT_CHECK -> RETRIEVE -> PROMPT_BUILD -> GENERATE -> OUTPUT_CHECK -> FORMAT -> DONE``;
    an unsafe verdict ends in ``ABORT_UNSAFE`` and any stage error in ``FAILED``.
    The service holds no per-query state, so concurrent ``answer`` calls are safe.
    """

    def __init__(
        self,
        retriever: Retriever,
        generator: GenerationBackend,
        guard: SafetyGuard,
        prompt_builder: PromptBuilder | None = None,
        config: QueryConfig | None = None,
    ) -> None:
        self._retriever = retriever
        self._generator = generator
        self._guard = guard
        self._prompt_builder = prompt_builder or PromptBuilder()
        self._config = config or QueryConfig()
        self._logger = get_logger("query")

    @property
    def prompt_builder(self) -> PromptBuilder:
        return self._prompt_builder

    async def answer(
        self,
        question: str,
        *,
        temperature: float = 0.0,
        top_k: int | None = None,
        timeout: float | None = None,
    ) -> PipelineResult:
        """Answer ``question``.

        A ``temperature`` of exactly ``0.0`` means "not overridden" and the
        configured default is used instead. ``timeout`` (seconds) bounds the
        whole run; expiry raises ``PipelineCancelledError``.
        """

        run = _PipelineRun(question=question)
        deadline = timeout if timeout is not None else self._config.timeout_seconds
        try:
            async with asyncio.timeout(deadline):
                return await self._run(run, temperature=temperature, top_k=top_k or self._config.top_k)
        except TimeoutError as exc:
            stage = run.state
            run.state = PipelineState.FAILED
            PipelineMetrics.record_failure(stage.value)
            self._logger.error("pipeline.cancelled", stage=stage.value, timeout_seconds=deadline)
            raise PipelineCancelledError(stage, exc) from exc

    async def _run(self, run: _PipelineRun, *, temperature: float, top_k: int) -> PipelineResult:
        with self._stage(run, PipelineState.INPUT_CHECK):
            verdict = await self._guard.check_input(run.question)
        if not verdict.is_safe:
            return self._refuse(run, "input", verdict)

        with self._stage(run, PipelineState.RETRIEVE):
            retrieval_start = time.perf_counter()
            sources = list(await self._retriever.search(run.question, top_k))
            retrieval_duration = time.perf_counter() - retrieval_start
        run.retrieval_ms = retrieval_duration * 1000
        PipelineMetrics.observe_retrieval(
            retrieval_duration,
            len(sources),
            (chunk.score or 0.0 for chunk in sources),
        )
        self._logger.info(
            "retrieval.complete",
            chunk_count=len(sources),
            duration_seconds=retrieval_duration,
            top_k=top_k,
        )

        with self._stage(run, PipelineState.PROMPT_BUILD):
            prompt = self._prompt_builder.build_grounded_prompt(run.question, sources)
            options = self._generation_options(self._prompt_builder.load_system_prompt(), temperature)

        with self._stage(run, PipelineState.GENERATE):
            generation_start = time.perf_counter()
            if self._config.stream:
                response = await collect_stream(self._generator.generate_stream(prompt, options))
            else:
                response = await self._generator.generate(prompt, options)
            generation_duration = time.perf_counter() - generation_start
        run.generation_ms = generation_duration * 1000
        PipelineMetrics.observe_generation(generation_duration)
        self._logger.info(
            "generation.complete",
            duration_seconds=generation_duration,
            citation_count=len(sources),
            temperature=options.temperature,
        )

        with self._stage(run, PipelineState.OUTPUT_CHECK):
            verdict = await self._guard.check_output(response)
        if not verdict.is_safe:
            return self._refuse(run, "output", verdict)

        with self._stage(run, PipelineState.FORMAT):
            text = self._prompt_builder.format_answer(response, sources)
        run.state = PipelineState.DONE
        return PipelineResult(
            text=text,
            sources=tuple(sources),
            state=run.state,
            query_id=run.query_id,
            latency_ms=run.elapsed_ms(),
            retrieval_ms=run.retrieval_ms,
            generation_ms=run.generation_ms,
        )

    def _generation_options(self, system_prompt: str, temperature: float) -> GenerationOptions:
        # zero cannot be told apart from "unset"; callers wanting 0.0 must configure it
        effective = temperature if temperature != 0 else self._config.temperature
        return GenerationOptions(
            system_prompt=system_prompt,
            temperature=effective,
            top_p=self._config.top_p,
            max_tokens=self._config.max_tokens,
            stop_sequences=tuple(self._config.stop_sequences),
        )

    def _refuse(self, run: _PipelineRun, direction: str, verdict: SafetyVerdict) -> PipelineResult:
        run.state = PipelineState.ABORT_UNSAFE
        PipelineMetrics.record_safety_block(direction, verdict.category)
        self._logger.warning(
            "safety.blocked",
            direction=direction,
            category=verdict.category,
            reason=verdict.reason,
        )
        return PipelineResult(
            text=refusal_message(verdict.category),
            sources=(),
            state=run.state,
            query_id=run.query_id,
            latency_ms=run.elapsed_ms(),
            verdict=verdict,
            retrieval_ms=run.retrieval_ms,
            generation_ms=run.generation_ms,
        )

    @contextmanager
    def _stage(self, run: _PipelineRun, state: PipelineState) -> Iterator[None]:
        run.state = state
        try:
            yield
        except Exception as exc:
            run.state = PipelineState.FAILED
            PipelineMetrics.record_failure(state.value)
            self._logger.error("pipeline.failed", stage=state.value, error=str(exc))
            raise PipelineError(state, exc) from exc


__all__ = [
    "PipelineCancelledError",
    "PipelineError",
    "QueryConfig",
    "QueryService",
]
