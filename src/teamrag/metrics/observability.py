"""Observability helpers for TeamRAG."""

from __future__ import annotations

import logging
from typing import Iterable

import structlog
from prometheus_client import Counter, Histogram

from teamrag.models import SAFETY_CATEGORIES

_logger_configured = False

_LEVELS = {
    "debug": logging.DEBUG,
    "info": logging.INFO,
    "warning": logging.WARNING,
    "error": logging.ERROR,
}


def configure_logging(level: int | str | None = None) -> None:
    """Configure structlog JSON output; an explicit ``level`` reconfigures."""

    global _logger_configured  # noqa: PLW0603 - module-level guard
    if _logger_configured and level is None:
        return
    if level is None:
        level = logging.INFO
    elif isinstance(level, str):
        level = _LEVELS.get(level.lower(), logging.INFO)
    logging.basicConfig(level=level, format="%(message)s")
    logging.getLogger().setLevel(level)
    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso", utc=True),
            structlog.processors.JSONRenderer(),
        ],
        wrapper_class=structlog.make_filtering_bound_logger(level),
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )
    _logger_configured = True


def bind_correlation_id(correlation_id: str) -> None:
    structlog.contextvars.bind_contextvars(correlation_id=correlation_id)


def clear_correlation_id() -> None:
    structlog.contextvars.clear_contextvars()


def get_logger(name: str = "teamrag") -> structlog.BoundLogger:
    configure_logging()
    return structlog.get_logger(name)


def _clamp_score(score: float) -> float:
    if score < 0.0:
        return 0.0
    if score > 1.0:
        return 1.0
    return score


class PipelineMetrics:
    """Prometheus metrics for pipeline stages."""

    ingestion_latency = Histogram(
        "teamrag_ingestion_duration_seconds",
        "Time spent extracting and chunking a document.",
        buckets=(0.05, 0.1, 0.5, 1.0, 2.5, 5.0, 10.0),
    )
    ingestion_chunks = Histogram(
        "teamrag_ingestion_chunk_count",
        "Chunks produced per ingested document.",
        buckets=(0, 1, 5, 10, 20, 40, 80, 160),
    )
    retrieval_latency = Histogram(
        "teamrag_retrieval_duration_seconds",
        "Time spent retrieving context chunks.",
        buckets=(0.01, 0.05, 0.1, 0.5, 1.0, 2.0, 5.0),
    )
    retrieved_chunk_count = Histogram(
        "teamrag_retrieved_chunk_count",
        "Number of chunks returned by retrieval.",
        buckets=(0, 1, 2, 3, 5, 8, 13),
    )
    grounding_score = Histogram(
        "teamrag_grounding_score",
        "Relevance score of retrieved chunks.",
        buckets=(0.0, 0.25, 0.5, 0.75, 1.0),
    )
    generation_latency = Histogram(
        "teamrag_generation_duration_seconds",
        "Time spent generating answers.",
        buckets=(0.05, 0.1, 0.5, 1.0, 2.0, 5.0, 15.0, 30.0),
    )
    safety_latency = Histogram(
        "teamrag_safety_check_duration_seconds",
        "Time spent classifying input or output safety.",
        ["direction"],
        buckets=(0.01, 0.05, 0.1, 0.5, 1.0, 2.0, 5.0),
    )
    safety_blocks = Counter(
        "teamrag_safety_blocks_total",
        "Queries refused by the safety gate.",
        ["direction", "category"],
    )
    pipeline_failures = Counter(
        "teamrag_pipeline_failures_total",
        "Queries that failed, by pipeline stage.",
        ["stage"],
    )

    @classmethod
    def observe_ingestion(cls, duration_seconds: float, chunk_count: int) -> None:
        cls.ingestion_latency.observe(duration_seconds)
        cls.ingestion_chunks.observe(chunk_count)

    @classmethod
    def observe_retrieval(
        cls,
        duration_seconds: float,
        chunk_count: int,
        scores: Iterable[float],
    ) -> None:
        cls.retrieval_latency.observe(duration_seconds)
        cls.retrieved_chunk_count.observe(chunk_count)
        for score in scores:
            cls.grounding_score.observe(_clamp_score(score))

    @classmethod
    def observe_generation(cls, duration_seconds: float) -> None:
        cls.generation_latency.observe(duration_seconds)

    @classmethod
    def observe_safety_check(cls, direction: str, duration_seconds: float) -> None:
        cls.safety_latency.labels(direction=direction).observe(duration_seconds)

    @classmethod
    def record_safety_block(cls, direction: str, category: str | None) -> None:
        label = category if category in SAFETY_CATEGORIES else "unknown"
        cls.safety_blocks.labels(direction=direction, category=label).inc()

    @classmethod
    def record_failure(cls, stage: str) -> None:
        cls.pipeline_failures.labels(stage=stage).inc()


__all__ = [
    "PipelineMetrics",
    "bind_correlation_id",
    "clear_correlation_id",
    "configure_logging",
    "get_logger",
]
