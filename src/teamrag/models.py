"""Shared domain models used across the TeamRAG pipeline."""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from datetime import datetime
from enum import Enum
from types import MappingProxyType
from typing import Mapping, Sequence, Union

Scalar = Union[str, int, float, bool]

SAFETY_CATEGORIES: Mapping[str, str] = MappingProxyType(
    {
        "S1": "Violent Crimes",
        "S2": "Non-Violent Crimes",
        "S3": "Sex Crimes",
        "S4": "Child Exploitation",
        "S5": "Defamation",
        "S6": "Specialized Advice",
        "S7": "Privacy",
        "S8": "Intellectual Property",
        "S9": "Indiscriminate Weapons",
        "S10": "Hate",
        "S11": "Self-Harm",
        "S12": "Sexual Content",
        "S13": "Elections",
        "S14": "Code Interpreter Abuse",
    }
)


@dataclass(frozen=True)
class DocumentSource:
    """File-level information captured before a document is chunked."""

    path: str
    title: str
    type: str
    size: int = 0
    modified: datetime | None = None


@dataclass(frozen=True)
class DocumentChunk:
    """Retrievable segment of a source document.

    Chunks produced by ingestion carry no score; chunks returned by retrieval
    carry a relevance score in ``[0, 1]`` where higher is more relevant.
    """

    id: str
    content: str
    source_path: str
    source_title: str
    source_type: str
    chunk_index: int
    total_chunks: int
    metadata: Mapping[str, Scalar] = field(default_factory=dict)
    score: float | None = None

    def __post_init__(self) -> None:
        if not 0 <= self.chunk_index < max(self.total_chunks, 1):
            raise ValueError(
                f"chunk_index {self.chunk_index} outside [0, {self.total_chunks}) for {self.id}"
            )

    def with_score(self, score: float) -> "DocumentChunk":
        return replace(self, score=score)


@dataclass(frozen=True)
class SafetyVerdict:
    """Structured result of a single safety classification."""

    is_safe: bool
    category: str | None = None
    reason: str | None = None
    score: float | None = None


@dataclass(frozen=True)
class GenerationOptions:
    """Parameters passed to a generation backend alongside the prompt."""

    system_prompt: str = ""
    temperature: float = 0.6
    top_p: float = 0.9
    max_tokens: int = 1024
    stop_sequences: Sequence[str] = ()


@dataclass(frozen=True)
class StreamToken:
    """Single increment of a streamed generation."""

    text: str = ""
    done: bool = False
    error: Exception | None = None


class PipelineState(str, Enum):
    INPUT_CHECK = "input_check"
    RETRIEVE = "retrieve"
    PROMPT_BUILD = "prompt_build"
    GENERATE = "generate"
    OUTPUT_CHECK = "output_check"
    FORMAT = "format"
    DONE = "done"
    ABORT_UNSAFE = "abort_unsafe"
    FAILED = "failed"


@dataclass(frozen=True)
class PipelineResult:
    """Answer produced by the query pipeline with the chunks it cites."""

    text: str
    sources: Sequence[DocumentChunk]
    state: PipelineState
    query_id: str
    latency_ms: float
    verdict: SafetyVerdict | None = None
    retrieval_ms: float | None = None
    generation_ms: float | None = None

    @property
    def blocked(self) -> bool:
        return self.state is PipelineState.ABORT_UNSAFE


@dataclass(frozen=True)
class HealthStatus:
    """Health of one service the pipeline depends on."""

    name: str
    healthy: bool
    message: str | None = None
    latency_ms: float | None = None
