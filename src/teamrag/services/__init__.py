"""Service layer orchestrations for TeamRAG."""

from .generation import (
    BackendError,
    BackendUnavailableError,
    GenerationBackend,
    OllamaGenerator,
    TemplateGenerator,
    TransformersGenerator,
    build_generator,
    collect_stream,
)
from .prompts import PromptBuilder, PromptBuilderConfig
from .query import PipelineCancelledError, PipelineError, QueryConfig, QueryService
from .safety import SafetyGuard, parse_verdict, refusal_message

__all__ = [
    "BackendError",
    "BackendUnavailableError",
    "GenerationBackend",
    "OllamaGenerator",
    "TemplateGenerator",
    "TransformersGenerator",
    "build_generator",
    "collect_stream",
    "PromptBuilder",
    "PromptBuilderConfig",
    "PipelineCancelledError",
    "PipelineError",
    "QueryConfig",
    "QueryService",
    "SafetyGuard",
    "parse_verdict",
    "refusal_message",
]
