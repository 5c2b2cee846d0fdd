"""Prompt construction and answer formatting."""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Sequence

from teamrag.models import DocumentChunk

DEFAULT_SYSTEM_PROMPT = """You are a helpful assistant for an engineering team. You answer questions about the team's \
infrastructure, procedures and tooling using the team's own documentation.

Guidelines:
- Provide clear, step-by-step instructions when possible
- Include relevant commands, file paths and configuration examples
- Mention safety considerations and potential risks
- If you are not certain about something, say so clearly
- Reference documentation sources when available
- Explain concepts for newcomers without dropping technical accuracy

When answering:
1. Be concise but comprehensive
2. Prioritize actionable information
3. Include troubleshooting tips where relevant
4. Suggest next steps or related topics to explore"""

CONTEXT_PREAMBLE = "Based on the following context from the documentation:"
GROUNDED_INSTRUCTIONS = (
    "Please answer the question based only on the provided context. "
    "If the context doesn't contain relevant information, say so clearly. "
    "Be specific and reference the sources when possible."
)
UNGROUNDED_INSTRUCTIONS = (
    "Please answer this question about the team's systems and procedures. "
    "Provide detailed, practical guidance where possible."
)


@dataclass(frozen=True)
class PromptBuilderConfig:
    """Configuration for prompt construction."""

    system_prompt_path: Path | None = None
    citation_prefix: str = "["
    citation_suffix: str = "]"


def _source_label(chunk: DocumentChunk) -> str | None:
    return chunk.source_title or chunk.source_path or None


class PromptBuilder:
    """Builds grounded prompts for the generation backend and formats answers."""

    def __init__(self, config: PromptBuilderConfig | None = None) -> None:
        self._config = config or PromptBuilderConfig()
        self._system_prompt: str | None = None

    def build_grounded_prompt(self, query: str, context: Sequence[DocumentChunk]) -> str:
        parts: list[str] = []
        if context:
            parts.append(f"{CONTEXT_PREAMBLE}\n\n")
            for index, chunk in enumerate(context, start=1):
                label = _source_label(chunk)
                header = f"### Source {index} - {label}" if label else f"### Source {index}"
                parts.append(f"{header}:\n{chunk.content}\n\n")
            parts.append("---\n\n")
        parts.append(f"Question: {query}\n\n")
        parts.append(GROUNDED_INSTRUCTIONS if context else UNGROUNDED_INSTRUCTIONS)
        return "".join(parts)

    def load_system_prompt(self) -> str:
        """Return the system prompt, reading the configured file on first use.

        Concurrent first calls may both read the file; they cache the same value.
        """

        if self._system_prompt is not None:
            return self._system_prompt
        path = self._config.system_prompt_path
        if path is not None:
            try:
                prompt = Path(path).read_text(encoding="utf-8")
            except OSError as exc:
                raise OSError(f"failed to read system prompt file {path}: {exc}") from exc
        else:
            prompt = DEFAULT_SYSTEM_PROMPT
        self._system_prompt = prompt
        return prompt

    def format_answer(self, answer_text: str, sources: Sequence[DocumentChunk]) -> str:
        formatted = answer_text.strip()
        if not sources:
            return formatted
        lines = [formatted, "", "**Sources:**"]
        for index, source in enumerate(sources, start=1):
            reference = f"{self._config.citation_prefix}{index}{self._config.citation_suffix}"
            label = _source_label(source) or f"Document {source.id}"
            line = f"{reference} {label}"
            if source.score is not None and source.score > 0:
                line += f" (relevance: {source.score * 100:.1f}%)"
            lines.append(line)
        return "\n".join(lines)
