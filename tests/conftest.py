"""Shared test doubles for pipeline tests."""

from __future__ import annotations

from typing import AsyncIterator, Sequence

import pytest

from teamrag.models import DocumentChunk, GenerationOptions, StreamToken


def make_chunk(
    index: int = 0,
    *,
    content: str = "Restart the deploy agent with systemctl.",
    title: str = "Deploy Runbook",
    path: str = "/docs/deploy-runbook.md",
    score: float | None = None,
    total: int = 1,
) -> DocumentChunk:
    return DocumentChunk(
        id=f"doc-{index}",
        content=content,
        source_path=path,
        source_title=title,
        source_type=".md",
        chunk_index=index,
        total_chunks=max(total, index + 1),
        metadata={"path": path, "title": title},
        score=score,
    )


class StubRetriever:
    def __init__(self, chunks: Sequence[DocumentChunk] = (), error: Exception | None = None) -> None:
        self.chunks = list(chunks)
        self.error = error
        self.calls: list[tuple[str, int]] = []

    async def search(self, query: str, top_k: int) -> Sequence[DocumentChunk]:
        self.calls.append((query, top_k))
        if self.error is not None:
            raise self.error
        return self.chunks[:top_k]

    async def health_check(self) -> None:
        return None


class StubGenerator:
    """Records prompts and answers with a fixed reply."""

    def __init__(self, reply: str = "Run `systemctl restart deploy-agent`.", error: Exception | None = None) -> None:
        self.reply = reply
        self.error = error
        self.calls: list[tuple[str, GenerationOptions]] = []
        self.closed = False

    async def generate(self, prompt: str, options: GenerationOptions) -> str:
        self.calls.append((prompt, options))
        if self.error is not None:
            raise self.error
        return self.reply

    async def generate_stream(self, prompt: str, options: GenerationOptions) -> AsyncIterator[StreamToken]:
        self.calls.append((prompt, options))
        for word in self.reply.split(" "):
            yield StreamToken(text=word + " ")
        yield StreamToken(done=True)

    async def health_check(self) -> None:
        return None

    async def aclose(self) -> None:
        self.closed = True


class ScriptedClassifier(StubGenerator):
    """Classifier double returning one reply per call, in order."""

    def __init__(self, *replies: str) -> None:
        super().__init__()
        self.replies = list(replies)

    async def generate(self, prompt: str, options: GenerationOptions) -> str:
        self.calls.append((prompt, options))
        return self.replies.pop(0) if self.replies else "safe"


@pytest.fixture
def chunks() -> list[DocumentChunk]:
    return [
        make_chunk(0, score=0.91),
        make_chunk(1, content="Check the agent logs in /var/log/deploy.", score=0.55, total=2),
    ]
