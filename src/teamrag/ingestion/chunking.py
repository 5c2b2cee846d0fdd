"""Word-boundary text chunking with approximate token budgeting."""

from __future__ import annotations

from typing import List

# Rough approximation for English text; no tokenizer is consulted.
CHARS_PER_TOKEN = 4


def estimate_tokens(text: str) -> int:
    """Return a rough token count for ``text``."""

    return len(text) // CHARS_PER_TOKEN


def chunk_text(text: str, max_tokens: int, overlap_tokens: int) -> List[str]:
    """Split ``text`` into overlapping chunks of roughly ``max_tokens`` tokens.

    Words are never split: a single word longer than the budget becomes a chunk
    of its own that exceeds the nominal size. Each new chunk starts with the
    tail of the previous one (about ``overlap_tokens`` tokens, aligned to a word
    boundary) followed by the word that triggered the break.
    """

    if max_tokens <= 0:
        return []
    max_chars = max_tokens * CHARS_PER_TOKEN
    overlap_chars = max(overlap_tokens, 0) * CHARS_PER_TOKEN

    words = text.split()
    if not words:
        return []

    chunks: List[str] = []
    current = ""
    for word in words:
        candidate = f"{current} {word}" if current else word
        if len(candidate) > max_chars and current:
            chunks.append(current.strip())
            if overlap_chars > 0:
                overlap = _overlap_suffix(current, overlap_chars)
                current = f"{overlap} {word}" if overlap else word
            else:
                current = word
        else:
            current = candidate

    if current.strip():
        chunks.append(current.strip())
    return chunks


def _overlap_suffix(text: str, overlap_chars: int) -> str:
    if len(text) <= overlap_chars:
        return text.strip()
    start = len(text) - overlap_chars
    boundary = text.find(" ", start)
    if boundary == -1:
        return text[start:].strip()
    return text[boundary:].strip()
