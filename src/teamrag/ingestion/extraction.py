"""Plain-text extraction for the document formats TeamRAG ingests."""

from __future__ import annotations

import re
import unicodedata
from pathlib import Path
from typing import Mapping

from bs4 import BeautifulSoup
from langchain_community.document_loaders import Docx2txtLoader, PyPDFLoader, TextLoader
from langchain_core.document_loaders import BaseLoader

_LOADERS: Mapping[str, type[BaseLoader] | None] = {
    ".txt": TextLoader,
    ".md": TextLoader,
    ".markdown": TextLoader,
    ".html": None,
    ".htm": None,
    ".pdf": PyPDFLoader,
    ".docx": Docx2txtLoader,
}

SUPPORTED_EXTENSIONS: tuple[str, ...] = tuple(_LOADERS)

_CODE_BLOCK_RE = re.compile(r"```[a-zA-Z0-9_-]*\n(.*?)\n```", re.DOTALL)
_INLINE_CODE_RE = re.compile(r"`([^`]+)`")
_IMAGE_RE = re.compile(r"!\[[^\]]*\]\([^)]+\)")
_LINK_RE = re.compile(r"\[([^\]]+)\]\([^)]+\)")
_HEADER_RE = re.compile(r"^#{1,6}\s+(.+)$", re.MULTILINE)
_EMPHASIS_RE = re.compile(r"\*{1,3}([^*]+)\*{1,3}")
_STRIKE_RE = re.compile(r"~~([^~]+)~~")


def normalize_text(raw: str) -> str:
    normalized = unicodedata.normalize("NFKC", raw)
    normalized = normalized.replace("\u00a0", " ")
    normalized = re.sub(r"\s+", " ", normalized)
    return normalized.strip()


def strip_markdown(content: str) -> str:
    """Remove Markdown syntax while keeping the readable text."""

    text = _CODE_BLOCK_RE.sub(r"\1", content)
    text = _INLINE_CODE_RE.sub(r"\1", text)
    # images before links: the link pattern would otherwise keep the alt text
    text = _IMAGE_RE.sub("", text)
    text = _LINK_RE.sub(r"\1", text)
    text = _HEADER_RE.sub(r"\1", text)
    text = _EMPHASIS_RE.sub(r"\1", text)
    text = _STRIKE_RE.sub(r"\1", text)
    return normalize_text(text)


def strip_html(content: str) -> str:
    """Return the visible text of an HTML document."""

    soup = BeautifulSoup(content, "html.parser")
    for element in soup(["script", "style"]):
        element.decompose()
    return normalize_text(soup.get_text(" "))


def is_supported(path: Path) -> bool:
    return path.suffix.lower() in _LOADERS


def extract_text(path: Path, *, encoding: str = "utf-8") -> str:
    """Return normalized plain text for ``path``.

    Raises ``KeyError`` for unsupported extensions; loader failures propagate.
    """

    suffix = path.suffix.lower()
    loader_cls = _LOADERS[suffix]
    if loader_cls is None:
        return strip_html(path.read_text(encoding=encoding))
    loader = _build_loader(loader_cls, path, encoding)
    raw = "\n".join(document.page_content for document in loader.load())
    if suffix in {".md", ".markdown"}:
        return strip_markdown(raw)
    return normalize_text(raw)


def _build_loader(loader_cls: type[BaseLoader], path: Path, encoding: str) -> BaseLoader:
    if loader_cls is TextLoader:
        return loader_cls(str(path), encoding=encoding)
    return loader_cls(str(path))
