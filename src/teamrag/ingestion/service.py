"""Document ingestion service for TeamRAG."""

from __future__ import annotations

import hashlib
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Dict, List

from teamrag.ingestion.chunking import chunk_text
from teamrag.ingestion.extraction import extract_text, is_supported
from teamrag.metrics.observability import PipelineMetrics, get_logger
from teamrag.models import DocumentChunk, DocumentSource, Scalar


class IngestionError(RuntimeError):
    """Raised when ingestion fails for a particular document."""


class UnsupportedFileTypeError(IngestionError):
    """Raised when a document extension is not supported by the ingestor."""


class ExtractionEmptyError(IngestionError):
    """Raised when no text could be extracted from a document."""


@dataclass(frozen=True)
class IngestionConfig:
    """Configuration for document ingestion."""

    chunk_tokens: int = 1000
    chunk_overlap: int = 200
    encoding: str = "utf-8"

    def __post_init__(self) -> None:
        if self.chunk_tokens <= 0:
            raise ValueError(f"chunk_tokens must be positive, got {self.chunk_tokens}")
        if not 0 <= self.chunk_overlap < self.chunk_tokens:
            raise ValueError(
                f"chunk_overlap must be between 0 and chunk_tokens, got {self.chunk_overlap}"
            )

    def with_overrides(self, chunk_tokens: int = 0, chunk_overlap: int = 0) -> "IngestionConfig":
        """Return a copy using the given sizes; ``0`` keeps the configured value.

        A kept overlap is shrunk to fit below an overridden chunk size.
        """

        tokens = chunk_tokens or self.chunk_tokens
        overlap = chunk_overlap or self.chunk_overlap
        if not chunk_overlap and overlap >= tokens > 0:
            overlap = tokens - 1
        return IngestionConfig(chunk_tokens=tokens, chunk_overlap=overlap, encoding=self.encoding)


@dataclass
class IngestionReport:
    """Outcome of ingesting a directory tree."""

    files: List[Path] = field(default_factory=list)
    chunks: List[DocumentChunk] = field(default_factory=list)
    failures: Dict[Path, str] = field(default_factory=dict)

    @property
    def succeeded(self) -> int:
        return len(self.files) - len(self.failures)


def document_id(source_path: str) -> str:
    return hashlib.md5(source_path.encode("utf-8")).hexdigest()


def title_from_path(path: Path) -> str:
    """Build a readable title from a file name, e.g. ``bare-metal_setup.md`` -> ``Bare Metal Setup``."""

    name = path.stem.replace("_", " ").replace("-", " ")
    return " ".join(word[:1].upper() + word[1:].lower() for word in name.split())


def describe_source(path: Path) -> DocumentSource:
    stat = path.stat()
    return DocumentSource(
        path=str(path),
        title=title_from_path(path),
        type=path.suffix.lower(),
        size=stat.st_size,
        modified=datetime.fromtimestamp(stat.st_mtime, tz=timezone.utc),
    )


def build_chunks(text: str, source: DocumentSource, config: IngestionConfig) -> List[DocumentChunk]:
    """Chunk extracted ``text`` and wrap each piece in a ``DocumentChunk`` record."""

    pieces = chunk_text(text, config.chunk_tokens, config.chunk_overlap)
    total = len(pieces)
    base_id = document_id(source.path)
    chunks: List[DocumentChunk] = []
    for index, piece in enumerate(pieces):
        metadata: Dict[str, Scalar] = {
            "path": source.path,
            "title": source.title,
            "type": source.type,
            "size": source.size,
            "chunk_id": index,
            "total_chunks": total,
        }
        if source.modified is not None:
            metadata["modified"] = source.modified.isoformat()
        chunks.append(
            DocumentChunk(
                id=f"{base_id}-{index}",
                content=piece,
                source_path=source.path,
                source_title=source.title,
                source_type=source.type,
                chunk_index=index,
                total_chunks=total,
                metadata=metadata,
            )
        )
    return chunks


class FileDocumentIngestor:
    """Extract, normalize and chunk documents from the local filesystem."""

    _logger = get_logger("ingestion")

    def __init__(self, config: IngestionConfig | None = None) -> None:
        self._config = config or IngestionConfig()

    @property
    def config(self) -> IngestionConfig:
        return self._config

    def ingest_file(self, path: Path, *, config: IngestionConfig | None = None) -> List[DocumentChunk]:
        config = config or self._config
        if not is_supported(path):
            raise UnsupportedFileTypeError(f"Unsupported document type: {path.suffix or '<none>'}")

        start = time.perf_counter()
        try:
            source = describe_source(path)
            text = extract_text(path, encoding=config.encoding)
        except Exception as exc:
            raise IngestionError(f"Failed to load {path}: {exc}") from exc
        if not text:
            raise ExtractionEmptyError(f"Document contains no extractable text: {path}")

        chunks = build_chunks(text, source, config)
        duration = time.perf_counter() - start
        PipelineMetrics.observe_ingestion(duration, len(chunks))
        self._logger.info(
            "ingestion.complete",
            path=str(path),
            chunk_count=len(chunks),
            duration_seconds=duration,
        )
        return chunks

    def ingest_directory(self, root: Path, *, config: IngestionConfig | None = None) -> IngestionReport:
        """Ingest every supported file below ``root``; failing documents are recorded and skipped."""

        report = IngestionReport(files=sorted(p for p in root.rglob("*") if p.is_file() and is_supported(p)))
        for path in report.files:
            try:
                report.chunks.extend(self.ingest_file(path, config=config))
            except IngestionError as exc:
                self._logger.warning("ingestion.skipped", path=str(path), reason=str(exc))
                report.failures[path] = str(exc)
        return report

