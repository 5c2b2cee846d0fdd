"""Document ingestion pipeline."""

from .chunking import chunk_text, estimate_tokens
from .extraction import SUPPORTED_EXTENSIONS, extract_text
from .service import (
    ExtractionEmptyError,
    FileDocumentIngestor,
    IngestionConfig,
    IngestionError,
    IngestionReport,
    UnsupportedFileTypeError,
)

__all__ = [
    "SUPPORTED_EXTENSIONS",
    "ExtractionEmptyError",
    "FileDocumentIngestor",
    "IngestionConfig",
    "IngestionError",
    "IngestionReport",
    "UnsupportedFileTypeError",
    "chunk_text",
    "estimate_tokens",
    "extract_text",
]
