"""Pydantic models for the TeamRAG API."""

from __future__ import annotations

from typing import Dict, List, Optional

from pydantic import BaseModel, Field

from teamrag.models import DocumentChunk, PipelineResult, Scalar


class DocumentSummary(BaseModel):
    source_path: str = Field(..., description="Path recorded for the ingested document")
    title: str = Field(..., description="Readable title derived from the file name")
    type: str = Field(..., description="Lower-cased file extension")
    chunk_count: int = Field(..., ge=0, description="Number of chunks created for the document")


class DocumentIngestionResponse(BaseModel):
    documents: List[DocumentSummary]
    total_chunks: int


class QueryRequest(BaseModel):
    question: str = Field(..., min_length=1, description="End-user question to answer")
    top_k: Optional[int] = Field(default=None, ge=1, le=50, description="Override the number of retrieved chunks")
    temperature: float = Field(
        default=0.0,
        ge=0.0,
        le=2.0,
        description="Sampling temperature; 0 keeps the configured default",
    )


class SourceModel(BaseModel):
    id: str
    content: str
    source_path: str
    source_title: str
    score: Optional[float] = None
    metadata: Dict[str, Scalar] = Field(default_factory=dict)

    @classmethod
    def from_chunk(cls, chunk: DocumentChunk) -> "SourceModel":
        return cls(
            id=chunk.id,
            content=chunk.content,
            source_path=chunk.source_path,
            source_title=chunk.source_title,
            score=chunk.score,
            metadata=dict(chunk.metadata),
        )


class QueryResponse(BaseModel):
    query_id: str
    answer: str
    blocked: bool = False
    category: Optional[str] = None
    sources: List[SourceModel]
    latency_ms: float
    retrieval_ms: Optional[float] = None
    generation_ms: Optional[float] = None

    @classmethod
    def from_result(cls, result: PipelineResult) -> "QueryResponse":
        return cls(
            query_id=result.query_id,
            answer=result.text,
            blocked=result.blocked,
            category=result.verdict.category if result.verdict else None,
            sources=[SourceModel.from_chunk(chunk) for chunk in result.sources],
            latency_ms=result.latency_ms,
            retrieval_ms=result.retrieval_ms,
            generation_ms=result.generation_ms,
        )


class IndexStatsResponse(BaseModel):
    collection: str
    total_chunks: int


class ComponentHealth(BaseModel):
    name: str
    healthy: bool
    message: Optional[str] = None
    latency_ms: Optional[float] = None


class ReadinessResponse(BaseModel):
    status: str
    components: List[ComponentHealth]
