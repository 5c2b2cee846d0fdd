"""FastAPI application exposing TeamRAG services."""

from __future__ import annotations

import asyncio
from collections import Counter
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Iterable, Sequence
from uuid import uuid4

from fastapi import Depends, FastAPI, File, HTTPException, Request, UploadFile, status
from fastapi.responses import JSONResponse, Response
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest

from teamrag.api.schemas import (
    ComponentHealth,
    DocumentIngestionResponse,
    DocumentSummary,
    IndexStatsResponse,
    QueryRequest,
    QueryResponse,
    ReadinessResponse,
)
from teamrag.config import Settings, get_settings
from teamrag.ingestion import (
    SUPPORTED_EXTENSIONS,
    ExtractionEmptyError,
    IngestionError,
    UnsupportedFileTypeError,
)
from teamrag.metrics.observability import bind_correlation_id, clear_correlation_id, configure_logging, get_logger
from teamrag.models import DocumentChunk
from teamrag.runtime import AppDependencies, build_dependencies
from teamrag.services.query import PipelineCancelledError, PipelineError, QueryService


def create_app(*, settings: Settings | None = None, dependencies: AppDependencies | None = None) -> FastAPI:
    settings = settings or get_settings()
    owns_dependencies = dependencies is None
    deps = dependencies or build_dependencies(settings)

    configure_logging(settings.log_level)
    logger = get_logger("api")

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        yield
        if owns_dependencies:
            await deps.aclose()

    from teamrag import __version__

    app = FastAPI(title="TeamRAG API", version=__version__, lifespan=lifespan)
    app.state.dependencies = deps

    @app.middleware("http")
    async def add_correlation_id(request: Request, call_next):  # type: ignore[override]
        correlation_id = request.headers.get("X-Request-ID", uuid4().hex)
        request.state.correlation_id = correlation_id
        bind_correlation_id(correlation_id)
        try:
            response = await call_next(request)
        finally:
            clear_correlation_id()
        response.headers["X-Correlation-ID"] = correlation_id
        return response

    def require_api_key(request: Request) -> None:
        expected = settings.api_key
        if not expected:
            return
        provided = request.headers.get("X-API-Key")
        if provided != expected:
            raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid API key")

    def _error_response(request: Request, status_code: int, detail: str, **extra: str) -> JSONResponse:
        correlation_id = getattr(request.state, "correlation_id", uuid4().hex)
        return JSONResponse(
            status_code=status_code,
            content={"detail": detail, "correlation_id": correlation_id, **extra},
        )

    @app.exception_handler(PipelineCancelledError)
    async def handle_cancelled(request: Request, exc: PipelineCancelledError) -> JSONResponse:
        logger.error("query.timeout", stage=exc.stage.value)
        return _error_response(
            request,
            status.HTTP_504_GATEWAY_TIMEOUT,
            "Query timed out",
            stage=exc.stage.value,
        )

    @app.exception_handler(PipelineError)
    async def handle_pipeline_error(request: Request, exc: PipelineError) -> JSONResponse:
        logger.error("query.error", stage=exc.stage.value, detail=str(exc.cause))
        return _error_response(request, status.HTTP_502_BAD_GATEWAY, str(exc), stage=exc.stage.value)

    @app.exception_handler(IngestionError)
    async def handle_ingestion_error(request: Request, exc: IngestionError) -> JSONResponse:
        logger.error("ingestion.error", detail=str(exc))
        if isinstance(exc, UnsupportedFileTypeError):
            code = status.HTTP_415_UNSUPPORTED_MEDIA_TYPE
        elif isinstance(exc, ExtractionEmptyError):
            code = status.HTTP_422_UNPROCESSABLE_ENTITY
        else:
            code = status.HTTP_500_INTERNAL_SERVER_ERROR
        return _error_response(request, code, str(exc))

    @app.exception_handler(Exception)
    async def handle_unexpected_error(request: Request, exc: Exception) -> JSONResponse:
        logger.error("unhandled.error", detail=str(exc))
        return _error_response(request, status.HTTP_500_INTERNAL_SERVER_ERROR, "Internal Server Error")

    def get_dependencies(request: Request) -> AppDependencies:
        return request.app.state.dependencies

    def get_query_service(dep: AppDependencies = Depends(get_dependencies)) -> QueryService:
        return dep.query_service

    @app.post("/documents", response_model=DocumentIngestionResponse, status_code=status.HTTP_201_CREATED)
    async def upload_documents(
        files: Sequence[UploadFile] = File(...),
        dep: AppDependencies = Depends(get_dependencies),
        _auth: None = Depends(require_api_key),
    ) -> DocumentIngestionResponse:
        if not files:
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="No files provided")
        size_limit = settings.max_upload_size_mb * 1024 * 1024
        upload_dir = Path(settings.upload_dir)
        upload_dir.mkdir(parents=True, exist_ok=True)
        saved_paths: list[Path] = []
        for upload in files:
            # stored under the bare file name so re-uploads replace the same chunk ids
            filename = Path(upload.filename or f"upload-{uuid4().hex}").name
            suffix = Path(filename).suffix.lower()
            if suffix not in SUPPORTED_EXTENSIONS:
                await upload.close()
                raise UnsupportedFileTypeError(f"Unsupported document type: {suffix or '<none>'}")
            destination = upload_dir / filename
            bytes_written = 0
            with destination.open("wb") as out_f:
                while True:
                    block = await upload.read(1024 * 1024)
                    if not block:
                        break
                    out_f.write(block)
                    bytes_written += len(block)
                    if bytes_written > size_limit:
                        break
            await upload.close()
            if bytes_written > size_limit:
                destination.unlink(missing_ok=True)
                raise HTTPException(
                    status_code=status.HTTP_413_REQUEST_ENTITY_TOO_LARGE,
                    detail=f"File too large (>{settings.max_upload_size_mb}MB): {filename}",
                )
            saved_paths.append(destination)
        chunks: list[DocumentChunk] = []
        for path in saved_paths:
            chunks.extend(await asyncio.to_thread(dep.ingest_file, path))
        summaries = _build_document_summaries(chunks)
        return DocumentIngestionResponse(documents=summaries, total_chunks=len(chunks))

    @app.post("/query", response_model=QueryResponse)
    async def query_documents(
        payload: QueryRequest,
        service: QueryService = Depends(get_query_service),
        _auth: None = Depends(require_api_key),
    ) -> QueryResponse:
        result = await service.answer(payload.question, temperature=payload.temperature, top_k=payload.top_k)
        return QueryResponse.from_result(result)

    @app.get("/metrics")
    async def metrics() -> Response:
        payload = generate_latest()
        return Response(content=payload, media_type=CONTENT_TYPE_LATEST)

    @app.get("/healthz")
    async def healthcheck() -> dict[str, str]:
        return {"status": "ok", "version": __version__, "environment": settings.environment}

    @app.get("/healthz/ready", response_model=ReadinessResponse)
    async def readiness(dep: AppDependencies = Depends(get_dependencies)) -> JSONResponse:
        statuses = await dep.health_check()
        ready = all(item.healthy for item in statuses)
        body = ReadinessResponse(
            status="ready" if ready else "degraded",
            components=[
                ComponentHealth(name=item.name, healthy=item.healthy, message=item.message, latency_ms=item.latency_ms)
                for item in statuses
            ],
        )
        return JSONResponse(
            status_code=status.HTTP_200_OK if ready else status.HTTP_503_SERVICE_UNAVAILABLE,
            content=body.model_dump(),
        )

    @app.delete("/index", status_code=status.HTTP_204_NO_CONTENT)
    async def reset_index(
        dep: AppDependencies = Depends(get_dependencies),
        _auth: None = Depends(require_api_key),
    ) -> Response:
        await asyncio.to_thread(dep.store.reset)
        logger.info("index.reset", collection=dep.store.collection_name)
        return Response(status_code=status.HTTP_204_NO_CONTENT)

    @app.get("/index/stats", response_model=IndexStatsResponse)
    async def index_stats(dep: AppDependencies = Depends(get_dependencies)) -> IndexStatsResponse:
        total = await asyncio.to_thread(dep.store.count)
        return IndexStatsResponse(collection=dep.store.collection_name, total_chunks=total)

    return app


def _build_document_summaries(chunks: Iterable[DocumentChunk]) -> list[DocumentSummary]:
    counts: Counter[str] = Counter()
    first: dict[str, DocumentChunk] = {}
    for chunk in chunks:
        counts[chunk.source_path] += 1
        first.setdefault(chunk.source_path, chunk)
    return [
        DocumentSummary(
            source_path=path,
            title=first[path].source_title,
            type=first[path].source_type,
            chunk_count=count,
        )
        for path, count in counts.items()
    ]
