"""FastAPI application exposing docsrag services."""

from __future__ import annotations

from contextlib import asynccontextmanager
from dataclasses import dataclass
from uuid import uuid4

from fastapi import Depends, FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse, Response
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest

from docsrag.api.schemas import IndexStatsResponse, QueryRequest, QueryResponse, RebuildResponse
from docsrag.config import Settings, get_settings
from docsrag.errors import PersistenceError
from docsrag.index import IndexStore, SimilaritySearch
from docsrag.ingestion import CHUNKER_VERSION, ChunkerConfig, MarkdownChunker, SourceLayout
from docsrag.ingestion.service import IngestionConfig, IngestionService
from docsrag.metrics.observability import bind_correlation_id, clear_correlation_id, configure_logging, get_logger
from docsrag.services import DocumentationKnowledgeBase, PromptBuilder, PromptBuilderConfig, build_provider_adapter
from docsrag.workflow import QueryWorkflow, WorkflowConfig


@dataclass(frozen=True)
class AppDependencies:
    store: IndexStore
    ingestion: IngestionService
    workflow: QueryWorkflow


def build_dependencies(settings: Settings) -> AppDependencies:
    adapter = build_provider_adapter(settings)
    store = IndexStore(settings.index_dir, chunker_version=CHUNKER_VERSION)
    ingestion = IngestionService(
        store,
        adapter,
        config=IngestionConfig(
            docs_dir=settings.docs_dir,
            batch_size=settings.embedding_batch_size,
            batch_delay_seconds=settings.embedding_batch_delay_seconds,
        ),
        chunker=MarkdownChunker(
            ChunkerConfig(
                max_chunk_chars=settings.max_chunk_chars,
                overlap_chars=settings.chunk_overlap_chars,
                chars_per_word=settings.chars_per_word,
            )
        ),
        layout=SourceLayout(
            source_root=settings.docs_dir,
            prefixes=tuple(settings.source_prefixes),
            public_url_base=settings.public_url_base,
            edit_root=settings.edit_root,
            edit_url_template=settings.edit_url_template,
        ),
    )
    prompts = PromptBuilder(
        PromptBuilderConfig(
            excerpt_chars=settings.context_excerpt_chars,
            max_context_chars=settings.context_max_chars,
        )
    )
    knowledge = DocumentationKnowledgeBase(
        SimilaritySearch(store),
        adapter,
        prompts,
        min_similarity=settings.min_similarity,
    )
    workflow = QueryWorkflow(adapter, knowledge, prompts, config=WorkflowConfig.from_settings(settings))
    return AppDependencies(store=store, ingestion=ingestion, workflow=workflow)


def create_app(*, settings: Settings | None = None, dependencies: AppDependencies | None = None) -> FastAPI:
    settings = settings or get_settings()
    deps = dependencies or build_dependencies(settings)

    configure_logging()
    logger = get_logger("api")

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        if settings.index_on_startup:
            report = deps.ingestion.initialize()
            logger.info("startup.index_ready", **report.to_dict())
        yield

    app = FastAPI(title="docsrag API", version="0.1.0", lifespan=lifespan)
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

    @app.exception_handler(RequestValidationError)
    async def handle_validation_error(request: Request, exc: RequestValidationError) -> JSONResponse:
        correlation_id = getattr(request.state, "correlation_id", uuid4().hex)
        return JSONResponse(
            status_code=status.HTTP_400_BAD_REQUEST,
            content={
                "detail": "Query is required",
                "errors": [error.get("msg", "") for error in exc.errors()],
                "correlation_id": correlation_id,
            },
        )

    @app.exception_handler(PersistenceError)
    async def handle_persistence_error(request: Request, exc: PersistenceError) -> JSONResponse:
        correlation_id = getattr(request.state, "correlation_id", uuid4().hex)
        logger.error("index.persist.error", correlation_id=correlation_id, detail=str(exc))
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content={"detail": str(exc), "correlation_id": correlation_id},
        )

    @app.exception_handler(Exception)
    async def handle_unexpected_error(request: Request, exc: Exception) -> JSONResponse:
        correlation_id = getattr(request.state, "correlation_id", uuid4().hex)
        logger.error("unhandled.error", correlation_id=correlation_id, detail=str(exc))
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content={"detail": "Internal Server Error", "correlation_id": correlation_id},
        )

    def get_dependencies(request: Request) -> AppDependencies:
        return request.app.state.dependencies

    def get_workflow(dep: AppDependencies = Depends(get_dependencies)) -> QueryWorkflow:
        return dep.workflow

    def get_store(dep: AppDependencies = Depends(get_dependencies)) -> IndexStore:
        return dep.store

    def get_ingestion(dep: AppDependencies = Depends(get_dependencies)) -> IngestionService:
        return dep.ingestion

    # Sync handlers run in FastAPI's threadpool; provider calls block.
    @app.post("/query", response_model=QueryResponse)
    def query_documents(payload: QueryRequest, workflow: QueryWorkflow = Depends(get_workflow)) -> QueryResponse:
        result = workflow.run_query(payload.query)
        return QueryResponse(**result.to_dict())

    @app.post("/index/rebuild", response_model=RebuildResponse)
    def rebuild_index(full: bool = False, ingestion: IngestionService = Depends(get_ingestion)) -> RebuildResponse:
        report = ingestion.rebuild(full=full)
        return RebuildResponse(**report.to_dict())

    @app.get("/index/stats", response_model=IndexStatsResponse)
    async def index_stats(store: IndexStore = Depends(get_store)) -> IndexStatsResponse:
        return IndexStatsResponse(**store.stats())

    @app.get("/metrics")
    async def metrics() -> Response:
        payload = generate_latest()
        return Response(content=payload, media_type=CONTENT_TYPE_LATEST)

    @app.get("/healthz")
    async def healthcheck() -> dict[str, str]:
        from docsrag import __version__

        return {"status": "ok", "version": __version__, "environment": settings.environment}

    @app.head("/healthz")
    async def healthcheck_head() -> Response:
        return Response(status_code=status.HTTP_200_OK)

    @app.get("/livez")
    async def liveness() -> dict[str, str]:
        return {"status": "alive"}

    @app.get("/healthz/ready")
    async def readiness(store: IndexStore = Depends(get_store)) -> JSONResponse:
        if not store.loaded:
            return JSONResponse(
                status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
                content={"status": "starting", "detail": "index not loaded"},
            )
        return JSONResponse(content={"status": "ready", "chunks": len(store.snapshot)})

    return app


app = create_app()
