"""FastAPI application exposing the knowpack assembly service."""

from __future__ import annotations

import time
from collections import deque
from dataclasses import dataclass
from uuid import uuid4

from fastapi import Depends, FastAPI, HTTPException, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, Response
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest

from knowpack.api.schemas import (
    ContextRequest,
    ContextResponse,
    DocumentResponse,
    ExclusionModel,
    IncludedDocumentModel,
    PackListResponse,
    PackSummaryModel,
    PartialDataWarningModel,
)
from knowpack.config import Settings, get_settings
from knowpack.errors import BudgetTooSmall, DocumentNotFound, InvalidPath, PackNotFound, StoreUnavailable
from knowpack.metrics.observability import bind_correlation_id, clear_correlation_id, configure_logging, get_logger
from knowpack.models import AssembledContext, Query
from knowpack.services.assembly import ContextAssemblyService
from knowpack.store.markdown import load_directory
from knowpack.store.service import DocumentStore, InMemoryDocumentStore


@dataclass(frozen=True)
class AppDependencies:
    store: DocumentStore
    service: ContextAssemblyService


class RateLimiter:
    """Sliding-window request limiter keyed by client address and path."""

    def __init__(self, requests: int, window_seconds: int, *, trust_forwarded_for: bool = False) -> None:
        self.requests = requests
        self.window = window_seconds
        self.trust_forwarded_for = trust_forwarded_for
        self._buckets: dict[str, deque[float]] = {}
        self._last_sweep = 0.0

    def __len__(self) -> int:
        return len(self._buckets)

    def client_key(self, request: Request) -> str:
        client_ip = request.client.host if request.client else "-"
        if self.trust_forwarded_for:
            forwarded = request.headers.get("x-forwarded-for", "")
            client_ip = forwarded.split(",")[0].strip() or client_ip
        return f"{client_ip}:{request.url.path}"

    def hit(self, key: str, now: float) -> bool:
        """Record a request; return False when the key is over its limit."""

        cutoff = now - self.window
        if now - self._last_sweep >= self.window:
            self._sweep(cutoff)
            self._last_sweep = now
        bucket = self._buckets.setdefault(key, deque())
        while bucket and bucket[0] < cutoff:
            bucket.popleft()
        if len(bucket) >= self.requests:
            return False
        bucket.append(now)
        return True

    def _sweep(self, cutoff: float) -> None:
        idle = [key for key, bucket in self._buckets.items() if not bucket or bucket[-1] < cutoff]
        for key in idle:
            del self._buckets[key]

    def __call__(self, request: Request) -> None:
        if not self.hit(self.client_key(request), time.time()):
            raise HTTPException(status_code=status.HTTP_429_TOO_MANY_REQUESTS, detail="Rate limit exceeded")


def _build_dependencies(settings: Settings) -> AppDependencies:
    logger = get_logger("api")
    if settings.knowledge_dir.is_dir():
        store, _ = load_directory(settings.knowledge_dir, separator=settings.separator)
    else:
        logger.warning("knowledge_dir.missing", knowledge_dir=str(settings.knowledge_dir))
        store = InMemoryDocumentStore()
    service = ContextAssemblyService.from_settings(store, settings)
    return AppDependencies(store=store, service=service)


def _context_response(context: AssembledContext) -> ContextResponse:
    return ContextResponse(
        body=context.body,
        separator=context.separator,
        total_bytes=context.total_bytes,
        reason=context.reason,
        truncated=context.truncated,
        documents=[IncludedDocumentModel(**doc.to_dict()) for doc in context.documents],
        excluded=[ExclusionModel(**item.to_dict()) for item in context.excluded],
        warnings=[PartialDataWarningModel(**warning.to_dict()) for warning in context.warnings],
    )


def create_app(*, settings: Settings | None = None, dependencies: AppDependencies | None = None) -> FastAPI:
    settings = settings or get_settings()
    deps = dependencies or _build_dependencies(settings)

    configure_logging()
    logger = get_logger("api")
    app = FastAPI(title="knowpack API", version="0.1.0")
    app.state.dependencies = deps

    # Optional CORS
    if settings.cors_allow_origins:
        app.add_middleware(
            CORSMiddleware,
            allow_origins=list(settings.cors_allow_origins),
            allow_credentials=settings.cors_allow_credentials,
            allow_methods=list(settings.cors_allow_methods),
            allow_headers=list(settings.cors_allow_headers),
        )

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

    # Security dependencies
    def require_api_key(request: Request) -> None:
        expected = settings.api_key
        if not expected:
            return
        provided = request.headers.get("X-API-Key")
        if provided != expected:
            raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid API key")

    rate_limiter = RateLimiter(
        settings.rate_limit_requests,
        settings.rate_limit_window_seconds,
        trust_forwarded_for=settings.trust_forwarded_for,
    )

    def _error(request: Request, status_code: int, event: str, detail: str) -> JSONResponse:
        correlation_id = getattr(request.state, "correlation_id", uuid4().hex)
        logger.warning(event, correlation_id=correlation_id, detail=detail)
        return JSONResponse(status_code=status_code, content={"detail": detail, "correlation_id": correlation_id})

    @app.exception_handler(PackNotFound)
    async def handle_pack_not_found(request: Request, exc: PackNotFound) -> JSONResponse:
        return _error(request, status.HTTP_404_NOT_FOUND, "pack.not_found", str(exc))

    @app.exception_handler(DocumentNotFound)
    async def handle_document_not_found(request: Request, exc: DocumentNotFound) -> JSONResponse:
        return _error(request, status.HTTP_404_NOT_FOUND, "document.not_found", str(exc))

    @app.exception_handler(BudgetTooSmall)
    async def handle_budget_too_small(request: Request, exc: BudgetTooSmall) -> JSONResponse:
        return _error(request, status.HTTP_422_UNPROCESSABLE_ENTITY, "budget.too_small", str(exc))

    @app.exception_handler(InvalidPath)
    async def handle_invalid_path(request: Request, exc: InvalidPath) -> JSONResponse:
        return _error(request, status.HTTP_400_BAD_REQUEST, "path.invalid", str(exc))

    @app.exception_handler(StoreUnavailable)
    async def handle_store_unavailable(request: Request, exc: StoreUnavailable) -> JSONResponse:
        correlation_id = getattr(request.state, "correlation_id", uuid4().hex)
        logger.error("store.unavailable", correlation_id=correlation_id, detail=str(exc))
        return JSONResponse(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
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

    def get_store(dep: AppDependencies = Depends(get_dependencies)) -> DocumentStore:
        return dep.store

    def get_service(dep: AppDependencies = Depends(get_dependencies)) -> ContextAssemblyService:
        return dep.service

    @app.post("/context", response_model=ContextResponse)
    async def assemble_context(
        payload: ContextRequest,
        service: ContextAssemblyService = Depends(get_service),
        _auth: None = Depends(require_api_key),
        _rl: None = Depends(rate_limiter),
    ) -> ContextResponse:
        query = Query(
            pack=payload.pack,
            topic_hint=payload.topic_hint,
            tags=frozenset(payload.tags),
            budget_bytes=payload.budget_bytes or settings.default_budget_bytes,
            now=payload.now,
        )
        context = await service.assemble_async(query)
        return _context_response(context)

    @app.get("/packs", response_model=PackListResponse)
    async def list_packs(
        store: DocumentStore = Depends(get_store),
        _auth: None = Depends(require_api_key),
    ) -> PackListResponse:
        packs = [
            PackSummaryModel(name=summary.name, document_count=summary.document_count, topics=list(summary.topics))
            for summary in store.list_packs()
        ]
        return PackListResponse(packs=packs)

    @app.get("/packs/{pack}", response_model=PackSummaryModel)
    async def describe_pack(
        pack: str,
        store: DocumentStore = Depends(get_store),
        _auth: None = Depends(require_api_key),
    ) -> PackSummaryModel:
        for summary in store.list_packs():
            if summary.name == pack:
                return PackSummaryModel(name=summary.name, document_count=summary.document_count, topics=list(summary.topics))
        raise PackNotFound(pack)

    @app.get("/documents/{document_id}", response_model=DocumentResponse)
    async def get_document(
        document_id: str,
        store: DocumentStore = Depends(get_store),
        _auth: None = Depends(require_api_key),
    ) -> DocumentResponse:
        document = store.get(document_id)
        return DocumentResponse(
            document_id=document.document_id,
            pack=document.pack,
            topic=document.topic,
            slug=document.slug,
            confidence=document.confidence,
            sources_checked=document.sources_checked,
            last_updated=document.last_updated,
            last_verified=document.last_verified,
            tags=sorted(document.tags),
            source_path=document.source_path,
            size_bytes=document.size_bytes,
            body=document.body,
        )

    @app.get("/metrics")
    async def metrics() -> Response:
        payload = generate_latest()
        return Response(content=payload, media_type=CONTENT_TYPE_LATEST)

    @app.get("/healthz")
    async def healthcheck() -> dict[str, str]:
        from knowpack import __version__

        return {"status": "ok", "version": __version__, "environment": settings.environment}

    @app.head("/healthz")
    async def healthcheck_head() -> Response:
        return Response(status_code=status.HTTP_200_OK)

    @app.get("/livez")
    async def liveness() -> dict[str, str]:
        return {"status": "alive"}

    @app.get("/healthz/ready")
    async def readiness(store: DocumentStore = Depends(get_store)) -> dict[str, str]:
        packs = store.list_packs()
        return {"status": "ready", "packs": str(len(packs))}

    return app


app = create_app()
