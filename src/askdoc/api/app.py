"""FastAPI application exposing the askdoc pipeline."""

from __future__ import annotations

import asyncio
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import Awaitable, TypeVar
from uuid import uuid4

import httpx
from fastapi import Depends, FastAPI, File, Form, HTTPException, Request, UploadFile, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, Response
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest
from starlette.datastructures import Headers, MutableHeaders
from starlette.types import ASGIApp, Message, Receive, Scope, Send

from askdoc.api.schemas import AnswerResponse, ErrorResponse
from askdoc.auth import ClientCredentials, CredentialManager
from askdoc.config import Settings, get_settings
from askdoc.errors import ErrorKind, PipelineError
from askdoc.metrics.observability import bind_correlation_id, clear_correlation_id, configure_logging, get_logger
from askdoc.retrieval import RetrievalClient, RetrievalConfig
from askdoc.services import CompletionClient, CompletionConfig, Orchestrator
from askdoc.storage import UploadConfig, UploadSessionClient, check_file_name
from askdoc.transport import RetryPolicy

T = TypeVar("T")

HTTP_CLIENT_CLOSED_REQUEST = 499


@dataclass(frozen=True)
class AppDependencies:
    orchestrator: Orchestrator
    credentials: CredentialManager | None = None
    http: httpx.AsyncClient | None = None

    async def aclose(self) -> None:
        if self.credentials is not None:
            await self.credentials.aclose()
        if self.http is not None:
            await self.http.aclose()


def _build_dependencies(settings: Settings) -> AppDependencies:
    http = httpx.AsyncClient(timeout=settings.http_timeout_seconds)
    retry = RetryPolicy(
        max_attempts=settings.retry_max_attempts,
        initial_backoff=settings.retry_initial_backoff_seconds,
        max_backoff=settings.retry_max_backoff_seconds,
    )
    credentials = CredentialManager(
        ClientCredentials(
            token_url=settings.token_url,
            client_id=settings.client_id,
            client_secret=settings.client_secret,
        ),
        client=http,
        refresh_margin=settings.token_refresh_margin_seconds,
    )
    uploader = UploadSessionClient(
        http,
        credentials,
        UploadConfig(
            graph_base_url=settings.graph_base_url,
            drive_id=settings.drive_id,
            parent_path=settings.parent_path,
            scope=settings.graph_scope,
            segment_bytes=settings.upload_segment_bytes,
            retry=retry,
        ),
    )
    retriever = RetrievalClient(
        http,
        credentials,
        RetrievalConfig(endpoint=settings.retrieval_endpoint, scope=settings.graph_scope, retry=retry),
    )
    completer = CompletionClient(
        http,
        CompletionConfig(
            endpoint=settings.openai_endpoint,
            deployment=settings.openai_deployment,
            api_key=settings.openai_api_key,
            api_version=settings.openai_api_version,
            retry=retry,
        ),
    )
    orchestrator = Orchestrator(
        uploader,
        retriever,
        completer,
        top_n=settings.retrieval_top_n,
        timeout=settings.pipeline_timeout_seconds,
    )
    return AppDependencies(orchestrator=orchestrator, credentials=credentials, http=http)


class CorrelationIdMiddleware:
    """Pure ASGI middleware: ``X-Request-ID`` in, ``X-Correlation-ID`` out.

    Kept off ``BaseHTTPMiddleware`` so endpoints still see the client's
    ``http.disconnect`` on ``receive``.
    """

    def __init__(self, app: ASGIApp) -> None:
        self.app = app

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return
        correlation_id = Headers(scope=scope).get("x-request-id") or uuid4().hex
        scope.setdefault("state", {})["correlation_id"] = correlation_id

        async def send_with_correlation_id(message: Message) -> None:
            if message["type"] == "http.response.start":
                MutableHeaders(scope=message).append("X-Correlation-ID", correlation_id)
            await send(message)

        bind_correlation_id(correlation_id)
        try:
            await self.app(scope, receive, send_with_correlation_id)
        finally:
            clear_correlation_id()


async def _wait_for_disconnect(request: Request) -> None:
    # The form body is already consumed, so the next message is the disconnect.
    while True:
        message = await request.receive()
        if message["type"] == "http.disconnect":
            return


async def _run_until_disconnect(request: Request, work: Awaitable[T]) -> T:
    """Await ``work``, cancelling it if the client goes away first."""

    task = asyncio.ensure_future(work)
    watcher = asyncio.ensure_future(_wait_for_disconnect(request))
    try:
        await asyncio.wait({task, watcher}, return_when=asyncio.FIRST_COMPLETED)
        if task.done():
            return task.result()
        task.cancel()
        await asyncio.gather(task, return_exceptions=True)
        raise HTTPException(status_code=HTTP_CLIENT_CLOSED_REQUEST, detail="Client closed request")
    finally:
        for pending in (task, watcher):
            if not pending.done():
                pending.cancel()
        await asyncio.gather(task, watcher, return_exceptions=True)


def create_app(*, settings: Settings | None = None, dependencies: AppDependencies | None = None) -> FastAPI:
    settings = settings or get_settings()
    deps = dependencies or _build_dependencies(settings)

    configure_logging()
    logger = get_logger("api")

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        yield
        await app.state.dependencies.aclose()

    app = FastAPI(title="askdoc API", version="0.1.0", lifespan=lifespan)
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

    app.add_middleware(CorrelationIdMiddleware)

    @app.exception_handler(PipelineError)
    async def handle_pipeline_error(request: Request, exc: PipelineError) -> JSONResponse:
        correlation_id = getattr(request.state, "correlation_id", uuid4().hex)
        logger.error(
            "pipeline.error",
            correlation_id=correlation_id,
            kind=exc.kind.value,
            status_code=exc.status_code,
            detail=str(exc),
        )
        code = (
            status.HTTP_504_GATEWAY_TIMEOUT
            if exc.kind is ErrorKind.DEADLINE_EXCEEDED
            else status.HTTP_502_BAD_GATEWAY
        )
        return JSONResponse(
            status_code=code,
            content={"detail": exc.public_message, "kind": exc.kind.value, "correlation_id": correlation_id},
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

    def get_orchestrator(dep: AppDependencies = Depends(get_dependencies)) -> Orchestrator:
        return dep.orchestrator

    @app.post(
        "/api/ask",
        response_model=AnswerResponse,
        responses={502: {"model": ErrorResponse}, 504: {"model": ErrorResponse}},
    )
    async def ask(
        request: Request,
        file: UploadFile = File(...),
        question: str = Form(...),
        orchestrator: Orchestrator = Depends(get_orchestrator),
    ) -> AnswerResponse:
        if not question.strip():
            raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail="Question must not be blank")
        limit = settings.max_upload_bytes
        data = await file.read(limit + 1)
        await file.close()
        file_name = file.filename or f"upload-{uuid4().hex}"
        try:
            check_file_name(file_name)
        except ValueError as exc:
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc
        if not data:
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=f"File is empty: {file_name}")
        if len(data) > limit:
            raise HTTPException(
                status_code=status.HTTP_413_REQUEST_ENTITY_TOO_LARGE,
                detail=f"File too large (>{settings.max_upload_size_mb}MB): {file_name}",
            )
        text = await _run_until_disconnect(request, orchestrator.ingest_and_ask(file_name, data, question))
        return AnswerResponse(text=text)

    @app.get("/metrics")
    async def metrics() -> Response:
        payload = generate_latest()
        return Response(content=payload, media_type=CONTENT_TYPE_LATEST)

    @app.get("/healthz")
    async def healthcheck() -> dict[str, str]:
        from askdoc import __version__

        return {"status": "ok", "version": __version__, "environment": settings.environment}

    @app.head("/healthz")
    async def healthcheck_head() -> Response:
        return Response(status_code=status.HTTP_200_OK)

    @app.get("/livez")
    async def liveness() -> dict[str, str]:
        return {"status": "alive"}

    return app


app = create_app()
