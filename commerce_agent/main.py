from __future__ import annotations

import asyncio
import contextlib
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware

from .config import Settings, get_settings
from .routers import chat
from .services.error_handling import (
    build_error_response,
    log_exception,
    map_exception_to_error,
    new_trace_id,
)
from .services.errors import AssistantError
from .services.session_store import JsonFileSessionBackend, SessionStore

logger = logging.getLogger(__name__)


def build_session_store(settings: Settings) -> SessionStore:
    backend = JsonFileSessionBackend(settings.session_storage_dir) if settings.session_storage_dir else None
    return SessionStore(
        backend,
        history_limit=settings.session_history_limit,
        max_age_hours=settings.session_max_age_hours,
    )


async def _evict_periodically(store: SessionStore, interval_seconds: float) -> None:
    while True:
        await asyncio.sleep(interval_seconds)
        try:
            store.evict_stale()
        except Exception:
            logger.exception("Session cleanup failed")


def create_app() -> FastAPI:
    settings = get_settings()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        interval = settings.session_cleanup_interval_seconds
        if interval <= 0:
            logger.info("Periodic session cleanup disabled")
            yield
            return
        cleanup = asyncio.create_task(_evict_periodically(app.state.session_store, interval))
        try:
            yield
        finally:
            cleanup.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await cleanup

    app = FastAPI(
        title="Commerce Agent",
        version="1.0.0",
        docs_url="/docs" if settings.debug else None,
        lifespan=lifespan,
    )
    app.state.session_store = build_session_store(settings)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.get("/health")
    async def health() -> dict[str, str]:
        return {"status": "ok"}

    def _error_response(request: Request, exc: Exception, *, handled: bool):
        trace_id = new_trace_id()
        error_code, message, status_code = map_exception_to_error(exc)
        log_exception(request=request, exc=exc, trace_id=trace_id, error_code=error_code, handled=handled)
        return build_error_response(
            exc=exc,
            message=message,
            status_code=status_code,
            include_stack=status_code >= 500 and not settings.is_production,
        )

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(request: Request, exc: RequestValidationError):
        return _error_response(request, exc, handled=True)

    @app.exception_handler(HTTPException)
    async def http_exception_handler(request: Request, exc: HTTPException):
        return _error_response(request, exc, handled=True)

    @app.exception_handler(AssistantError)
    async def assistant_error_handler(request: Request, exc: AssistantError):
        return _error_response(request, exc, handled=exc.http_status < 500)

    @app.exception_handler(Exception)
    async def unhandled_exception_handler(request: Request, exc: Exception):
        return _error_response(request, exc, handled=False)

    app.include_router(chat.router)
    if settings.langsmith_api_key and settings.langsmith_tracing_v2:
        logger.info(
            "LangSmith tracing enabled for project=%s",
            settings.langsmith_project or "commerce-agent",
        )
    else:
        logger.info("LangSmith tracing disabled (no API key or flag)")
    logger.info(
        "FastAPI app initialized (env=%s llm_provider=%s tool_mode=%s)",
        settings.env,
        settings.llm_provider,
        settings.tool_mode,
    )
    return app


app = create_app()
