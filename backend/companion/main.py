"""FastAPI application entrypoint."""

from __future__ import annotations

from contextlib import asynccontextmanager
from typing import AsyncIterator

from fastapi import FastAPI, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from .api import api_router
from .core.config import AppSettings, get_settings
from .core.errors import SessionNotFound
from .core.logging import clear_request_context, get_logger, setup_logging
from .services.llm import configure_tracing
from .services.runtime import ChatRuntime, build_runtime

logger = get_logger(__name__)


def create_app(settings: AppSettings | None = None, runtime: ChatRuntime | None = None) -> FastAPI:
    """Construct the FastAPI application instance.

    ``runtime`` lets callers inject pre-built stores and collaborators; by
    default one is built from settings when the application starts.
    """

    settings = settings or get_settings()

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        """Build the session core, start its sweep and tear both down on exit."""

        configure_tracing(settings)
        setup_logging(settings.log_level)

        app.state.runtime = runtime or build_runtime(settings)
        await app.state.runtime.start()

        logger.info(
            "application.startup",
            environment=settings.environment,
            version=settings.version,
            tracing_enabled=settings.enable_tracing,
            session_ttl_seconds=settings.session_ttl_seconds,
        )

        try:
            yield
        finally:
            await app.state.runtime.stop()
            logger.info("application.shutdown")

    application = FastAPI(
        title=settings.project_name,
        version=settings.version,
        docs_url="/docs",
        redoc_url="/redoc",
        lifespan=lifespan,
    )

    if settings.cors_allowed_origins:
        application.add_middleware(
            CORSMiddleware,
            allow_origins=settings.cors_allowed_origins,
            allow_credentials=True,
            allow_methods=["*"],
            allow_headers=["*"],
        )

    @application.middleware("http")
    async def reset_log_context(request: Request, call_next):
        clear_request_context()
        return await call_next(request)

    @application.exception_handler(SessionNotFound)
    async def session_not_found(request: Request, exc: SessionNotFound) -> JSONResponse:
        return JSONResponse(status_code=status.HTTP_404_NOT_FOUND, content={"detail": str(exc)})

    application.include_router(api_router, prefix="/v1")

    @application.get("/", tags=["meta"], summary="Service metadata")
    async def root() -> dict[str, str]:
        """Service metadata root endpoint."""

        return {"service": settings.project_name, "version": settings.version}

    return application


app = create_app()
