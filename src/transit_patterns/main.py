"""ASGI application: pattern build and pattern editing routes."""

from __future__ import annotations

import uuid
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Any

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from transit_patterns.config import Settings, get_settings
from transit_patterns.database import check_database_connection, close_database
from transit_patterns.logging import (
    bind_request_context,
    clear_request_context,
    get_logger,
    setup_logging,
)
from transit_patterns.routers.admin import router as admin_router
from transit_patterns.routers.patterns import router as patterns_router
from transit_patterns.services.patterns.errors import PatternError

if TYPE_CHECKING:
    from collections.abc import AsyncGenerator

logger = get_logger(__name__)

REQUEST_ID_HEADER = "X-Request-ID"


@asynccontextmanager
async def lifespan(_app: FastAPI) -> AsyncGenerator[None, None]:
    setup_logging()
    settings = get_settings()
    logger.info(
        "Starting Transit Patterns API",
        environment=settings.environment,
        batch_size=settings.pattern_batch_size,
    )

    yield

    logger.info("Shutting down Transit Patterns API")
    await close_database()


async def health_payload(settings: Settings) -> dict[str, Any]:
    """Service status for ``GET /health``.

    ``unhealthy`` when configuration is incomplete, ``degraded`` when the
    database cannot be reached.
    """
    missing_env = settings.missing_required_env()
    db_healthy = await check_database_connection()

    issues: list[str] = []
    if missing_env:
        status = "unhealthy"
        issues.append("Missing required environment variables: " + ", ".join(missing_env))
    else:
        status = "healthy" if db_healthy else "degraded"
    if not db_healthy:
        issues.append("Database is not reachable")

    return {
        "service": settings.app_name,
        "status": status,
        "version": settings.app_version,
        "environment": settings.environment,
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "checks": {
            "database": db_healthy,
            "patterns": {
                "batchSize": settings.pattern_batch_size,
                "lockTimeoutSec": settings.pattern_lock_timeout_sec,
            },
        },
        "issues": issues,
    }


def create_app() -> FastAPI:
    settings = get_settings()
    show_docs = settings.environment != "production"

    app = FastAPI(
        title=settings.app_name,
        version=settings.app_version,
        description="Build trip patterns from a loaded GTFS feed and edit their halts.",
        lifespan=lifespan,
        docs_url="/docs" if show_docs else None,
        redoc_url="/redoc" if show_docs else None,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"] if settings.environment == "development" else [],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.middleware("http")
    async def request_context_middleware(request: Request, call_next: Any) -> Any:
        request_id = request.headers.get(REQUEST_ID_HEADER) or str(uuid.uuid4())
        bind_request_context(request_id=request_id, path=request.url.path)
        try:
            response = await call_next(request)
        finally:
            clear_request_context()
        response.headers[REQUEST_ID_HEADER] = request_id
        return response

    app.include_router(admin_router)
    app.include_router(patterns_router)

    @app.get("/health", tags=["meta"])
    async def health_check() -> dict[str, Any]:
        return await health_payload(get_settings())

    @app.exception_handler(PatternError)
    async def pattern_error_handler(request: Request, exc: PatternError) -> JSONResponse:
        logger.error("Unhandled pattern error", exc_info=exc, path=request.url.path)
        return JSONResponse(
            status_code=500,
            content={"error": type(exc).__name__, "message": str(exc)},
        )

    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception) -> JSONResponse:
        logger.error("Unhandled exception", exc_info=exc, path=request.url.path)
        return JSONResponse(
            status_code=500,
            content={
                "error": "internal_server_error",
                "message": "An unexpected error occurred",
            },
        )

    return app


app = create_app()
