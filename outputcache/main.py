"""FastAPI application factory.

Application startup order:
1. Load settings (from environment)
2. Build the shared output cache (backend, store, policy resolver)
3. Register middleware (request id)
4. Include routers (cache admin, health, plus any application routers)

Shutdown order:
1. Close the cache backend connection pool
"""

from __future__ import annotations

from collections.abc import AsyncGenerator, Iterable
from contextlib import asynccontextmanager
from typing import Any

import structlog
from fastapi import APIRouter, FastAPI, Request
from fastapi.responses import JSONResponse

from outputcache.api.cache import router as cache_router
from outputcache.cache.backend import CacheBackend, RedisCacheBackend
from outputcache.cache.filter import install_output_cache
from outputcache.config import Settings, get_settings
from outputcache.telemetry.logging import RequestIdMiddleware, configure_logging

log = structlog.get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan: startup and shutdown."""
    settings: Settings = app.state.settings

    log.info(
        "app.starting",
        environment=settings.environment,
        output_cache_enabled=settings.output_cache_enabled,
    )
    log.info("app.ready")
    yield

    backend = app.state.output_cache.store.backend
    if isinstance(backend, RedisCacheBackend):
        await backend.close()
    log.info("app.shutdown")


def create_app(
    settings: Settings | None = None,
    *,
    backend: CacheBackend | None = None,
    routers: Iterable[APIRouter] = (),
) -> FastAPI:
    """Application factory.

    Args:
        settings: Settings to use; defaults to get_settings().
        backend: Cache backend override (tests inject an in-memory backend).
        routers: Application routers. Use OutputCacheRoute as their
            route_class for endpoints decorated with cache_output().
    """
    settings = settings or get_settings()

    # Configure structured logging first (before any log calls)
    configure_logging(
        json_logs=settings.json_logs,
        log_level="DEBUG" if settings.debug else "INFO",
    )

    app = FastAPI(
        title="Output Cache",
        description="Output caching for FastAPI request pipelines.",
        version="0.1.0",
        docs_url="/docs" if settings.is_dev else None,
        redoc_url="/redoc" if settings.is_dev else None,
        openapi_url="/openapi.json" if settings.is_dev else None,
        lifespan=lifespan,
    )
    app.state.settings = settings
    app.dependency_overrides[get_settings] = lambda: settings

    # Installed eagerly so the store exists before the first request,
    # with or without lifespan events
    install_output_cache(app, settings, backend=backend)

    # Unique request ID for log correlation
    app.add_middleware(RequestIdMiddleware)

    # ------------------------------------------------------------------ #
    # Routers
    # ------------------------------------------------------------------ #
    app.include_router(cache_router)
    for router in routers:
        app.include_router(router)

    @app.get("/healthz", tags=["health"])
    async def healthz() -> dict[str, Any]:
        """Liveness probe with cache backend status."""
        stats = await app.state.output_cache.store.stats()
        return {
            "status": "healthy" if stats["connected"] else "degraded",
            "cache": {"backend": stats["backend"], "connected": stats["connected"]},
        }

    # ------------------------------------------------------------------ #
    # Global exception handlers
    # ------------------------------------------------------------------ #

    @app.exception_handler(Exception)
    async def unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
        log.error(
            "app.unhandled_exception",
            path=request.url.path,
            method=request.method,
            error=str(exc),
            exc_info=True,
        )
        return JSONResponse(
            status_code=500,
            content={"detail": "Internal server error"},
        )

    return app
