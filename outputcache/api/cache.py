"""Cache management API endpoints.

Admin endpoints for inspecting and managing the output cache.

GET    /cache/stats      - Cache statistics
POST   /cache/invalidate - Drop entries by dependency or by cache key
DELETE /cache/flush      - Drop every output cache entry

All endpoints require the X-Admin-Token header to match the configured
admin token. The store is resolved via FastAPI dependency injection so it
can be replaced in tests.
"""

from __future__ import annotations

import secrets
from typing import Any

import structlog
from fastapi import APIRouter, Depends, Header, HTTPException, Request, status
from pydantic import BaseModel, model_validator

from outputcache.cache.filter import OutputCache
from outputcache.cache.store import OutputCacheStore
from outputcache.config import Settings, get_settings

log = structlog.get_logger(__name__)

router = APIRouter(prefix="/cache", tags=["cache"])


# ---------------------------------------------------------------------------
# Dependencies
# ---------------------------------------------------------------------------


def get_output_cache_store(request: Request) -> OutputCacheStore:
    """Return the shared store installed on the application at startup."""
    runtime: OutputCache | None = getattr(request.app.state, "output_cache", None)
    if runtime is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Output cache is not installed",
        )
    return runtime.store


def require_admin(
    x_admin_token: str | None = Header(default=None),
    settings: Settings = Depends(get_settings),
) -> None:
    expected = settings.admin_token.get_secret_value()
    if x_admin_token is None or not secrets.compare_digest(x_admin_token, expected):
        log.warning("cache.api.forbidden")
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Admin token required")


# ---------------------------------------------------------------------------
# Schemas
# ---------------------------------------------------------------------------


class CacheStatsResponse(BaseModel):
    backend: str
    connected: bool
    namespace: str
    total_keys: int
    hits: int
    misses: int
    hit_rate: float
    extra: dict[str, Any] = {}


class InvalidateRequest(BaseModel):
    dependency: str | None = None
    key: str | None = None

    @model_validator(mode="after")
    def _exactly_one_target(self) -> InvalidateRequest:
        if (self.dependency is None) == (self.key is None):
            raise ValueError("provide exactly one of 'dependency' or 'key'")
        return self


class InvalidateResponse(BaseModel):
    entries_removed: int
    message: str


class FlushResponse(BaseModel):
    keys_deleted: int
    message: str


# ---------------------------------------------------------------------------
# Endpoints
# ---------------------------------------------------------------------------


@router.get(
    "/stats",
    response_model=CacheStatsResponse,
    summary="Output cache statistics",
    dependencies=[Depends(require_admin)],
)
async def get_cache_stats(
    store: OutputCacheStore = Depends(get_output_cache_store),
) -> CacheStatsResponse:
    """Return hit/miss statistics and backend info."""
    stats = await store.stats()

    return CacheStatsResponse(
        backend=stats.get("backend", "unknown"),
        connected=stats.get("connected", False),
        namespace=stats["namespace"],
        total_keys=int(stats.get("total_keys", 0)),
        hits=int(stats.get("hits", 0)),
        misses=int(stats.get("misses", 0)),
        hit_rate=float(stats.get("hit_rate", 0.0)),
        extra=stats.get("extra", {}),
    )


@router.post(
    "/invalidate",
    response_model=InvalidateResponse,
    summary="Invalidate cached responses",
    dependencies=[Depends(require_admin)],
)
async def invalidate_cache(
    body: InvalidateRequest,
    store: OutputCacheStore = Depends(get_output_cache_store),
) -> InvalidateResponse:
    """Remove the entries recorded under a dependency, or a single key."""
    if body.dependency is not None:
        removed = await store.invalidate_dependency(body.dependency)
        target = f"dependency {body.dependency!r}"
    else:
        removed = int(await store.remove(body.key))  # type: ignore[arg-type]
        target = f"key {body.key!r}"

    log.info("cache.api.invalidated", target=target, entries_removed=removed)

    return InvalidateResponse(
        entries_removed=removed,
        message=f"Invalidated {target}",
    )


@router.delete(
    "/flush",
    response_model=FlushResponse,
    summary="Flush the output cache",
    dependencies=[Depends(require_admin)],
)
async def flush_cache(
    store: OutputCacheStore = Depends(get_output_cache_store),
) -> FlushResponse:
    """Remove every output cache entry. Other users of the backend are untouched."""
    deleted = await store.flush()

    log.warning("cache.api.flushed", keys_deleted=deleted)

    return FlushResponse(keys_deleted=deleted, message="Output cache flushed successfully")
