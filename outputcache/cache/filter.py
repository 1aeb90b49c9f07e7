"""Output cache interception filter for FastAPI routes.

Wraps a route handler with two hooks:

- before execution: derive the cache key and, on a hit, answer with the
  cached response without running the handler
- after execution: extract a cacheable response from the handler's result
  and store it under the same key with the provider's policy

Attach it per route:

    router = APIRouter(route_class=OutputCacheRoute)

    @router.get("/products/{product_id}")
    @cache_output()
    async def product(product_id: int) -> PlainTextResponse:
        ...

Headers added to responses of cached routes:
- X-Cache: HIT     - served from cache, handler not executed
- X-Cache: MISS    - handler executed (response may or may not have been stored)
- X-Cache: BYPASS  - the policy provider opted this request out of caching

Executions nested inside another filtered execution (e.g. a page that
renders a fragment by calling the app in-process) are child executions:
they may be served from cache but are never written, since their key
does not correspond to a URL a client requested.
"""

from __future__ import annotations

from collections.abc import Awaitable, Callable
from contextvars import ContextVar
from dataclasses import dataclass
from typing import Any, TypeVar

import structlog
from fastapi import FastAPI
from fastapi.routing import APIRoute
from starlette.requests import Request
from starlette.responses import Response

from outputcache.cache.backend import CacheBackend, get_cache_backend
from outputcache.cache.exceptions import CacheConfigurationError
from outputcache.cache.providers import (
    CachePolicyProvider,
    CachePolicyResolver,
    resolve_policy_provider,
)
from outputcache.cache.results import get_cached_response
from outputcache.cache.store import OutputCacheStore

log = structlog.get_logger(__name__)

_FILTER_ATTR = "__output_cache_filter__"
_CACHE_STATUS_HEADER = "X-Cache"

_execution_depth: ContextVar[int] = ContextVar("output_cache_execution_depth", default=0)

F = TypeVar("F", bound=Callable[..., Any])
CallNext = Callable[[Request], Awaitable[Any]]


# ---------------------------------------------------------------------------
# Application-level runtime
# ---------------------------------------------------------------------------


@dataclass
class OutputCache:
    """Shared collaborators of every filter in an application."""

    store: OutputCacheStore
    resolver: CachePolicyResolver
    enabled: bool = True


def install_output_cache(
    app: FastAPI,
    settings: Any,
    backend: CacheBackend | None = None,
) -> OutputCache:
    """Build the shared store and resolver and publish them on app.state."""
    runtime = OutputCache(
        store=OutputCacheStore(
            backend or get_cache_backend(settings),
            namespace=settings.output_cache_namespace,
        ),
        resolver=CachePolicyResolver.from_settings(settings),
        enabled=settings.output_cache_enabled,
    )
    app.state.output_cache = runtime
    log.info(
        "cache.output_cache_installed",
        enabled=runtime.enabled,
        namespace=settings.output_cache_namespace,
    )
    return runtime


def is_child_execution() -> bool:
    """True while running inside another filtered execution."""
    return _execution_depth.get() > 0


# ---------------------------------------------------------------------------
# Filter
# ---------------------------------------------------------------------------


@dataclass
class ExecutionContext:
    """Per-request state shared by the two hooks."""

    request: Request
    is_child: bool = False
    cache_key: str | None = None


class OutputCacheFilter:
    """Serves cached responses before a handler runs and stores them after.

    Args:
        policy_provider: Optional CachePolicyProvider subclass for this
            attachment. Validated and instantiated immediately.
        resolver: Default policy resolution used when no provider type is
            given. Defaults to the application's shared resolver.
        store: Output cache store. Defaults to the application's store.

    Raises:
        CacheConfigurationError: policy_provider is not a provider type.
    """

    def __init__(
        self,
        policy_provider: type[CachePolicyProvider] | None = None,
        *,
        resolver: CachePolicyProvider | None = None,
        store: OutputCacheStore | None = None,
    ) -> None:
        self._provider = (
            resolve_policy_provider(policy_provider) if policy_provider is not None else None
        )
        self._resolver = resolver
        self._store = store

    @property
    def policy_provider(self) -> CachePolicyProvider | None:
        return self._provider

    # ------------------------------------------------------------------
    # Collaborators
    # ------------------------------------------------------------------

    @staticmethod
    def _runtime(request: Request) -> OutputCache | None:
        app = request.scope.get("app")
        if app is None:
            return None
        return getattr(app.state, "output_cache", None)

    def _require_runtime(self, request: Request) -> OutputCache:
        runtime = self._runtime(request)
        if runtime is None:
            raise CacheConfigurationError(
                "output cache is not installed on this application; "
                "call install_output_cache(app, settings) at startup"
            )
        return runtime

    def _policy_provider(self, request: Request) -> CachePolicyProvider:
        if self._provider is not None:
            return self._provider
        if self._resolver is not None:
            return self._resolver
        return self._require_runtime(request).resolver

    def _cache_store(self, request: Request) -> OutputCacheStore:
        if self._store is not None:
            return self._store
        return self._require_runtime(request).store

    def _enabled(self, request: Request) -> bool:
        runtime = self._runtime(request)
        return runtime is None or runtime.enabled

    def get_cache_key(self, request: Request) -> str | None:
        return self._policy_provider(request).get_cache_key(request)

    # ------------------------------------------------------------------
    # Hooks
    # ------------------------------------------------------------------

    async def on_executing(self, context: ExecutionContext) -> Response | None:
        """Return the cached response for this request, or None to execute."""
        request = context.request
        context.cache_key = self.get_cache_key(request)
        if context.cache_key is None:
            log.debug("cache.filter.skipped", reason="no_key", path=request.url.path)
            return None

        cached = await self._cache_store(request).get(context.cache_key)
        if cached is None:
            log.debug("cache.filter.miss", path=request.url.path)
            return None

        log.debug("cache.filter.hit", path=request.url.path, child=context.is_child)
        response = cached.to_cached_result()
        response.headers[_CACHE_STATUS_HEADER] = "HIT"
        return response

    async def on_executed(self, context: ExecutionContext, result: Any) -> bool:
        """Store the cacheable form of result. Returns True when written."""
        request = context.request

        cached = get_cached_response(result)
        if cached is None:
            log.debug("cache.filter.skipped", reason="not_cacheable", path=request.url.path)
            return False

        if context.is_child:
            log.debug("cache.filter.skipped", reason="child_execution", path=request.url.path)
            return False

        if context.cache_key is None:
            log.debug("cache.filter.skipped", reason="no_key", path=request.url.path)
            return False

        provider = self._policy_provider(request)
        cache_key = provider.get_cache_key(request)
        if cache_key != context.cache_key:
            log.warning(
                "cache.filter.key_mismatch",
                path=request.url.path,
                provider=type(provider).__name__,
            )
            return False

        policy = provider.get_policy(request, cached)
        await self._cache_store(request).write(cached, cache_key, policy)
        log.debug(
            "cache.filter.stored",
            path=request.url.path,
            ttl=policy.ttl_seconds,
            sliding=policy.sliding,
        )
        return True

    async def __call__(self, request: Request, call_next: CallNext) -> Any:
        """Run call_next(request) between the two hooks."""
        if not self._enabled(request):
            return await call_next(request)

        context = ExecutionContext(request=request, is_child=is_child_execution())
        token = _execution_depth.set(_execution_depth.get() + 1)
        try:
            cached_response = await self.on_executing(context)
            if cached_response is not None:
                return cached_response

            result = await call_next(request)
            await self.on_executed(context, result)
        finally:
            _execution_depth.reset(token)

        if isinstance(result, Response):
            result.headers[_CACHE_STATUS_HEADER] = (
                "MISS" if context.cache_key is not None else "BYPASS"
            )
        return result


# ---------------------------------------------------------------------------
# Route integration
# ---------------------------------------------------------------------------


def cache_output(
    policy_provider: type[CachePolicyProvider] | None = None,
    *,
    resolver: CachePolicyProvider | None = None,
    store: OutputCacheStore | None = None,
) -> Callable[[F], F]:
    """Mark an endpoint for output caching by OutputCacheRoute.

    The filter (and so the provider type) is built when the decorator is
    applied, so configuration errors surface at import time.
    """
    cache_filter = OutputCacheFilter(policy_provider, resolver=resolver, store=store)

    def decorator(endpoint: F) -> F:
        setattr(endpoint, _FILTER_ATTR, cache_filter)
        return endpoint

    return decorator


def get_output_cache_filter(endpoint: Callable[..., Any]) -> OutputCacheFilter | None:
    return getattr(endpoint, _FILTER_ATTR, None)


class OutputCacheRoute(APIRoute):
    """APIRoute that runs the output cache filter around marked endpoints."""

    def get_route_handler(self) -> Callable[[Request], Awaitable[Response]]:
        handler = super().get_route_handler()
        cache_filter = get_output_cache_filter(self.endpoint)
        if cache_filter is None:
            return handler

        async def cached_route_handler(request: Request) -> Response:
            return await cache_filter(request, handler)

        return cached_route_handler
