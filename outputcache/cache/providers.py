"""Cache policy providers.

A policy provider decides, per request, whether output caching applies
(the cache key) and for how long the produced response stays valid (the
cache policy).

Contract for every provider:
- get_cache_key() returning None means "never read or write the cache for
  this request". It is consulted before every lookup and before every write.
- get_cache_key() must be deterministic and free of side effects. The
  filter calls it once before the handler runs and again afterwards; if
  the two results differ the response is not stored.
- get_policy() is only called for requests that produced a key, and
  receives the response about to be stored so TTLs or dependencies may
  depend on the content.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import Iterable
from typing import Any
from urllib.parse import parse_qsl, quote, urlencode

import structlog
from starlette.requests import Request

from outputcache.cache.exceptions import CacheConfigurationError
from outputcache.cache.policy import CachePolicy
from outputcache.cache.response import CachedResponse

log = structlog.get_logger(__name__)

_CACHEABLE_METHODS = frozenset({"GET", "HEAD"})
_ROOT_KEY = "index"


class CachePolicyProvider(ABC):
    """Strategy computing a cache key and cache policy for a request."""

    @abstractmethod
    def get_cache_key(self, request: Request) -> str | None:
        """Return the key identifying this request variant, or None to opt out."""

    @abstractmethod
    def get_policy(self, request: Request, cached_response: CachedResponse) -> CachePolicy:
        """Return the policy under which cached_response is stored."""


def resolve_policy_provider(provider_type: Any) -> CachePolicyProvider:
    """Instantiate a custom provider from its type.

    Raises:
        CacheConfigurationError: provider_type is not a CachePolicyProvider
            subclass. Raised when the filter is attached, never per request.
    """
    if not isinstance(provider_type, type) or not issubclass(provider_type, CachePolicyProvider):
        raise CacheConfigurationError(
            f"{provider_type!r} is not a CachePolicyProvider subclass; "
            "output cache policy providers must derive from CachePolicyProvider"
        )
    return provider_type()


class DefaultCachePolicyProvider(CachePolicyProvider):
    """Settings-driven key derivation and policy.

    Key layout: ``products:42?page=2&sort=asc|accept-language=en``
    - path segments joined with ":" ("/" becomes "index")
    - sorted query parameters, when present
    - one ``|name=value`` part per configured vary header the request carries
    """

    def __init__(
        self,
        *,
        duration_seconds: int = 60,
        sliding: bool = False,
        vary_headers: Iterable[str] = ("accept-language",),
        excluded_paths: Iterable[str] = (),
    ) -> None:
        self._duration_seconds = duration_seconds
        self._sliding = sliding
        self._vary_headers = tuple(h.lower() for h in vary_headers)
        self._excluded_paths = tuple(excluded_paths)

    @classmethod
    def from_settings(cls, settings: Any) -> DefaultCachePolicyProvider:
        return cls(
            duration_seconds=settings.output_cache_duration_seconds,
            sliding=settings.output_cache_sliding_expiration,
            vary_headers=settings.output_cache_vary_headers,
            excluded_paths=settings.output_cache_excluded_paths,
        )

    def _is_excluded(self, path: str) -> bool:
        for prefix in self._excluded_paths:
            base = prefix.rstrip("/")
            if path == prefix or path == base or path.startswith(base + "/"):
                return True
        return False

    def get_cache_key(self, request: Request) -> str | None:
        if request.method not in _CACHEABLE_METHODS:
            return None
        path = request.scope.get("path", "")
        if self._is_excluded(path):
            return None
        if "no-store" in request.headers.get("cache-control", "").lower():
            return None

        # Decoded path; request.url would split a "?" inside a segment off
        # as a query. Separators inside a segment are percent-encoded.
        segments = [quote(s, safe="") for s in path.split("/") if s]
        key = ":".join(segments) or _ROOT_KEY

        query = request.scope.get("query_string", b"").decode("latin-1")
        if query:
            params = sorted(parse_qsl(query, keep_blank_values=True))
            key = f"{key}?{urlencode(params)}"

        for name in self._vary_headers:
            value = request.headers.get(name)
            if value is not None:
                key = f"{key}|{name}={quote(value, safe='')}"

        return key

    def get_policy(self, request: Request, cached_response: CachedResponse) -> CachePolicy:
        if self._sliding:
            return CachePolicy.sliding_window(self._duration_seconds)
        return CachePolicy.absolute(self._duration_seconds)


class CachePolicyResolver(CachePolicyProvider):
    """Application-wide policy resolution.

    Registered providers are consulted in registration order; the first one
    returning a key owns the request and also supplies its policy. Requests
    no registered provider claims fall through to the default provider.
    """

    def __init__(
        self,
        default: CachePolicyProvider,
        providers: Iterable[CachePolicyProvider] = (),
    ) -> None:
        self._default = default
        self._providers: list[CachePolicyProvider] = list(providers)

    @classmethod
    def from_settings(cls, settings: Any) -> CachePolicyResolver:
        return cls(DefaultCachePolicyProvider.from_settings(settings))

    @property
    def providers(self) -> tuple[CachePolicyProvider, ...]:
        return tuple(self._providers)

    def register(self, provider: CachePolicyProvider) -> None:
        if not isinstance(provider, CachePolicyProvider):
            raise CacheConfigurationError(
                f"{provider!r} is not a CachePolicyProvider instance"
            )
        self._providers.append(provider)
        log.debug("cache.resolver.provider_registered", provider=type(provider).__name__)

    def _owner(self, request: Request) -> tuple[CachePolicyProvider, str | None]:
        for provider in self._providers:
            key = provider.get_cache_key(request)
            if key is not None:
                return provider, key
        return self._default, self._default.get_cache_key(request)

    def get_cache_key(self, request: Request) -> str | None:
        return self._owner(request)[1]

    def get_policy(self, request: Request, cached_response: CachedResponse) -> CachePolicy:
        provider, _ = self._owner(request)
        return provider.get_policy(request, cached_response)
