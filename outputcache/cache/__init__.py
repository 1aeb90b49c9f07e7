"""Output Caching Layer.

Public API:
    CacheBackend                - Abstract base for all backends
    RedisCacheBackend           - Redis-backed production cache
    InMemoryCacheBackend        - Dict-backed cache for dev/testing
    get_cache_backend           - Factory: selects backend from settings

    CachedResponse              - Storable form of a response
    CachePolicy                 - Expiration + invalidation dependencies
    CachePolicyProvider         - Strategy: cache key + policy per request
    DefaultCachePolicyProvider  - Settings-driven provider
    CachePolicyResolver         - Application-wide provider chain
    CachableResult              - Capability of results that cache themselves
    OutputCacheStore            - get / write-with-policy over a backend

    OutputCacheFilter           - Pre/post execution interception
    OutputCacheRoute            - APIRoute running the filter
    cache_output                - Endpoint decorator attaching a filter
    install_output_cache        - Publish shared store/resolver on app.state
"""

from outputcache.cache.backend import (
    CacheBackend,
    InMemoryCacheBackend,
    RedisCacheBackend,
    get_cache_backend,
)
from outputcache.cache.exceptions import CacheConfigurationError
from outputcache.cache.filter import (
    ExecutionContext,
    OutputCache,
    OutputCacheFilter,
    OutputCacheRoute,
    cache_output,
    install_output_cache,
    is_child_execution,
)
from outputcache.cache.policy import CachePolicy
from outputcache.cache.providers import (
    CachePolicyProvider,
    CachePolicyResolver,
    DefaultCachePolicyProvider,
    resolve_policy_provider,
)
from outputcache.cache.response import CachedResponse, create_cached_response
from outputcache.cache.results import CachableResult, get_cached_response
from outputcache.cache.store import OutputCacheStore

__all__ = [
    "CacheBackend",
    "RedisCacheBackend",
    "InMemoryCacheBackend",
    "get_cache_backend",
    "CacheConfigurationError",
    "CachedResponse",
    "create_cached_response",
    "CachePolicy",
    "CachePolicyProvider",
    "CachePolicyResolver",
    "DefaultCachePolicyProvider",
    "resolve_policy_provider",
    "CachableResult",
    "get_cached_response",
    "OutputCacheStore",
    "ExecutionContext",
    "OutputCache",
    "OutputCacheFilter",
    "OutputCacheRoute",
    "cache_output",
    "install_output_cache",
    "is_child_execution",
]
