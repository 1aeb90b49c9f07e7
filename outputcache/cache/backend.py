"""Key/value backends for the output cache store.

- RedisCacheBackend: shared across processes, JSON values, native TTLs
- InMemoryCacheBackend: single-process dict with TTLs, for dev and tests

get_cache_backend() picks Redis when a URL is configured and the redis
package is importable, and the in-memory backend otherwise.

Every backend is shared by all in-flight requests. set() replaces the
value under a key in one step and touch() only moves a key's expiry, so a
lifetime renewal can never resurrect a value another request replaced or
deleted.
"""

from __future__ import annotations

import asyncio
import fnmatch
import json
import time
from abc import ABC, abstractmethod
from collections.abc import Awaitable, Callable
from typing import Any, TypeVar

import structlog

log = structlog.get_logger(__name__)

T = TypeVar("T")


class CacheBackend(ABC):
    """Operations OutputCacheStore needs from a key/value store."""

    @abstractmethod
    async def get(self, key: str) -> Any | None:
        """Value stored under key, or None when absent or expired."""

    @abstractmethod
    async def set(self, key: str, value: Any, ttl: int) -> None:
        """Replace the value under key; it expires ttl seconds from now."""

    @abstractmethod
    async def touch(self, key: str, ttl: int) -> bool:
        """Push the expiry of an existing key to ttl seconds from now.

        The value is left alone. Returns False when the key is gone.
        """

    @abstractmethod
    async def delete(self, key: str) -> None: ...

    @abstractmethod
    async def exists(self, key: str) -> bool: ...

    @abstractmethod
    async def keys(self, pattern: str) -> list[str]:
        """Live keys matching a glob pattern."""

    @abstractmethod
    async def delete_pattern(self, pattern: str) -> int:
        """Delete keys matching a glob pattern and return how many went."""

    @abstractmethod
    async def info(self) -> dict[str, Any]: ...


# ---------------------------------------------------------------------------
# Redis
# ---------------------------------------------------------------------------


class RedisCacheBackend(CacheBackend):
    """Redis-backed store using redis.asyncio.

    The client is created on first use. Connection and command errors are
    logged as ``cache.redis.<op>_failed`` and answered like a miss, so an
    unreachable Redis degrades output caching instead of failing requests.
    """

    def __init__(self, redis_url: str) -> None:
        self._redis_url = redis_url
        self._client: Any = None

    def _connect(self) -> Any:
        if self._client is None:
            import redis.asyncio as aioredis  # type: ignore[import-untyped]

            self._client = aioredis.from_url(self._redis_url, decode_responses=True)
        return self._client

    async def _guarded(
        self,
        op: str,
        call: Callable[[Any], Awaitable[T]],
        default: T,
        **context: Any,
    ) -> T:
        try:
            return await call(self._connect())
        except Exception as exc:
            log.warning(f"cache.redis.{op}_failed", error=str(exc), **context)
            return default

    async def get(self, key: str) -> Any | None:
        raw = await self._guarded("get", lambda client: client.get(key), None, key=key)
        return None if raw is None else json.loads(raw)

    async def set(self, key: str, value: Any, ttl: int) -> None:
        payload = json.dumps(value)
        await self._guarded(
            "set", lambda client: client.set(key, payload, ex=ttl), None, key=key
        )

    async def touch(self, key: str, ttl: int) -> bool:
        renewed = await self._guarded(
            "touch", lambda client: client.expire(key, ttl), False, key=key
        )
        return bool(renewed)

    async def delete(self, key: str) -> None:
        await self._guarded("delete", lambda client: client.delete(key), None, key=key)

    async def exists(self, key: str) -> bool:
        found = await self._guarded("exists", lambda client: client.exists(key), 0, key=key)
        return bool(found)

    async def keys(self, pattern: str) -> list[str]:
        """SCAN for matching keys; KEYS would block the server."""

        async def scan(client: Any) -> list[str]:
            return [key async for key in client.scan_iter(match=pattern, count=100)]

        return await self._guarded("keys", scan, [], pattern=pattern)

    async def delete_pattern(self, pattern: str) -> int:
        matched = await self.keys(pattern)
        if not matched:
            return 0
        deleted = await self._guarded(
            "delete_pattern", lambda client: client.delete(*matched), 0, pattern=pattern
        )
        return int(deleted)

    async def info(self) -> dict[str, Any]:
        async def collect(client: Any) -> dict[str, Any]:
            server = await client.info()
            return {
                "backend": "redis",
                "connected": True,
                "total_keys": await client.dbsize(),
                "hits": server.get("keyspace_hits", 0),
                "misses": server.get("keyspace_misses", 0),
                "used_memory_human": server.get("used_memory_human", "unknown"),
            }

        return await self._guarded(
            "info", collect, {"backend": "redis", "connected": False}
        )

    async def close(self) -> None:
        """Release the connection pool; the next call reconnects."""
        client, self._client = self._client, None
        if client is None:
            return
        try:
            await client.aclose()
        except Exception as exc:
            log.warning("cache.redis.close_failed", error=str(exc))


# ---------------------------------------------------------------------------
# In-memory
# ---------------------------------------------------------------------------


class _CacheEntry:
    __slots__ = ("value", "expires_at")

    def __init__(self, value: Any, expires_at: float) -> None:
        self.value = value
        self.expires_at = expires_at


class InMemoryCacheBackend(CacheBackend):
    """Dict of TTL entries guarded by an asyncio.Lock.

    Args:
        clock: Monotonic time source in seconds. Tests inject a fake clock
            to move past expirations without sleeping.
    """

    def __init__(self, clock: Callable[[], float] = time.monotonic) -> None:
        self._store: dict[str, _CacheEntry] = {}
        self._lock = asyncio.Lock()
        self._clock = clock
        self._hits = 0
        self._misses = 0

    def _live(self, key: str) -> _CacheEntry | None:
        """Entry under key, pruning it when expired. Caller holds the lock."""
        entry = self._store.get(key)
        if entry is not None and self._clock() >= entry.expires_at:
            del self._store[key]
            return None
        return entry

    def _prune(self) -> list[str]:
        now = self._clock()
        for key in [k for k, entry in self._store.items() if now >= entry.expires_at]:
            del self._store[key]
        return list(self._store)

    async def get(self, key: str) -> Any | None:
        async with self._lock:
            entry = self._live(key)
            if entry is None:
                self._misses += 1
                return None
            self._hits += 1
            return entry.value

    async def set(self, key: str, value: Any, ttl: int) -> None:
        async with self._lock:
            self._store[key] = _CacheEntry(value, self._clock() + ttl)

    async def touch(self, key: str, ttl: int) -> bool:
        async with self._lock:
            entry = self._live(key)
            if entry is None:
                return False
            entry.expires_at = self._clock() + ttl
            return True

    async def delete(self, key: str) -> None:
        async with self._lock:
            self._store.pop(key, None)

    async def exists(self, key: str) -> bool:
        async with self._lock:
            return self._live(key) is not None

    async def keys(self, pattern: str) -> list[str]:
        async with self._lock:
            return [k for k in self._prune() if fnmatch.fnmatchcase(k, pattern)]

    async def delete_pattern(self, pattern: str) -> int:
        async with self._lock:
            doomed = [k for k in self._store if fnmatch.fnmatchcase(k, pattern)]
            for key in doomed:
                del self._store[key]
            return len(doomed)

    async def info(self) -> dict[str, Any]:
        async with self._lock:
            lookups = self._hits + self._misses
            return {
                "backend": "memory",
                "connected": True,
                "total_keys": len(self._prune()),
                "hits": self._hits,
                "misses": self._misses,
                "hit_rate": round(self._hits / lookups, 4) if lookups else 0.0,
            }


def get_cache_backend(settings: Any) -> CacheBackend:
    """Redis when settings.redis_url is set and redis is installed, else memory."""
    redis_url: str = getattr(settings, "redis_url", "")
    if not redis_url:
        log.info("cache.backend_selected", backend="memory", reason="no_redis_url")
        return InMemoryCacheBackend()

    try:
        import redis.asyncio  # noqa: F401
    except ImportError:
        log.warning("cache.backend_selected", backend="memory", reason="redis_not_installed")
        return InMemoryCacheBackend()

    log.info("cache.backend_selected", backend="redis")
    return RedisCacheBackend(redis_url)
