"""Output cache store - CachedResponse storage on top of a CacheBackend.

Key layout inside the backend (all under the configured namespace):

    <ns>:<sha256(cache_key)>                   -> {"response": ..., "policy": ...}
    <ns>:dep:<sha256(dependency)[:32]>:<hash>  -> "<ns>:<sha256(cache_key)>"

Cache keys are hashed so arbitrarily long query strings and header values
never reach the backend's key space. Dependency sentinels are written with
the entry's TTL and renewed with it. Invalidating a dependency scans its
sentinels and deletes each referenced entry whose current policy still
lists that dependency. Sliding renewals only move expiries (backend touch),
never rewrite values.
"""

from __future__ import annotations

import hashlib
from typing import Any

import structlog

from outputcache.cache.backend import CacheBackend
from outputcache.cache.policy import CachePolicy
from outputcache.cache.response import CachedResponse

log = structlog.get_logger(__name__)


def _digest(value: str) -> str:
    return hashlib.sha256(value.encode()).hexdigest()


class OutputCacheStore:
    """Shared get / write-with-policy store for cached responses.

    Holds no mutable state beyond the injected backend, so a single
    instance is shared by every request in the process.
    """

    def __init__(self, backend: CacheBackend, namespace: str = "output") -> None:
        self._backend = backend
        self._namespace = namespace

    @property
    def backend(self) -> CacheBackend:
        return self._backend

    # ------------------------------------------------------------------
    # Key helpers
    # ------------------------------------------------------------------

    def entry_key(self, cache_key: str) -> str:
        """Backend key for the entry stored under cache_key."""
        return f"{self._namespace}:{_digest(cache_key)}"

    def _dependency_prefix(self, dependency: str) -> str:
        return f"{self._namespace}:dep:{_digest(dependency)[:32]}:"

    def _sentinel_key(self, dependency: str, entry_key: str) -> str:
        suffix = entry_key.rsplit(":", 1)[-1]
        return f"{self._dependency_prefix(dependency)}{suffix}"

    # ------------------------------------------------------------------
    # Core operations
    # ------------------------------------------------------------------

    async def get(self, cache_key: str) -> CachedResponse | None:
        """Return a fresh copy of the response cached under cache_key.

        Entries written with a sliding policy have their lifetime (and the
        lifetime of their dependency sentinels) renewed on every hit.
        """
        key = self.entry_key(cache_key)
        data = await self._backend.get(key)
        if not isinstance(data, dict) or "response" not in data:
            return None

        response = CachedResponse.from_dict(data["response"])

        policy_data = data.get("policy")
        if policy_data and policy_data.get("sliding"):
            policy = CachePolicy.from_dict(policy_data)
            if await self._backend.touch(key, policy.ttl_seconds):
                for dependency in policy.dependencies:
                    await self._backend.touch(
                        self._sentinel_key(dependency, key), policy.ttl_seconds
                    )

        return response

    async def write(self, response: CachedResponse, cache_key: str, policy: CachePolicy) -> str:
        """Store response under cache_key, replacing any existing entry.

        Returns:
            The backend key the entry was written under.
        """
        key = self.entry_key(cache_key)
        ttl = policy.ttl_seconds
        await self._backend.set(
            key,
            {"response": response.to_dict(), "policy": policy.to_dict()},
            ttl,
        )
        for dependency in policy.dependencies:
            await self._backend.set(self._sentinel_key(dependency, key), key, ttl)

        log.debug(
            "cache.store.written",
            key=key,
            ttl=ttl,
            sliding=policy.sliding,
            dependencies=len(policy.dependencies),
        )
        return key

    async def remove(self, cache_key: str) -> bool:
        """Drop the entry cached under cache_key. Returns False when absent."""
        key = self.entry_key(cache_key)
        if not await self._backend.exists(key):
            return False
        await self._backend.delete(key)
        return True

    async def invalidate_dependency(self, dependency: str) -> int:
        """Drop every entry written with dependency in its policy.

        Returns the number of entries removed.
        """
        pattern = f"{self._dependency_prefix(dependency)}*"
        removed = 0
        for sentinel_key in await self._backend.keys(pattern):
            entry_key = await self._backend.get(sentinel_key)
            await self._backend.delete(sentinel_key)
            if not entry_key:
                continue
            # Sentinels survive rewrites that drop the dependency
            data = await self._backend.get(entry_key)
            if not isinstance(data, dict):
                continue
            if dependency in data.get("policy", {}).get("dependencies", ()):
                await self._backend.delete(entry_key)
                removed += 1

        log.info(
            "cache.store.dependency_invalidated",
            dependency=dependency,
            entries_removed=removed,
        )
        return removed

    async def flush(self) -> int:
        """Remove every key under this store's namespace."""
        deleted = await self._backend.delete_pattern(f"{self._namespace}:*")
        log.info("cache.store.flushed", namespace=self._namespace, keys_deleted=deleted)
        return deleted

    # ------------------------------------------------------------------
    # Stats
    # ------------------------------------------------------------------

    async def stats(self) -> dict[str, Any]:
        """Return cache statistics from the underlying backend."""
        info = await self._backend.info()
        return {
            "backend": info.get("backend", "unknown"),
            "connected": info.get("connected", False),
            "namespace": self._namespace,
            "total_keys": info.get("total_keys", 0),
            "hits": info.get("hits", 0),
            "misses": info.get("misses", 0),
            "hit_rate": info.get("hit_rate", 0.0),
            "extra": info,
        }
