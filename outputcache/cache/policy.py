"""Cache policy value type.

A CachePolicy says how long a cached response stays valid and which
upstream dependencies invalidate it:

- absolute expiration: the entry dies ``duration`` after it was written
- sliding expiration: every hit pushes expiry ``duration`` into the future
- dependencies: opaque identifiers (content ids, tags); invalidating one
  drops every entry written with it
"""

from __future__ import annotations

import math
from collections.abc import Iterable
from dataclasses import dataclass, field
from datetime import timedelta
from typing import Any


@dataclass(frozen=True)
class CachePolicy:
    """Expiration and invalidation rules for a single cache write."""

    duration: timedelta
    sliding: bool = False
    dependencies: frozenset[str] = field(default_factory=frozenset)

    def __post_init__(self) -> None:
        if self.duration <= timedelta(0):
            raise ValueError(f"cache duration must be positive, got {self.duration}")
        object.__setattr__(self, "dependencies", frozenset(self.dependencies))

    @classmethod
    def absolute(cls, seconds: float, dependencies: Iterable[str] = ()) -> CachePolicy:
        return cls(timedelta(seconds=seconds), sliding=False, dependencies=frozenset(dependencies))

    @classmethod
    def sliding_window(cls, seconds: float, dependencies: Iterable[str] = ()) -> CachePolicy:
        return cls(timedelta(seconds=seconds), sliding=True, dependencies=frozenset(dependencies))

    @property
    def ttl_seconds(self) -> int:
        """Duration rounded up to whole seconds, as backends expire keys."""
        return max(1, math.ceil(self.duration.total_seconds()))

    def to_dict(self) -> dict[str, Any]:
        return {
            "ttl": self.ttl_seconds,
            "sliding": self.sliding,
            "dependencies": sorted(self.dependencies),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> CachePolicy:
        return cls(
            duration=timedelta(seconds=data["ttl"]),
            sliding=data.get("sliding", False),
            dependencies=frozenset(data.get("dependencies", ())),
        )
