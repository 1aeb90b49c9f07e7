"""Output cache errors."""

from __future__ import annotations


class CacheConfigurationError(RuntimeError):
    """An output cache filter was attached with an invalid configuration."""
