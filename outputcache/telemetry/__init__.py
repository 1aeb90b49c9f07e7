"""Telemetry package for observability.

This package contains:
- Structured logging with request correlation
"""

from __future__ import annotations

from outputcache.telemetry.logging import (
    RequestIdMiddleware,
    clear_context,
    configure_logging,
)

__all__ = [
    "RequestIdMiddleware",
    "clear_context",
    "configure_logging",
]
