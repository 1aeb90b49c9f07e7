"""Extraction of cacheable responses from handler results."""

from __future__ import annotations

from typing import Any, Protocol, runtime_checkable

from starlette.responses import Response
from starlette.templating import _TemplateResponse

from outputcache.cache.response import CachedResponse, create_cached_response


@runtime_checkable
class CachableResult(Protocol):
    """A result (or a view template) that knows its own cacheable form."""

    def get_cached_response(self) -> CachedResponse | None: ...


def get_cached_response(result: Any) -> CachedResponse | None:
    """Return the cacheable form of result, or None when it has none.

    Tried in order:
    1. the result itself implements CachableResult
    2. the result is a rendered template whose template implements it
    3. the result is a materialised 2xx content response (has a body)

    Streaming and file responses have no body to copy and are skipped.
    Error and redirect content responses are never cached by the fallback;
    a result implementing CachableResult decides for itself.
    """
    if isinstance(result, CachableResult):
        return result.get_cached_response()

    if isinstance(result, _TemplateResponse):
        template = getattr(result, "template", None)
        if isinstance(template, CachableResult):
            return template.get_cached_response()

    if not isinstance(result, Response) or not isinstance(getattr(result, "body", None), bytes):
        return None
    if not 200 <= result.status_code < 300:
        return None
    return create_cached_response(result)
