"""Cached response model.

A CachedResponse is the storable form of anything the output cache can
serve: status code, ordered headers, raw body bytes and the text encoding
the body was produced with. Instances are frozen; the store keeps only the
serialised dict form, so every read hands out a fresh object.
"""

from __future__ import annotations

import base64
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from typing import Any

from starlette.responses import Response


def _freeze_headers(
    headers: Mapping[str, str] | Iterable[tuple[str, str]],
) -> tuple[tuple[str, str], ...]:
    items = headers.items() if isinstance(headers, Mapping) else headers
    return tuple((str(name), str(value)) for name, value in items)


@dataclass(frozen=True)
class CachedResponse:
    """Represents a response that can be written to and served from the cache."""

    body: bytes
    content_encoding: str | None = None
    headers: tuple[tuple[str, str], ...] = field(default_factory=tuple)
    status_code: int = 200

    def __post_init__(self) -> None:
        body = self.body
        if isinstance(body, str):
            body = body.encode(self.content_encoding or "utf-8")
        object.__setattr__(self, "body", bytes(body))
        object.__setattr__(self, "headers", _freeze_headers(self.headers))

    @classmethod
    def from_text(
        cls,
        content: str,
        *,
        encoding: str = "utf-8",
        headers: Mapping[str, str] | Iterable[tuple[str, str]] = (),
        status_code: int = 200,
    ) -> CachedResponse:
        return cls(
            body=content.encode(encoding),
            content_encoding=encoding,
            headers=_freeze_headers(headers),
            status_code=status_code,
        )

    @property
    def text(self) -> str:
        return self.body.decode(self.content_encoding or "utf-8")

    def header(self, name: str) -> str | None:
        """Return the first header value matching name (case-insensitive)."""
        lowered = name.lower()
        for key, value in self.headers:
            if key.lower() == lowered:
                return value
        return None

    def to_cached_result(self) -> Response:
        """Rebuild a response with the stored status, headers and body."""
        response = Response(content=self.body, status_code=self.status_code)
        # Replace the defaults Starlette computed so the stored headers win
        response.raw_headers = [
            (name.lower().encode("latin-1"), value.encode("latin-1"))
            for name, value in self.headers
            if name.lower() != "content-length"
        ] + [(b"content-length", str(len(self.body)).encode("latin-1"))]
        if self.content_encoding:
            response.charset = self.content_encoding
        return response

    def to_dict(self) -> dict[str, Any]:
        return {
            "body": base64.b64encode(self.body).decode("ascii"),
            "content_encoding": self.content_encoding,
            "headers": [list(pair) for pair in self.headers],
            "status_code": self.status_code,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> CachedResponse:
        return cls(
            body=base64.b64decode(data["body"]),
            content_encoding=data.get("content_encoding"),
            headers=[(name, value) for name, value in data.get("headers", [])],
            status_code=data.get("status_code", 200),
        )


def create_cached_response(content: Response) -> CachedResponse:
    """Convert a materialised content response into a CachedResponse.

    Copies the body, status code, charset and the content-type header.
    Other headers are response-specific (cookies, request ids) and are
    not carried into the cache.
    """
    headers: list[tuple[str, str]] = []
    content_type = content.headers.get("content-type")
    if content_type is not None:
        headers.append(("content-type", content_type))

    return CachedResponse(
        body=bytes(content.body),
        content_encoding=content.charset,
        headers=tuple(headers),
        status_code=content.status_code,
    )
