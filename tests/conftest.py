"""
Shared test fixtures for pytest.

Provides common test doubles for all test modules:
- fake_settings: Test environment configuration
- clock / backend: In-memory cache backend driven by a controllable clock
- store: OutputCacheStore over that backend
- calls: Counter of handler executions in the catalog app
- app / client: FastAPI app with cached catalog routes + TestClient
- make_request: Builder for bare Starlette requests
"""

from __future__ import annotations

from collections import Counter
from collections.abc import Iterator
from typing import Any

import httpx
import pytest
import structlog
from fastapi import APIRouter, FastAPI, Request
from fastapi.responses import HTMLResponse, PlainTextResponse, StreamingResponse
from fastapi.testclient import TestClient

from outputcache.cache.backend import InMemoryCacheBackend
from outputcache.cache.filter import OutputCacheRoute, cache_output
from outputcache.cache.store import OutputCacheStore
from outputcache.config import Environment, Settings
from outputcache.main import create_app

TEST_ADMIN_TOKEN = "test-admin-token"


class FakeClock:
    """Monotonic clock that only moves when told to."""

    def __init__(self, start: float = 1_000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture(autouse=True)
def _clear_log_context() -> Iterator[None]:
    structlog.contextvars.clear_contextvars()
    yield
    structlog.contextvars.clear_contextvars()


@pytest.fixture
def fake_settings() -> Settings:
    """Test environment settings with safe defaults."""
    return Settings(
        environment=Environment.TEST,
        admin_token=TEST_ADMIN_TOKEN,
        redis_url="redis://localhost:6379/1",
        output_cache_duration_seconds=60,
        debug=True,
    )


@pytest.fixture
def admin_headers() -> dict[str, str]:
    return {"X-Admin-Token": TEST_ADMIN_TOKEN}


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def backend(clock: FakeClock) -> InMemoryCacheBackend:
    return InMemoryCacheBackend(clock=clock)


@pytest.fixture
def store(backend: InMemoryCacheBackend) -> OutputCacheStore:
    return OutputCacheStore(backend, namespace="output")


@pytest.fixture
def calls() -> Counter:
    return Counter()


def build_catalog_router(calls: Counter) -> APIRouter:
    """Routes exercising each kind of handler result."""
    router = APIRouter(route_class=OutputCacheRoute)

    @router.get("/products/{product_id}")
    @cache_output()
    async def product(product_id: int) -> PlainTextResponse:
        calls["product"] += 1
        return PlainTextResponse("Hello")

    @router.get("/prices")
    @cache_output()
    async def prices(currency: str = "EUR") -> dict[str, Any]:
        calls["prices"] += 1
        return {"currency": currency, "amount": calls["prices"]}

    @router.post("/orders")
    @cache_output()
    async def create_order() -> PlainTextResponse:
        calls["orders"] += 1
        return PlainTextResponse("created", status_code=201)

    @router.get("/stream")
    @cache_output()
    async def stream() -> StreamingResponse:
        calls["stream"] += 1

        async def chunks():
            yield b"chunk"

        return StreamingResponse(chunks(), media_type="text/plain")

    @router.get("/uncached")
    async def uncached() -> PlainTextResponse:
        calls["uncached"] += 1
        return PlainTextResponse("fresh")

    @router.get("/fragment")
    @cache_output()
    async def fragment() -> HTMLResponse:
        calls["fragment"] += 1
        return HTMLResponse("<p>fragment</p>")

    @router.get("/page")
    @cache_output()
    async def page(request: Request) -> HTMLResponse:
        calls["page"] += 1
        transport = httpx.ASGITransport(app=request.app)
        async with httpx.AsyncClient(transport=transport, base_url="http://testserver") as inner:
            fragment_response = await inner.get("/fragment")
        return HTMLResponse(f"<main>{fragment_response.text}</main>")

    @router.get("/items/{name}")
    @cache_output()
    async def item(name: str) -> PlainTextResponse:
        calls["item"] += 1
        return PlainTextResponse(f"item={name}")

    @router.get("/files/{file_path:path}")
    @cache_output()
    async def file(file_path: str) -> PlainTextResponse:
        calls["file"] += 1
        return PlainTextResponse(f"file={file_path}")

    @router.get("/cachet")
    @cache_output()
    async def cachet() -> PlainTextResponse:
        calls["cachet"] += 1
        return PlainTextResponse("cachet")

    @router.get("/flaky")
    @cache_output()
    async def flaky() -> PlainTextResponse:
        calls["flaky"] += 1
        return PlainTextResponse("try later", status_code=503)

    @router.get("/broken")
    @cache_output()
    async def broken() -> PlainTextResponse:
        calls["broken"] += 1
        raise RuntimeError("handler failed")

    return router


@pytest.fixture
def app(fake_settings: Settings, backend: InMemoryCacheBackend, calls: Counter) -> FastAPI:
    return create_app(fake_settings, backend=backend, routers=[build_catalog_router(calls)])


@pytest.fixture
def client(app: FastAPI) -> Iterator[TestClient]:
    with TestClient(app, raise_server_exceptions=False) as test_client:
        yield test_client


@pytest.fixture
def make_request():
    """Build a Starlette Request for a bare HTTP scope."""

    def _make(
        path: str = "/products/42",
        *,
        method: str = "GET",
        query: str = "",
        headers: dict[str, str] | None = None,
        app: Any = None,
    ) -> Request:
        scope: dict[str, Any] = {
            "type": "http",
            "http_version": "1.1",
            "method": method,
            "scheme": "http",
            "server": ("testserver", 80),
            "client": ("127.0.0.1", 50000),
            "path": path,
            "raw_path": path.encode(),
            "root_path": "",
            "query_string": query.encode(),
            "headers": [
                (name.lower().encode(), value.encode())
                for name, value in (headers or {}).items()
            ],
        }
        if app is not None:
            scope["app"] = app
        return Request(scope)

    return _make
