"""Tests for CachedResponse and cacheable-result extraction."""

from __future__ import annotations

import pytest
from starlette.responses import (
    HTMLResponse,
    JSONResponse,
    PlainTextResponse,
    Response,
    StreamingResponse,
)
from starlette.templating import _TemplateResponse

from outputcache.cache.response import CachedResponse, create_cached_response
from outputcache.cache.results import CachableResult, get_cached_response


class _CachablePlainText(PlainTextResponse):
    """A content response that also supplies its own cacheable form."""

    def get_cached_response(self) -> CachedResponse:
        return CachedResponse.from_text("from-capability", headers={"x-source": "capability"})


class _CachableTemplate:
    def render(self, context: dict) -> str:
        return "<h1>rendered</h1>"

    def get_cached_response(self) -> CachedResponse:
        return CachedResponse.from_text(
            "<h1>from-template</h1>", headers={"content-type": "text/html; charset=utf-8"}
        )


class _PlainTemplate:
    def render(self, context: dict) -> str:
        return "<h1>plain</h1>"


class TestCachedResponse:
    def test_is_immutable(self):
        cached = CachedResponse.from_text("hi")
        with pytest.raises(AttributeError):
            cached.body = b"changed"  # type: ignore[misc]

    def test_text_body_is_encoded_with_content_encoding(self):
        cached = CachedResponse(body="žluťoučký", content_encoding="utf-16")
        assert cached.body == "žluťoučký".encode("utf-16")
        assert cached.text == "žluťoučký"

    def test_headers_keep_order(self):
        cached = CachedResponse(b"x", headers={"b": "2", "a": "1"})
        assert cached.headers == (("b", "2"), ("a", "1"))
        assert cached.header("A") == "1"
        assert cached.header("missing") is None

    def test_dict_round_trip_preserves_binary_body(self):
        cached = CachedResponse(
            body=b"\x00\xffbinary",
            content_encoding=None,
            headers=(("content-type", "application/octet-stream"),),
            status_code=203,
        )
        assert CachedResponse.from_dict(cached.to_dict()) == cached

    def test_to_cached_result_reproduces_status_headers_and_body(self):
        cached = CachedResponse(
            body=b"<p>ok</p>",
            content_encoding="utf-8",
            headers=(("content-type", "text/html; charset=utf-8"), ("x-custom", "1")),
            status_code=202,
        )
        result = cached.to_cached_result()
        assert result.status_code == 202
        assert result.body == b"<p>ok</p>"
        assert result.headers["content-type"] == "text/html; charset=utf-8"
        assert result.headers["x-custom"] == "1"
        assert result.headers["content-length"] == str(len(b"<p>ok</p>"))
        assert result.charset == "utf-8"

    def test_to_cached_result_recomputes_stale_content_length(self):
        cached = CachedResponse(b"abc", headers=(("content-length", "999"),))
        result = cached.to_cached_result()
        assert result.headers.getlist("content-length") == ["3"]


class TestCreateCachedResponse:
    def test_copies_body_encoding_and_content_type(self):
        content = PlainTextResponse("Hello", headers={"set-cookie": "session=1"})
        cached = create_cached_response(content)
        assert cached.body == b"Hello"
        assert cached.content_encoding == "utf-8"
        assert cached.headers == (("content-type", "text/plain; charset=utf-8"),)
        assert cached.status_code == 200

    def test_round_trip_reproduces_content_result(self):
        content = HTMLResponse("<b>Grüße</b>", status_code=200)
        restored = create_cached_response(content).to_cached_result()
        assert restored.body == content.body
        assert restored.charset == content.charset
        assert restored.headers["content-type"] == content.headers["content-type"]

    def test_response_without_media_type_has_no_content_type(self):
        cached = create_cached_response(Response(b"raw"))
        assert cached.headers == ()


class TestGetCachedResponse:
    def test_capability_wins_over_content_fallback(self):
        result = _CachablePlainText("content-body")
        assert isinstance(result, CachableResult)
        cached = get_cached_response(result)
        assert cached is not None
        assert cached.text == "from-capability"
        assert cached.header("x-source") == "capability"

    def test_view_with_cachable_template_uses_template(self):
        result = _TemplateResponse(_CachableTemplate(), {})
        cached = get_cached_response(result)
        assert cached is not None
        assert cached.text == "<h1>from-template</h1>"

    def test_view_with_plain_template_falls_back_to_rendered_content(self):
        result = _TemplateResponse(_PlainTemplate(), {})
        cached = get_cached_response(result)
        assert cached is not None
        assert cached.body == b"<h1>plain</h1>"
        assert cached.header("content-type") == "text/html; charset=utf-8"

    def test_json_content_result_is_cacheable(self):
        cached = get_cached_response(JSONResponse({"a": 1}))
        assert cached is not None
        assert cached.body == b'{"a":1}'
        assert cached.header("content-type") == "application/json"

    def test_streaming_response_is_not_cacheable(self):
        async def chunks():
            yield b"x"

        assert get_cached_response(StreamingResponse(chunks())) is None

    def test_arbitrary_object_is_not_cacheable(self):
        assert get_cached_response({"not": "a response"}) is None
        assert get_cached_response(None) is None

    @pytest.mark.parametrize("status_code", [301, 404, 500, 503])
    def test_non_success_content_result_is_not_cacheable(self, status_code):
        assert get_cached_response(PlainTextResponse("oops", status_code=status_code)) is None

    def test_created_content_result_is_cacheable(self):
        cached = get_cached_response(PlainTextResponse("made", status_code=201))
        assert cached is not None
        assert cached.status_code == 201
