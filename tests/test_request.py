"""Tests for perch.http.request — Request with pipeline slots and async body access."""

from collections.abc import Awaitable, Callable
from typing import Any

from perch.errors import DecodeError
from perch.http.request import UNPARSED, Request


def _make_scope(**overrides: object) -> dict[str, object]:
    """Build a minimal valid ASGI HTTP scope."""
    base: dict[str, object] = {
        "type": "http",
        "asgi": {"version": "3.0"},
        "http_version": "1.1",
        "method": "GET",
        "path": "/",
        "raw_path": b"/",
        "query_string": b"",
        "root_path": "",
        "headers": [],
        "server": ("localhost", 8000),
        "client": ("127.0.0.1", 54321),
    }
    base.update(overrides)
    return base


def _make_receive(*bodies: bytes) -> Callable[[], Awaitable[dict[str, Any]]]:
    """Create an ASGI receive callable that yields bodies."""
    messages = [
        {"type": "http.request", "body": body, "more_body": i < len(bodies) - 1} for i, body in enumerate(bodies)
    ] or [{"type": "http.request", "body": b"", "more_body": False}]
    it = iter(messages)

    async def receive() -> dict[str, Any]:
        return next(it)

    return receive


class TestRequestFromASGI:
    def test_basic_fields(self) -> None:
        request = Request.from_asgi(_make_scope(method="POST", path="/users"), _make_receive())
        assert request.method == "post"
        assert request.path == "/users"
        assert request.server == ("localhost", 8000)
        assert request.client == ("127.0.0.1", 54321)

    def test_pipeline_slots_start_empty(self) -> None:
        request = Request.from_asgi(_make_scope(), _make_receive())
        assert request.params == {}
        assert request.path_params == {}
        assert request.body is UNPARSED
        assert not request.is_parsed
        assert request.parts is None
        assert request.invalid is None
        assert request.state == {}

    def test_headers_and_query(self) -> None:
        scope = _make_scope(
            headers=[(b"content-type", b"application/json"), (b"content-length", b"12")],
            query_string=b"page=2&tag=a&tag=b",
        )
        request = Request.from_asgi(scope, _make_receive())
        assert request.content_type == "application/json"
        assert request.content_length == 12
        assert request.query.get("page") == "2"
        assert request.query.get_list("tag") == ["a", "b"]
        assert request.url == "/?page=2&tag=a&tag=b"

    def test_content_length_invalid(self) -> None:
        request = Request.from_asgi(_make_scope(headers=[(b"content-length", b"lots")]), _make_receive())
        assert request.content_length is None

    def test_cookies(self) -> None:
        request = Request.from_asgi(_make_scope(headers=[(b"cookie", b'lang=fr; theme="dark"')]), _make_receive())
        assert request.cookies == {"lang": "fr", "theme": "dark"}

    def test_missing_server_and_client(self) -> None:
        scope = _make_scope()
        del scope["server"]
        del scope["client"]
        request = Request.from_asgi(scope, _make_receive())
        assert request.server is None
        assert request.client is None


class TestBodyAccess:
    async def test_read_chunked(self) -> None:
        request = Request.from_asgi(_make_scope(), _make_receive(b"hel", b"lo"))
        assert await request.read() == b"hello"

    async def test_read_cached(self) -> None:
        request = Request.from_asgi(_make_scope(), _make_receive(b"once"))
        assert await request.read() == b"once"
        assert await request.read() == b"once"
        assert [chunk async for chunk in request.stream()] == [b"once"]

    async def test_stream(self) -> None:
        request = Request.from_asgi(_make_scope(), _make_receive(b"a", b"b", b"c"))
        assert [chunk async for chunk in request.stream()] == [b"a", b"b", b"c"]

    async def test_empty_body(self) -> None:
        request = Request.from_asgi(_make_scope(), _make_receive())
        assert await request.read() == b""


class TestCapture:
    def test_capture_records_by_stage(self) -> None:
        request = Request.from_asgi(_make_scope(), _make_receive())
        error = DecodeError(detail="bad")
        request.capture("type", error)
        assert request.invalid == {"type": error}

    def test_unparsed_is_falsy(self) -> None:
        assert not UNPARSED
        assert repr(UNPARSED) == "UNPARSED"
