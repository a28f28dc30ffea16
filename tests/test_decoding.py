"""Tests for perch.decoding — body kinds, size limits and codecs."""

from typing import Any

import pytest

from perch.decoding import (
    DEFAULT_FIELD_SIZE,
    DEFAULT_LIMITS,
    MultipartStream,
    decode,
    decode_json,
    decode_urlencoded,
    decode_xml,
    match_kind,
    parse_size,
)
from perch.errors import DecodeError
from perch.http.request import Request
from perch.testing import encode_multipart


def _request(body: bytes, content_type: str, *, chunks: int = 1) -> Request:
    """Build a Request whose body arrives in *chunks* ASGI messages."""
    size = max(1, -(-len(body) // chunks))
    pieces = [body[i : i + size] for i in range(0, len(body), size)] or [b""]
    messages = [
        {"type": "http.request", "body": piece, "more_body": i < len(pieces) - 1}
        for i, piece in enumerate(pieces)
    ]

    async def receive() -> dict[str, Any]:
        return messages.pop(0)

    scope = {
        "type": "http",
        "method": "POST",
        "path": "/",
        "query_string": b"",
        "headers": [(b"content-type", content_type.encode("latin-1"))],
    }
    return Request.from_asgi(scope, receive)


class TestParseSize:
    @pytest.mark.parametrize(
        ("value", "expected"),
        [(None, None), (0, 0), (512, 512), ("64kb", 65536), ("1mb", 1 << 20), ("1.5 KB", 1536), ("10", 10)],
    )
    def test_valid(self, value: Any, expected: int | None) -> None:
        assert parse_size(value) == expected

    @pytest.mark.parametrize("value", ["lots", "-1kb", True, -5])
    def test_invalid(self, value: Any) -> None:
        with pytest.raises(ValueError):
            parse_size(value)


class TestMatchKind:
    def test_json_variants(self) -> None:
        assert match_kind("application/json; charset=utf-8", ("json",)) == "json"
        assert match_kind("application/vnd.api+json", ("json",)) == "json"

    def test_xml_variants(self) -> None:
        assert match_kind("text/xml", ("xml",)) == "xml"
        assert match_kind("application/atom+xml", ("xml",)) == "xml"

    def test_multipart_wildcard(self) -> None:
        assert match_kind("multipart/form-data; boundary=x", ("multipart/*",)) == "multipart/*"
        assert match_kind("multipart/mixed; boundary=x", ("multipart/*",)) == "multipart/*"

    def test_first_declared_wins(self) -> None:
        assert match_kind("application/json", ("urlencoded", "json")) == "json"

    def test_no_match(self) -> None:
        assert match_kind("text/plain", ("json", "urlencoded")) is None
        assert match_kind(None, ("json",)) is None


class TestCodecs:
    def test_json_object(self) -> None:
        assert decode_json(b'{"a": [1, 2]}') == {"a": [1, 2]}

    def test_json_empty_is_empty_object(self) -> None:
        assert decode_json(b"  ") == {}

    def test_json_rejects_scalars(self) -> None:
        with pytest.raises(DecodeError, match="only supports object and array"):
            decode_json(b'"text"')

    def test_json_malformed(self) -> None:
        with pytest.raises(DecodeError) as exc_info:
            decode_json(b'{"a":')
        assert exc_info.value.status == 400

    def test_urlencoded_repeated_keys(self) -> None:
        assert decode_urlencoded(b"a=1&b=2&b=3") == {"a": "1", "b": ["2", "3"]}

    def test_xml(self) -> None:
        raw = b'<user id="7"><name>Ada</name><tag>a</tag><tag>b</tag></user>'
        assert decode_xml(raw) == {"$": {"id": "7"}, "name": "Ada", "tag": ["a", "b"]}

    def test_xml_explicit_array_and_root(self) -> None:
        raw = b"<user><name>Ada</name></user>"
        assert decode_xml(raw, explicit_array=True, explicit_root=True) == {"user": [{"name": ["Ada"]}]}

    def test_xml_rejects_entities(self) -> None:
        raw = b'<!DOCTYPE x [<!ENTITY a "boom">]><x>&a;</x>'
        with pytest.raises(DecodeError):
            decode_xml(raw)

    def test_xml_malformed(self) -> None:
        with pytest.raises(DecodeError, match="invalid XML"):
            decode_xml(b"<open>")


class TestDecode:
    async def test_json(self) -> None:
        request = _request(b'{"id": 1}', "application/json", chunks=3)
        assert await decode("json", request) == {"id": 1}

    async def test_limit_exceeded(self) -> None:
        request = _request(b'{"name": "' + b"x" * 100 + b'"}', "application/json", chunks=4)
        with pytest.raises(DecodeError) as exc_info:
            await decode("json", request, limit=32)
        assert exc_info.value.status == 413

    async def test_default_form_limit(self) -> None:
        request = _request(b"a=" + b"x" * (DEFAULT_LIMITS["urlencoded"] + 1), "application/x-www-form-urlencoded")
        with pytest.raises(DecodeError) as exc_info:
            await decode("urlencoded", request)
        assert exc_info.value.status == 413

    async def test_raw_body_still_readable(self) -> None:
        request = _request(b"a=1", "application/x-www-form-urlencoded")
        await decode("urlencoded", request)
        assert await request.read() == b"a=1"


class TestMultipart:
    async def test_parts_are_lazy_and_fields_collected(self) -> None:
        body = encode_multipart({"title": "Hi"}, {"file": ("a.txt", b"hello", "text/plain")})
        request = _request(body, "multipart/form-data; boundary=perch-test-boundary", chunks=5)
        stream = await decode("multipart/*", request)

        assert isinstance(stream, MultipartStream)
        assert stream.fields == {}

        parts = [part async for part in stream]
        assert [(p.name, p.filename, p.content_type, p.data) for p in parts] == [
            ("file", "a.txt", "text/plain", b"hello")
        ]
        assert stream.fields == {"title": "Hi"}

    async def test_consumed_once(self) -> None:
        body = encode_multipart({"a": "1"})
        stream = await decode("multipart/*", _request(body, "multipart/form-data; boundary=perch-test-boundary"))
        [part async for part in stream]
        with pytest.raises(RuntimeError, match="already been consumed"):
            [part async for part in stream]

    async def test_max_files(self) -> None:
        files = {"a": ("a.txt", b"1", "text/plain"), "b": ("b.txt", b"2", "text/plain")}
        request = _request(encode_multipart(files=files), "multipart/form-data; boundary=perch-test-boundary")
        stream = await decode("multipart/*", request, multipart_options={"max_files": 1})
        with pytest.raises(DecodeError, match="too many files"):
            [part async for part in stream]

    async def test_max_file_size(self) -> None:
        files = {"a": ("a.bin", b"x" * 64, "application/octet-stream")}
        request = _request(encode_multipart(files=files), "multipart/form-data; boundary=perch-test-boundary")
        stream = await decode("multipart/*", request, multipart_options={"max_file_size": 16})
        with pytest.raises(DecodeError) as exc_info:
            [part async for part in stream]
        assert exc_info.value.status == 413

    async def test_max_field_size(self) -> None:
        request = _request(
            encode_multipart({"note": "x" * 64}),
            "multipart/form-data; boundary=perch-test-boundary",
            chunks=8,
        )
        stream = await decode("multipart/*", request, multipart_options={"max_field_size": "16b"})
        with pytest.raises(DecodeError, match="field 'note' too large") as exc_info:
            [part async for part in stream]
        assert exc_info.value.status == 413
        assert stream.fields == {}

    async def test_fields_capped_by_default(self) -> None:
        oversized = "x" * (DEFAULT_FIELD_SIZE + 1)
        request = _request(encode_multipart({"note": oversized}), "multipart/form-data; boundary=perch-test-boundary")
        stream = await decode("multipart/*", request)
        with pytest.raises(DecodeError, match="too large"):
            [part async for part in stream]

    async def test_file_size_limit_ignores_fields(self) -> None:
        request = _request(encode_multipart({"note": "x" * 64}), "multipart/form-data; boundary=perch-test-boundary")
        stream = await decode("multipart/*", request, multipart_options={"max_file_size": 16})
        assert [part async for part in stream] == []
        assert stream.fields == {"note": "x" * 64}

    async def test_missing_boundary(self) -> None:
        with pytest.raises(DecodeError, match="boundary"):
            await decode("multipart/*", _request(b"", "multipart/form-data"))
