"""Tests for perch.server.negotiation — handler return values to Responses."""

import pytest
from pydantic import BaseModel

from perch.http.response import JSON_CONTENT_TYPE, Response
from perch.server.negotiation import negotiate


class _Item(BaseModel):
    name: str


class TestNegotiate:
    def test_response_passthrough(self) -> None:
        original = Response(body="hello", status=201)
        assert negotiate(original) is original

    def test_none_is_no_content(self) -> None:
        result = negotiate(None)
        assert result.status == 204
        assert result.body == ""

    def test_str(self) -> None:
        result = negotiate("hi")
        assert result.status == 200
        assert result.content_type.startswith("text/plain")

    def test_bytes(self) -> None:
        result = negotiate(b"\x00")
        assert result.content_type == "application/octet-stream"

    def test_dict_list_and_model_are_json(self) -> None:
        for value in ({"a": 1}, [1, 2], _Item(name="x")):
            result = negotiate(value)
            assert result.content_type == JSON_CONTENT_TYPE
            assert result.body is value

    def test_value_status_tuple(self) -> None:
        result = negotiate(({"id": 1}, 201))
        assert result.status == 201
        assert result.body == {"id": 1}

    def test_value_status_headers_tuple(self) -> None:
        result = negotiate(("created", 201, {"Location": "/items/1"}))
        assert result.status == 201
        assert ("Location", "/items/1") in result.headers

    def test_unsupported_type(self) -> None:
        with pytest.raises(TypeError, match="Cannot convert int"):
            negotiate(42)
