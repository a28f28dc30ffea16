"""HTTP response with chainable .with_*() transformation API.

Each transformation returns a new Response. Immutable by convention,
built incrementally by design.

The body keeps its Python shape (``dict``, ``list``, a pydantic model,
``str`` or ``bytes``) until it is sent, so output validation can inspect
what a handler produced rather than serialized bytes.
"""

from __future__ import annotations

import json as json_module
from collections.abc import Mapping
from dataclasses import dataclass, replace
from typing import Any

from pydantic import BaseModel

JSON_CONTENT_TYPE = "application/json; charset=utf-8"


def _json_default(value: Any) -> Any:
    if isinstance(value, BaseModel):
        return value.model_dump(mode="json")
    if isinstance(value, (set, frozenset)):
        return sorted(value)
    if hasattr(value, "isoformat"):
        return value.isoformat()
    msg = f"Object of type {type(value).__name__} is not JSON serializable"
    raise TypeError(msg)


def dump_json(value: Any) -> bytes:
    """Serialize *value* as compact UTF-8 JSON."""
    if isinstance(value, BaseModel):
        return value.model_dump_json().encode("utf-8")
    return json_module.dumps(value, default=_json_default, separators=(",", ":")).encode("utf-8")


@dataclass(frozen=True, slots=True)
class Response:
    """An HTTP response built through immutable transformations.

    Construct with a body, then chain ``.with_*()`` calls to set
    status and headers. Each call returns a new ``Response``.
    """

    body: Any = ""
    status: int = 200
    content_type: str = "text/plain; charset=utf-8"
    headers: tuple[tuple[str, str], ...] = ()

    # -- Chainable transformations --

    def with_status(self, status: int) -> Response:
        """Return a new Response with a different status code."""
        return replace(self, status=status)

    def with_header(self, name: str, value: str) -> Response:
        """Return a new Response with an additional header."""
        return replace(self, headers=(*self.headers, (name, value)))

    def with_headers(self, headers: Mapping[str, str]) -> Response:
        """Return a new Response with additional headers."""
        new = tuple(headers.items())
        return replace(self, headers=(*self.headers, *new))

    def with_content_type(self, content_type: str) -> Response:
        """Return a new Response with a different content type."""
        return replace(self, content_type=content_type)

    def with_body(self, body: Any) -> Response:
        """Return a new Response with a different body."""
        return replace(self, body=body)

    # -- Accessors --

    @property
    def header_map(self) -> dict[str, str]:
        """Headers as a dict with lower-cased names, content type included.

        Later headers win over earlier ones with the same name.
        """
        result = {"content-type": self.content_type}
        for name, value in self.headers:
            result[name.lower()] = value
        return result

    @property
    def body_bytes(self) -> bytes:
        """Body as bytes. Structured bodies are encoded as JSON."""
        if isinstance(self.body, bytes):
            return self.body
        if isinstance(self.body, str):
            return self.body.encode("utf-8")
        return dump_json(self.body)

    @property
    def text(self) -> str:
        """Body as string."""
        return self.body_bytes.decode("utf-8")

    def json(self) -> Any:
        """Body decoded as JSON."""
        if isinstance(self.body, (str, bytes)):
            return json_module.loads(self.body)
        return json_module.loads(self.body_bytes)


def json_response(body: Any, status: int = 200) -> Response:
    """Shorthand for a JSON response."""
    return Response(body=body, status=status, content_type=JSON_CONTENT_TYPE)
