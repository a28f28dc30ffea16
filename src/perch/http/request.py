"""HTTP request.

Metadata (method, path, headers, cookies) is fixed when the request is
built from the ASGI scope. A handful of slots are written by the
validation pipeline as the request travels through a route's chain:
``params``, ``body``, ``parts``, ``state`` and ``invalid``.
"""

from __future__ import annotations

from collections.abc import AsyncGenerator, AsyncIterator, Mapping
from dataclasses import dataclass, field
from typing import Any, Final

from perch._internal.asgi import Receive
from perch.http.cookies import parse_cookies
from perch.http.headers import Headers
from perch.http.query import QueryParams


class _Unparsed:
    """Sentinel type for a body nobody has decoded yet."""

    __slots__ = ()

    def __repr__(self) -> str:
        return "UNPARSED"

    def __bool__(self) -> bool:
        return False


UNPARSED: Final = _Unparsed()


@dataclass(slots=True)
class Request:
    """An HTTP request as seen by middleware and handlers.

    ``path_params`` are the raw strings extracted by the router.
    ``params`` starts as a copy of them and is replaced by the validated
    values when the route declares a ``params`` schema.

    ``body`` is ``UNPARSED`` until the body parser (or an earlier
    middleware) assigns a decoded value. The raw bytes are read with
    ``read()`` or streamed with ``stream()``.
    """

    method: str
    path: str
    headers: Headers
    query: QueryParams
    cookies: Mapping[str, str]
    http_version: str = "1.1"
    server: tuple[str, int] | None = None
    client: tuple[str, int] | None = None
    path_params: dict[str, str] = field(default_factory=dict)

    # Written by the validation pipeline
    params: dict[str, Any] = field(default_factory=dict)
    body: Any = UNPARSED
    parts: AsyncIterator[Any] | None = None
    state: dict[str, Any] = field(default_factory=dict)
    invalid: dict[str, Exception] | None = None

    # Private: ASGI receive callable for body streaming
    _receive: Receive | None = field(default=None, repr=False, compare=False)

    # Private: raw body bytes, once read
    _raw_body: bytes | None = field(default=None, repr=False, compare=False)

    # -- Computed properties --

    @property
    def content_type(self) -> str | None:
        """The Content-Type header value."""
        return self.headers.get("content-type")

    @property
    def content_length(self) -> int | None:
        """The Content-Length header as int."""
        value = self.headers.get("content-length")
        if value is None:
            return None
        try:
            return int(value)
        except (TypeError, ValueError):
            return None

    @property
    def url(self) -> str:
        """Full request URL (path + query string)."""
        qs = self.query.raw
        if qs:
            return f"{self.path}?{qs.decode('latin-1')}"
        return self.path

    @property
    def is_parsed(self) -> bool:
        """True once something has assigned a decoded body."""
        return self.body is not UNPARSED

    def capture(self, stage: str, error: Exception) -> None:
        """Record *error* under *stage* instead of aborting the chain."""
        if self.invalid is None:
            self.invalid = {}
        self.invalid[stage] = error

    # -- Async body access --

    async def read(self) -> bytes:
        """Read the full raw request body.

        Result is cached: the ASGI receive is consumed once, then
        the same bytes are returned on subsequent calls.
        """
        if self._raw_body is not None:
            return self._raw_body
        chunks = [chunk async for chunk in self.stream()]
        self._raw_body = b"".join(chunks)
        return self._raw_body

    async def stream(self) -> AsyncGenerator[bytes]:
        """Stream the raw request body in chunks."""
        if self._raw_body is not None:
            if self._raw_body:
                yield self._raw_body
            return
        if self._receive is None:
            return
        while True:
            message = await self._receive()
            chunk = message.get("body", b"")
            if chunk:
                yield chunk
            if not message.get("more_body", False):
                break

    # -- Factory --

    @classmethod
    def from_asgi(cls, scope: Mapping[str, Any], receive: Receive) -> Request:
        """Create a Request from an ASGI scope and receive callable."""
        headers = Headers(tuple(scope.get("headers", ())))
        server = scope.get("server")
        client = scope.get("client")
        return cls(
            method=scope["method"].lower(),
            path=scope["path"],
            headers=headers,
            query=QueryParams(scope.get("query_string", b"")),
            cookies=parse_cookies(headers.get("cookie", "")),
            http_version=scope.get("http_version", "1.1"),
            server=tuple(server) if server else None,
            client=tuple(client) if client else None,
            _receive=receive,
        )
