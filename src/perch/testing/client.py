"""Async test client for perch routers.

Uses the same Request and Response types as production.
No wrapper translation layer.
"""

import json as json_module
from collections.abc import Mapping
from typing import Any
from urllib.parse import quote, urlencode

from perch.http.response import Response
from perch.router import Router

BOUNDARY = "perch-test-boundary"

# (filename, content, content type)
type FileField = tuple[str, bytes, str]


def encode_multipart(
    fields: Mapping[str, str] | None = None,
    files: Mapping[str, FileField] | None = None,
    boundary: str = BOUNDARY,
) -> bytes:
    """Encode *fields* and *files* as a ``multipart/form-data`` body."""
    lines: list[bytes] = []
    for name, value in (fields or {}).items():
        lines.append(f"--{boundary}".encode())
        lines.append(f'Content-Disposition: form-data; name="{name}"'.encode())
        lines.append(b"")
        lines.append(value.encode("utf-8"))
    for name, (filename, content, content_type) in (files or {}).items():
        lines.append(f"--{boundary}".encode())
        lines.append(f'Content-Disposition: form-data; name="{name}"; filename="{filename}"'.encode())
        lines.append(f"Content-Type: {content_type}".encode())
        lines.append(b"")
        lines.append(content)
    lines.append(f"--{boundary}--".encode())
    lines.append(b"")
    return b"\r\n".join(lines)


class TestClient:
    """Async test client for perch routers.

    Returns the same ``Response`` type used in production. Sends requests
    through the ASGI interface directly, no HTTP involved.

    Usage::

        async with TestClient(router) as client:
            response = await client.get("/users/42", query={"verbose": "1"})
            assert response.status == 200
    """

    __test__ = False  # Tell pytest this is not a test class

    __slots__ = ("router",)

    def __init__(self, router: Router) -> None:
        self.router = router

    async def __aenter__(self) -> "TestClient":
        await self._lifespan("startup")
        return self

    async def __aexit__(self, *args: object) -> None:
        await self._lifespan("shutdown")

    async def _lifespan(self, phase: str) -> None:
        messages = [{"type": f"lifespan.{phase}"}]
        sent: list[dict[str, Any]] = []

        async def receive() -> dict[str, Any]:
            if messages:
                return messages.pop()
            return {"type": "lifespan.shutdown"}

        async def send(message: dict[str, Any]) -> None:
            sent.append(message)

        await self.router({"type": "lifespan", "asgi": {"version": "3.0"}}, receive, send)
        if sent and sent[0]["type"].endswith(".failed"):
            msg = f"Router failed lifespan {phase}: {sent[0].get('message', '')}"
            raise RuntimeError(msg)

    async def get(self, path: str, **kwargs: Any) -> Response:
        """Send a GET request."""
        return await self.request("GET", path, **kwargs)

    async def head(self, path: str, **kwargs: Any) -> Response:
        """Send a HEAD request."""
        return await self.request("HEAD", path, **kwargs)

    async def post(self, path: str, **kwargs: Any) -> Response:
        """Send a POST request."""
        return await self.request("POST", path, **kwargs)

    async def put(self, path: str, **kwargs: Any) -> Response:
        """Send a PUT request."""
        return await self.request("PUT", path, **kwargs)

    async def patch(self, path: str, **kwargs: Any) -> Response:
        """Send a PATCH request."""
        return await self.request("PATCH", path, **kwargs)

    async def delete(self, path: str, **kwargs: Any) -> Response:
        """Send a DELETE request."""
        return await self.request("DELETE", path, **kwargs)

    async def request(
        self,
        method: str,
        path: str,
        *,
        headers: Mapping[str, str] | None = None,
        query: Mapping[str, str | list[str]] | None = None,
        cookies: Mapping[str, str] | None = None,
        body: bytes | str | None = None,
        json: Any = None,
        form: Mapping[str, str] | None = None,
        files: Mapping[str, FileField] | None = None,
    ) -> Response:
        """Send an arbitrary request through the ASGI app.

        At most one of *body*, *json*, *form* (alone or with *files*)
        supplies the payload; the matching ``Content-Type`` is set unless
        *headers* already carries one.
        """
        extra_headers: dict[str, str] = {}
        request_body = body.encode("utf-8") if isinstance(body, str) else body or b""

        if json is not None:
            request_body = json_module.dumps(json).encode("utf-8")
            extra_headers["content-type"] = "application/json"
        elif files is not None:
            request_body = encode_multipart(form, files)
            extra_headers["content-type"] = f"multipart/form-data; boundary={BOUNDARY}"
        elif form is not None:
            request_body = urlencode(form).encode("latin-1")
            extra_headers["content-type"] = "application/x-www-form-urlencoded"

        if cookies:
            extra_headers["cookie"] = "; ".join(f"{k}={quote(v)}" for k, v in cookies.items())

        # Split path and query string
        if "?" in path:
            path_part, query_string = path.split("?", 1)
        else:
            path_part = path
            query_string = ""
        if query:
            encoded = urlencode(query, doseq=True)
            query_string = f"{query_string}&{encoded}" if query_string else encoded

        # Build raw ASGI headers
        merged = {**extra_headers, **{k.lower(): v for k, v in (headers or {}).items()}}
        raw_headers: list[tuple[bytes, bytes]] = [
            (name.encode("latin-1"), value.encode("latin-1")) for name, value in merged.items()
        ]
        if request_body and "content-length" not in merged:
            raw_headers.append((b"content-length", str(len(request_body)).encode("latin-1")))

        scope: dict[str, Any] = {
            "type": "http",
            "asgi": {"version": "3.0"},
            "http_version": "1.1",
            "method": method.upper(),
            "path": path_part,
            "raw_path": path_part.encode("latin-1"),
            "query_string": query_string.encode("latin-1"),
            "root_path": "",
            "headers": raw_headers,
            "server": ("testserver", 80),
            "client": ("127.0.0.1", 0),
        }

        body_sent = False

        async def receive() -> dict[str, Any]:
            nonlocal body_sent
            if not body_sent:
                body_sent = True
                return {"type": "http.request", "body": request_body, "more_body": False}
            return {"type": "http.disconnect"}

        response_status = 200
        response_headers: list[tuple[bytes, bytes]] = []
        response_body_parts: list[bytes] = []

        async def send(message: dict[str, Any]) -> None:
            nonlocal response_status, response_headers
            if message["type"] == "http.response.start":
                response_status = message["status"]
                response_headers = list(message.get("headers", []))
            elif message["type"] == "http.response.body":
                response_body_parts.append(message.get("body", b""))

        await self.router(scope, receive, send)

        # Rebuild a Response from the captured messages
        content_type = "text/plain; charset=utf-8"
        extra: list[tuple[str, str]] = []
        for name_b, value_b in response_headers:
            name_str = name_b.decode("latin-1")
            value_str = value_b.decode("latin-1")
            if name_str == "content-type":
                content_type = value_str
            elif name_str != "content-length":
                extra.append((name_str, value_str))

        return Response(
            body=b"".join(response_body_parts),
            status=response_status,
            content_type=content_type,
            headers=tuple(extra),
        )
