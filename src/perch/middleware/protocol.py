"""Middleware protocol and Next type alias.

A middleware is any callable matching::

    async def my_mw(request: Request, next: Next) -> Response: ...

Every stage of a compiled route chain (parameter preparation, spec
exposure, body parsing, validation) and every two-argument handler has
this shape, as do the callables passed to ``router.use()``.
"""

from collections.abc import Awaitable, Callable
from typing import Protocol

from perch.http.request import Request
from perch.http.response import Response

# The rest of the chain after the current stage
type Next = Callable[[Request], Awaitable[Response]]


class Middleware(Protocol):
    """Protocol for perch middleware; functions and callable objects both fit.

    A stage may answer on its own or hand the request on::

        async def require_key(request: Request, next: Next) -> Response:
            if "x-api-key" not in request.headers:
                return Response("missing API key", status=401)
            return await next(request)

        class Tenant:
            def __init__(self, tenants: Mapping[str, str]) -> None:
                self.tenants = tenants

            async def __call__(self, request: Request, next: Next) -> Response:
                request.state["tenant"] = self.tenants.get(request.headers.get("host", ""))
                return await next(request)
    """

    async def __call__(self, request: Request, next: Next) -> Response: ...
