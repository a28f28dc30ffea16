"""Dispatcher — registers middleware chains under method + path and runs them.

Registration is collected in order and compiled into a ``RouteTable``
on the first dispatch. From then on the dispatcher is frozen: the table
and every endpoint's composed chain are read-only and shared by all
requests.
"""

import logging
import re
import threading
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any

from perch._internal.invoke import invoke
from perch.errors import ConfigurationError
from perch.http.request import Request
from perch.http.response import Response
from perch.middleware.protocol import Middleware, Next
from perch.pipeline import compose
from perch.routing.route import Endpoint, RouteMatch
from perch.routing.table import RouteTable, parse_path, path_param_names
from perch.server.negotiation import negotiate

logger = logging.getLogger("perch.routes")

# Param middleware: mw(value, request, next)
type ParamMiddleware = Callable[[str, Request, Next], Any]


@dataclass(frozen=True, slots=True)
class _Registration:
    method: str
    path: str | re.Pattern[str]
    chain: tuple[Middleware, ...]


def join_prefix(prefix: str, path: str | re.Pattern[str]) -> str | re.Pattern[str]:
    """Prepend *prefix* to a string path. Regex paths are returned as-is."""
    if not prefix or isinstance(path, re.Pattern):
        return path
    base = prefix.rstrip("/")
    if path == "/":
        return base or "/"
    return f"{base}{path}"


def _param_stage(name: str, middleware: ParamMiddleware) -> Middleware:
    async def run_param(request: Request, next: Next) -> Response:
        # Optional regex groups that did not participate
        if name not in request.path_params:
            return await next(request)
        return negotiate(await invoke(middleware, request.path_params[name], request, next))

    return run_param


class Dispatcher:
    """Path + method dispatch over registered middleware chains.

    Usage::

        dispatcher = Dispatcher()
        dispatcher.prefix("/api")
        dispatcher.register("get", "/users/{id}", load_user, show_user)
        response = await dispatcher.dispatch(request)
    """

    __slots__ = ("_lock", "_middleware", "_params", "_prefix", "_registrations", "_table")

    def __init__(self) -> None:
        self._registrations: list[_Registration] = []
        self._middleware: list[Middleware] = []
        self._params: dict[str, list[ParamMiddleware]] = {}
        self._prefix = ""
        self._table: RouteTable | None = None
        self._lock = threading.Lock()

    # -- Registration --

    def ensure_open(self) -> None:
        if self._table is not None:
            msg = "Cannot change routing after the first request has been dispatched."
            raise RuntimeError(msg)

    def register(self, method: str, path: str | re.Pattern[str], *middleware: Middleware) -> None:
        """Register *middleware*, run in order, for *method* requests to *path*."""
        self.ensure_open()
        if not middleware:
            msg = f"No middleware given for {method.upper()} {path!r}."
            raise ConfigurationError(msg)
        if isinstance(path, str):
            parse_path(path)
        self._registrations.append(_Registration(method.lower(), path, middleware))

    def registered(self, method: str, path: str | re.Pattern[str]) -> bool:
        """True if *method* is already registered for *path*."""
        return any(reg.method == method.lower() and reg.path == path for reg in self._registrations)

    def use(self, *middleware: Middleware) -> None:
        """Add router-level middleware, run for every matched request before its route."""
        self.ensure_open()
        self._middleware.extend(middleware)

    def prefix(self, prefix: str) -> None:
        """Mount every string path under *prefix*, including those already registered."""
        self.ensure_open()
        if prefix and not prefix.startswith("/"):
            msg = f"Prefix {prefix!r} must start with '/'."
            raise ConfigurationError(msg)
        parse_path(prefix or "/")
        self._prefix = prefix

    def param(self, name: str, middleware: ParamMiddleware) -> None:
        """Run ``middleware(value, request, next)`` for routes that capture *name*."""
        self.ensure_open()
        self._params.setdefault(name, []).append(middleware)

    def full_path(self, path: str | re.Pattern[str]) -> str | re.Pattern[str]:
        return join_prefix(self._prefix, path)

    # -- Freezing --

    @property
    def frozen(self) -> bool:
        return self._table is not None

    def _compile(self) -> RouteTable:
        table = RouteTable()
        for reg in self._registrations:
            path = self.full_path(reg.path)
            names = path_param_names(path)
            params = [_param_stage(name, mw) for name in names for mw in self._params.get(name, ())]
            run = compose((*self._middleware, *params, *reg.chain))
            table.add(Endpoint(method=reg.method, path=path, run=run, param_names=names))
        logger.debug("routing frozen with %d endpoints", len(self._registrations))
        return table

    def freeze(self) -> RouteTable:
        """Compile the route table. Safe to call concurrently; compiles once."""
        if self._table is None:
            with self._lock:
                if self._table is None:
                    self._table = self._compile()
        return self._table

    # -- Dispatch --

    def resolve(self, method: str, path: str) -> RouteMatch:
        """Match a request. Raises ``NotFound`` or ``MethodNotAllowed``."""
        return self.freeze().match(method.lower(), path)

    async def run(self, request: Request, match: RouteMatch) -> Response:
        request.path_params = dict(match.path_params)
        return await match.endpoint.run(request)

    async def dispatch(self, request: Request) -> Response:
        """Resolve *request* and run the matched endpoint's chain."""
        return await self.run(request, self.resolve(request.method, request.path))
