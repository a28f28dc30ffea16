"""Router — the user-facing entry point.

Routes are declared as data and compiled eagerly: a malformed
declaration fails at ``route()`` time, not on the first request. The
router is itself an ASGI application, and can also be mounted inside
another perch chain with ``middleware()``.
"""

import logging
import re
from collections.abc import Callable, Mapping, Sequence
from dataclasses import replace
from typing import Any

from perch._internal.asgi import Receive, Scope, Send
from perch._internal.types import ErrorHandler, Handler
from perch.config import RouterConfig
from perch.errors import ConfigurationError, NotFound, SpecError
from perch.http.request import Request
from perch.http.response import Response
from perch.middleware.protocol import Middleware, Next
from perch.routing.dispatcher import Dispatcher, ParamMiddleware
from perch.schema.extensions import TypeNamespace
from perch.schema.service import SchemaService
from perch.server.errors import ErrorHandlers
from perch.server.handler import handle_request
from perch.spec import CompiledRoute, RouteSpec, compile_route

logger = logging.getLogger("perch.routes")

# Keys a shortcut's optional config mapping may carry
SHORTCUT_KEYS = frozenset({"validate", "meta"})


class Router:
    """Declarative, validating router.

    Usage::

        router = Router(cookie="lang", directory="locales", default_locale="en")

        router.route({
            "method": "post",
            "path": "/users",
            "validate": {"type": "json", "body": {"name": str}},
            "handler": create_user,
        })

        router.get("/users/{id}", {"validate": {"params": {"id": int}}}, show_user)

    Configuration is frozen at construction. Routes may be added until
    the first request is dispatched.
    """

    def __init__(self, config: RouterConfig | None = None, **overrides: Any) -> None:
        if "extensions" in overrides:
            overrides["extensions"] = tuple(overrides["extensions"])
        self.config: RouterConfig = replace(config or RouterConfig(), **overrides)
        self.schemas = SchemaService(
            extensions=self.config.extensions,
            directory=self.config.directory,
            default_locale=self.config.default_locale,
            suffix=self.config.suffix,
        )
        self._dispatcher = Dispatcher()
        self._routes: list[CompiledRoute] = []
        self._error_handlers: ErrorHandlers = {}

    def __repr__(self) -> str:
        return f"Router({len(self._routes)} routes)"

    # -- Introspection --

    @property
    def routes(self) -> tuple[CompiledRoute, ...]:
        """Compiled routes, in registration order."""
        return tuple(self._routes)

    @property
    def types(self) -> TypeNamespace:
        """Schema types contributed by the loaded extensions."""
        return self.schemas.types

    # -- Route registration --

    def route(self, spec: Mapping[str, Any] | RouteSpec | Sequence[Mapping[str, Any] | RouteSpec]) -> "Router":
        """Compile and register one route, or a list of routes.

        Every spec in a list is compiled before any is registered, so an
        invalid entry leaves the router unchanged.
        """
        self._dispatcher.ensure_open()
        specs = list(spec) if isinstance(spec, (list, tuple)) else [spec]
        compiled = [compile_route(s, self.schemas, self.config) for s in specs]

        seen: set[tuple[str, str | re.Pattern[str]]] = set()
        for route in compiled:
            for method in route.methods:
                key = (method, route.path)
                if key in seen or self._dispatcher.registered(method, route.path):
                    msg = f"Duplicate route: {method.upper()} {route.info.path!r} is already registered."
                    raise ConfigurationError(msg)
                seen.add(key)

        for route in compiled:
            self._add_route(route)
        return self

    def _add_route(self, route: CompiledRoute) -> None:
        for method in route.methods:
            self._dispatcher.register(method, route.path, *route.chain)
        self._routes.append(route)

    def _shortcut(
        self,
        method: str,
        path: str | re.Pattern[str],
        *args: Any,
    ) -> Any:
        config: Mapping[str, Any] = {}
        handlers: tuple[Any, ...] = args
        if args and isinstance(args[0], Mapping):
            config, handlers = args[0], args[1:]
        unknown = set(config) - SHORTCUT_KEYS
        if unknown:
            raise SpecError("spec", f"unknown keys {sorted(map(str, unknown))}; allowed: {sorted(SHORTCUT_KEYS)}")

        def register(*funcs: Any) -> None:
            self.route({**config, "method": method, "path": path, "handler": list(funcs)})

        if handlers:
            register(*handlers)
            return self

        # Decorator form: @router.get("/path")
        def decorator(func: Handler) -> Handler:
            register(func)
            return func

        return decorator

    def get(self, path: str | re.Pattern[str], *args: Any) -> Any:
        """Register a GET route: ``get(path, [config], *handlers)``.

        Without handlers, returns a decorator.
        """
        return self._shortcut("get", path, *args)

    def post(self, path: str | re.Pattern[str], *args: Any) -> Any:
        return self._shortcut("post", path, *args)

    def put(self, path: str | re.Pattern[str], *args: Any) -> Any:
        return self._shortcut("put", path, *args)

    def patch(self, path: str | re.Pattern[str], *args: Any) -> Any:
        return self._shortcut("patch", path, *args)

    def delete(self, path: str | re.Pattern[str], *args: Any) -> Any:
        return self._shortcut("delete", path, *args)

    def head(self, path: str | re.Pattern[str], *args: Any) -> Any:
        return self._shortcut("head", path, *args)

    def options(self, path: str | re.Pattern[str], *args: Any) -> Any:
        return self._shortcut("options", path, *args)

    def trace(self, path: str | re.Pattern[str], *args: Any) -> Any:
        return self._shortcut("trace", path, *args)

    def connect(self, path: str | re.Pattern[str], *args: Any) -> Any:
        return self._shortcut("connect", path, *args)

    # -- Dispatcher configuration --

    def use(self, *middleware: Middleware) -> "Router":
        """Add middleware run for every matched request, before the route chain."""
        self._dispatcher.use(*middleware)
        return self

    def prefix(self, prefix: str) -> "Router":
        """Mount all string paths, including already registered ones, under *prefix*."""
        self._dispatcher.prefix(prefix)
        return self

    def param(self, name: str, middleware: ParamMiddleware) -> "Router":
        """Run ``middleware(value, request, next)`` for routes capturing *name*."""
        self._dispatcher.param(name, middleware)
        return self

    # -- Error handlers --

    def error(
        self,
        code_or_exception: int | type[Exception],
    ) -> Callable[[ErrorHandler], ErrorHandler]:
        """Register an error handler via decorator."""

        def decorator(func: ErrorHandler) -> ErrorHandler:
            self._error_handlers[code_or_exception] = func
            return func

        return decorator

    # -- Mounting --

    def middleware(self) -> Middleware:
        """This router as middleware: unmatched paths fall through to ``next``."""
        dispatcher = self._dispatcher

        async def perch_router(request: Request, next: Next) -> Response:
            try:
                match = dispatcher.resolve(request.method, request.path)
            except NotFound:
                return await next(request)
            return await dispatcher.run(request, match)

        return perch_router

    # -- ASGI interface --

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        """ASGI 3.0 entry point."""
        if scope["type"] == "lifespan":
            await self._handle_lifespan(receive, send)
            return
        if scope["type"] != "http":
            return

        await handle_request(
            scope,
            receive,
            send,
            dispatch=self._dispatcher.dispatch,
            error_handlers=self._error_handlers,
            debug=self.config.debug,
        )

    async def _handle_lifespan(self, receive: Receive, send: Send) -> None:
        """Freeze routing at startup so the first request pays no compile cost."""
        while True:
            message = await receive()
            if message["type"] == "lifespan.startup":
                try:
                    self._dispatcher.freeze()
                except Exception as exc:
                    await send({"type": "lifespan.startup.failed", "message": str(exc)})
                    return
                await send({"type": "lifespan.startup.complete"})
            elif message["type"] == "lifespan.shutdown":
                await send({"type": "lifespan.shutdown.complete"})
                return
