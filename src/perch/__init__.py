"""Perch — declarative, validating routes for ASGI.

Declare a route as data (path, methods, handlers and a validation
contract for headers, query, path parameters, body and responses) and
perch compiles it into a middleware chain::

    from perch import Router

    router = Router()

    router.route({
        "method": "get",
        "path": "/users/{id}",
        "validate": {
            "params": {"id": int},
            "output": {"200": {"body": {"id": int, "name": str}}},
        },
        "handler": show_user,
    })

The router is an ASGI application: serve it with any ASGI server.
"""

__version__ = "0.1.0"
__all__ = [
    "CompiledRoute",
    "ConfigurationError",
    "DecodeError",
    "HTTPError",
    "MethodNotAllowed",
    "Middleware",
    "Next",
    "NotFound",
    "OutputContractError",
    "PerchError",
    "Request",
    "Response",
    "RouteInfo",
    "RouteSpec",
    "Router",
    "RouterConfig",
    "RuleConflictError",
    "SpecError",
    "ValidationError",
    "json_response",
]


def __getattr__(name: str) -> object:
    """Lazy imports for public API.

    Keeps ``import perch`` fast while providing a clean top-level API.
    """
    if name == "Router":
        from perch.router import Router

        return Router

    if name == "RouterConfig":
        from perch.config import RouterConfig

        return RouterConfig

    if name == "Request":
        from perch.http.request import Request

        return Request

    if name in ("Response", "json_response"):
        from perch.http import response as _resp

        return getattr(_resp, name)

    if name in ("CompiledRoute", "RouteInfo", "RouteSpec"):
        from perch import spec as _spec

        return getattr(_spec, name)

    if name in ("Middleware", "Next"):
        from perch.middleware import protocol as _mw

        return getattr(_mw, name)

    if name in (
        "ConfigurationError",
        "DecodeError",
        "HTTPError",
        "MethodNotAllowed",
        "NotFound",
        "OutputContractError",
        "PerchError",
        "RuleConflictError",
        "SpecError",
        "ValidationError",
    ):
        from perch import errors as _errors

        return getattr(_errors, name)

    msg = f"module {__name__!r} has no attribute {name!r}"
    raise AttributeError(msg)
