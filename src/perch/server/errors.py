"""Error handling pipeline for perch requests.

Maps HTTPError exceptions and unexpected failures to appropriate
Response objects, using registered error handlers or sensible defaults.
"""

import inspect
import logging
from collections.abc import Callable
from typing import Any

from perch.errors import HTTPError, OutputContractError
from perch.http.request import Request
from perch.http.response import Response, json_response
from perch.server.negotiation import negotiate

logger = logging.getLogger("perch.server")

type ErrorHandlers = dict[int | type, Callable[..., Any]]


async def call_error_handler(
    handler: Callable[..., Any],
    request: Request,
    exc: Exception,
) -> Response:
    """Invoke a user-registered error handler with introspected arguments.

    Error handlers may accept zero, one (request), or two (request, exc) args.
    Supports both sync and async error handlers.
    """
    sig = inspect.signature(handler)
    params = list(sig.parameters.values())

    if len(params) >= 2:
        result = handler(request, exc)
    elif len(params) == 1:
        result = handler(request)
    else:
        result = handler()

    if inspect.isawaitable(result):
        result = await result

    return negotiate(result)


def _lookup(error_handlers: ErrorHandlers, exc: Exception, status: int) -> Callable[..., Any] | None:
    # Most specific exception class first, then the status code
    for cls in type(exc).__mro__:
        if cls in error_handlers:
            return error_handlers[cls]
    return error_handlers.get(status)


def default_error_response(exc: HTTPError, debug: bool) -> Response:
    """Plain text for bare HTTP errors, JSON for errors with structured details."""
    errors = getattr(exc, "errors", ())
    if isinstance(exc, OutputContractError) and not debug:
        response = Response(body="Internal Server Error", status=500)
    elif errors:
        response = json_response({"detail": exc.detail, "errors": list(errors)}, status=exc.status)
    else:
        response = Response(body=exc.detail or f"Error {exc.status}", status=exc.status)
    for name, value in exc.headers:
        response = response.with_header(name, value)
    return response


async def handle_http_error(
    exc: HTTPError,
    request: Request,
    error_handlers: ErrorHandlers,
    debug: bool,
) -> Response:
    """Map an HTTPError to a Response using registered error handlers."""
    logger.debug("%d %s %s: %s", exc.status, request.method, request.path, exc.detail)

    handler = _lookup(error_handlers, exc, exc.status)
    if handler is not None:
        response = await call_error_handler(handler, request, exc)
        # Keep the exception's status unless the handler chose its own
        if response.status == 200:
            response = response.with_status(exc.status)
        return response

    return default_error_response(exc, debug)


async def handle_internal_error(
    exc: Exception,
    request: Request,
    error_handlers: ErrorHandlers,
    debug: bool,
) -> Response:
    """Handle unexpected exceptions as 500 errors."""
    logger.exception("500 %s %s", request.method, request.path)

    handler = _lookup(error_handlers, exc, 500)
    if handler is not None:
        return await call_error_handler(handler, request, exc)

    if debug:
        return Response(body=f"Internal Server Error\n\n{type(exc).__name__}: {exc}", status=500)
    return Response(body="Internal Server Error", status=500)
