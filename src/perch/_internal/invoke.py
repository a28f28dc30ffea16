"""Invoke helpers — call sync or async callables uniformly.

Handlers, param middleware and error handlers can be ``def`` or
``async def``. Any code that calls a user-provided callable must handle
both cases. This module keeps the sync/async check in one place.

Usage::

    from perch._internal.invoke import invoke

    result = await invoke(handler, request)
"""

import inspect
from typing import Any


async def invoke(func: Any, *args: Any, **kwargs: Any) -> Any:
    """Call *func* and await the result if it's awaitable."""
    result = func(*args, **kwargs)
    if inspect.isawaitable(result):
        result = await result
    return result


def positional_arity(func: Any) -> int:
    """Number of positional parameters *func* accepts.

    ``*args`` counts as unbounded and is reported as ``2`` so the caller
    treats the callable as middleware. Returns ``-1`` when the signature
    cannot be inspected (some builtins).
    """
    try:
        sig = inspect.signature(func)
    except (TypeError, ValueError):
        return -1
    count = 0
    for param in sig.parameters.values():
        if param.kind is inspect.Parameter.VAR_POSITIONAL:
            return max(count, 2)
        if param.kind in (
            inspect.Parameter.POSITIONAL_ONLY,
            inspect.Parameter.POSITIONAL_OR_KEYWORD,
        ):
            count += 1
    return count
