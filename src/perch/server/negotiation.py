"""Content negotiation — maps handler return values to Response objects.

isinstance-based dispatch, no magic, fully predictable.
"""

from typing import Any

from pydantic import BaseModel

from perch.http.response import JSON_CONTENT_TYPE, Response


def negotiate(value: Any) -> Response:
    """Convert a handler's return value to a Response.

    Dispatch order:

    1. ``Response``               -> pass through
    2. ``None``                   -> 204, empty body
    3. ``str``                    -> 200, text/plain
    4. ``bytes``                  -> 200, application/octet-stream
    5. ``dict`` / ``list`` / model -> 200, application/json
    6. ``(value, int)``           -> negotiate value, override status
    7. ``(value, int, dict)``     -> negotiate value, override status + headers
    """
    match value:
        case Response():
            return value
        case None:
            return Response(body="", status=204)
        case str():
            return Response(body=value)
        case bytes():
            return Response(body=value, content_type="application/octet-stream")
        case dict() | list() | BaseModel():
            return Response(body=value, content_type=JSON_CONTENT_TYPE)
        case (inner, int() as status):
            return negotiate(inner).with_status(status)
        case (inner, int() as status, dict() as headers):
            return negotiate(inner).with_status(status).with_headers(headers)
    msg = (
        f"Cannot convert {type(value).__name__} to a response. "
        "Return a Response, str, bytes, dict, list, pydantic model or a "
        "(value, status) tuple."
    )
    raise TypeError(msg)
