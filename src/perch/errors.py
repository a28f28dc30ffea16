"""Perch exception hierarchy.

Shared across the compiler, the validation pipeline, the dispatcher and
the ASGI handler so every module raises and catches the same types.

Two families:

- ``ConfigurationError`` and its subclasses are raised while routes are
  registered. They abort startup; no partially registered route survives.
- ``HTTPError`` and its subclasses are raised while a request is handled
  and map directly to a response status.
"""

from dataclasses import dataclass
from typing import Any


class PerchError(Exception):
    """Base for all perch-specific errors."""


class ConfigurationError(PerchError):
    """Raised when router or route configuration is invalid."""


class SpecError(ConfigurationError):
    """A route declaration is malformed.

    ``field`` names the offending part of the declaration
    (``"path"``, ``"method"``, ``"validate.type"``, ...).
    """

    def __init__(self, field: str, message: str) -> None:
        self.field = field
        super().__init__(f"{field}: {message}")


class RuleConflictError(ConfigurationError):
    """Two output rules of one route claim an overlapping status domain."""

    def __init__(self, first: str, second: str) -> None:
        self.first = first
        self.second = second
        super().__init__(
            f"Output validation rules {first!r} and {second!r} overlap. "
            "Each response status must be governed by at most one rule."
        )


class ExtensionLoadError(PerchError):
    """A schema extension could not be imported or is not an extension."""

    def __init__(self, name: str, reason: str) -> None:
        self.name = name
        super().__init__(f"Cannot load schema extension {name!r}: {reason}")


@dataclass(frozen=True, slots=True)
class HTTPError(PerchError):
    """An error that maps directly to an HTTP status code.

    Raised by the dispatcher, the validation pipeline, or handlers. The
    ASGI handler catches these and dispatches to the matching
    ``@router.error()`` handler.
    """

    status: int
    detail: str = ""
    headers: tuple[tuple[str, str], ...] = ()

    def __str__(self) -> str:
        if self.detail:
            return f"{self.status}: {self.detail}"
        return str(self.status)


class NotFound(HTTPError):  # noqa: N818
    """404 — no route matched the request path."""

    def __init__(self, detail: str = "Not Found") -> None:
        super().__init__(status=404, detail=detail)


class MethodNotAllowed(HTTPError):  # noqa: N818
    """405 — route exists but not for this HTTP method.

    Includes an ``Allow`` header listing the valid methods.
    """

    def __init__(self, allowed: frozenset[str], detail: str = "") -> None:
        allow_value = ", ".join(sorted(m.upper() for m in allowed))
        default_detail = f"Method not allowed. Allowed methods: {allow_value}"
        super().__init__(
            status=405,
            detail=detail or default_detail,
            headers=(("Allow", allow_value),),
        )


@dataclass(frozen=True, slots=True)
class DecodeError(HTTPError):
    """The request body could not be decoded as the declared type."""

    status: int = 400


@dataclass(frozen=True, slots=True, eq=False)
class ValidationError(HTTPError):
    """A request field failed schema validation.

    ``status`` is the route's configured failure code. ``errors`` holds
    one detail dict per violation (``loc``, ``msg``, ``type``).
    """

    status: int = 400
    field: str = ""
    errors: tuple[dict[str, Any], ...] = ()


@dataclass(frozen=True, slots=True, eq=False)
class OutputContractError(HTTPError):
    """A handler produced a response that violates its declared contract.

    Always a server error: the status is pinned to 500 whatever the
    route's input failure code is.
    """

    status: int = 500
    response_status: int = 0
    errors: tuple[dict[str, Any], ...] = ()

    def __post_init__(self) -> None:
        if self.status != 500:
            object.__setattr__(self, "status", 500)
