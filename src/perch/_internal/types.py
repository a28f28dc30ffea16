"""Shared type aliases used across perch modules."""

from collections.abc import Callable
from typing import Any, TypeAlias

# Route handler: called with (request) or (request, next)
Handler: TypeAlias = Callable[..., Any]

# Error handler: called with (), (request) or (request, exc)
ErrorHandler: TypeAlias = Callable[..., Any]
