"""Enumerated values: literal choices and Enum members by name or value."""

from enum import Enum
from typing import Annotated, Any, Literal

from pydantic import BeforeValidator

from perch.schema.extensions import SchemaExtension


def one_of(*values: Any) -> Any:
    """Exactly one of *values*, compared as given (no coercion)."""
    if not values:
        msg = "one_of() needs at least one value"
        raise TypeError(msg)
    return Literal[values]


def enum_member[E: Enum](enum_cls: type[E]) -> Any:
    """A member of *enum_cls*, given by value or by name (case-insensitive).

    Names make query strings readable (``?sort=newest``) while values keep
    JSON bodies stable.
    """
    by_name = {member.name.lower(): member for member in enum_cls}

    def lookup(value: Any) -> Any:
        if isinstance(value, enum_cls):
            return value
        if isinstance(value, str) and value.lower() in by_name:
            return by_name[value.lower()]
        return value

    return Annotated[enum_cls, BeforeValidator(lookup)]


extension = SchemaExtension(
    name="enums",
    types={"one_of": one_of, "enum_member": enum_member},
)
