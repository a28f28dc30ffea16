"""Date parsing types: explicit formats and unix timestamps.

Usage::

    router.get("/reports", {"validate": {"query": {
        "since": router.types.date_format("%Y-%m-%d"),
        "until": router.types.timestamp(),
    }}}, list_reports)
"""

from datetime import UTC, date, datetime
from typing import Annotated, Any

from pydantic import BeforeValidator
from pydantic_core import PydanticCustomError

from perch.schema.extensions import SchemaExtension


def date_format(*formats: str) -> Any:
    """A ``datetime`` parsed from a string in one of *formats* (``strptime`` syntax).

    ``date`` and ``datetime`` instances pass through unchanged.
    """
    if not formats:
        msg = "date_format() needs at least one format"
        raise TypeError(msg)
    expected = " or ".join(formats)

    def parse(value: Any) -> Any:
        if isinstance(value, datetime):
            return value
        if isinstance(value, date):
            return datetime(value.year, value.month, value.day)
        if isinstance(value, str):
            for fmt in formats:
                try:
                    return datetime.strptime(value, fmt)
                except ValueError:
                    continue
        raise PydanticCustomError(
            "date_format",
            "Input should be a date in format {format}",
            {"format": expected},
        )

    return Annotated[datetime, BeforeValidator(parse)]


def timestamp(unit: str = "unix") -> Any:
    """An aware UTC ``datetime`` from a numeric timestamp.

    *unit* is ``"unix"`` (seconds) or ``"javascript"`` (milliseconds).
    Numeric strings are accepted, as query strings carry nothing else.
    """
    if unit not in ("unix", "javascript"):
        msg = f"timestamp unit must be 'unix' or 'javascript', not {unit!r}"
        raise ValueError(msg)
    divisor = 1000.0 if unit == "javascript" else 1.0

    def parse(value: Any) -> Any:
        if isinstance(value, datetime):
            return value
        try:
            number = float(value)
        except (TypeError, ValueError):
            number = None
        if number is None or isinstance(value, bool):
            raise PydanticCustomError(
                "timestamp",
                "Input should be a {unit} timestamp",
                {"unit": unit},
            )
        return datetime.fromtimestamp(number / divisor, tz=UTC)

    return Annotated[datetime, BeforeValidator(parse)]


extension = SchemaExtension(
    name="dates",
    types={"date_format": date_format, "timestamp": timestamp},
)
