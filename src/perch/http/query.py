"""Query string parameters with a coerced-value overlay.

Implements ``Mapping[str, str]`` and the ``MultiValueMapping`` protocol.
"""

from collections.abc import Iterator, Mapping
from typing import Any
from urllib.parse import parse_qs


class QueryParams(Mapping[str, Any]):
    """Parsed query string parameters.

    Attributes:
        _data: Parsed query string as field name -> list of values.
        _raw: Raw query string bytes.
        _cast: Coerced values merged in after schema validation.

    ``__getitem__`` returns the coerced value if one was merged, else the
    first raw value. ``get_list`` returns all raw values for a key.
    """

    _data: dict[str, list[str]]
    _raw: bytes
    _cast: dict[str, Any]

    __slots__ = ("_cast", "_data", "_raw")

    def __init__(self, query_string: bytes = b"") -> None:
        object.__setattr__(self, "_raw", query_string)
        parsed = parse_qs(query_string.decode("latin-1"), keep_blank_values=True)
        object.__setattr__(self, "_data", parsed)
        object.__setattr__(self, "_cast", {})

    def __getitem__(self, key: str) -> Any:
        if key in self._cast:
            return self._cast[key]
        return self._data[key][0]

    def __contains__(self, key: object) -> bool:
        return key in self._cast or key in self._data

    def __iter__(self) -> Iterator[str]:
        yield from self._data
        for key in self._cast:
            if key not in self._data:
                yield key

    def __len__(self) -> int:
        return len(self._data.keys() | self._cast.keys())

    def __repr__(self) -> str:
        items = ", ".join(f"{k!r}: {self[k]!r}" for k in self)
        return f"QueryParams({{{items}}})"

    def get(self, key: str, default: Any = None) -> Any:
        """Return the value for *key*, or *default* if missing."""
        if key in self._cast:
            return self._cast[key]
        values = self._data.get(key)
        if values:
            return values[0]
        return default

    def get_list(self, key: str) -> list[str]:
        """Return all raw values for *key*."""
        return list(self._data.get(key, []))

    def merge(self, values: Mapping[str, Any]) -> None:
        """Overlay coerced values, key by key."""
        self._cast.update(values)

    def to_dict(self) -> dict[str, str | list[str]]:
        """Raw parameters: a string per key, or a list for repeated keys."""
        return {key: values[0] if len(values) == 1 else list(values) for key, values in self._data.items()}

    @property
    def raw(self) -> bytes:
        """The query string exactly as received."""
        return self._raw
