"""Case-insensitive HTTP headers with a coerced-value overlay.

Implements ``Mapping[str, str]`` and the ``MultiValueMapping`` protocol.
Stores raw byte pairs from the ASGI scope; decodes on access.

The raw pairs never change. After schema validation the pipeline calls
``merge()`` so that reads return the coerced values (``int``, ``bool``,
...) key by key, while ``raw`` keeps what arrived on the wire.
"""

from collections.abc import Iterator, Mapping
from typing import Any


class Headers(Mapping[str, Any]):
    """Case-insensitive HTTP headers.

    ``__getitem__`` returns the coerced value if one was merged, else the
    first raw value. ``get_list`` always returns the raw values.
    """

    __slots__ = ("_cast", "_raw")

    def __init__(self, raw: tuple[tuple[bytes, bytes], ...] = ()) -> None:
        object.__setattr__(self, "_raw", raw)
        object.__setattr__(self, "_cast", {})

    def __getitem__(self, key: str) -> Any:
        key_lower = key.lower()
        if key_lower in self._cast:
            return self._cast[key_lower]
        encoded = key_lower.encode("latin-1")
        for name, value in self._raw:
            if name.lower() == encoded:
                return value.decode("latin-1")
        raise KeyError(key)

    def __contains__(self, key: object) -> bool:
        if not isinstance(key, str):
            return False
        key_lower = key.lower()
        if key_lower in self._cast:
            return True
        encoded = key_lower.encode("latin-1")
        return any(name.lower() == encoded for name, _ in self._raw)

    def __iter__(self) -> Iterator[str]:
        seen: set[str] = set()
        for name, _ in self._raw:
            key = name.decode("latin-1").lower()
            if key not in seen:
                seen.add(key)
                yield key
        for key in self._cast:
            if key not in seen:
                seen.add(key)
                yield key

    def __len__(self) -> int:
        return len(set(self))

    def __repr__(self) -> str:
        items = ", ".join(f"{k!r}: {self[k]!r}" for k in self)
        return f"Headers({{{items}}})"

    def get(self, key: str, default: Any = None) -> Any:
        """Return the value for *key*, or *default* if missing."""
        try:
            return self[key]
        except KeyError:
            return default

    def get_list(self, key: str) -> list[str]:
        """Return all raw values for *key* (e.g. multiple ``Accept``)."""
        key_lower = key.lower().encode("latin-1")
        return [value.decode("latin-1") for name, value in self._raw if name.lower() == key_lower]

    def merge(self, values: Mapping[str, Any]) -> None:
        """Overlay coerced values, key by key."""
        for key, value in values.items():
            self._cast[key.lower()] = value

    def to_dict(self) -> dict[str, str]:
        """Raw headers as a plain dict (first value per name)."""
        result: dict[str, str] = {}
        for name, value in self._raw:
            result.setdefault(name.decode("latin-1").lower(), value.decode("latin-1"))
        return result

    @property
    def raw(self) -> tuple[tuple[bytes, bytes], ...]:
        """Access raw header byte pairs for ASGI compatibility."""
        return self._raw
