"""Schema extensions loaded by module name.

An extension is a module exposing an ``extension`` attribute of type
``SchemaExtension``: a name plus the reusable types it contributes.
The router loads the names in ``RouterConfig.extensions`` together with
the built-ins; a name that fails to load is logged and skipped.

Writing one::

    # myapp/schema_ext.py
    from typing import Annotated
    from pydantic import StringConstraints
    from perch.schema import SchemaExtension

    extension = SchemaExtension(
        name="slugs",
        types={"slug": Annotated[str, StringConstraints(pattern=r"^[a-z0-9-]+$")]},
    )

    router = Router(extensions=("myapp.schema_ext",))
    router.types.slug
"""

import importlib
import logging
from collections.abc import Iterable, Iterator, Mapping
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any

from perch.errors import ExtensionLoadError

logger = logging.getLogger("perch.schema")

BUILTIN_EXTENSIONS: tuple[str, ...] = (
    "perch.schema.ext.dates",
    "perch.schema.ext.enums",
)


@dataclass(frozen=True, slots=True)
class SchemaExtension:
    """Types contributed by one extension module."""

    name: str
    types: Mapping[str, Any] = field(default_factory=dict)


def load_extension(name: str) -> SchemaExtension:
    """Import *name* and return its ``extension`` attribute.

    Raises ``ExtensionLoadError`` if the module cannot be imported or
    does not define a ``SchemaExtension``.
    """
    try:
        module = importlib.import_module(name)
    except ImportError as exc:
        raise ExtensionLoadError(name, str(exc)) from exc
    ext = getattr(module, "extension", None)
    if not isinstance(ext, SchemaExtension):
        raise ExtensionLoadError(name, "module has no 'extension' of type SchemaExtension")
    return ext


def load_extensions(names: Iterable[str] = ()) -> tuple[SchemaExtension, ...]:
    """Load the built-in extensions plus *names*, skipping failures.

    Duplicate names are loaded once, in first-seen order.
    """
    loaded: list[SchemaExtension] = []
    seen: set[str] = set()
    for name in (*names, *BUILTIN_EXTENSIONS):
        if name in seen:
            continue
        seen.add(name)
        try:
            loaded.append(load_extension(name))
        except ExtensionLoadError as exc:
            logger.warning("%s", exc)
            continue
        logger.debug("loaded schema extension %s", name)
    return tuple(loaded)


class TypeNamespace(Mapping[str, Any]):
    """Read-only attribute access to extension types.

    ``router.types.date_format`` and ``router.types["date_format"]`` are
    the same object. When two extensions define the same name, the one
    loaded first wins and the clash is logged.
    """

    __slots__ = ("_types",)

    def __init__(self, extensions: Iterable[SchemaExtension]) -> None:
        types: dict[str, Any] = {}
        for ext in extensions:
            for type_name, value in ext.types.items():
                if type_name in types:
                    logger.warning(
                        "schema type %r from extension %r shadowed by an earlier extension",
                        type_name,
                        ext.name,
                    )
                    continue
                types[type_name] = value
        object.__setattr__(self, "_types", MappingProxyType(types))

    def __getattr__(self, name: str) -> Any:
        if name.startswith("_"):
            raise AttributeError(name)
        try:
            return self._types[name]
        except KeyError:
            msg = f"No schema type named {name!r}"
            raise AttributeError(msg) from None

    def __setattr__(self, name: str, value: Any) -> None:
        msg = "TypeNamespace is read-only"
        raise AttributeError(msg)

    def __getitem__(self, key: str) -> Any:
        return self._types[key]

    def __iter__(self) -> Iterator[str]:
        return iter(self._types)

    def __len__(self) -> int:
        return len(self._types)

    def __repr__(self) -> str:
        return f"TypeNamespace({', '.join(self._types)})"
