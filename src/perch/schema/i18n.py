"""Localized validation messages.

A catalog is a JSON object stored at ``<directory>/<locale><suffix>``
mapping pydantic error types to ``str.format`` templates::

    {
        "int_parsing": "{label} doit être un nombre entier",
        "missing": "{label} est obligatoire",
        "string_too_short": "{label} doit contenir au moins {min_length} caractères"
    }

Templates receive the error's ``ctx`` values plus ``label`` (the dotted
location) and ``input``. Placeholders a template names but the error
does not provide are left as written.

Catalogs are read once, when the router is built, then shared read-only.
"""

import json as json_module
import logging
from collections.abc import Mapping
from pathlib import Path
from types import MappingProxyType
from typing import Any

logger = logging.getLogger("perch.schema")


class _KeepMissing(dict[str, Any]):
    def __missing__(self, key: str) -> str:
        return "{" + key + "}"


def error_label(loc: tuple[Any, ...] | list[Any]) -> str:
    """Dotted label for an error location (``("items", 0, "id")`` -> ``items.0.id``)."""
    return ".".join(str(part) for part in loc) or "value"


class MessageCatalogs:
    """Per-locale message templates loaded from a directory.

    Every ``<directory>/*<suffix>`` file is read once, when the catalogs
    are built. Lookups afterwards never touch the filesystem: a locale
    is only ever matched against the names already loaded. Lookups fall
    back from ``fr-CA`` to ``fr``, then to the default locale. Without a
    directory every lookup misses and pydantic's own English messages
    are kept.
    """

    __slots__ = ("_catalogs", "default_locale", "directory", "suffix")

    def __init__(
        self,
        directory: str | Path | None = None,
        default_locale: str | None = None,
        suffix: str = ".json",
    ) -> None:
        self.directory = Path(directory) if directory is not None else None
        self.default_locale = default_locale
        self.suffix = suffix
        self._catalogs: Mapping[str, Mapping[str, str]] = MappingProxyType(self._load_all())

    def _load_all(self) -> dict[str, Mapping[str, str]]:
        if self.directory is None:
            return {}
        if not self.directory.is_dir():
            logger.warning("Message catalog directory %s does not exist", self.directory)
            return {}
        catalogs: dict[str, Mapping[str, str]] = {}
        for path in sorted(self.directory.glob(f"*{self.suffix}")):
            catalog = self._load(path)
            if catalog is not None:
                catalogs[path.name.removesuffix(self.suffix)] = catalog
        return catalogs

    def _load(self, path: Path) -> Mapping[str, str] | None:
        if not path.is_file():
            return None
        try:
            data = json_module.loads(path.read_text(encoding="utf-8"))
        except (OSError, ValueError) as exc:
            logger.warning("Cannot read message catalog %s: %s", path, exc)
            return None
        if not isinstance(data, dict):
            logger.warning("Message catalog %s is not a JSON object", path)
            return None
        logger.debug("loaded message catalog %s (%d messages)", path, len(data))
        return MappingProxyType({str(key): str(value) for key, value in data.items()})

    @property
    def locales(self) -> tuple[str, ...]:
        """Names of the loaded catalogs."""
        return tuple(self._catalogs)

    def get(self, locale: str) -> Mapping[str, str] | None:
        """Return the catalog loaded for exactly *locale*, else ``None``."""
        return self._catalogs.get(locale)

    def resolve(self, locale: str | None) -> Mapping[str, str] | None:
        """Return the best catalog for *locale*, applying fallbacks."""
        candidates: list[str] = []
        if locale:
            candidates.append(locale)
            base = locale.replace("_", "-").split("-", 1)[0]
            if base != locale:
                candidates.append(base)
        if self.default_locale and self.default_locale not in candidates:
            candidates.append(self.default_locale)
        for candidate in candidates:
            catalog = self.get(candidate)
            if catalog is not None:
                return catalog
        return None

    def translate(self, error: Mapping[str, Any], catalog: Mapping[str, str] | None) -> str:
        """Message for one pydantic error detail, localized when possible."""
        template = catalog.get(error.get("type", "")) if catalog else None
        if template is None:
            return str(error.get("msg", ""))
        values = _KeepMissing(error.get("ctx") or {})
        values["label"] = error_label(error.get("loc", ()))
        values["input"] = error.get("input")
        return template.format_map(values)
