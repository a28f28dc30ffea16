"""Schema service — validate and coerce values with pydantic.

The rest of perch treats this as an opaque service: hand it a value and
a schema, get back the coerced value or a structured, optionally
localized error. It never raises for invalid data.

Accepted schemas:

- a pydantic model class (the coerced value is a model instance)
- anything ``pydantic.TypeAdapter`` accepts: ``int``, ``list[str]``,
  ``Annotated[...]``, dataclasses, ``TypedDict``...
- a ``TypeAdapter`` instance
- a dict shorthand ``{"field": type | (type, default) | FieldInfo}``,
  nested dicts allowed. Keys may be any string (``"x-api-key"``), and
  the coerced value is a plain dict keyed the same way.

Every schema is compiled once into a ``CompiledSchema``; the compiled
form is immutable and shared across requests.
"""

import logging
import re
from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, create_model
from pydantic import ValidationError as PydanticValidationError
from pydantic.fields import FieldInfo

from perch.schema.extensions import SchemaExtension, TypeNamespace, load_extensions
from perch.schema.i18n import MessageCatalogs, error_label

logger = logging.getLogger("perch.schema")

_NOT_IDENTIFIER = re.compile(r"\W")


@dataclass(frozen=True, slots=True)
class SchemaError:
    """Structured validation failure.

    ``details`` holds one dict per violation with ``loc`` (list),
    ``msg`` (localized when a catalog applies) and ``type``.
    """

    details: tuple[dict[str, Any], ...]

    @property
    def message(self) -> str:
        """All violations joined into one human readable line."""
        return "; ".join(f"{error_label(d['loc'])}: {d['msg']}" for d in self.details)

    def __str__(self) -> str:
        return self.message


@dataclass(frozen=True, slots=True)
class SchemaResult:
    """Outcome of one validation: exactly one of ``value`` / ``error`` is meaningful."""

    value: Any = None
    error: SchemaError | None = None

    @property
    def ok(self) -> bool:
        return self.error is None


@dataclass(frozen=True, slots=True)
class CompiledSchema:
    """A schema ready for repeated validation.

    ``source`` is what the route declared, kept for introspection.
    ``shorthand`` is True for dict shorthands, whose model instances are
    dumped back to dicts after validation.
    """

    adapter: TypeAdapter[Any]
    source: Any
    shorthand: bool = False

    def coerce(self, value: Any) -> Any:
        """Validate and return the coerced value. Raises pydantic's ValidationError."""
        result = self.adapter.validate_python(value)
        if self.shorthand and isinstance(result, BaseModel):
            return result.model_dump(by_alias=True)
        return result

    @property
    def mapping(self) -> bool:
        """True when coerced values serialize to a mapping (models, dataclasses, dicts)."""
        return _serializes_to_mapping(self.adapter.core_schema)

    def to_mapping(self, value: Any) -> dict[str, Any]:
        """A coerced *value* as a plain dict keyed by alias."""
        if isinstance(value, dict):
            return value
        return self.adapter.dump_python(value, by_alias=True)


_MAPPING_SCHEMAS = frozenset({"model", "dataclass", "dict", "typed-dict"})
_WRAPPER_SCHEMAS = frozenset({"function-after", "function-before", "function-wrap", "default"})


def _serializes_to_mapping(schema: Mapping[str, Any], definitions: Mapping[str, Any] | None = None) -> bool:
    match schema["type"]:
        case "definitions":
            refs = {item["ref"]: item for item in schema["definitions"] if "ref" in item}
            return _serializes_to_mapping(schema["schema"], refs)
        case "definition-ref":
            target = (definitions or {}).get(schema["schema_ref"])
            return target is not None and _serializes_to_mapping(target, definitions)
        case "model":
            return not schema.get("root_model", False)
        case kind if kind in _WRAPPER_SCHEMAS:
            return _serializes_to_mapping(schema["schema"], definitions)
        case kind:
            return kind in _MAPPING_SCHEMAS


def _field_definition(spec: Any, lowercase_keys: bool) -> tuple[Any, Any]:
    if isinstance(spec, FieldInfo):
        return Any if spec.annotation is None else spec.annotation, spec
    if isinstance(spec, Mapping):
        return _shorthand_model(spec, lowercase_keys), ...
    if isinstance(spec, tuple) and len(spec) == 2:
        return spec[0], spec[1]
    return spec, ...


def _shorthand_model(fields: Mapping[str, Any], lowercase_keys: bool = False) -> type[BaseModel]:
    definitions: dict[str, Any] = {}
    for index, (key, spec) in enumerate(fields.items()):
        alias = key.lower() if lowercase_keys else key
        annotation, default = _field_definition(spec, lowercase_keys)
        if isinstance(default, FieldInfo):
            # A copy with the alias applied; the declared FieldInfo stays untouched
            info = FieldInfo.merge_field_infos(
                default,
                alias=alias,
                alias_priority=2,
                validation_alias=alias,
                serialization_alias=alias,
            )
        else:
            info = Field(default, alias=alias)
        # Positional names keep arbitrary keys clear of BaseModel attributes
        safe = _NOT_IDENTIFIER.sub("_", alias)
        definitions[f"f{index}_{safe}"] = (annotation, info)
    return create_model(
        "Shorthand",
        __config__=ConfigDict(arbitrary_types_allowed=True),
        **definitions,
    )


class SchemaService:
    """Validate values against schemas, with localized messages.

    Construct once per router. Compiled schemas and catalogs are shared
    read-only by every request::

        schemas = SchemaService(directory="locales", default_locale="en")
        result = schemas.validate({"id": "42"}, {"id": int})
        assert result.value == {"id": 42}
    """

    __slots__ = ("catalogs", "extensions", "types")

    def __init__(
        self,
        extensions: Iterable[str] = (),
        directory: str | Path | None = None,
        default_locale: str | None = None,
        suffix: str = ".json",
    ) -> None:
        self.extensions: tuple[SchemaExtension, ...] = load_extensions(extensions)
        self.types = TypeNamespace(self.extensions)
        self.catalogs = MessageCatalogs(directory, default_locale, suffix)

    def compile(self, schema: Any, *, lowercase_keys: bool = False) -> CompiledSchema:
        """Compile *schema* for repeated use.

        *lowercase_keys* lower-cases dict shorthand keys, for header
        schemas matched against lower-cased header names.
        """
        if isinstance(schema, CompiledSchema):
            return schema
        if isinstance(schema, TypeAdapter):
            return CompiledSchema(adapter=schema, source=schema)
        if isinstance(schema, Mapping):
            model = _shorthand_model(schema, lowercase_keys)
            return CompiledSchema(adapter=TypeAdapter(model), source=schema, shorthand=True)
        return CompiledSchema(adapter=TypeAdapter(schema), source=schema)

    def validate(self, value: Any, schema: Any, *, locale: str | None = None) -> SchemaResult:
        """Validate *value* against *schema*.

        Returns ``SchemaResult(value=coerced)`` on success, or
        ``SchemaResult(error=SchemaError(...))`` with messages localized
        for *locale* (falling back to the default locale).
        """
        compiled = self.compile(schema)
        try:
            return SchemaResult(value=compiled.coerce(value))
        except PydanticValidationError as exc:
            return SchemaResult(error=self._error(exc, locale))

    def _error(self, exc: PydanticValidationError, locale: str | None) -> SchemaError:
        catalog = self.catalogs.resolve(locale)
        details = tuple(
            {
                "loc": list(err["loc"]),
                "msg": self.catalogs.translate(err, catalog),
                "type": err["type"],
            }
            for err in exc.errors(include_url=False)
        )
        return SchemaError(details=details)
