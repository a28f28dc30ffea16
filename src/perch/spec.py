"""Route specification compiler.

A route is declared as data::

    {
        "method": "get post",
        "path": "/users/{id}",
        "handler": [load_user, show_user],
        "validate": {
            "params": {"id": int},
            "query": {"verbose": (bool, False)},
            "output": {"200": {"body": UserOut}},
        },
        "meta": {"summary": "Fetch a user"},
    }

``compile_route()`` checks the declaration once, eagerly, and turns it
into an immutable ``CompiledRoute`` bound to its own middleware chain.
Anything malformed raises ``SpecError`` (or ``RuleConflictError`` for
ambiguous output rules) at registration time, never at request time.
The caller's declaration is read, never modified.
"""

import copy
import inspect
import logging
import re
from collections.abc import Callable, Mapping, Sequence
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any

from pydantic import PydanticUserError

from perch._internal.invoke import invoke, positional_arity
from perch._internal.types import Handler
from perch.config import RouterConfig
from perch.decoding import BODY_TYPES, parse_size
from perch.errors import ConfigurationError, SpecError
from perch.http.request import Request
from perch.http.response import Response
from perch.middleware.protocol import Middleware, Next
from perch.output import OutputValidator
from perch.pipeline import INPUT_FIELDS, MERGED_FIELDS, build_chain
from perch.routing.table import parse_path
from perch.schema.service import CompiledSchema, SchemaService
from perch.server.negotiation import negotiate

logger = logging.getLogger("perch.routes")

SPEC_KEYS = frozenset({"path", "method", "handler", "validate", "meta"})

VALIDATE_KEYS = frozenset(
    {
        "header",
        "query",
        "params",
        "body",
        "output",
        "type",
        "max_body",
        "xml_array",
        "xml_root",
        "multipart_options",
        "failure",
        "continue_on_error",
    }
)


DEFAULT_FAILURE = 400

_METHOD_RE = re.compile(r"^[a-z][a-z-]*$")


@dataclass(frozen=True, slots=True)
class RouteSpec:
    """Typed form of a route declaration.

    Equivalent to the mapping form; ``compile_route()`` accepts either.
    """

    path: str | re.Pattern[str]
    method: str | Sequence[str]
    handler: Handler | Sequence[Any]
    validate: Mapping[str, Any] | None = None
    meta: Any = None

    def as_mapping(self) -> dict[str, Any]:
        spec: dict[str, Any] = {"path": self.path, "method": self.method, "handler": self.handler}
        if self.validate is not None:
            spec["validate"] = self.validate
        if self.meta is not None:
            spec["meta"] = self.meta
        return spec


@dataclass(frozen=True, slots=True)
class RouteHandler:
    """A user handler with its calling convention fixed at compile time.

    ``arity`` 2 (or ``*args``): middleware style, ``handler(request, next)``.
    ``arity`` 1: terminal, ``handler(request)``. ``arity`` 0: ``handler()``.
    Return values that are not a ``Response`` are negotiated.
    """

    func: Handler
    arity: int

    @property
    def terminal(self) -> bool:
        return self.arity < 2

    async def __call__(self, request: Request, next: Next) -> Response:
        if self.arity >= 2:
            result = await invoke(self.func, request, next)
        elif self.arity == 0:
            result = await invoke(self.func)
        else:
            result = await invoke(self.func, request)
        return negotiate(result)


@dataclass(frozen=True, slots=True)
class ValidateRules:
    """Normalized ``validate`` block of one route."""

    header: CompiledSchema | None = None
    query: CompiledSchema | None = None
    params: CompiledSchema | None = None
    body: CompiledSchema | None = None
    output: OutputValidator | None = None
    type: tuple[str, ...] = ()
    declared_type: tuple[str, ...] = ()
    max_body: int | str | None = None
    xml_array: bool = False
    xml_root: bool = False
    multipart_options: Mapping[str, Any] = field(default_factory=lambda: MappingProxyType({}))
    failure: int = DEFAULT_FAILURE
    continue_on_error: bool = False

    def schema_for(self, name: str) -> CompiledSchema | None:
        return getattr(self, name)


@dataclass(frozen=True, slots=True)
class RouteInfo:
    """Snapshot of a compiled route, exposed to handlers as ``request.state["route"]``.

    Taken once at compile time. ``meta`` is a deep copy of the declared
    payload, so changes made through one route's snapshot never reach
    another route or the original declaration.
    """

    path: str
    methods: tuple[str, ...]
    validate: Mapping[str, Any] | None
    meta: Any


@dataclass(frozen=True, slots=True)
class CompiledRoute:
    """An immutable, normalized route bound to its middleware chain.

    ``chain`` runs, in order: parameter preparation, spec exposure, body
    parsing, input/output validation, then the route's handlers.
    """

    path: str | re.Pattern[str]
    methods: tuple[str, ...]
    handlers: tuple[RouteHandler, ...]
    validate: ValidateRules | None
    meta: Any
    info: RouteInfo
    chain: tuple[Middleware, ...]


# -- Field checks --


def _check_keys(spec: Mapping[str, Any], allowed: frozenset[str], where: str) -> None:
    unknown = set(spec) - allowed
    if unknown:
        raise SpecError(where, f"unknown keys {sorted(map(str, unknown))}; allowed: {sorted(allowed)}")


def check_path(path: Any) -> str | re.Pattern[str]:
    """Return *path* if it is a usable route path, else raise ``SpecError``."""
    if isinstance(path, re.Pattern):
        return path
    if not isinstance(path, str):
        raise SpecError("path", f"invalid route path {path!r}; expected str or compiled regex")
    try:
        parse_path(path)
    except ConfigurationError as exc:
        raise SpecError("path", str(exc)) from exc
    return path


def check_methods(method: Any) -> tuple[str, ...]:
    """Normalize ``"get post"`` / ``["GET", "post"]`` to ``("get", "post")``."""
    if method is None:
        raise SpecError("method", "missing route methods")
    if isinstance(method, str):
        method = method.split()
    if not isinstance(method, (list, tuple)):
        raise SpecError("method", "route methods must be a list or a space-separated string")
    if not method:
        raise SpecError("method", "missing route method")
    methods: list[str] = []
    for item in method:
        if not isinstance(item, str):
            raise SpecError("method", f"route method must be a string, not {item!r}")
        name = item.strip().lower()
        if not _METHOD_RE.match(name):
            raise SpecError("method", f"invalid route method {item!r}")
        if name not in methods:
            methods.append(name)
    return tuple(methods)


def _flatten(handlers: Any) -> list[Any]:
    if isinstance(handlers, (list, tuple)):
        flat: list[Any] = []
        for item in handlers:
            flat.extend(_flatten(item))
        return flat
    return [handlers]


def _is_generator(func: Callable[..., Any]) -> bool:
    if inspect.isgeneratorfunction(func) or inspect.isasyncgenfunction(func):
        return True
    call = getattr(type(func), "__call__", None)
    if not inspect.isfunction(func) and call is not None:
        return inspect.isgeneratorfunction(call) or inspect.isasyncgenfunction(call)
    return False


def check_handlers(handler: Any) -> tuple[RouteHandler, ...]:
    """Flatten nested handler lists and fix each handler's calling convention.

    Generator functions (sync or async) are rejected: a handler is
    called at most once per request and must return, not suspend.
    """
    if handler is None:
        raise SpecError("handler", "missing route handler")
    flat = _flatten(handler)
    if not flat:
        raise SpecError("handler", "missing route handler")
    compiled: list[RouteHandler] = []
    for func in flat:
        if not callable(func):
            raise SpecError("handler", f"route handler must be callable, not {func!r}")
        if _is_generator(func):
            name = getattr(func, "__qualname__", repr(func))
            raise SpecError(
                "handler",
                f"route handler {name} must not be a generator function; "
                "use 'def' or 'async def' that returns a value",
            )
        arity = positional_arity(func)
        compiled.append(RouteHandler(func=func, arity=1 if arity < 0 else arity))
    return tuple(compiled)


def _check_types(declared: Any) -> tuple[tuple[str, ...], tuple[str, ...]]:
    text = "validate.type must be either json, form, xml, multipart, stream or a list of them"
    if isinstance(declared, str):
        declared = [declared]
    if not isinstance(declared, (list, tuple)) or not declared:
        raise SpecError("validate.type", text)
    names: list[str] = []
    kinds: list[str] = []
    for item in declared:
        if not isinstance(item, str) or item.strip().lower() not in BODY_TYPES:
            raise SpecError("validate.type", f"{text} (got {item!r})")
        name = item.strip().lower()
        if name not in names:
            names.append(name)
        kind = BODY_TYPES[name]
        if kind not in kinds:
            kinds.append(kind)
    return tuple(names), tuple(kinds)


def _check_bool(validate: Mapping[str, Any], key: str) -> bool:
    value = validate.get(key, False)
    if value is None:
        return False
    if not isinstance(value, bool):
        raise SpecError(f"validate.{key}", f"must be a bool, not {value!r}")
    return value


def _compile_schema(schemas: SchemaService, name: str, schema: Any) -> CompiledSchema:
    try:
        compiled = schemas.compile(schema, lowercase_keys=(name == "header"))
    except (PydanticUserError, TypeError) as exc:
        raise SpecError(f"validate.{name}", f"invalid schema: {exc}") from exc
    if name in MERGED_FIELDS and not compiled.mapping:
        raise SpecError(
            f"validate.{name}",
            f"schema must describe a mapping (dict shorthand, model, dataclass or TypedDict), not {schema!r}",
        )
    return compiled


def _compile_output(
    schemas: SchemaService,
    output: Any,
    ignore_output_validation: bool,
) -> OutputValidator | None:
    if output is None:
        return None
    if not isinstance(output, Mapping):
        raise SpecError("validate.output", "must be a mapping of status to response spec")
    if ignore_output_validation or output.get("ignore"):
        return None
    rules = {status: spec for status, spec in output.items() if status != "ignore"}
    try:
        return OutputValidator(schemas, rules)
    except (PydanticUserError, TypeError) as exc:
        raise SpecError("validate.output", f"invalid schema: {exc}") from exc


def check_validate(
    validate: Any,
    schemas: SchemaService,
    *,
    ignore_output_validation: bool = False,
) -> ValidateRules | None:
    """Normalize a ``validate`` block into ``ValidateRules``."""
    if validate is None:
        return None
    if not isinstance(validate, Mapping):
        raise SpecError("validate", "must be a mapping")
    _check_keys(validate, VALIDATE_KEYS, "validate")

    declared_type: tuple[str, ...] = ()
    types: tuple[str, ...] = ()
    if validate.get("body") is not None and validate.get("type") is None:
        raise SpecError("validate.type", "validate.type must be declared when using validate.body")
    if validate.get("type") is not None:
        declared_type, types = _check_types(validate["type"])
    if validate.get("body") is not None and all(kind.startswith("multipart/") for kind in types):
        raise SpecError(
            "validate.body",
            "multipart and stream bodies are read through request.parts; "
            "validate.body needs json, form or xml in validate.type",
        )

    max_body = validate.get("max_body")
    try:
        parse_size(max_body)
    except (TypeError, ValueError) as exc:
        raise SpecError("validate.max_body", str(exc)) from exc

    multipart_options = validate.get("multipart_options") or {}
    if not isinstance(multipart_options, Mapping):
        raise SpecError("validate.multipart_options", "must be a mapping")

    failure = validate.get("failure") or DEFAULT_FAILURE
    if isinstance(failure, bool) or not isinstance(failure, int) or not 100 <= failure <= 599:
        raise SpecError("validate.failure", f"must be an HTTP status code, not {failure!r}")

    compiled = {
        name: _compile_schema(schemas, name, validate[name])
        for name in INPUT_FIELDS
        if validate.get(name) is not None
    }

    return ValidateRules(
        **compiled,
        output=_compile_output(schemas, validate.get("output"), ignore_output_validation),
        type=types,
        declared_type=declared_type,
        max_body=max_body,
        xml_array=_check_bool(validate, "xml_array"),
        xml_root=_check_bool(validate, "xml_root"),
        multipart_options=MappingProxyType(dict(multipart_options)),
        failure=failure,
        continue_on_error=_check_bool(validate, "continue_on_error"),
    )


# -- Snapshot --


def _snapshot_schema(schema: CompiledSchema | None) -> Any:
    if schema is None:
        return None
    if isinstance(schema.source, Mapping):
        return copy.deepcopy(schema.source)
    return schema.source


def _snapshot(
    path: str | re.Pattern[str],
    methods: tuple[str, ...],
    rules: ValidateRules | None,
    meta: Any,
) -> RouteInfo:
    validate: Mapping[str, Any] | None = None
    if rules is not None:
        described: dict[str, Any] = {
            name: _snapshot_schema(rules.schema_for(name))
            for name in INPUT_FIELDS
            if rules.schema_for(name) is not None
        }
        described.update(
            type=rules.declared_type,
            max_body=rules.max_body,
            xml_array=rules.xml_array,
            xml_root=rules.xml_root,
            failure=rules.failure,
            continue_on_error=rules.continue_on_error,
            output=tuple(rule.status_spec for rule in rules.output.rules) if rules.output else None,
        )
        validate = MappingProxyType(described)
    return RouteInfo(
        path=path.pattern if isinstance(path, re.Pattern) else path,
        methods=methods,
        validate=validate,
        meta=copy.deepcopy(meta),
    )


# -- Entry point --


def compile_route(
    spec: Mapping[str, Any] | RouteSpec,
    schemas: SchemaService,
    config: RouterConfig | None = None,
) -> CompiledRoute:
    """Check and normalize *spec*, then bind it to a fresh middleware chain.

    Raises ``SpecError`` for a malformed declaration and
    ``RuleConflictError`` for overlapping output rules.
    """
    config = config or RouterConfig()
    if isinstance(spec, RouteSpec):
        spec = spec.as_mapping()
    if not isinstance(spec, Mapping):
        raise SpecError("spec", f"route spec must be a mapping or RouteSpec, not {type(spec).__name__}")
    _check_keys(spec, SPEC_KEYS, "spec")

    path = check_path(spec.get("path"))
    handlers = check_handlers(spec.get("handler"))
    methods = check_methods(spec.get("method"))
    rules = check_validate(
        spec.get("validate"),
        schemas,
        ignore_output_validation=config.ignore_output_validation,
    )
    meta = spec.get("meta")
    info = _snapshot(path, methods, rules, meta)
    chain = build_chain(info, rules, handlers, schemas, config)

    logger.debug("add %s %r", " ".join(methods), info.path)
    return CompiledRoute(
        path=path,
        methods=methods,
        handlers=handlers,
        validate=rules,
        meta=meta,
        info=info,
        chain=chain,
    )
