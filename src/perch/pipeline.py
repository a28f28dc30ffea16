"""Per-route request pipeline.

Each compiled route owns a fixed chain of middleware-shaped stages,
run in this order::

    prepare_params -> expose_route -> parse_body -> validate_io -> handlers...

``parse_body`` is present only when the route declares ``validate.type``
and ``validate_io`` only when it declares any schema. The stages share
no state across requests; everything per-request lives on ``Request``.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

from perch.decoding import decode, match_kind
from perch.errors import DecodeError, NotFound, OutputContractError, ValidationError
from perch.http.request import UNPARSED, Request
from perch.http.response import Response
from perch.middleware.protocol import Middleware, Next
from perch.schema.service import SchemaService

if TYPE_CHECKING:
    from collections.abc import Sequence

    from perch.config import RouterConfig
    from perch.spec import RouteHandler, RouteInfo, ValidateRules

logger = logging.getLogger("perch.validation")

# Validated in this order at request time
INPUT_FIELDS: tuple[str, ...] = ("header", "query", "params", "body")

# Coerced values merged over the raw ones, so their schemas must produce a mapping
MERGED_FIELDS = frozenset({"header", "query"})


def resolve_locale(request: Request, cookie: str | None, query_parameter: str | None) -> str | None:
    """The request's locale: the named cookie wins over the query parameter."""
    if cookie:
        value = request.cookies.get(cookie)
        if value:
            return value
    if query_parameter:
        value = request.query.get(query_parameter)
        if isinstance(value, str) and value:
            return value
    return None


# -- Stages --


async def prepare_params(request: Request, next: Next) -> Response:
    """Seed ``request.params`` from the router's path parameters."""
    request.params = dict(request.path_params)
    return await next(request)


def make_route_exposer(info: RouteInfo) -> Middleware:
    """Expose the route's snapshot as ``request.state["route"]``."""

    async def expose_route(request: Request, next: Next) -> Response:
        request.state["route"] = info
        return await next(request)

    return expose_route


def make_body_parser(rules: ValidateRules) -> Middleware:
    """Decode the body as the first declared kind the content type matches.

    Skipped when an earlier middleware already assigned ``request.body``
    or ``request.parts``.
    """
    expected = ",".join(rules.declared_type)

    async def parse_body(request: Request, next: Next) -> Response:
        if request.is_parsed or request.parts is not None:
            return await next(request)
        try:
            kind = match_kind(request.content_type, rules.type)
            if kind is None:
                raise DecodeError(detail=f"expected {expected} but no match")
            value = await decode(
                kind,
                request,
                limit=rules.max_body,
                xml_array=rules.xml_array,
                xml_root=rules.xml_root,
                multipart_options=rules.multipart_options,
            )
        except DecodeError as exc:
            if not rules.continue_on_error:
                raise
            logger.debug("captured decode error for %s %s: %s", request.method, request.path, exc)
            request.capture("type", exc)
            return await next(request)

        if kind.startswith("multipart/"):
            request.parts = value
        else:
            request.body = value
        return await next(request)

    return parse_body


def _input_value(request: Request, name: str) -> Any:
    match name:
        case "header":
            return request.headers.to_dict()
        case "query":
            return request.query.to_dict()
        case "params":
            return request.params
        case _:
            return None if request.body is UNPARSED else request.body


def _assign(request: Request, name: str, value: Any) -> None:
    match name:
        case "header":
            request.headers.merge(value)
        case "query":
            request.query.merge(value)
        case "params":
            request.params = value
        case _:
            request.body = value


def make_validator(rules: ValidateRules, schemas: SchemaService, config: RouterConfig) -> Middleware:
    """Validate declared inputs in order, run the rest of the chain, then check the output."""
    fields = tuple((name, schema) for name in INPUT_FIELDS if (schema := rules.schema_for(name)) is not None)

    async def validate_io(request: Request, next: Next) -> Response:
        locale = resolve_locale(request, config.cookie, config.query_parameter)

        for name, schema in fields:
            result = schemas.validate(_input_value(request, name), schema, locale=locale)
            if result.error is None:
                value = schema.to_mapping(result.value) if name in MERGED_FIELDS else result.value
                _assign(request, name, value)
                continue
            error = ValidationError(
                status=rules.failure,
                detail=result.error.message,
                field=name,
                errors=tuple({**d, "loc": [name, *d["loc"]]} for d in result.error.details),
            )
            if not rules.continue_on_error:
                raise error
            logger.debug("captured %s error for %s %s: %s", name, request.method, request.path, error.detail)
            request.capture(name, error)

        response = await next(request)

        if rules.output is not None:
            try:
                response = rules.output.apply(response, locale)
            except OutputContractError as exc:
                logger.error("output contract violated by %s %s: %s", request.method, request.path, exc.detail)
                raise
        return response

    return validate_io


# -- Composition --


async def unhandled(request: Request) -> Response:
    """End of every route chain: reached only when every handler called ``next``."""
    raise NotFound()


def compose(chain: Sequence[Middleware], terminal: Next = unhandled) -> Next:
    """Wrap *chain* around *terminal*, first element outermost."""
    handler = terminal
    for mw in reversed(chain):
        outer = handler
        mw_ref = mw

        async def make_next(req: Request, _mw: Any = mw_ref, _next: Next = outer) -> Response:
            return await _mw(req, _next)

        handler = make_next
    return handler


def build_chain(
    info: RouteInfo,
    rules: ValidateRules | None,
    handlers: Sequence[RouteHandler],
    schemas: SchemaService,
    config: RouterConfig,
) -> tuple[Middleware, ...]:
    """The full ordered chain for one route: pipeline stages, then handlers."""
    stages: list[Middleware] = [prepare_params, make_route_exposer(info)]
    if rules is not None:
        if rules.type:
            stages.append(make_body_parser(rules))
        if rules.output is not None or any(rules.schema_for(name) is not None for name in INPUT_FIELDS):
            stages.append(make_validator(rules, schemas, config))
    return (*stages, *handlers)
