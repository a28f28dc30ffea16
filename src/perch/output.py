"""Output validation — status-keyed response contracts.

A route may declare what its handlers produce, keyed by status::

    "output": {
        "200": {"body": UserOut},
        "201,202": {"body": UserOut, "headers": {"location": str}},
        "400-499": {"body": ErrorOut},
        "5xx": {"body": ErrorOut},
    }

Each entry becomes an ``OutputValidationRule``. Status keys are
comma-separated lists of exact codes (``"200"``), inclusive ranges
(``"200-299"``), class wildcards (``"2xx"``) or ``"*"`` for any code.

Two rules of one route may never claim the same status code: the
``OutputValidator`` checks every pair when it is built and raises
``RuleConflictError``, so at request time the first matching rule is the
only matching rule. Declaration order still decides the scan order.
"""

from __future__ import annotations

import re
from collections.abc import Mapping
from dataclasses import dataclass
from itertools import combinations
from typing import Any

from pydantic import BaseModel

from perch.errors import OutputContractError, RuleConflictError, SpecError
from perch.http.response import Response
from perch.schema.service import CompiledSchema, SchemaService

MIN_STATUS = 100
MAX_STATUS = 599

RESPONSE_FIELDS: tuple[str, ...] = ("headers", "body")

_CODE_RE = re.compile(r"^\d{3}$")
_RANGE_RE = re.compile(r"^(\d{3})\s*-\s*(\d{3})$")
_CLASS_RE = re.compile(r"^([1-5])xx$", re.IGNORECASE)


@dataclass(frozen=True, slots=True)
class StatusRange:
    """An inclusive range of status codes. A single code has lower == upper."""

    lower: int
    upper: int

    def __contains__(self, status: object) -> bool:
        return isinstance(status, int) and self.lower <= status <= self.upper

    def intersects(self, other: StatusRange) -> bool:
        return self.lower <= other.upper and other.lower <= self.upper


def _check_code(code: int, spec: Any) -> int:
    if not MIN_STATUS <= code <= MAX_STATUS:
        raise SpecError("validate.output", f"status {code} in {spec!r} is not a valid HTTP status")
    return code


def parse_status_spec(spec: int | str) -> tuple[StatusRange, ...]:
    """Parse an output key into the status ranges it covers.

    Raises ``SpecError`` for anything that is not a status, range,
    class wildcard or ``"*"``.
    """
    if isinstance(spec, bool) or not isinstance(spec, (int, str)):
        raise SpecError("validate.output", f"status key must be an int or str, not {spec!r}")
    if isinstance(spec, int):
        code = _check_code(spec, spec)
        return (StatusRange(code, code),)

    ranges: list[StatusRange] = []
    for entry in (part.strip() for part in spec.split(",")):
        if not entry:
            continue
        if entry == "*":
            ranges.append(StatusRange(MIN_STATUS, MAX_STATUS))
        elif _CODE_RE.match(entry):
            code = _check_code(int(entry), spec)
            ranges.append(StatusRange(code, code))
        elif match := _RANGE_RE.match(entry):
            lower = _check_code(int(match.group(1)), spec)
            upper = _check_code(int(match.group(2)), spec)
            if lower > upper:
                raise SpecError("validate.output", f"status range {entry!r} is reversed")
            ranges.append(StatusRange(lower, upper))
        elif match := _CLASS_RE.match(entry):
            base = int(match.group(1)) * 100
            ranges.append(StatusRange(base, base + 99))
        else:
            raise SpecError("validate.output", f"invalid status {entry!r} in {spec!r}")
    if not ranges:
        raise SpecError("validate.output", f"empty status key {spec!r}")
    return tuple(ranges)


def _prefixed(details: tuple[dict[str, Any], ...], field: str) -> tuple[dict[str, Any], ...]:
    return tuple({**d, "loc": [field, *d["loc"]]} for d in details)


class OutputValidationRule:
    """One status-keyed response contract.

    Built once when the route is compiled and read-only afterwards, so a
    single instance is shared by every request to the route.
    """

    __slots__ = ("_schemas", "ranges", "schemas", "status_spec")

    def __init__(
        self,
        schemas: SchemaService,
        status_spec: int | str,
        response_spec: Mapping[str, Any],
    ) -> None:
        self.status_spec = str(status_spec)
        self.ranges = parse_status_spec(status_spec)
        if not isinstance(response_spec, Mapping):
            raise SpecError(
                f"validate.output.{self.status_spec}",
                "must be a mapping with 'body' and/or 'headers'",
            )
        unknown = set(response_spec) - set(RESPONSE_FIELDS)
        if unknown:
            raise SpecError(
                f"validate.output.{self.status_spec}",
                f"unknown response fields {sorted(unknown)}; expected 'body' and/or 'headers'",
            )
        declared = {name: response_spec[name] for name in RESPONSE_FIELDS if response_spec.get(name) is not None}
        if not declared:
            raise SpecError(
                f"validate.output.{self.status_spec}",
                "declare at least one of 'body' or 'headers'",
            )
        self._schemas = schemas
        self.schemas: dict[str, CompiledSchema] = {
            name: schemas.compile(schema, lowercase_keys=(name == "headers"))
            for name, schema in declared.items()
        }

    def __repr__(self) -> str:
        return f"OutputValidationRule({self.status_spec!r}, {sorted(self.schemas)})"

    def matches(self, response: Response) -> bool:
        """True if the response status falls in this rule's domain."""
        return any(response.status in r for r in self.ranges)

    def overlaps(self, other: OutputValidationRule) -> bool:
        """True if some status code is governed by both rules."""
        return any(a.intersects(b) for a in self.ranges for b in other.ranges)

    def _check(self, response: Response, locale: str | None) -> tuple[OutputContractError | None, Any]:
        body = response.body
        if "headers" in self.schemas:
            result = self._schemas.validate(response.header_map, self.schemas["headers"], locale=locale)
            if result.error is not None:
                return self._violation(response, "headers", result.error.details), body
        if "body" in self.schemas:
            value = body.model_dump() if isinstance(body, BaseModel) else body
            result = self._schemas.validate(value, self.schemas["body"], locale=locale)
            if result.error is not None:
                return self._violation(response, "body", result.error.details), body
            body = result.value
        return None, body

    def _violation(
        self,
        response: Response,
        field: str,
        details: tuple[dict[str, Any], ...],
    ) -> OutputContractError:
        summary = "; ".join(f"{'.'.join(map(str, d['loc'])) or field}: {d['msg']}" for d in details)
        return OutputContractError(
            detail=f"response {field} for status {response.status} violates output rule {self.status_spec!r}: {summary}",
            response_status=response.status,
            errors=_prefixed(details, field),
        )

    def validate(self, response: Response, locale: str | None = None) -> OutputContractError | None:
        """Check *response* against this rule's schemas. ``None`` means valid."""
        error, _ = self._check(response, locale)
        return error

    def apply(self, response: Response, locale: str | None = None) -> Response:
        """Validate *response* and return it with the coerced body.

        Raises ``OutputContractError`` on mismatch.
        """
        error, body = self._check(response, locale)
        if error is not None:
            raise error
        if body is response.body:
            return response
        return response.with_body(body)


class OutputValidator:
    """An ordered set of output rules with pairwise-disjoint status domains.

    Usage::

        validator = OutputValidator(schemas, {"200": {"body": UserOut}})
        error = validator.validate(response)
    """

    __slots__ = ("rules",)

    def __init__(self, schemas: SchemaService, output_spec: Mapping[int | str, Mapping[str, Any]]) -> None:
        if not isinstance(output_spec, Mapping) or not output_spec:
            raise SpecError("validate.output", "must be a non-empty mapping of status to response spec")
        self.rules: tuple[OutputValidationRule, ...] = tuple(
            OutputValidationRule(schemas, status, spec) for status, spec in output_spec.items()
        )
        for a, b in combinations(self.rules, 2):
            if a.overlaps(b):
                raise RuleConflictError(a.status_spec, b.status_spec)

    def __repr__(self) -> str:
        return f"OutputValidator({[r.status_spec for r in self.rules]})"

    def rule_for(self, response: Response) -> OutputValidationRule | None:
        """The first rule, in declaration order, whose domain holds the response status."""
        for rule in self.rules:
            if rule.matches(response):
                return rule
        return None

    def _uncovered(self, response: Response) -> OutputContractError:
        return OutputContractError(
            detail=f"response status {response.status} is not covered by any output rule",
            response_status=response.status,
        )

    def validate(self, response: Response, locale: str | None = None) -> OutputContractError | None:
        """Validate *response*. ``None`` means it satisfies its contract."""
        rule = self.rule_for(response)
        if rule is None:
            return self._uncovered(response)
        return rule.validate(response, locale)

    def apply(self, response: Response, locale: str | None = None) -> Response:
        """Validate *response* and return it with the coerced body.

        Raises ``OutputContractError`` when no rule covers the status or
        the matching rule rejects the response.
        """
        rule = self.rule_for(response)
        if rule is None:
            raise self._uncovered(response)
        return rule.apply(response, locale)
