"""Request body decoding for declared content kinds.

A route declares which body encodings it accepts (``json``, ``form``,
``xml``, ``multipart``, ``stream``). The compiler maps those to decoder
kinds and the body parser calls ``decode()`` with the kind that matched
the request's ``Content-Type``:

- ``json``, ``urlencoded`` and ``xml`` read the whole body (bounded by a
  size limit) and return a structured value.
- ``multipart/*`` returns a ``MultipartStream``: nothing is read until the
  handler iterates it.

Malformed payloads raise ``DecodeError`` (400). Bodies over the limit
raise ``DecodeError`` with status 413.
"""

import json as json_module
import re
from collections.abc import AsyncIterator, Mapping
from dataclasses import dataclass, field
from typing import Any
from urllib.parse import parse_qs
from xml.etree.ElementTree import Element

from defusedxml import ElementTree as SafeElementTree
from defusedxml.common import DefusedXmlException
from python_multipart.exceptions import MultipartParseError
from python_multipart.multipart import MultipartParser, parse_options_header

from perch.errors import DecodeError
from perch.http.request import Request

# Decoder kind for each declarable body type
BODY_TYPES: dict[str, str] = {
    "json": "json",
    "form": "urlencoded",
    "xml": "xml",
    "multipart": "multipart/*",
    "stream": "multipart/*",
}

# Default size limits per kind, in bytes
DEFAULT_LIMITS: dict[str, int] = {
    "json": 1024 * 1024,
    "urlencoded": 56 * 1024,
    "xml": 1024 * 1024,
}

# Per-field cap for plain multipart fields, in bytes
DEFAULT_FIELD_SIZE = 1024 * 1024

_SIZE_RE = re.compile(r"^\s*(\d+(?:\.\d+)?)\s*(b|kb|mb|gb|tb)?\s*$", re.IGNORECASE)
_SIZE_UNITS = {"b": 1, "kb": 1 << 10, "mb": 1 << 20, "gb": 1 << 30, "tb": 1 << 40}


def parse_size(value: int | str | None) -> int | None:
    """Convert a size limit (``1024``, ``"64kb"``, ``"1.5mb"``) to bytes.

    ``None`` passes through. Raises ``ValueError`` for anything else
    that does not parse.
    """
    if value is None:
        return None
    if isinstance(value, bool):
        msg = f"Invalid size limit: {value!r}"
        raise ValueError(msg)
    if isinstance(value, int):
        if value < 0:
            msg = f"Size limit must not be negative: {value!r}"
            raise ValueError(msg)
        return value
    match = _SIZE_RE.match(value)
    if match is None:
        msg = f"Invalid size limit: {value!r}"
        raise ValueError(msg)
    number, unit = match.groups()
    return int(float(number) * _SIZE_UNITS[(unit or "b").lower()])


# -- Content type matching --


def _mime(content_type: str | None) -> str:
    if not content_type:
        return ""
    return content_type.split(";", 1)[0].strip().lower()


def _kind_matches(kind: str, mime: str) -> bool:
    if not mime:
        return False
    major, _, minor = mime.partition("/")
    match kind:
        case "json":
            return mime == "application/json" or minor.endswith("+json")
        case "urlencoded":
            return mime == "application/x-www-form-urlencoded"
        case "xml":
            return mime in ("application/xml", "text/xml") or minor.endswith("+xml")
        case _:
            want_major, _, want_minor = kind.partition("/")
            return want_major == major and want_minor in ("*", minor)


def match_kind(content_type: str | None, kinds: tuple[str, ...] | list[str]) -> str | None:
    """Return the first declared kind the content type satisfies, else ``None``."""
    mime = _mime(content_type)
    for kind in kinds:
        if _kind_matches(kind, mime):
            return kind
    return None


# -- Full-body decoders --


async def read_limited(request: Request, limit: int | None) -> bytes:
    """Read the raw body, refusing more than *limit* bytes."""
    if limit is not None:
        declared = request.content_length
        if declared is not None and declared > limit:
            raise DecodeError(status=413, detail="request entity too large")
        received = 0
        chunks: list[bytes] = []
        async for chunk in request.stream():
            received += len(chunk)
            if received > limit:
                raise DecodeError(status=413, detail="request entity too large")
            chunks.append(chunk)
        raw = b"".join(chunks)
        request._raw_body = raw
        return raw
    return await request.read()


def _charset(content_type: str | None) -> str:
    if content_type:
        _, params = parse_options_header(content_type)
        charset = params.get(b"charset")
        if charset:
            return charset.decode("latin-1")
    return "utf-8"


def _text(raw: bytes, content_type: str | None) -> str:
    try:
        return raw.decode(_charset(content_type))
    except (LookupError, UnicodeDecodeError) as exc:
        raise DecodeError(detail=f"invalid body encoding: {exc}") from exc


def decode_json(raw: bytes, content_type: str | None = None) -> Any:
    """Decode a JSON body. Only objects and arrays are accepted; empty is ``{}``."""
    text = _text(raw, content_type).strip()
    if not text:
        return {}
    if text[0] not in "{[":
        raise DecodeError(detail="invalid JSON, only supports object and array")
    try:
        return json_module.loads(text)
    except json_module.JSONDecodeError as exc:
        raise DecodeError(detail=f"invalid JSON: {exc.msg}") from exc


def decode_urlencoded(raw: bytes, content_type: str | None = None) -> dict[str, Any]:
    """Decode a form body. Repeated keys become lists."""
    parsed = parse_qs(_text(raw, content_type), keep_blank_values=True)
    return {key: values[0] if len(values) == 1 else values for key, values in parsed.items()}


def _element_value(element: Element, explicit_array: bool) -> Any:
    children = list(element)
    text = (element.text or "").strip()
    if not children and not element.attrib:
        return text
    value: dict[str, Any] = {}
    if element.attrib:
        value["$"] = dict(element.attrib)
    if text:
        value["_"] = text
    for child in children:
        child_value = _element_value(child, explicit_array)
        if child.tag in value:
            existing = value[child.tag]
            if not isinstance(existing, list):
                value[child.tag] = [existing]
            value[child.tag].append(child_value)
        elif explicit_array:
            value[child.tag] = [child_value]
        else:
            value[child.tag] = child_value
    return value


def decode_xml(
    raw: bytes,
    content_type: str | None = None,
    *,
    explicit_array: bool = False,
    explicit_root: bool = False,
) -> Any:
    """Decode an XML body into dicts.

    Attributes land under ``"$"`` and mixed text under ``"_"``. With
    *explicit_array* every child is a list; otherwise only repeated
    children are. With *explicit_root* the result is wrapped in
    ``{root_tag: ...}``.
    """
    if not raw.strip():
        raise DecodeError(detail="empty XML body")
    try:
        root = SafeElementTree.fromstring(raw)
    except (SafeElementTree.ParseError, DefusedXmlException) as exc:
        raise DecodeError(detail=f"invalid XML: {exc}") from exc
    value = _element_value(root, explicit_array)
    if explicit_root:
        return {root.tag: [value] if explicit_array else value}
    return value


# -- Multipart --


@dataclass(frozen=True, slots=True)
class Part:
    """One uploaded file from a multipart body."""

    name: str
    filename: str
    content_type: str
    headers: Mapping[str, str]
    data: bytes

    @property
    def size(self) -> int:
        return len(self.data)

    def __repr__(self) -> str:
        return f"Part({self.name!r}, {self.filename!r}, {self.content_type!r}, {self.size} bytes)"


@dataclass(slots=True)
class _PartState:
    headers: dict[str, str] = field(default_factory=dict)
    header_field: bytearray = field(default_factory=bytearray)
    header_value: bytearray = field(default_factory=bytearray)
    data: bytearray = field(default_factory=bytearray)
    name: str | None = None
    filename: str | None = None


class MultipartStream:
    """Lazy multipart body.

    Iterating yields one ``Part`` per uploaded file, in body order, as the
    body streams in. Plain form fields are not yielded; they accumulate on
    ``fields`` as they are parsed, so every field sent before a file is
    available when that file is yielded.

    Usage::

        async for part in request.parts:
            await store(part.filename, part.data)
        title = request.parts.fields.get("title")
    """

    __slots__ = ("_boundary", "_consumed", "_limits", "_request", "fields")

    def __init__(
        self,
        request: Request,
        boundary: bytes,
        options: Mapping[str, Any] | None = None,
    ) -> None:
        opts = dict(options or {})
        self._request = request
        self._boundary = boundary
        self._consumed = False
        self._limits = {
            "max_files": opts.get("max_files"),
            "max_fields": opts.get("max_fields"),
            "max_file_size": parse_size(opts.get("max_file_size")),
            "max_field_size": parse_size(opts.get("max_field_size", DEFAULT_FIELD_SIZE)),
        }
        self.fields: dict[str, Any] = {}

    def __aiter__(self) -> AsyncIterator[Part]:
        if self._consumed:
            msg = "Multipart body has already been consumed."
            raise RuntimeError(msg)
        self._consumed = True
        return self._parts()

    async def _parts(self) -> AsyncIterator[Part]:
        ready: list[Part] = []
        state = _PartState()
        counts = {"files": 0, "fields": 0}
        max_files = self._limits["max_files"]
        max_fields = self._limits["max_fields"]
        max_file_size = self._limits["max_file_size"]
        max_field_size = self._limits["max_field_size"]

        def on_part_begin() -> None:
            nonlocal state
            state = _PartState()

        def on_header_field(data: bytes, start: int, end: int) -> None:
            state.header_field.extend(data[start:end])

        def on_header_value(data: bytes, start: int, end: int) -> None:
            state.header_value.extend(data[start:end])

        def on_header_end() -> None:
            name = state.header_field.decode("latin-1").lower()
            value = state.header_value.decode("latin-1")
            state.headers[name] = value
            state.header_field.clear()
            state.header_value.clear()
            if name == "content-disposition":
                _, params = parse_options_header(value)
                if (field_name := params.get(b"name")) is not None:
                    state.name = field_name.decode("utf-8")
                if (filename := params.get(b"filename")) is not None:
                    state.filename = filename.decode("utf-8")

        def on_part_data(data: bytes, start: int, end: int) -> None:
            state.data.extend(data[start:end])
            if state.filename is not None:
                if max_file_size is not None and len(state.data) > max_file_size:
                    raise DecodeError(status=413, detail=f"file {state.filename!r} too large")
            elif max_field_size is not None and len(state.data) > max_field_size:
                raise DecodeError(status=413, detail=f"field {state.name!r} too large")

        def on_part_end() -> None:
            if state.name is None:
                return
            if state.filename is None:
                counts["fields"] += 1
                if max_fields is not None and counts["fields"] > max_fields:
                    raise DecodeError(status=413, detail="too many fields")
                value = state.data.decode("utf-8", errors="replace")
                existing = self.fields.get(state.name)
                if existing is None:
                    self.fields[state.name] = value
                elif isinstance(existing, list):
                    existing.append(value)
                else:
                    self.fields[state.name] = [existing, value]
                return
            counts["files"] += 1
            if max_files is not None and counts["files"] > max_files:
                raise DecodeError(status=413, detail="too many files")
            ready.append(
                Part(
                    name=state.name,
                    filename=state.filename,
                    content_type=state.headers.get("content-type", "application/octet-stream"),
                    headers=dict(state.headers),
                    data=bytes(state.data),
                )
            )

        parser = MultipartParser(
            self._boundary,
            {
                "on_part_begin": on_part_begin,
                "on_header_field": on_header_field,
                "on_header_value": on_header_value,
                "on_header_end": on_header_end,
                "on_part_data": on_part_data,
                "on_part_end": on_part_end,
            },
        )
        try:
            async for chunk in self._request.stream():
                parser.write(chunk)
                while ready:
                    yield ready.pop(0)
            parser.finalize()
        except MultipartParseError as exc:
            raise DecodeError(detail=f"invalid multipart body: {exc}") from exc
        while ready:
            yield ready.pop(0)


def open_multipart(request: Request, options: Mapping[str, Any] | None = None) -> MultipartStream:
    """Prepare a lazy multipart stream for *request*. Reads nothing yet."""
    _, params = parse_options_header(request.content_type or "")
    boundary = params.get(b"boundary")
    if not boundary:
        raise DecodeError(detail="multipart body missing boundary parameter")
    return MultipartStream(request, boundary, options)


# -- Entry point --


async def decode(
    kind: str,
    request: Request,
    *,
    limit: int | str | None = None,
    xml_array: bool = False,
    xml_root: bool = False,
    multipart_options: Mapping[str, Any] | None = None,
) -> Any:
    """Decode *request*'s body as *kind*.

    Returns the decoded value, or a ``MultipartStream`` for multipart
    kinds. *limit* defaults per kind (see ``DEFAULT_LIMITS``).
    """
    if kind.startswith("multipart/"):
        return open_multipart(request, multipart_options)

    max_bytes = parse_size(limit)
    if max_bytes is None:
        max_bytes = DEFAULT_LIMITS.get(kind)
    raw = await read_limited(request, max_bytes)

    match kind:
        case "json":
            return decode_json(raw, request.content_type)
        case "urlencoded":
            return decode_urlencoded(raw, request.content_type)
        case "xml":
            return decode_xml(
                raw,
                request.content_type,
                explicit_array=xml_array,
                explicit_root=xml_root,
            )
    msg = f"Unknown decoder kind: {kind!r}"
    raise ValueError(msg)
