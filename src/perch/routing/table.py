"""Route table with trie-based path matching.

String paths (``/users/{id:int}``) go into a trie; compiled regex paths
are tried afterwards, in registration order, with named groups as
parameters. The table is filled once, when the dispatcher freezes, and
only read afterwards.
"""

import re
from collections.abc import Iterator
from dataclasses import dataclass

from perch.errors import ConfigurationError, MethodNotAllowed, NotFound
from perch.routing.params import CONVERTERS
from perch.routing.route import Endpoint, PathSegment, RouteMatch


def parse_path(path: str) -> list[PathSegment]:
    """Parse a route path string into segments.

    Examples::

        "/users"          -> [PathSegment("users")]
        "/users/{id}"     -> [PathSegment("users"), PathSegment("{id}", is_param=True, ...)]
        "/users/{id:int}" -> [PathSegment("{id:int}", is_param=True, param_type="int")]
        "/files/{path:path}" -> [PathSegment("{path:path}", is_param=True, param_type="path")]

    Raises ``ConfigurationError`` for malformed paths.
    """
    if not path.startswith("/"):
        msg = f"Route path {path!r} must start with '/'."
        raise ConfigurationError(msg)
    segments: list[PathSegment] = []
    names: set[str] = set()
    parts = [part for part in path.strip("/").split("/") if part]
    for index, part in enumerate(parts):
        if part.startswith("{") and part.endswith("}"):
            inner = part[1:-1]
            if ":" in inner:
                param_name, param_type = inner.split(":", 1)
            else:
                param_name = inner
                param_type = "str"
            if not param_name.isidentifier():
                msg = f"Invalid parameter name {param_name!r} in route path {path!r}."
                raise ConfigurationError(msg)
            if param_type not in CONVERTERS:
                msg = (
                    f"Unknown converter {param_type!r} in route path {path!r}. "
                    f"Available: {', '.join(sorted(CONVERTERS))}"
                )
                raise ConfigurationError(msg)
            if param_type == "path" and index != len(parts) - 1:
                msg = f"'{{{param_name}:path}}' must be the last segment of {path!r}."
                raise ConfigurationError(msg)
            if param_name in names:
                msg = f"Duplicate parameter {param_name!r} in route path {path!r}."
                raise ConfigurationError(msg)
            names.add(param_name)
            segments.append(
                PathSegment(
                    value=part,
                    is_param=True,
                    param_name=param_name,
                    param_type=param_type,
                )
            )
        elif "{" in part or "}" in part or (part.startswith("<") and part.endswith(">")) or part.startswith(":"):
            msg = f"Malformed segment {part!r} in route path {path!r}. Parameters are written as '{{name}}'."
            raise ConfigurationError(msg)
        else:
            segments.append(PathSegment(value=part))
    return segments


def path_param_names(path: str | re.Pattern[str]) -> tuple[str, ...]:
    """Parameter names a path captures, in path order."""
    if isinstance(path, re.Pattern):
        return tuple(sorted(path.groupindex, key=path.groupindex.__getitem__))
    return tuple(seg.param_name for seg in parse_path(path) if seg.param_name)


class _TrieNode:
    """A node in the route trie. Mutable while the table is filled only."""

    __slots__ = ("catch_all", "children", "endpoints", "param_children")

    def __init__(self) -> None:
        # Static segment children: "users" -> node
        self.children: dict[str, _TrieNode] = {}
        # Parameter children keyed by converter, so {id:int} and {slug} can coexist
        self.param_children: dict[str, _ParamEdge] = {}
        # Endpoints that consume the rest of the path ({name:path})
        self.catch_all: dict[str, Endpoint] | None = None
        # Endpoints at this node, keyed by method
        self.endpoints: dict[str, Endpoint] = {}


@dataclass(slots=True)
class _ParamEdge:
    """A parameter edge in the trie.

    Edges capture values by position; each endpoint names them from its
    own path, so ``GET /users/{id}`` and ``DELETE /users/{uid}`` share
    one edge.
    """

    regex: re.Pattern[str]
    rank: int
    node: _TrieNode


class RouteTable:
    """Method + path lookup over registered endpoints.

    Usage::

        table = RouteTable()
        table.add(Endpoint("get", "/users/{id:int}", run, ("id",)))
        match = table.match("get", "/users/42")
    """

    __slots__ = ("_patterns", "_root")

    def __init__(self) -> None:
        self._root = _TrieNode()
        self._patterns: list[tuple[re.Pattern[str], dict[str, Endpoint]]] = []

    def add(self, endpoint: Endpoint) -> None:
        """Add *endpoint*. Raises ``ConfigurationError`` on a duplicate method + path."""
        if isinstance(endpoint.path, re.Pattern):
            for pattern, endpoints in self._patterns:
                if pattern == endpoint.path:
                    self._store(endpoints, endpoint)
                    return
            self._patterns.append((endpoint.path, {endpoint.method: endpoint}))
            return

        node = self._root
        for seg in parse_path(endpoint.path):
            if seg.is_param and seg.param_type == "path":
                if node.catch_all is None:
                    node.catch_all = {}
                self._store(node.catch_all, endpoint)
                return

            if seg.is_param:
                edge = node.param_children.get(seg.param_type)
                if edge is None:
                    edge = _ParamEdge(
                        regex=re.compile(f"^{CONVERTERS[seg.param_type]}$"),
                        # Narrow converters are tried before the generic [^/]+
                        rank=1 if seg.param_type == "str" else 0,
                        node=_TrieNode(),
                    )
                    node.param_children[seg.param_type] = edge
                node = edge.node
            else:
                node = node.children.setdefault(seg.value, _TrieNode())

        self._store(node.endpoints, endpoint)

    @staticmethod
    def _store(endpoints: dict[str, Endpoint], endpoint: Endpoint) -> None:
        if endpoint.method in endpoints:
            path = endpoint.path.pattern if isinstance(endpoint.path, re.Pattern) else endpoint.path
            msg = f"Duplicate route: {endpoint.method.upper()} {path!r} is already registered."
            raise ConfigurationError(msg)
        endpoints[endpoint.method] = endpoint

    def match(self, method: str, path: str) -> RouteMatch:
        """Match a request method and path.

        ``head`` falls back to the ``get`` endpoint of the same path.
        Raises ``NotFound`` if no endpoint matches the path and
        ``MethodNotAllowed`` if the path matches but the method doesn't.
        """
        allowed: set[str] = set()
        for endpoints, captured in self._candidates(path):
            endpoint = endpoints.get(method)
            if endpoint is None and method == "head":
                endpoint = endpoints.get("get")
            if endpoint is not None:
                if isinstance(captured, dict):
                    params = captured
                else:
                    params = dict(zip(endpoint.param_names, captured, strict=False))
                return RouteMatch(endpoint=endpoint, path_params=params)
            allowed.update(endpoints)

        if allowed:
            if "get" in allowed:
                allowed.add("head")
            raise MethodNotAllowed(frozenset(allowed))
        raise NotFound(f"No route matches {method.upper()} {path!r}")

    def _candidates(
        self,
        path: str,
    ) -> Iterator[tuple[dict[str, Endpoint], list[str] | dict[str, str]]]:
        parts = [p for p in path.strip("/").split("/") if p]
        result = self._match_node(self._root, parts, 0, [])
        if result is not None:
            yield result
        for pattern, endpoints in self._patterns:
            found = pattern.fullmatch(path)
            if found is not None:
                yield endpoints, {k: v for k, v in found.groupdict().items() if v is not None}

    def _match_node(
        self,
        node: _TrieNode,
        parts: list[str],
        index: int,
        values: list[str],
    ) -> tuple[dict[str, Endpoint], list[str]] | None:
        """Recursively match path parts against the trie."""
        # All parts consumed
        if index == len(parts):
            if node.endpoints:
                return node.endpoints, values
            return None

        part = parts[index]

        # 1. Static child first (exact match)
        if part in node.children:
            result = self._match_node(node.children[part], parts, index + 1, values)
            if result is not None:
                return result

        # 2. Parameter children
        for edge in sorted(node.param_children.values(), key=lambda e: e.rank):
            if edge.regex.match(part):
                result = self._match_node(edge.node, parts, index + 1, [*values, part])
                if result is not None:
                    return result

        # 3. Catch-all
        if node.catch_all:
            return node.catch_all, [*values, "/".join(parts[index:])]

        return None
