"""Routing — a trie/regex route table behind a freezing dispatcher.

Routes are registered during setup and compiled into an immutable
lookup structure on the first dispatch.
"""

from perch.routing.dispatcher import Dispatcher, ParamMiddleware, join_prefix
from perch.routing.route import Endpoint, PathSegment, RouteMatch
from perch.routing.table import RouteTable, parse_path, path_param_names

__all__ = [
    "Dispatcher",
    "Endpoint",
    "ParamMiddleware",
    "PathSegment",
    "RouteMatch",
    "RouteTable",
    "join_prefix",
    "parse_path",
    "path_param_names",
]
