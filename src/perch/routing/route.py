"""Endpoint and RouteMatch frozen dataclasses."""

import re
from dataclasses import dataclass

from perch.middleware.protocol import Next


@dataclass(frozen=True, slots=True)
class PathSegment:
    """A parsed segment of a route path.

    Static:  ``/users``  (is_param=False)
    Param:   ``/{id}``   (is_param=True, param_name="id")
    Typed:   ``/{id:int}`` (is_param=True, param_name="id", param_type="int")
    """

    value: str
    is_param: bool = False
    param_name: str | None = None
    param_type: str = "str"


@dataclass(frozen=True, slots=True)
class Endpoint:
    """A frozen, fully prefixed registration for one method.

    ``run`` is the composed chain: router-level middleware, then param
    middleware, then the route's own chain.
    """

    method: str
    path: str | re.Pattern[str]
    run: Next
    param_names: tuple[str, ...] = ()


@dataclass(frozen=True, slots=True)
class RouteMatch:
    """Result of a successful route match."""

    endpoint: Endpoint
    path_params: dict[str, str]
