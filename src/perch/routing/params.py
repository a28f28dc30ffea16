"""Path parameter converters.

A converter only constrains which segments match (``{id:int}`` never
matches ``/users/abc``). Captured values stay strings; coercion is the
job of the route's ``params`` schema.
"""

# Segment regex for each supported converter
CONVERTERS: dict[str, str] = {
    "str": r"[^/]+",
    "int": r"\d+",
    "float": r"\d+(?:\.\d+)?",
    "uuid": r"[0-9a-fA-F]{8}-[0-9a-fA-F]{4}-[0-9a-fA-F]{4}-[0-9a-fA-F]{4}-[0-9a-fA-F]{12}",
    "path": r".+",
}
