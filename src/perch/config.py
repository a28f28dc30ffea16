"""Router configuration.

RouterConfig is a frozen dataclass, immutable once the router is built.
"""

from dataclasses import dataclass
from pathlib import Path


@dataclass(frozen=True, slots=True)
class RouterConfig:
    """Router configuration. Immutable after creation.

    All fields have sensible defaults. Override what you need::

        config = RouterConfig(cookie="lang", directory="locales", default_locale="en")
    """

    # Schema extensions, imported by module name. Failures are logged, not raised.
    extensions: tuple[str, ...] = ()

    # Localized error messages: <directory>/<locale><suffix>
    directory: str | Path | None = None
    default_locale: str | None = None
    suffix: str = ".json"

    # Per-request locale lookup (cookie wins over query parameter)
    cookie: str | None = None
    query_parameter: str | None = None

    # Skip compiling validate["output"] for every route
    ignore_output_validation: bool = False

    # Show output-contract and internal error details in responses
    debug: bool = False
