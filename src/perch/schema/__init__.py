"""Schema service — pydantic-backed validation with localized messages.

    SchemaService -- compile and validate schemas, coerce values
    SchemaResult / SchemaError -- validation outcome
    SchemaExtension -- extension modules contributing reusable types
"""

from perch.schema.extensions import (
    BUILTIN_EXTENSIONS,
    SchemaExtension,
    TypeNamespace,
    load_extension,
    load_extensions,
)
from perch.schema.i18n import MessageCatalogs
from perch.schema.service import CompiledSchema, SchemaError, SchemaResult, SchemaService

__all__ = [
    "BUILTIN_EXTENSIONS",
    "CompiledSchema",
    "MessageCatalogs",
    "SchemaError",
    "SchemaExtension",
    "SchemaResult",
    "SchemaService",
    "TypeNamespace",
    "load_extension",
    "load_extensions",
]
