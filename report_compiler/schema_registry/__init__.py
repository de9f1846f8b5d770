"""Schema introspection: model and field metadata consumed by the compiler."""

from .models import Association, DataModel, Field, FieldType
from .registry import SchemaRegistry, get_schema_registry
from .types import resolve_field_type

__all__ = [
    "Association",
    "DataModel",
    "Field",
    "FieldType",
    "SchemaRegistry",
    "get_schema_registry",
    "resolve_field_type",
]
