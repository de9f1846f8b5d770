# report_compiler/schema_registry/types.py
"""Map raw backing-store column types onto semantic field types."""

import re

from .models import FieldType

_RATE_HINTS = ("rate", "pct", "percent")
_AMOUNT_HINTS = ("amount", "amt", "price", "total", "fee", "cost", "balance")
_NUMERIC_HINTS = ("int", "num", "dec", "float", "double", "real", "serial")

_CAMEL_ID = re.compile(r"[a-z0-9]Id$")


def _is_identifier_name(field_name: str) -> bool:
    lowered = field_name.lower()
    if lowered == "id" or lowered.endswith("_id"):
        return True
    return bool(_CAMEL_ID.search(field_name))


def resolve_field_type(raw_type: str, field_name: str, primary_key: bool = False) -> FieldType:
    """
    Classify a column using substring heuristics on the type and field name.

    A primary key, or a field named ``id`` / ending in ``id``, is always an
    identifier regardless of its raw type.
    """
    if primary_key or _is_identifier_name(field_name):
        return FieldType.IDENTIFIER

    type_name = (raw_type or "").lower()
    name = field_name.lower()

    if "bool" in type_name:
        return FieldType.BOOLEAN
    if "date" in type_name or "time" in type_name:
        return FieldType.DATE
    if "money" in type_name or "currency" in type_name:
        return FieldType.CURRENCY
    if any(hint in type_name for hint in _NUMERIC_HINTS):
        if any(hint in name for hint in _RATE_HINTS):
            return FieldType.PERCENTAGE
        if any(hint in name for hint in _AMOUNT_HINTS):
            return FieldType.CURRENCY
        return FieldType.NUMBER
    return FieldType.STRING
