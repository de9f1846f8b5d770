"""Derived (computed) fields and their staleness reconciliation."""

from .reconciliation import effective_referenced_models, ensure_not_stale, reconcile, stale_fields
from .schemas import (
    DerivedField,
    DerivedFieldKind,
    DerivedFieldScope,
    DerivedFieldStatus,
    build_derived_field,
)

__all__ = [
    "DerivedField",
    "DerivedFieldKind",
    "DerivedFieldScope",
    "DerivedFieldStatus",
    "build_derived_field",
    "effective_referenced_models",
    "ensure_not_stale",
    "reconcile",
    "stale_fields",
]
