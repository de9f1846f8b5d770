# report_compiler/derived_fields/reconciliation.py
"""
Staleness reconciliation of derived fields against the active model selection.

A field is stale exactly when one of its referenced models is missing from the
selection. A field that references no model is never stale.
"""

import logging
from dataclasses import replace
from typing import FrozenSet, Iterable, List

from report_compiler.errors import StaleDerivedFieldError
from report_compiler.expressions.extraction import extract_model_references
from report_compiler.expressions.parser import try_parse

from .schemas import DerivedField, DerivedFieldStatus

logger = logging.getLogger(__name__)


def effective_referenced_models(field: DerivedField) -> FrozenSet[str]:
    """Stored references first, then a strict parse, then the regex scan."""
    if field.referenced_models:
        return frozenset(field.referenced_models)
    parsed, error = try_parse(field.expression)
    if parsed is not None:
        return parsed.referenced_models
    logger.debug("Falling back to reference scan for derived field %s: %s", field.id, error)
    return extract_model_references(field.expression)


def expected_status(field: DerivedField, active_models: Iterable[str]) -> DerivedFieldStatus:
    active = set(active_models)
    missing = [model for model in effective_referenced_models(field) if model not in active]
    return DerivedFieldStatus.STALE if missing else DerivedFieldStatus.ACTIVE


def reconcile(fields: Iterable[DerivedField], active_models: Iterable[str]) -> List[DerivedField]:
    """
    Recompute every field's status.

    Fields whose status is already correct are returned as the same object, so
    ``result[i] is fields[i]`` tells a caller nothing changed.
    """
    active = frozenset(active_models)
    reconciled = []
    for field in fields:
        status = expected_status(field, active)
        if status == field.status:
            reconciled.append(field)
        else:
            logger.debug("Derived field %s is now %s", field.id, status.value)
            reconciled.append(replace(field, status=status))
    return reconciled


def stale_fields(fields: Iterable[DerivedField], active_models: Iterable[str]) -> List[DerivedField]:
    """Visible fields that are stale against the given selection."""
    return [field for field in reconcile(fields, active_models) if field.visible and field.is_stale]


def ensure_not_stale(fields: Iterable[DerivedField], active_models: Iterable[str]) -> None:
    """
    Raises:
        StaleDerivedFieldError: if any visible field is stale against the selection.
    """
    stale = stale_fields(fields, active_models)
    if stale:
        raise StaleDerivedFieldError(field.id for field in stale)
