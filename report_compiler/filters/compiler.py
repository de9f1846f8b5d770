# report_compiler/filters/compiler.py
"""
Compile typed filter descriptors into inline SQL predicate clauses.

Used by the row-preview path. Errors are accumulated per filter rather than
raised, so a caller can surface every problem at once.
"""

import logging
import math
import re
from dataclasses import dataclass, field
from typing import List, Mapping, Optional, Sequence, Tuple

from report_compiler.schema_registry.models import FieldType
from report_compiler.schema_registry.registry import SchemaRegistry

from .operators import (
    FIELD_COMPARISON_SQL,
    TEXT_MATCH_OPERATORS,
    VALUELESS_OPERATORS,
    FilterOperator,
    RightOperandType,
    ValueKind,
    operators_for,
)
from .schemas import FieldRef, ReportFilter

logger = logging.getLogger(__name__)

NUMERIC_LITERAL_RE = re.compile(r"^[+-]?(?:\d+(?:\.\d*)?|\.\d+)(?:[eE][+-]?\d+)?$")

LIKE_ESCAPE = "\\"


@dataclass
class FilterCompilation:
    clauses: List[str] = field(default_factory=list)
    errors: List[str] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.errors

    def to_dict(self) -> dict:
        return {"clauses": list(self.clauses), "errors": list(self.errors)}


def quote_identifier(name: str) -> str:
    """Double-quote an identifier so reserved words and mixed case survive."""
    return '"' + name.replace('"', '""') + '"'


def quote_literal(value: str) -> str:
    """Single-quote a string literal, doubling embedded quotes."""
    return "'" + value.replace("'", "''") + "'"


def is_numeric_literal(text: str) -> bool:
    if not NUMERIC_LITERAL_RE.match(text):
        return False
    return math.isfinite(float(text))


def _resolve_column(
    ref: FieldRef, model_aliases: Mapping[str, str], registry: SchemaRegistry
) -> Tuple[Optional[str], Optional[FieldType], Optional[str]]:
    alias = model_aliases.get(ref.model_id)
    if alias is None:
        return None, None, f"model '{ref.model_id}' is not part of the query"
    field_def = registry.get_field(ref.model_id, ref.field_id)
    if field_def is None:
        return None, None, f"unknown field '{ref.path}'"
    return f"{quote_identifier(alias)}.{quote_identifier(field_def.backing_column)}", field_def.type, None


def _coerce_literal(report_filter: ReportFilter) -> Tuple[Optional[str], Optional[str]]:
    value = report_filter.value
    kind = report_filter.value_kind
    if value is None:
        return None, f"operator '{report_filter.operator.value}' requires a value"

    if kind == ValueKind.NUMBER:
        text = value.strip()
        if not is_numeric_literal(text):
            return None, f"'{value}' is not a valid number"
        return text, None

    if kind == ValueKind.BOOLEAN:
        if value == "true":
            return "TRUE", None
        if value == "false":
            return "FALSE", None
        return None, f"'{value}' is not a valid boolean (expected 'true' or 'false')"

    if not value.strip():
        return None, "value cannot be empty"
    if kind == ValueKind.DATE:
        return quote_literal(value.strip()), None
    return quote_literal(value), None


def _pattern_clause(
    column_sql: str, column_type: FieldType, operator: FilterOperator, value: str, dialect: str
) -> str:
    escaped = (
        value.replace(LIKE_ESCAPE, LIKE_ESCAPE * 2).replace("%", LIKE_ESCAPE + "%").replace("_", LIKE_ESCAPE + "_")
    )
    if operator == FilterOperator.CONTAINS:
        pattern = f"%{escaped}%"
    elif operator == FilterOperator.STARTS_WITH:
        pattern = f"{escaped}%"
    else:
        pattern = f"%{escaped}"

    target = column_sql if column_type == FieldType.STRING else f"CAST({column_sql} AS TEXT)"
    literal = quote_literal(pattern)
    escape = quote_literal(LIKE_ESCAPE)
    if dialect == "postgresql":
        return f"{target} ILIKE {literal} ESCAPE {escape}"
    return f"LOWER({target}) LIKE LOWER({literal}) ESCAPE {escape}"


def compile_filters(
    filters: Sequence[ReportFilter],
    model_aliases: Mapping[str, str],
    registry: SchemaRegistry,
    dialect: str = "postgresql",
) -> FilterCompilation:
    """
    Compile each filter into a predicate clause.

    Args:
        filters: Filter descriptors in display order.
        model_aliases: Model id -> table alias used in the surrounding SELECT.
        registry: Schema metadata for backing columns and field types.
        dialect: SQLAlchemy dialect name; selects the case-insensitive match form.

    Returns:
        FilterCompilation with one clause per valid filter and one message per
        invalid filter.
    """
    result = FilterCompilation()

    for index, report_filter in enumerate(filters, start=1):
        operator = report_filter.operator
        label = f"Filter {index} ({report_filter.left.path} {operator.value})"

        left_sql, left_type, error = _resolve_column(report_filter.left, model_aliases, registry)
        if error:
            result.errors.append(f"{label}: {error}")
            continue

        if operator not in operators_for(left_type):
            result.errors.append(f"{label}: operator is not valid for {left_type.value} fields")
            continue

        if operator in VALUELESS_OPERATORS:
            # Any stray value is ignored for unary operators.
            result.clauses.append(f"{left_sql} {VALUELESS_OPERATORS[operator]}")
            continue

        if report_filter.right_type == RightOperandType.FIELD:
            if operator not in FIELD_COMPARISON_SQL:
                result.errors.append(f"{label}: operator requires a literal value")
                continue
            if report_filter.right is None:
                result.errors.append(f"{label}: select a field to compare against")
                continue
            right_sql, _, error = _resolve_column(report_filter.right, model_aliases, registry)
            if error:
                result.errors.append(f"{label}: {error}")
                continue
            result.clauses.append(f"{left_sql} {FIELD_COMPARISON_SQL[operator]} {right_sql}")
            continue

        if operator in TEXT_MATCH_OPERATORS:
            if report_filter.value is None or not report_filter.value.strip():
                result.errors.append(f"{label}: value cannot be empty")
                continue
            result.clauses.append(
                _pattern_clause(left_sql, left_type, operator, report_filter.value, dialect)
            )
            continue

        literal, error = _coerce_literal(report_filter)
        if error:
            result.errors.append(f"{label}: {error}")
            continue
        result.clauses.append(f"{left_sql} {FIELD_COMPARISON_SQL[operator]} {literal}")

    logger.debug("Compiled %d filter clauses with %d errors", len(result.clauses), len(result.errors))
    return result
