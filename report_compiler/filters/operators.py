# report_compiler/filters/operators.py
"""Filter operators and which of them apply to each semantic field type."""

from enum import Enum
from typing import Dict, Optional, Tuple

from report_compiler.schema_registry.models import FieldType


class FilterOperator(str, Enum):
    EQ = "eq"
    NEQ = "neq"
    GT = "gt"
    GTE = "gte"
    LT = "lt"
    LTE = "lte"
    CONTAINS = "contains"
    STARTS_WITH = "starts_with"
    ENDS_WITH = "ends_with"
    IS_NULL = "is_null"
    IS_NOT_NULL = "is_not_null"
    IS_TRUE = "is_true"
    IS_FALSE = "is_false"


class RightOperandType(str, Enum):
    VALUE = "value"
    FIELD = "field"


class ValueKind(str, Enum):
    STRING = "string"
    NUMBER = "number"
    DATE = "date"
    BOOLEAN = "boolean"


# The six comparisons with a direct SQL symbol; the only ones usable field-to-field.
FIELD_COMPARISON_SQL: Dict[FilterOperator, str] = {
    FilterOperator.EQ: "=",
    FilterOperator.NEQ: "<>",
    FilterOperator.GT: ">",
    FilterOperator.GTE: ">=",
    FilterOperator.LT: "<",
    FilterOperator.LTE: "<=",
}

VALUELESS_OPERATORS: Dict[FilterOperator, str] = {
    FilterOperator.IS_NULL: "IS NULL",
    FilterOperator.IS_NOT_NULL: "IS NOT NULL",
    FilterOperator.IS_TRUE: "IS TRUE",
    FilterOperator.IS_FALSE: "IS FALSE",
}

TEXT_MATCH_OPERATORS = frozenset(
    {FilterOperator.CONTAINS, FilterOperator.STARTS_WITH, FilterOperator.ENDS_WITH}
)

_TEXT_OPERATORS = (
    FilterOperator.EQ,
    FilterOperator.NEQ,
    FilterOperator.CONTAINS,
    FilterOperator.STARTS_WITH,
    FilterOperator.ENDS_WITH,
    FilterOperator.IS_NULL,
    FilterOperator.IS_NOT_NULL,
)
_ORDERED_OPERATORS = (
    FilterOperator.EQ,
    FilterOperator.NEQ,
    FilterOperator.GT,
    FilterOperator.GTE,
    FilterOperator.LT,
    FilterOperator.LTE,
    FilterOperator.IS_NULL,
    FilterOperator.IS_NOT_NULL,
)
_BOOLEAN_OPERATORS = (
    FilterOperator.IS_TRUE,
    FilterOperator.IS_FALSE,
    FilterOperator.EQ,
    FilterOperator.NEQ,
    FilterOperator.IS_NULL,
    FilterOperator.IS_NOT_NULL,
)

OPERATORS_BY_FIELD_TYPE: Dict[FieldType, Tuple[FilterOperator, ...]] = {
    FieldType.STRING: _TEXT_OPERATORS,
    FieldType.IDENTIFIER: _TEXT_OPERATORS,
    FieldType.NUMBER: _ORDERED_OPERATORS,
    FieldType.CURRENCY: _ORDERED_OPERATORS,
    FieldType.PERCENTAGE: _ORDERED_OPERATORS,
    FieldType.DATE: _ORDERED_OPERATORS,
    FieldType.BOOLEAN: _BOOLEAN_OPERATORS,
}

VALUE_KIND_BY_FIELD_TYPE: Dict[FieldType, ValueKind] = {
    FieldType.STRING: ValueKind.STRING,
    FieldType.IDENTIFIER: ValueKind.STRING,
    FieldType.NUMBER: ValueKind.NUMBER,
    FieldType.CURRENCY: ValueKind.NUMBER,
    FieldType.PERCENTAGE: ValueKind.NUMBER,
    FieldType.DATE: ValueKind.DATE,
    FieldType.BOOLEAN: ValueKind.BOOLEAN,
}


def operators_for(field_type: FieldType) -> Tuple[FilterOperator, ...]:
    return OPERATORS_BY_FIELD_TYPE[FieldType(field_type)]


def requires_value(operator: FilterOperator) -> bool:
    return operator not in VALUELESS_OPERATORS


def allows_field_comparison(operator: FilterOperator) -> bool:
    return operator in FIELD_COMPARISON_SQL


def select_operator(current: Optional[FilterOperator], field_type: FieldType) -> FilterOperator:
    """Keep the current operator if valid, else prefer equality, else the first valid one."""
    allowed = operators_for(field_type)
    if current is not None and current in allowed:
        return current
    if FilterOperator.EQ in allowed:
        return FilterOperator.EQ
    return allowed[0]


def normalize_filter_for_field_type(report_filter, field_type: FieldType):
    """
    Re-select a valid operator after the left operand's type changed.

    Right-operand state is reset when the chosen operator needs no value or
    cannot compare against another field. Returns the same object when nothing
    had to change.
    """
    field_type = FieldType(field_type)
    operator = select_operator(report_filter.operator, field_type)
    update = {}
    if operator != report_filter.operator:
        update["operator"] = operator

    value_kind = VALUE_KIND_BY_FIELD_TYPE[field_type]
    if value_kind != report_filter.value_kind:
        update["value_kind"] = value_kind

    if not requires_value(operator):
        if report_filter.value is not None:
            update["value"] = None
        if report_filter.right is not None:
            update["right"] = None
        if report_filter.right_type != RightOperandType.VALUE:
            update["right_type"] = RightOperandType.VALUE
    elif report_filter.right_type == RightOperandType.FIELD and not allows_field_comparison(operator):
        update["right_type"] = RightOperandType.VALUE
        update["right"] = None

    if not update:
        return report_filter
    return report_filter.model_copy(update=update)
