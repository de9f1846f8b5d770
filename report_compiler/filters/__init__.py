"""Filter operator rules, clause compilation and the analytics filter reduction."""

from .analytics import AnalyticsFilterResult, to_analytics_filters
from .compiler import FilterCompilation, compile_filters, quote_identifier, quote_literal
from .operators import (
    FIELD_COMPARISON_SQL,
    VALUELESS_OPERATORS,
    FilterOperator,
    RightOperandType,
    ValueKind,
    allows_field_comparison,
    normalize_filter_for_field_type,
    operators_for,
    requires_value,
    select_operator,
)
from .schemas import FieldRef, ReportFilter

__all__ = [
    "AnalyticsFilterResult",
    "FIELD_COMPARISON_SQL",
    "FieldRef",
    "FilterCompilation",
    "FilterOperator",
    "ReportFilter",
    "RightOperandType",
    "VALUELESS_OPERATORS",
    "ValueKind",
    "allows_field_comparison",
    "compile_filters",
    "normalize_filter_for_field_type",
    "operators_for",
    "quote_identifier",
    "quote_literal",
    "requires_value",
    "select_operator",
    "to_analytics_filters",
]
