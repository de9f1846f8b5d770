# report_compiler/filters/analytics.py
"""
Reduce report filters to the structured predicate list of the aggregate path.

Only the six literal comparisons survive. Everything else is dropped with a
warning instead of failing the query.
"""

import logging
from dataclasses import dataclass, field
from typing import List, Optional, Sequence, Union

from .compiler import is_numeric_literal
from .operators import FIELD_COMPARISON_SQL, RightOperandType, ValueKind
from .schemas import ReportFilter

logger = logging.getLogger(__name__)


@dataclass
class AnalyticsFilterResult:
    filters: list = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)


def _coerce(report_filter: ReportFilter) -> Optional[Union[bool, int, float, str]]:
    value = report_filter.value
    if value is None:
        return None
    kind = report_filter.value_kind
    if kind == ValueKind.NUMBER:
        text = value.strip()
        if not is_numeric_literal(text):
            return None
        number = float(text)
        return int(number) if number.is_integer() and "." not in text and "e" not in text.lower() else number
    if kind == ValueKind.BOOLEAN:
        if value in ("true", "false"):
            return value == "true"
        return None
    if not value.strip():
        return None
    return value.strip() if kind == ValueKind.DATE else value


def to_analytics_filters(filters: Sequence[ReportFilter]) -> AnalyticsFilterResult:
    """Convert to QueryConfigFilter entries, with one warning per dropped filter."""
    from report_compiler.query.schemas import QueryConfigFilter

    result = AnalyticsFilterResult()
    for index, report_filter in enumerate(filters, start=1):
        label = f"Filter {index} ({report_filter.left.path} {report_filter.operator.value})"
        if report_filter.operator not in FIELD_COMPARISON_SQL:
            result.warnings.append(f"{label} was skipped: operator is not supported for analytics queries.")
            continue
        if report_filter.right_type == RightOperandType.FIELD:
            result.warnings.append(
                f"{label} was skipped: field-to-field comparisons are not supported for analytics queries."
            )
            continue
        value = _coerce(report_filter)
        if value is None:
            result.warnings.append(f"{label} was skipped: value is missing or invalid.")
            continue
        result.filters.append(
            QueryConfigFilter(left=report_filter.left, operator=report_filter.operator, value=value)
        )

    if result.warnings:
        logger.debug("Dropped %d filters from analytics query", len(result.warnings))
    return result
