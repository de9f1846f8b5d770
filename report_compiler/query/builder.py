# report_compiler/query/builder.py
"""
Query Config Builder.

Turns the report builder's selection (models, field picks, joins, filters,
active visual, derived fields) into a canonical QueryConfig plus the warnings
for everything that had to be dropped on the way.
"""

import logging
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Sequence

from report_compiler.core.config import Settings
from report_compiler.derived_fields.reconciliation import reconcile
from report_compiler.derived_fields.schemas import DerivedField
from report_compiler.errors import QueryCompilationError
from report_compiler.filters.analytics import to_analytics_filters
from report_compiler.filters.schemas import FieldRef, ReportFilter
from report_compiler.schema_registry.models import FieldType
from report_compiler.schema_registry.registry import SchemaRegistry

from .schemas import (
    DerivedFieldPayload,
    DimensionSpec,
    MetricSpec,
    OrderBy,
    PreviewRequest,
    QueryConfig,
    QueryOptions,
    ReportSelection,
    SortDirection,
    VisualDefinition,
)

logger = logging.getLogger(__name__)

COLUMN_ALIAS_SEPARATOR = "__"


def column_alias(model_id: str, field_id: str) -> str:
    """Base alias of a selected column, e.g. ``orders__total``."""
    return f"{model_id}{COLUMN_ALIAS_SEPARATOR}{field_id}"


def metric_alias(base_alias: str, aggregation) -> str:
    return f"{base_alias}_{getattr(aggregation, 'value', aggregation)}"


def dimension_alias(base_alias: str, bucket=None) -> str:
    if bucket is None:
        return base_alias
    return f"{base_alias}_{getattr(bucket, 'value', bucket)}"


def clamp_limit(value: Optional[int], default: int, maximum: int) -> int:
    """Fall back to ``default`` for a missing or non-positive limit, never exceed ``maximum``."""
    if value is None or value <= 0:
        value = default
    return max(1, min(value, maximum))


@dataclass(frozen=True)
class ColumnOption:
    alias: str
    model_id: str
    field_id: str
    label: str
    type: FieldType

    @property
    def is_numeric(self) -> bool:
        return self.type.is_numeric

    def to_dict(self) -> dict:
        return {
            "alias": self.alias,
            "model_id": self.model_id,
            "field_id": self.field_id,
            "label": self.label,
            "type": self.type.value,
        }


@dataclass
class QueryConfigBuildResult:
    config: QueryConfig
    visual: VisualDefinition
    warnings: List[str] = field(default_factory=list)


def available_columns(selection: ReportSelection, registry: SchemaRegistry) -> List[ColumnOption]:
    """Selected columns of selected models, in selection order. Unknown ids are skipped."""
    columns = []
    for model_id in dict.fromkeys(selection.models):
        model = registry.get_model(model_id)
        if model is None:
            continue
        for field_id in selection.fields.get(model_id, []):
            field_def = model.get_field(field_id)
            if field_def is None:
                continue
            columns.append(
                ColumnOption(
                    alias=column_alias(model_id, field_def.id),
                    model_id=model_id,
                    field_id=field_def.id,
                    label=f"{model.name} {field_def.label}",
                    type=field_def.type,
                )
            )
    return columns


def repair_visual(visual: VisualDefinition, columns: Sequence[ColumnOption]) -> VisualDefinition:
    """
    Point the visual back at valid columns after the available set changed.

    Metric and comparison need numeric columns, the dimension a non-numeric
    one. An invalid metric or dimension falls back to the first column of its
    kind (or empty). A set comparison falls back to the first numeric column
    other than the metric. Returns ``visual`` itself when nothing changed.
    """
    numeric = [column.alias for column in columns if column.is_numeric]
    textual = [column.alias for column in columns if not column.is_numeric]

    metric = visual.metric if visual.metric in numeric else (numeric[0] if numeric else None)
    dimension = visual.dimension if visual.dimension in textual else (textual[0] if textual else None)

    comparison = visual.comparison
    if comparison is not None and comparison not in numeric:
        candidates = [alias for alias in numeric if alias != metric]
        comparison = candidates[0] if candidates else None

    update = {}
    if metric != visual.metric:
        update["metric"] = metric
    if dimension != visual.dimension:
        update["dimension"] = dimension
    if comparison != visual.comparison:
        update["comparison"] = comparison
    if not update:
        return visual
    return visual.model_copy(update=update)


def derived_field_payloads(fields: Sequence[DerivedField]) -> List[DerivedFieldPayload]:
    """Payload entries for visible, non-stale fields that carry a parsed AST."""
    payloads = []
    for derived in fields:
        if not derived.visible or derived.is_stale or derived.ast is None:
            continue
        payloads.append(
            DerivedFieldPayload(
                id=derived.id,
                alias=derived.id,
                kind=derived.kind,
                expression_ast=derived.ast.to_dict(),
                referenced_models=sorted(derived.referenced_models),
                join_dependencies=[tuple(pair) for pair in derived.join_dependencies],
                model_graph_signature=derived.model_graph_signature,
                compiled_sql_hash=derived.compiled_sql_hash,
            )
        )
    return payloads


def _skip_reason(derived: DerivedField) -> Optional[str]:
    if derived.is_stale:
        return "it is stale"
    if not derived.visible:
        return "it is hidden"
    if derived.ast is None:
        return "its expression does not parse"
    return None


def _validate_models(selection: ReportSelection, registry: SchemaRegistry) -> List[str]:
    models = list(dict.fromkeys(selection.models))
    unknown = [model_id for model_id in models if not registry.has_model(model_id)]
    if unknown:
        raise QueryCompilationError(f"Unknown models: {', '.join(unknown)}")
    return models


def _known_filters(
    filters: Sequence[ReportFilter], models: Sequence[str], registry: SchemaRegistry, warnings: List[str]
) -> List[ReportFilter]:
    def resolvable(ref: Optional[FieldRef]) -> bool:
        return ref is None or (ref.model_id in models and registry.get_field(ref.model_id, ref.field_id) is not None)

    kept = []
    for index, report_filter in enumerate(filters, start=1):
        if resolvable(report_filter.left) and resolvable(report_filter.right):
            kept.append(report_filter)
        else:
            warnings.append(
                f"Filter {index} ({report_filter.left.path}) was skipped: it references a field that is not selected."
            )
    return kept


def build_query_config(
    selection: ReportSelection,
    derived_fields: Sequence[DerivedField],
    registry: SchemaRegistry,
    settings: Settings,
) -> QueryConfigBuildResult:
    """
    Assemble the canonical analytics QueryConfig.

    Raises:
        QueryCompilationError: if the selection names a model the registry does not know.
    """
    warnings: List[str] = []
    models = _validate_models(selection, registry)
    selected = set(models)
    joins = [join for join in selection.joins if join.left_model in selected and join.right_model in selected]

    columns = available_columns(selection, registry)
    by_alias: Dict[str, ColumnOption] = {column.alias: column for column in columns}
    visual = repair_visual(selection.visual, columns)

    metrics: List[MetricSpec] = []
    primary = by_alias.get(visual.metric) if visual.metric else None
    if primary is not None:
        metrics.append(
            MetricSpec(
                model_id=primary.model_id,
                field_id=primary.field_id,
                aggregation=visual.metric_aggregation,
                alias=metric_alias(primary.alias, visual.metric_aggregation),
            )
        )

    if visual.comparison:
        comparison = by_alias.get(visual.comparison)
        if primary is None:
            warnings.append("Comparison series was ignored: no primary metric is selected.")
        elif comparison is None:
            warnings.append(f"Comparison series '{visual.comparison}' could not be resolved and was ignored.")
        elif comparison.alias == primary.alias:
            warnings.append("Comparison series must use a different field than the primary metric; it was ignored.")
        else:
            aggregation = visual.comparison_aggregation or visual.metric_aggregation
            metrics.append(
                MetricSpec(
                    model_id=comparison.model_id,
                    field_id=comparison.field_id,
                    aggregation=aggregation,
                    alias=metric_alias(comparison.alias, aggregation),
                )
            )

    dimensions: List[DimensionSpec] = []
    dimension = by_alias.get(visual.dimension) if visual.dimension else None
    if dimension is not None:
        bucket = visual.dimension_bucket
        if bucket is not None and dimension.type != FieldType.DATE:
            warnings.append(f"Time bucket '{bucket.value}' ignored: {dimension.label} is not a date field.")
            bucket = None
        dimensions.append(
            DimensionSpec(
                model_id=dimension.model_id,
                field_id=dimension.field_id,
                bucket=bucket,
                alias=dimension_alias(dimension.alias, bucket),
            )
        )

    analytics = to_analytics_filters(_known_filters(selection.filters, models, registry, warnings))
    warnings.extend(analytics.warnings)

    wanted = set(selection.derived_field_ids)
    candidates = reconcile([derived for derived in derived_fields if not wanted or derived.id in wanted], models)
    for missing in sorted(wanted - {derived.id for derived in candidates}):
        warnings.append(f"Derived field '{missing}' was skipped: it does not exist.")
    for derived in candidates:
        reason = _skip_reason(derived) if derived.id in wanted else None
        if reason:
            warnings.append(f"Derived field '{derived.id}' was skipped: {reason}.")
    taken = {spec.alias for spec in metrics} | {spec.alias for spec in dimensions}
    derived_payloads = []
    for payload in derived_field_payloads(candidates):
        if payload.alias in taken:
            warnings.append(f"Derived field '{payload.id}' was skipped: its alias collides with another column.")
            continue
        taken.add(payload.alias)
        derived_payloads.append(payload)

    order_by = [order for order in selection.order_by if order.alias in taken]
    if len(order_by) != len(selection.order_by):
        warnings.append("Ordering on columns that are not part of the query was dropped.")
    if not order_by and metrics:
        order_by = [OrderBy(alias=metrics[0].alias, direction=SortDirection.DESC)]

    config = QueryConfig(
        models=models,
        joins=joins,
        filters=analytics.filters,
        metrics=metrics,
        dimensions=dimensions,
        derived_fields=derived_payloads,
        order_by=order_by,
        limit=clamp_limit(selection.limit, settings.analytics_default_limit, settings.max_row_limit),
        options=QueryOptions(
            allow_async=selection.allow_async,
            force_async=selection.force_async,
            template_id=selection.template_id,
            cache_ttl_seconds=selection.cache_ttl_seconds,
        ),
    )
    logger.debug(
        "Built query config: %d models, %d metrics, %d dimensions, %d warnings",
        len(models),
        len(metrics),
        len(dimensions),
        len(warnings),
    )
    return QueryConfigBuildResult(config=config, visual=visual, warnings=warnings)


def build_preview_request(
    selection: ReportSelection,
    derived_fields: Sequence[DerivedField],
    registry: SchemaRegistry,
    settings: Settings,
) -> PreviewRequest:
    """Row-level preview of the selected columns with the full filter set."""
    models = _validate_models(selection, registry)
    selected = set(models)
    wanted = set(selection.derived_field_ids)
    candidates = [derived for derived in derived_fields if not wanted or derived.id in wanted]
    return PreviewRequest(
        models=models,
        columns=[
            FieldRef(model_id=column.model_id, field_id=column.field_id)
            for column in available_columns(selection, registry)
        ],
        joins=[join for join in selection.joins if join.left_model in selected and join.right_model in selected],
        filters=list(selection.filters),
        derived_fields=derived_field_payloads(reconcile(candidates, models)),
        limit=clamp_limit(selection.preview_limit, settings.preview_default_limit, settings.max_row_limit),
    )
