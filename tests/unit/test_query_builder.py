"""Unit tests for the query config builder"""

from dataclasses import replace

import pytest
from pydantic import ValidationError

from report_compiler.core.config import Settings
from report_compiler.derived_fields.schemas import DerivedFieldStatus, build_derived_field
from report_compiler.errors import QueryCompilationError
from report_compiler.filters.operators import FilterOperator, ValueKind
from report_compiler.filters.schemas import FieldRef, ReportFilter
from report_compiler.query.builder import (
    ColumnOption,
    available_columns,
    build_preview_request,
    build_query_config,
    clamp_limit,
    column_alias,
    derived_field_payloads,
    dimension_alias,
    metric_alias,
    repair_visual,
)
from report_compiler.query.hashing import compute_query_hash
from report_compiler.query.schemas import (
    Aggregation,
    MetricSpec,
    OrderBy,
    QueryConfig,
    ReportSelection,
    SortDirection,
    TimeBucket,
    VisualDefinition,
)
from report_compiler.schema_registry.models import FieldType

FIELDS = {
    "orders": ["total", "discount_rate", "status", "created_at"],
    "refunds": ["amount", "reason"],
}


def make_selection(**overrides):
    values = {
        "models": ["orders", "refunds"],
        "fields": FIELDS,
        "visual": VisualDefinition(metric="orders__total", dimension="orders__status"),
    }
    values.update(overrides)
    return ReportSelection(**values)


def column(alias, field_type):
    model_id, field_id = alias.split("__")
    return ColumnOption(alias=alias, model_id=model_id, field_id=field_id, label=alias, type=field_type)


class TestAliases:
    def test_alias_helpers(self):
        assert column_alias("orders", "total") == "orders__total"
        assert metric_alias("orders__total", Aggregation.AVG) == "orders__total_avg"
        assert dimension_alias("orders__created_at", TimeBucket.MONTH) == "orders__created_at_month"
        assert dimension_alias("orders__status") == "orders__status"

    @pytest.mark.parametrize(
        "value,expected",
        [(None, 100), (0, 100), (-5, 100), (25, 25), (10_000, 5000)],
    )
    def test_clamp_limit(self, value, expected):
        assert clamp_limit(value, 100, 5000) == expected


class TestRepairVisual:
    """Test cases for repair_visual()"""

    COLUMNS = [
        column("orders__total", FieldType.CURRENCY),
        column("orders__status", FieldType.STRING),
        column("refunds__amount", FieldType.CURRENCY),
    ]

    def test_valid_visual_is_returned_unchanged(self):
        visual = VisualDefinition(metric="orders__total", dimension="orders__status", comparison="refunds__amount")

        assert repair_visual(visual, self.COLUMNS) is visual

    def test_invalid_picks_fall_back_to_first_of_kind(self):
        visual = VisualDefinition(metric="orders__status", dimension="orders__total")

        repaired = repair_visual(visual, self.COLUMNS)

        assert repaired.metric == "orders__total"
        assert repaired.dimension == "orders__status"

    def test_comparison_falls_back_to_other_numeric_column(self):
        visual = VisualDefinition(metric="orders__total", comparison="gone__column")

        assert repair_visual(visual, self.COLUMNS).comparison == "refunds__amount"

    def test_comparison_cleared_without_candidates(self):
        visual = VisualDefinition(metric="orders__total", comparison="gone__column")

        repaired = repair_visual(visual, self.COLUMNS[:2])

        assert repaired.comparison is None

    def test_empty_columns_clear_everything(self):
        repaired = repair_visual(VisualDefinition(metric="a__b", dimension="c__d"), [])

        assert (repaired.metric, repaired.dimension) == (None, None)


class TestAvailableColumns:
    def test_selection_order_and_unknown_fields(self, registry):
        selection = make_selection(fields={"refunds": ["amount", "nope"], "orders": ["status"]})

        columns = available_columns(selection, registry)

        assert [c.alias for c in columns] == ["orders__status", "refunds__amount"]
        assert columns[1].to_dict()["type"] == "currency"


class TestBuildQueryConfig:
    """Test cases for build_query_config()"""

    def test_basic_metric_and_dimension(self, registry, settings, orders_refunds_join):
        selection = make_selection(joins=[orders_refunds_join])

        result = build_query_config(selection, [], registry, settings)

        config = result.config
        assert result.warnings == []
        assert config.metrics == [
            MetricSpec(model_id="orders", field_id="total", aggregation=Aggregation.SUM, alias="orders__total_sum")
        ]
        assert [d.alias for d in config.dimensions] == ["orders__status"]
        assert config.order_by == [OrderBy(alias="orders__total_sum", direction=SortDirection.DESC)]
        assert config.limit == settings.analytics_default_limit
        assert config.joins == [orders_refunds_join]

    def test_unknown_model_raises(self, registry, settings):
        with pytest.raises(QueryCompilationError, match="Unknown models: customers"):
            build_query_config(make_selection(models=["orders", "customers"]), [], registry, settings)

    def test_joins_to_unselected_models_are_dropped(self, registry, settings, orders_refunds_join):
        selection = make_selection(models=["orders"], joins=[orders_refunds_join])

        assert build_query_config(selection, [], registry, settings).config.joins == []

    def test_comparison_series(self, registry, settings):
        visual = VisualDefinition(
            metric="orders__total",
            dimension="orders__status",
            comparison="refunds__amount",
            comparison_aggregation=Aggregation.MAX,
        )

        config = build_query_config(make_selection(visual=visual), [], registry, settings).config

        assert [m.alias for m in config.metrics] == ["orders__total_sum", "refunds__amount_max"]

    def test_comparison_on_metric_field_warns(self, registry, settings):
        visual = VisualDefinition(metric="orders__total", dimension="orders__status", comparison="orders__total")

        result = build_query_config(make_selection(visual=visual), [], registry, settings)

        assert [m.alias for m in result.config.metrics] == ["orders__total_sum"]
        assert result.warnings == [
            "Comparison series must use a different field than the primary metric; it was ignored."
        ]

    def test_no_numeric_columns_means_no_metric(self, registry, settings):
        selection = make_selection(
            fields={"orders": ["status"]},
            visual=VisualDefinition(dimension="orders__status", comparison="orders__total"),
        )

        result = build_query_config(selection, [], registry, settings)

        assert result.config.metrics == []
        assert result.config.order_by == []
        assert result.visual.comparison is None

    def test_bucket_on_non_date_dimension_is_dropped(self, registry, settings):
        visual = VisualDefinition(metric="orders__total", dimension="orders__status", dimension_bucket=TimeBucket.MONTH)

        result = build_query_config(make_selection(visual=visual), [], registry, settings)

        assert result.config.dimensions[0].bucket is None
        assert result.warnings == ["Time bucket 'month' ignored: Orders Status is not a date field."]

    def test_date_dimension_keeps_bucket(self, registry, settings):
        visual = VisualDefinition(
            metric="orders__total", dimension="orders__created_at", dimension_bucket=TimeBucket.MONTH
        )

        config = build_query_config(make_selection(visual=visual), [], registry, settings).config

        assert config.dimensions[0].alias == "orders__created_at_month"

    def test_filters_are_reduced_with_warnings(self, registry, settings):
        filters = [
            ReportFilter(
                left=FieldRef(model_id="orders", field_id="total"),
                operator=FilterOperator.GT,
                value="10",
                value_kind=ValueKind.NUMBER,
            ),
            ReportFilter(left=FieldRef(model_id="orders", field_id="status"), operator=FilterOperator.CONTAINS, value="a"),
            ReportFilter(left=FieldRef(model_id="products", field_id="price"), operator=FilterOperator.EQ, value="1"),
        ]

        result = build_query_config(make_selection(filters=filters), [], registry, settings)

        assert [(f.left.path, f.value) for f in result.config.filters] == [("orders.total", 10)]
        assert result.warnings == [
            "Filter 3 (products.price) was skipped: it references a field that is not selected.",
            "Filter 2 (orders.status contains) was skipped: operator is not supported for analytics queries.",
        ]

    def test_stale_derived_fields_are_excluded(self, registry, settings, net_field):
        gross = build_derived_field("gross", "gross", "orders.total * 2")

        config = build_query_config(make_selection(models=["orders"]), [net_field, gross], registry, settings).config

        assert [d.alias for d in config.derived_fields] == ["gross"]

    def test_derived_field_ids_select_a_subset(self, registry, settings, net_field):
        gross = build_derived_field("gross", "gross", "orders.total * 2")

        config = build_query_config(
            make_selection(derived_field_ids=["net"]), [net_field, gross], registry, settings
        ).config

        assert [d.id for d in config.derived_fields] == ["net"]
        assert config.derived_fields[0].join_dependencies == [("orders", "refunds")]

    def test_requested_derived_fields_that_are_skipped_warn(self, registry, settings, net_field):
        hidden = build_derived_field("gross", "gross", "orders.total * 2", visible=False)
        selection = make_selection(models=["orders"], derived_field_ids=["net", "gross", "gone"])

        result = build_query_config(selection, [net_field, hidden], registry, settings)

        assert result.config.derived_fields == []
        assert result.warnings == [
            "Derived field 'gone' was skipped: it does not exist.",
            "Derived field 'net' was skipped: it is stale.",
            "Derived field 'gross' was skipped: it is hidden.",
        ]

    def test_derived_alias_collision_warns(self, registry, settings):
        clash = build_derived_field("orders__total_sum", "clash", "orders.total")

        result = build_query_config(make_selection(), [clash], registry, settings)

        assert result.config.derived_fields == []
        assert "alias collides" in result.warnings[0]

    def test_unknown_order_by_is_dropped(self, registry, settings):
        selection = make_selection(order_by=[OrderBy(alias="nope")], limit=10_000)

        result = build_query_config(selection, [], registry, settings)

        assert result.config.order_by[0].alias == "orders__total_sum"
        assert result.config.limit == settings.max_row_limit
        assert "Ordering on columns" in result.warnings[0]

    def test_hash_is_stable(self, registry, settings):
        first = build_query_config(make_selection(), [], registry, settings).config
        second = build_query_config(make_selection(), [], registry, Settings()).config

        assert compute_query_hash(first) == compute_query_hash(second)
        assert compute_query_hash(first) != compute_query_hash(first.model_copy(update={"limit": 5}))


class TestDerivedFieldPayloads:
    def test_hidden_and_stale_are_skipped(self, net_field):
        hidden = replace(net_field, id="hidden", visible=False)
        stale = replace(net_field, id="stale", status=DerivedFieldStatus.STALE)

        payloads = derived_field_payloads([net_field, hidden, stale])

        assert [p.id for p in payloads] == ["net"]
        assert payloads[0].expression_ast == net_field.ast.to_dict()


class TestQueryConfigValidation:
    def test_duplicate_aliases_rejected(self):
        with pytest.raises(ValidationError, match="Output aliases must be unique"):
            QueryConfig(
                models=["orders"],
                metrics=[
                    MetricSpec(model_id="orders", field_id="total", alias="x"),
                    MetricSpec(model_id="orders", field_id="discount_rate", alias="x"),
                ],
            )

    def test_unselected_metric_model_rejected(self):
        with pytest.raises(ValidationError):
            QueryConfig(models=["orders"], metrics=[MetricSpec(model_id="refunds", field_id="amount", alias="a")])

    def test_models_required(self):
        with pytest.raises(ValidationError):
            QueryConfig(models=[])


class TestBuildPreviewRequest:
    def test_preview_keeps_every_filter(self, registry, settings):
        filters = [
            ReportFilter(left=FieldRef(model_id="orders", field_id="status"), operator=FilterOperator.CONTAINS, value="a")
        ]

        request = build_preview_request(make_selection(filters=filters, preview_limit=20), [], registry, settings)

        assert [c.path for c in request.columns] == [
            "orders.total",
            "orders.discount_rate",
            "orders.status",
            "orders.created_at",
            "refunds.amount",
            "refunds.reason",
        ]
        assert request.filters == filters
        assert request.limit == 20
