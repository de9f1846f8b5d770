"""Unit tests for join dependency inference and join graph analysis"""

from types import SimpleNamespace

import pytest
from pydantic import ValidationError

from report_compiler.derived_fields.schemas import build_derived_field
from report_compiler.joins.graph import analyze_join_graph, evaluate_coverage
from report_compiler.joins.inference import infer_join_pairs, join_key_set, pair_key
from report_compiler.joins.schemas import JoinCondition


def make_join(left, right):
    return SimpleNamespace(left_model=left, right_model=right)


class TestInferJoinPairs:
    """Test cases for infer_join_pairs()"""

    def test_no_pairs_for_single_model(self):
        assert infer_join_pairs([]) == []
        assert infer_join_pairs(["orders", "orders"]) == []

    def test_pairs_are_sorted_and_deduplicated(self):
        assert infer_join_pairs(["refunds", "orders", "refunds"]) == [("orders", "refunds")]

    def test_three_models_yield_three_pairs(self):
        assert infer_join_pairs({"c", "a", "b"}) == [("a", "b"), ("a", "c"), ("b", "c")]

    def test_pair_key_is_order_independent(self):
        assert pair_key("refunds", "orders") == pair_key("orders", "refunds") == "orders::refunds"

    def test_join_key_set_skips_self_joins(self):
        keys = join_key_set([make_join("refunds", "orders"), make_join("orders", "orders")])

        assert keys == {"orders::refunds"}


class TestAnalyzeJoinGraph:
    """Test cases for analyze_join_graph()"""

    def test_fully_connected_chain(self):
        analysis = analyze_join_graph(["A", "B", "C"], [make_join("A", "B"), make_join("B", "C")])

        assert analysis.degrees == {"A": 1, "B": 2, "C": 1}
        assert analysis.components == [["A", "B", "C"]]
        assert analysis.primary_index == 0
        assert analysis.disconnected == []
        assert analysis.is_connected

    def test_isolated_model_is_disconnected(self):
        analysis = analyze_join_graph(["A", "B", "C"], [make_join("A", "B")])

        assert analysis.components == [["A", "B"], ["C"]]
        assert analysis.primary_component == ["A", "B"]
        assert analysis.disconnected == ["C"]

    def test_primary_component_is_first_discovered(self):
        """Test that the first model's component is primary even when smaller"""
        analysis = analyze_join_graph(["A", "B", "C"], [make_join("B", "C")])

        assert analysis.components == [["A"], ["B", "C"]]
        assert analysis.disconnected == ["B", "C"]

    def test_joins_outside_selection_are_ignored(self):
        analysis = analyze_join_graph(["A", "B"], [make_join("A", "Z"), make_join("A", "A")])

        assert analysis.degrees == {"A": 0, "B": 0}
        assert analysis.disconnected == ["B"]

    def test_parallel_joins_count_toward_degree(self):
        analysis = analyze_join_graph(["A", "B"], [make_join("A", "B"), make_join("B", "A")])

        assert analysis.degrees == {"A": 2, "B": 2}
        assert analysis.components == [["A", "B"]]

    def test_empty_selection(self):
        analysis = analyze_join_graph([], [])

        assert analysis.components == []
        assert analysis.primary_component == []
        assert analysis.disconnected == []

    def test_to_dict(self):
        payload = analyze_join_graph(["A", "B"], []).to_dict()

        assert payload == {
            "degrees": {"A": 0, "B": 0},
            "components": [["A"], ["B"]],
            "primary_index": 0,
            "disconnected": ["B"],
        }


class TestEvaluateCoverage:
    def test_coverage_uses_inferred_pairs(self, orders_refunds_join):
        field = build_derived_field("f1", "mixed", "orders.total - refunds.amount + products.price")

        coverage = evaluate_coverage(field, join_key_set([orders_refunds_join]))

        assert [(c.pair, c.satisfied) for c in coverage] == [
            (("orders", "products"), False),
            (("orders", "refunds"), True),
            (("products", "refunds"), False),
        ]

    def test_single_model_field_needs_no_join(self):
        field = build_derived_field("f2", "gross", "orders.total * 2")

        assert evaluate_coverage(field, set()) == []


class TestJoinCondition:
    def test_self_join_is_rejected(self):
        with pytest.raises(ValidationError):
            JoinCondition(left_model="orders", left_field="id", right_model="orders", right_field="id")

    def test_extra_fields_are_rejected(self):
        with pytest.raises(ValidationError):
            JoinCondition(
                left_model="orders", left_field="id", right_model="refunds", right_field="order_id", weight=1
            )
