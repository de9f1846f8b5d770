"""Unit tests for DerivedFieldService"""

import pytest
from fastapi import HTTPException

from report_compiler.derived_fields.dao import DerivedFieldDAO
from report_compiler.derived_fields.schemas import (
    DerivedFieldCreate,
    DerivedFieldKind,
    DerivedFieldScope,
    DerivedFieldStatus,
    DerivedFieldUpdate,
    ReconcileFieldInput,
    ReconcileRequest,
)
from report_compiler.derived_fields.service import DerivedFieldService
from report_compiler.errors import ExpressionSyntaxError
from report_compiler.expressions.parser import parse
from report_compiler.query.hashing import compute_payload_hash


@pytest.fixture
def service(config_db_session, registry):
    return DerivedFieldService(DerivedFieldDAO(config_db_session), registry)


def net_create(**overrides):
    values = {"name": "Net", "expression": "orders.total - refunds.amount", "template_id": "tpl-1"}
    values.update(overrides)
    return DerivedFieldCreate(**values)


class TestAnalyzeExpression:
    """Test cases for analyze_expression()"""

    def test_text_expression(self, service):
        analysis = service.analyze_expression("orders.total - refunds.amount")

        assert analysis["referenced_models"] == ["orders", "refunds"]
        assert analysis["referenced_fields"] == {"orders": ["total"], "refunds": ["amount"]}
        assert analysis["join_dependencies"] == [["orders", "refunds"]]
        assert analysis["compiled_sql_hash"] == compute_payload_hash(analysis["expression_ast"])

    def test_client_ast_takes_precedence(self, service):
        ast = parse("orders.total * 2").ast.to_dict()

        analysis = service.analyze_expression("ignored text +", ast)

        assert analysis["expression_ast"] == ast
        assert analysis["referenced_models"] == ["orders"]

    def test_malformed_ast(self, service):
        with pytest.raises(HTTPException) as exc_info:
            service.analyze_expression("orders.total", {"type": "column"})

        assert exc_info.value.status_code == 400
        assert exc_info.value.detail == "Derived field expression AST is invalid"

    def test_unknown_references(self, service):
        with pytest.raises(HTTPException) as exc_info:
            service.analyze_expression("customers.age + orders.tip")

        assert exc_info.value.detail["missing_models"] == ["customers"]
        assert exc_info.value.detail["missing_fields"] == ["orders.tip"]

    def test_syntax_error_propagates(self, service):
        with pytest.raises(ExpressionSyntaxError):
            service.analyze_expression("orders.total +")


class TestCrud:
    """Test cases for create/read/update/delete"""

    def test_create_and_get(self, service):
        created = service.create(net_create(metadata={"format": "currency"}), created_by="analyst")

        fetched = service.get_field(created.id)
        assert fetched.name == "Net"
        assert fetched.referenced_models == ["orders", "refunds"]
        assert fetched.join_dependencies == [("orders", "refunds")]
        assert fetched.metadata == {"format": "currency"}
        assert fetched.created_by == "analyst"

    def test_template_scope_requires_template_id(self, service):
        with pytest.raises(HTTPException) as exc_info:
            service.create(net_create(template_id=None))

        assert exc_info.value.status_code == 400

    def test_blank_name_rejected_by_schema(self):
        with pytest.raises(ValueError):
            net_create(name="   ")

    def test_list_includes_workspace_fields(self, service):
        service.create(net_create())
        service.create(net_create(name="Other", template_id="tpl-2"))
        service.create(net_create(name="Shared", scope=DerivedFieldScope.WORKSPACE, template_id=None))

        names = sorted(field.name for field in service.list_fields("tpl-1"))

        assert names == ["Net", "Shared"]
        assert len(service.list_fields()) == 3

    def test_update_reanalyzes_expression(self, service):
        created = service.create(net_create())

        updated = service.update(created.id, DerivedFieldUpdate(expression="orders.total * 2", kind=DerivedFieldKind.AGGREGATE))

        assert updated.referenced_models == ["orders"]
        assert updated.join_dependencies == []
        assert updated.kind == DerivedFieldKind.AGGREGATE
        assert updated.compiled_sql_hash != created.compiled_sql_hash

    def test_update_name_only_keeps_analysis(self, service):
        created = service.create(net_create())

        updated = service.update(created.id, DerivedFieldUpdate(name="Net revenue"))

        assert updated.name == "Net revenue"
        assert updated.compiled_sql_hash == created.compiled_sql_hash

    def test_delete(self, service):
        created = service.create(net_create())

        service.delete(created.id)

        with pytest.raises(HTTPException) as exc_info:
            service.get_field(created.id)
        assert exc_info.value.status_code == 404
        with pytest.raises(HTTPException):
            service.delete(created.id)


class TestReconcile:
    """Test cases for reconcile() and load()"""

    def test_load_returns_domain_objects(self, service):
        created = service.create(net_create())

        [field] = service.load([created.id])

        assert field.ast == parse("orders.total - refunds.amount").ast
        assert field.referenced_models == frozenset({"orders", "refunds"})
        assert field.status == DerivedFieldStatus.ACTIVE

    def test_saved_fields_against_selection(self, service, orders_refunds_join):
        created = service.create(net_create())

        [result] = service.reconcile(ReconcileRequest(models=["orders"], template_id="tpl-1"))

        assert result.id == created.id
        assert result.status == DerivedFieldStatus.STALE
        assert result.changed is True
        assert result.coverage == [{"pair": ["orders", "refunds"], "satisfied": False}]

        [covered] = service.reconcile(
            ReconcileRequest(models=["orders", "refunds"], joins=[orders_refunds_join], field_ids=[created.id])
        )
        assert covered.status == DerivedFieldStatus.ACTIVE
        assert covered.changed is False
        assert covered.coverage == [{"pair": ["orders", "refunds"], "satisfied": True}]

    def test_client_fields_without_stored_references(self, service):
        request = ReconcileRequest(
            models=["orders", "refunds"],
            fields=[
                ReconcileFieldInput(
                    id="draft", expression="orders.total - refunds.amount", status=DerivedFieldStatus.STALE
                )
            ],
        )

        [result] = service.reconcile(request)

        assert result.status == DerivedFieldStatus.ACTIVE
        assert result.changed is True
        assert result.referenced_models == ["orders", "refunds"]
        assert result.coverage == [{"pair": ["orders", "refunds"], "satisfied": False}]
