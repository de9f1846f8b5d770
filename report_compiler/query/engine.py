# report_compiler/query/engine.py
"""
QueryEngine: turns a QueryConfig or PreviewRequest into SQLAlchemy statements.

Both the analytics path and the preview path share the FROM-clause
construction, so a preview shows exactly the joins an analytics query uses.
"""

import logging
import operator
from datetime import date, datetime
from decimal import Decimal
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple

import sqlparse
from sqlalchemy import Integer, MetaData, and_, cast, distinct, func, select, text
from sqlalchemy.exc import CompileError
from sqlalchemy.orm import Session
from sqlalchemy.sql import Select
from sqlalchemy.sql.elements import ColumnElement

from report_compiler.errors import FilterCompilationError, QueryCompilationError, StaleDerivedFieldError
from report_compiler.expressions.nodes import ColumnRef, iter_columns, node_from_dict
from report_compiler.expressions.sql import compile_expression
from report_compiler.filters.compiler import compile_filters
from report_compiler.filters.operators import FilterOperator
from report_compiler.joins.graph import analyze_join_graph
from report_compiler.joins.schemas import JoinCondition, JoinType
from report_compiler.derived_fields.schemas import DerivedFieldKind
from report_compiler.schema_registry.models import Field, FieldType
from report_compiler.schema_registry.registry import SchemaRegistry

from .builder import column_alias
from .schemas import (
    Aggregation,
    DerivedFieldPayload,
    PreviewRequest,
    PreviewResult,
    QueryConfig,
    SortDirection,
    TimeBucket,
)

logger = logging.getLogger(__name__)

_COMPARISONS: Dict[FilterOperator, Callable[[Any, Any], Any]] = {
    FilterOperator.EQ: operator.eq,
    FilterOperator.NEQ: operator.ne,
    FilterOperator.GT: operator.gt,
    FilterOperator.GTE: operator.ge,
    FilterOperator.LT: operator.lt,
    FilterOperator.LTE: operator.le,
}

_SQLITE_BUCKET_FORMATS = {
    TimeBucket.HOUR: "%Y-%m-%d %H:00:00",
    TimeBucket.DAY: "%Y-%m-%d",
    TimeBucket.MONTH: "%Y-%m-01",
    TimeBucket.YEAR: "%Y-01-01",
}

_COUNTING = (Aggregation.COUNT, Aggregation.COUNT_DISTINCT)


def _json_value(value: Any) -> Any:
    if isinstance(value, Decimal):
        return float(value)
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    return value


class QueryEngine:
    """Builds and runs report queries against the data warehouse."""

    def __init__(
        self,
        dw_session: Session,
        registry: SchemaRegistry,
        metadata: Optional[MetaData] = None,
        max_row_limit: Optional[int] = None,
    ):
        if metadata is None:
            from report_compiler.core.database import DWBase

            metadata = DWBase.metadata
        self.dw_session = dw_session
        self.registry = registry
        self.metadata = metadata
        self.max_row_limit = max_row_limit

    @property
    def dialect_name(self) -> str:
        return self.dw_session.get_bind().dialect.name

    # ===== SHARED =====

    def _row_limit(self, requested: int) -> int:
        if self.max_row_limit is None:
            return requested
        return min(requested, self.max_row_limit)

    def _tables(self, model_ids: Sequence[str]) -> Dict[str, Any]:
        tables = {}
        for model_id in model_ids:
            model = self.registry.get_model(model_id)
            if model is None:
                raise QueryCompilationError(f"Unknown model '{model_id}'")
            table = self.metadata.tables.get(model.table_name)
            if table is None:
                raise QueryCompilationError(f"No table is mapped for model '{model_id}'")
            tables[model_id] = table.alias(model_id)
        return tables

    def _column(self, tables: Dict[str, Any], model_id: str, field_id: str) -> Tuple[ColumnElement, Field]:
        if model_id not in tables:
            raise QueryCompilationError(f"Model '{model_id}' is not part of the query")
        field_def = self.registry.get_field(model_id, field_id)
        if field_def is None:
            raise QueryCompilationError(f"Unknown field '{model_id}.{field_id}'")
        return tables[model_id].c[field_def.backing_column], field_def

    def _join_clause(self, tables: Dict[str, Any], join: JoinCondition) -> ColumnElement:
        left, _ = self._column(tables, join.left_model, join.left_field)
        right, _ = self._column(tables, join.right_model, join.right_field)
        return left == right

    def _from_clause(self, model_ids: Sequence[str], joins: Sequence[JoinCondition], tables: Dict[str, Any]):
        """
        Join every selected model, starting from the first one.

        Returns the FROM clause and the conditions of joins that close a cycle,
        which are applied in WHERE.

        Raises:
            QueryCompilationError: if some selected model is unreachable through the joins.
        """
        analysis = analyze_join_graph(model_ids, joins)
        if analysis.disconnected:
            raise QueryCompilationError(
                "Selected models are not connected by joins: " + ", ".join(analysis.disconnected)
            )

        from_clause = tables[model_ids[0]]
        joined = {model_ids[0]}
        pending = [join for join in joins if join.left_model in tables and join.right_model in tables]
        extra_conditions = []

        while pending:
            progressed = False
            for join in list(pending):
                left_in = join.left_model in joined
                right_in = join.right_model in joined
                if not left_in and not right_in:
                    continue
                pending.remove(join)
                progressed = True
                onclause = self._join_clause(tables, join)
                if left_in and right_in:
                    extra_conditions.append(onclause)
                    continue

                new_model = join.right_model if left_in else join.left_model
                new_table = tables[new_model]
                if join.join_type == JoinType.INNER:
                    from_clause = from_clause.join(new_table, onclause)
                elif join.join_type == JoinType.FULL:
                    from_clause = from_clause.join(new_table, onclause, full=True)
                else:
                    preserved = join.left_model if join.join_type == JoinType.LEFT else join.right_model
                    if new_model == preserved:
                        from_clause = new_table.join(from_clause, onclause, isouter=True)
                    else:
                        from_clause = from_clause.join(new_table, onclause, isouter=True)
                joined.add(new_model)
            if not progressed:
                break

        return from_clause, extra_conditions

    def _derived_expression(
        self, tables: Dict[str, Any], payload: DerivedFieldPayload, grouped: bool
    ) -> ColumnElement:
        ast = node_from_dict(payload.expression_ast)
        wrap_columns = grouped and payload.kind == DerivedFieldKind.AGGREGATE

        def resolve(ref: ColumnRef) -> ColumnElement:
            if ref.model_id not in tables:
                raise StaleDerivedFieldError([payload.id])
            column, _ = self._column(tables, ref.model_id, ref.field_id)
            return func.sum(column) if wrap_columns else column

        expression = compile_expression(ast, resolve, self.dialect_name)
        if grouped and payload.kind == DerivedFieldKind.ROW:
            expression = func.sum(expression)
        return expression

    def _bucket(self, column: ColumnElement, bucket: TimeBucket) -> ColumnElement:
        if self.dialect_name != "sqlite":
            return func.date_trunc(bucket.value, column)
        if bucket in _SQLITE_BUCKET_FORMATS:
            return func.strftime(_SQLITE_BUCKET_FORMATS[bucket], column)
        if bucket == TimeBucket.WEEK:
            # Monday of the week
            return func.date(column, "weekday 0", "-6 days")
        quarter_month = ((cast(func.strftime("%m", column), Integer) - 1) // 3) * 3 + 1
        return func.printf("%s-%02d-01", func.strftime("%Y", column), quarter_month)

    @staticmethod
    def _aggregate(column: ColumnElement, aggregation: Aggregation) -> ColumnElement:
        if aggregation == Aggregation.COUNT_DISTINCT:
            return func.count(distinct(column))
        return getattr(func, aggregation.value)(column)

    def compile_to_sql(self, statement) -> str:
        """Compile to SQL text with parameters inlined where the dialect allows it."""
        dialect = self.dw_session.get_bind().dialect
        try:
            return str(statement.compile(dialect=dialect, compile_kwargs={"literal_binds": True}))
        except (CompileError, NotImplementedError):
            return str(statement.compile(dialect=dialect))

    # ===== ANALYTICS =====

    def build_analytics_query(self, config: QueryConfig) -> Select:
        """
        Build the SELECT for an analytics config.

        Raises:
            QueryCompilationError: for unknown models/fields, disconnected models,
                non-numeric metrics or an empty projection.
        """
        ensure_derived_fields_current(config.models, config.derived_fields)
        tables = self._tables(config.models)
        from_clause, conditions = self._from_clause(config.models, config.joins, tables)
        grouped = bool(config.metrics or config.dimensions)

        labelled: Dict[str, ColumnElement] = {}
        group_by: List[ColumnElement] = []

        for dimension in config.dimensions:
            column, field_def = self._column(tables, dimension.model_id, dimension.field_id)
            expression = column
            if dimension.bucket is not None:
                if field_def.type != FieldType.DATE:
                    raise QueryCompilationError(
                        f"Time bucket requires a date field, {dimension.model_id}.{dimension.field_id} is {field_def.type.value}"
                    )
                expression = self._bucket(column, dimension.bucket)
            labelled[dimension.alias] = expression.label(dimension.alias)
            group_by.append(expression)

        for metric in config.metrics:
            column, field_def = self._column(tables, metric.model_id, metric.field_id)
            if metric.aggregation not in _COUNTING and not field_def.type.is_numeric:
                raise QueryCompilationError(
                    f"Cannot {metric.aggregation.value} non-numeric field {metric.model_id}.{metric.field_id}"
                )
            labelled[metric.alias] = self._aggregate(column, metric.aggregation).label(metric.alias)

        for payload in config.derived_fields:
            labelled[payload.alias] = self._derived_expression(tables, payload, grouped).label(payload.alias)

        if not labelled:
            raise QueryCompilationError("The query selects no metrics, dimensions or derived fields")

        for entry in config.filters:
            column, _ = self._column(tables, entry.left.model_id, entry.left.field_id)
            conditions.append(_COMPARISONS[entry.operator](column, entry.value))

        statement = select(*labelled.values()).select_from(from_clause)
        if conditions:
            statement = statement.where(and_(*conditions))
        if group_by:
            statement = statement.group_by(*group_by)
        for order in config.order_by:
            target = labelled[order.alias]
            statement = statement.order_by(target.desc() if order.direction == SortDirection.DESC else target.asc())
        return statement.limit(self._row_limit(config.limit))

    def execute(self, config: QueryConfig) -> Dict[str, Any]:
        """Run an analytics config; returns ``columns``, ``rows`` and ``sql``."""
        statement = self.build_analytics_query(config)
        sql_text = self.compile_to_sql(statement)
        logger.debug("Executing analytics query: %s", sql_text)
        result = self.dw_session.execute(statement)
        columns = list(result.keys())
        rows = [{key: _json_value(value) for key, value in row._mapping.items()} for row in result]
        return {"columns": columns, "rows": rows, "sql": sql_text}

    # ===== PREVIEW =====

    def build_preview_query(self, request: PreviewRequest) -> Select:
        """
        Build the row-level preview SELECT. Filters are compiled to inline SQL.

        Raises:
            FilterCompilationError: with every filter problem found.
            QueryCompilationError: for schema or join problems.
        """
        ensure_derived_fields_current(request.models, request.derived_fields)
        tables = self._tables(request.models)
        from_clause, conditions = self._from_clause(request.models, request.joins, tables)

        projection = []
        for ref in request.columns:
            column, field_def = self._column(tables, ref.model_id, ref.field_id)
            projection.append(column.label(column_alias(ref.model_id, field_def.id)))
        for payload in request.derived_fields:
            projection.append(self._derived_expression(tables, payload, grouped=False).label(payload.alias))
        if not projection:
            raise QueryCompilationError("Select at least one column to preview")

        compilation = compile_filters(
            request.filters, {model_id: model_id for model_id in request.models}, self.registry, self.dialect_name
        )
        if compilation.errors:
            raise FilterCompilationError(compilation.errors)
        # Colons are escaped so text() does not read them as bind parameters.
        conditions.extend(text(clause.replace(":", "\\:")) for clause in compilation.clauses)

        statement = select(*projection).select_from(from_clause)
        if conditions:
            statement = statement.where(and_(*conditions))
        return statement.limit(self._row_limit(request.limit))

    def build_preview_sql(self, request: PreviewRequest) -> str:
        sql_text = self.compile_to_sql(self.build_preview_query(request))
        validate_single_select(sql_text)
        return sql_text

    def run_preview(self, request: PreviewRequest) -> PreviewResult:
        statement = self.build_preview_query(request)
        sql_text = self.compile_to_sql(statement)
        validate_single_select(sql_text)
        result = self.dw_session.execute(statement)
        columns = list(result.keys())
        rows = [{key: _json_value(value) for key, value in row._mapping.items()} for row in result]
        return PreviewResult(columns=columns, rows=rows, sql=sql_text)


def validate_single_select(sql_text: str) -> None:
    """
    Raises:
        QueryCompilationError: unless ``sql_text`` is exactly one SELECT statement.
    """
    statements = [statement for statement in sqlparse.parse(sql_text) if str(statement).strip()]
    if len(statements) != 1:
        raise QueryCompilationError(f"Generated SQL must be a single statement, got {len(statements)}")
    if statements[0].get_type() != "SELECT":
        raise QueryCompilationError("Generated SQL must be a SELECT statement")


def stale_derived_field_ids(model_ids: Sequence[str], payloads: Sequence[DerivedFieldPayload]) -> List[str]:
    """Ids of derived fields that reference a model outside ``model_ids``."""
    selected = set(model_ids)
    stale = []
    for payload in payloads:
        referenced = set(payload.referenced_models)
        referenced.update(ref.model_id for ref in iter_columns(node_from_dict(payload.expression_ast)))
        if not referenced <= selected:
            stale.append(payload.id)
    return stale


def ensure_derived_fields_current(model_ids: Sequence[str], payloads: Sequence[DerivedFieldPayload]) -> None:
    """
    Raises:
        StaleDerivedFieldError: naming every derived field that cannot run against ``model_ids``.
    """
    stale = stale_derived_field_ids(model_ids, payloads)
    if stale:
        raise StaleDerivedFieldError(stale)
