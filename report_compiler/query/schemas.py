# report_compiler/query/schemas.py
"""Pydantic schemas for the canonical query configuration and execution payloads."""

from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from report_compiler.derived_fields.schemas import DerivedFieldKind
from report_compiler.errors import TransportError
from report_compiler.expressions.nodes import node_from_dict
from report_compiler.filters.operators import FIELD_COMPARISON_SQL, FilterOperator
from report_compiler.filters.schemas import FieldRef, ReportFilter
from report_compiler.joins.schemas import JoinCondition, JoinType  # noqa: F401


class Aggregation(str, Enum):
    SUM = "sum"
    AVG = "avg"
    MIN = "min"
    MAX = "max"
    COUNT = "count"
    COUNT_DISTINCT = "count_distinct"


class TimeBucket(str, Enum):
    HOUR = "hour"
    DAY = "day"
    WEEK = "week"
    MONTH = "month"
    QUARTER = "quarter"
    YEAR = "year"


class SortDirection(str, Enum):
    ASC = "asc"
    DESC = "desc"


class JobStatus(str, Enum):
    QUEUED = "queued"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (JobStatus.COMPLETED, JobStatus.FAILED)


_FROZEN = ConfigDict(extra="forbid", frozen=True)


# ===== QUERY CONFIG =====


class QueryConfigFilter(BaseModel):
    """A literal comparison, the only predicate shape the aggregate path accepts."""

    left: FieldRef
    operator: FilterOperator
    value: Union[bool, int, float, str]

    model_config = _FROZEN

    @field_validator("operator")
    @classmethod
    def comparison_only(cls, v: FilterOperator) -> FilterOperator:
        if v not in FIELD_COMPARISON_SQL:
            raise ValueError(f"Operator '{v.value}' is not supported for analytics queries")
        return v


class MetricSpec(BaseModel):
    model_id: str
    field_id: str
    aggregation: Aggregation = Aggregation.SUM
    alias: str

    model_config = _FROZEN


class DimensionSpec(BaseModel):
    model_id: str
    field_id: str
    bucket: Optional[TimeBucket] = None
    alias: str

    model_config = _FROZEN


class DerivedFieldPayload(BaseModel):
    """
    A derived field as shipped to the execution service.

    ``model_graph_signature`` and ``compiled_sql_hash`` are cache tokens owned by
    the execution service and passed through untouched.
    """

    id: str
    alias: str
    kind: DerivedFieldKind = DerivedFieldKind.ROW
    expression_ast: Dict[str, Any]
    referenced_models: List[str] = []
    join_dependencies: List[Tuple[str, str]] = []
    model_graph_signature: Optional[str] = None
    compiled_sql_hash: Optional[str] = None

    model_config = _FROZEN

    @field_validator("expression_ast")
    @classmethod
    def well_formed_ast(cls, v: Dict[str, Any]) -> Dict[str, Any]:
        node_from_dict(v)
        return v


class OrderBy(BaseModel):
    alias: str
    direction: SortDirection = SortDirection.DESC

    model_config = _FROZEN


class QueryOptions(BaseModel):
    allow_async: bool = True
    force_async: bool = False
    template_id: Optional[str] = None
    cache_ttl_seconds: Optional[int] = Field(default=None, ge=1)

    model_config = _FROZEN


class QueryConfig(BaseModel):
    """The canonical, immutable compilation target of one analytics query."""

    models: List[str] = Field(min_length=1)
    joins: List[JoinCondition] = []
    filters: List[QueryConfigFilter] = []
    metrics: List[MetricSpec] = []
    dimensions: List[DimensionSpec] = []
    derived_fields: List[DerivedFieldPayload] = []
    order_by: List[OrderBy] = []
    limit: int = Field(default=100, ge=1)
    options: QueryOptions = QueryOptions()

    model_config = _FROZEN

    @model_validator(mode="after")
    def consistent_references(self) -> "QueryConfig":
        if len(set(self.models)) != len(self.models):
            raise ValueError("Model ids must be unique")
        selected = set(self.models)

        for join in self.joins:
            if join.left_model not in selected or join.right_model not in selected:
                raise ValueError(
                    f"Join {join.left_model}.{join.left_field} = {join.right_model}.{join.right_field} "
                    "references a model that is not selected"
                )
        for spec in list(self.metrics) + list(self.dimensions):
            if spec.model_id not in selected:
                raise ValueError(f"Column {spec.model_id}.{spec.field_id} references a model that is not selected")
        for entry in self.filters:
            if entry.left.model_id not in selected:
                raise ValueError(f"Filter on {entry.left.path} references a model that is not selected")

        aliases = self.output_aliases
        if len(set(aliases)) != len(aliases):
            duplicates = sorted({alias for alias in aliases if aliases.count(alias) > 1})
            raise ValueError(f"Output aliases must be unique: {', '.join(duplicates)}")
        for order in self.order_by:
            if order.alias not in aliases:
                raise ValueError(f"Cannot order by unknown alias '{order.alias}'")
        return self

    @property
    def output_aliases(self) -> List[str]:
        return (
            [dimension.alias for dimension in self.dimensions]
            + [metric.alias for metric in self.metrics]
            + [derived.alias for derived in self.derived_fields]
        )


# ===== BUILDER INPUT =====


class VisualDefinition(BaseModel):
    """
    The active visual: which column drives the metric, the dimension and the
    optional comparison series. Columns are identified by their column alias.
    """

    metric: Optional[str] = None
    metric_aggregation: Aggregation = Aggregation.SUM
    dimension: Optional[str] = None
    dimension_bucket: Optional[TimeBucket] = None
    comparison: Optional[str] = None
    comparison_aggregation: Optional[Aggregation] = None

    model_config = _FROZEN


class ReportSelection(BaseModel):
    """Everything the report builder currently has selected."""

    models: List[str] = Field(min_length=1)
    fields: Dict[str, List[str]] = {}
    joins: List[JoinCondition] = []
    filters: List[ReportFilter] = []
    visual: VisualDefinition = VisualDefinition()
    derived_field_ids: List[str] = []
    order_by: List[OrderBy] = []
    limit: Optional[int] = None
    preview_limit: Optional[int] = None
    allow_async: bool = True
    force_async: bool = False
    template_id: Optional[str] = None
    cache_ttl_seconds: Optional[int] = Field(default=None, ge=1)

    model_config = _FROZEN


class PreviewRequest(BaseModel):
    """Row-level preview: selected columns with the full filter set, compiled to inline SQL."""

    models: List[str] = Field(min_length=1)
    columns: List[FieldRef] = []
    joins: List[JoinCondition] = []
    filters: List[ReportFilter] = []
    derived_fields: List[DerivedFieldPayload] = []
    limit: int = Field(default=500, ge=1)

    model_config = _FROZEN


# ===== EXECUTION PAYLOADS =====


class ResultMeta(BaseModel):
    executed_at: Optional[datetime] = None
    cached_at: Optional[datetime] = None
    cached: bool = False
    hash: Optional[str] = None
    job_id: Optional[str] = None
    row_count: int = 0

    model_config = ConfigDict(extra="forbid")


class ImmediateResult(BaseModel):
    columns: List[str]
    rows: List[Dict[str, Any]]
    sql: Optional[str] = None
    meta: ResultMeta = ResultMeta()

    model_config = ConfigDict(extra="forbid")


class JobDescriptor(BaseModel):
    job_id: str
    hash: Optional[str] = None
    status: JobStatus = JobStatus.QUEUED
    error: Optional[str] = None

    model_config = ConfigDict(extra="forbid")


class PreviewResult(BaseModel):
    columns: List[str]
    rows: List[Dict[str, Any]]
    sql: Optional[str] = None

    model_config = ConfigDict(extra="forbid")


ExecutionResponse = Union[ImmediateResult, JobDescriptor]


def parse_execution_response(payload: Any) -> ExecutionResponse:
    """
    Tell an immediate result from a job descriptor.

    Raises:
        TransportError: if the payload is neither.
    """
    if not isinstance(payload, dict):
        raise TransportError("Execution service returned a non-object response")
    try:
        if "columns" in payload:
            return ImmediateResult.model_validate(payload)
        if "job_id" in payload:
            return JobDescriptor.model_validate(payload)
    except ValueError as exc:
        raise TransportError(f"Malformed execution response: {exc}") from exc
    raise TransportError("Execution service response is neither a result nor a job descriptor")
