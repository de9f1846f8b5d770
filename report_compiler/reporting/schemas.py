"""Request and response schemas of the report compiler API."""

from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field

from report_compiler.derived_fields.schemas import ReconcileFieldInput
from report_compiler.filters.schemas import ReportFilter
from report_compiler.joins.schemas import JoinCondition
from report_compiler.query.schemas import QueryConfig, VisualDefinition


class JoinAnalysisRequest(BaseModel):
    models: List[str]
    joins: List[JoinCondition] = []
    derived_fields: List[ReconcileFieldInput] = []

    model_config = ConfigDict(extra="forbid")


class FieldCoverage(BaseModel):
    id: str
    coverage: List[Dict[str, Any]]
    satisfied: bool


class JoinAnalysisResponse(BaseModel):
    degrees: Dict[str, int]
    components: List[List[str]]
    primary_index: int
    disconnected: List[str]
    coverage: List[FieldCoverage] = []


class FilterCompileRequest(BaseModel):
    models: List[str] = Field(min_length=1)
    filters: List[ReportFilter] = []
    dialect: Optional[str] = None

    model_config = ConfigDict(extra="forbid")


class FilterCompileResponse(BaseModel):
    clauses: List[str]
    errors: List[str]


class ColumnOptionRead(BaseModel):
    alias: str
    model_id: str
    field_id: str
    label: str
    type: str


class ConfigBuildResponse(BaseModel):
    config: QueryConfig
    visual: VisualDefinition
    columns: List[ColumnOptionRead]
    warnings: List[str] = []
