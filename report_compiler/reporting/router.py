"""API router for the ad-hoc report query compiler."""

import logging
from dataclasses import replace
from typing import List, Optional, Union

from fastapi import APIRouter, Depends, Query, status

from report_compiler.core.dependencies import (
    RegistryDep,
    SettingsDep,
    get_derived_field_service,
    get_execution_service,
)
from report_compiler.derived_fields.reconciliation import effective_referenced_models
from report_compiler.derived_fields.schemas import (
    DerivedFieldCreate,
    DerivedFieldRead,
    DerivedFieldUpdate,
    ReconciledField,
    ReconcileRequest,
)
from report_compiler.derived_fields.service import DerivedFieldService, from_reconcile_input
from report_compiler.execution.service import QueryExecutionService
from report_compiler.filters.compiler import compile_filters
from report_compiler.joins.graph import analyze_join_graph, evaluate_coverage
from report_compiler.joins.inference import join_key_set
from report_compiler.query.builder import available_columns, build_query_config
from report_compiler.query.schemas import (
    ImmediateResult,
    JobDescriptor,
    PreviewRequest,
    PreviewResult,
    QueryConfig,
    ReportSelection,
)
from report_compiler.reporting.schemas import (
    ColumnOptionRead,
    ConfigBuildResponse,
    FieldCoverage,
    FilterCompileRequest,
    FilterCompileResponse,
    JoinAnalysisRequest,
    JoinAnalysisResponse,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/reports", tags=["reporting"])


# ===== SCHEMA =====


@router.get("/models")
def get_models(registry: RegistryDep) -> dict:
    """Queryable models with their semantically typed fields and associations."""
    return registry.to_payload()


# ===== EXECUTION =====


@router.post("/preview", response_model=PreviewResult)
def run_preview(
    request: PreviewRequest, service: QueryExecutionService = Depends(get_execution_service)
) -> PreviewResult:
    return service.run_preview(request)


@router.post("/query", response_model=Union[ImmediateResult, JobDescriptor])
def run_query(
    config: QueryConfig, service: QueryExecutionService = Depends(get_execution_service)
) -> Union[ImmediateResult, JobDescriptor]:
    return service.run_query(config)


@router.get("/query/jobs/{job_id}", response_model=Union[ImmediateResult, JobDescriptor])
def get_query_job(
    job_id: str, service: QueryExecutionService = Depends(get_execution_service)
) -> Union[ImmediateResult, JobDescriptor]:
    return service.get_job(job_id)


# ===== DERIVED FIELDS =====


@router.get("/derived-fields", response_model=List[DerivedFieldRead])
def list_derived_fields(
    template_id: Optional[str] = Query(default=None),
    service: DerivedFieldService = Depends(get_derived_field_service),
) -> List[DerivedFieldRead]:
    return service.list_fields(template_id)


@router.post("/derived-fields", response_model=DerivedFieldRead, status_code=status.HTTP_201_CREATED)
def create_derived_field(
    data: DerivedFieldCreate, service: DerivedFieldService = Depends(get_derived_field_service)
) -> DerivedFieldRead:
    return service.create(data)


@router.post("/derived-fields/reconcile", response_model=List[ReconciledField])
def reconcile_derived_fields(
    request: ReconcileRequest, service: DerivedFieldService = Depends(get_derived_field_service)
) -> List[ReconciledField]:
    """Re-check staleness and join coverage of derived fields against a selection."""
    return service.reconcile(request)


@router.get("/derived-fields/{field_id}", response_model=DerivedFieldRead)
def get_derived_field(
    field_id: str, service: DerivedFieldService = Depends(get_derived_field_service)
) -> DerivedFieldRead:
    return service.get_field(field_id)


@router.put("/derived-fields/{field_id}", response_model=DerivedFieldRead)
def update_derived_field(
    field_id: str, data: DerivedFieldUpdate, service: DerivedFieldService = Depends(get_derived_field_service)
) -> DerivedFieldRead:
    return service.update(field_id, data)


@router.delete("/derived-fields/{field_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_derived_field(field_id: str, service: DerivedFieldService = Depends(get_derived_field_service)) -> None:
    service.delete(field_id)


# ===== ANALYSIS =====


@router.post("/joins/analyze", response_model=JoinAnalysisResponse)
def analyze_joins(request: JoinAnalysisRequest) -> JoinAnalysisResponse:
    """Connectivity of the selected models plus join coverage per derived field."""
    analysis = analyze_join_graph(request.models, request.joins)
    join_keys = join_key_set(request.joins)

    coverage = []
    for entry in request.derived_fields:
        field = from_reconcile_input(entry)
        if not field.referenced_models and not field.join_dependencies:
            field = replace(field, referenced_models=effective_referenced_models(field))
        pairs = evaluate_coverage(field, join_keys)
        coverage.append(
            FieldCoverage(
                id=field.id,
                coverage=[pair.to_dict() for pair in pairs],
                satisfied=all(pair.satisfied for pair in pairs),
            )
        )
    return JoinAnalysisResponse(**analysis.to_dict(), coverage=coverage)


@router.post("/filters/compile", response_model=FilterCompileResponse)
def compile_report_filters(
    request: FilterCompileRequest, registry: RegistryDep, settings: SettingsDep
) -> FilterCompileResponse:
    """Dry-run the preview filter compiler."""
    dialect = request.dialect or _warehouse_dialect(settings.data_warehouse_url)
    compilation = compile_filters(
        request.filters, {model_id: model_id for model_id in request.models}, registry, dialect
    )
    return FilterCompileResponse(**compilation.to_dict())


@router.post("/config/build", response_model=ConfigBuildResponse)
def build_config(
    selection: ReportSelection,
    registry: RegistryDep,
    settings: SettingsDep,
    service: DerivedFieldService = Depends(get_derived_field_service),
) -> ConfigBuildResponse:
    """Assemble the canonical QueryConfig for a report builder selection."""
    derived = []
    if selection.derived_field_ids or selection.template_id:
        derived = service.load(selection.derived_field_ids or None, selection.template_id)
    result = build_query_config(selection, derived, registry, settings)
    return ConfigBuildResponse(
        config=result.config,
        visual=result.visual,
        columns=[ColumnOptionRead(**column.to_dict()) for column in available_columns(selection, registry)],
        warnings=result.warnings,
    )


def _warehouse_dialect(url: str) -> str:
    dialect = url.split(":", 1)[0].split("+", 1)[0]
    return "postgresql" if dialect == "postgres" else dialect
