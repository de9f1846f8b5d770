# report_compiler/core/dependencies.py
"""FastAPI dependencies shared by the routers."""

from typing import Annotated

from fastapi import Depends
from sqlalchemy.orm import Session

from report_compiler.core.config import Settings, get_settings
from report_compiler.core.database import get_db, get_dw_db
from report_compiler.schema_registry.registry import SchemaRegistry, get_schema_registry

# Core database dependencies
SessionDep = Annotated[Session, Depends(get_db)]
DWSessionDep = Annotated[Session, Depends(get_dw_db)]
RegistryDep = Annotated[SchemaRegistry, Depends(get_schema_registry)]
SettingsDep = Annotated[Settings, Depends(get_settings)]


def get_derived_field_service(config_db: SessionDep, registry: RegistryDep):
    """Derived-field definitions over the config database."""
    from report_compiler.derived_fields.dao import DerivedFieldDAO
    from report_compiler.derived_fields.service import DerivedFieldService

    return DerivedFieldService(DerivedFieldDAO(config_db), registry)


def get_execution_service(config_db: SessionDep, dw_db: DWSessionDep, registry: RegistryDep, settings: SettingsDep):
    """Query execution with both databases."""
    from report_compiler.execution.service import QueryExecutionService

    return QueryExecutionService(config_db, dw_db, registry, settings)
