# report_compiler/derived_fields/models.py
"""Persisted derived-field definitions."""

import uuid
from datetime import datetime
from typing import Any, Dict, List, Optional

from sqlalchemy import JSON, DateTime, Enum as SQLEnum, String, Text
from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy.sql import func

from report_compiler.core.database import Base

from .schemas import DerivedFieldKind, DerivedFieldScope


def _new_id() -> str:
    return str(uuid.uuid4())


class DerivedFieldDefinition(Base):
    """
    A saved derived field.

    The parsed AST, references and join dependencies are stored alongside the
    expression text so reconciliation and coverage checks never need to
    re-parse a saved field.
    """

    __tablename__ = "report_derived_fields"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    template_id: Mapped[Optional[str]] = mapped_column(String(64), nullable=True, index=True)
    scope: Mapped[DerivedFieldScope] = mapped_column(
        SQLEnum(DerivedFieldScope), nullable=False, default=DerivedFieldScope.TEMPLATE
    )
    name: Mapped[str] = mapped_column(String(120), nullable=False)
    expression: Mapped[str] = mapped_column(Text, nullable=False)
    kind: Mapped[DerivedFieldKind] = mapped_column(
        SQLEnum(DerivedFieldKind), nullable=False, default=DerivedFieldKind.ROW
    )

    expression_ast: Mapped[Optional[Dict[str, Any]]] = mapped_column(JSON, nullable=True)
    referenced_models: Mapped[List[str]] = mapped_column(JSON, nullable=False, default=list)
    referenced_fields: Mapped[Dict[str, List[str]]] = mapped_column(JSON, nullable=False, default=dict)
    join_dependencies: Mapped[List[List[str]]] = mapped_column(JSON, nullable=False, default=list)
    model_graph_signature: Mapped[Optional[str]] = mapped_column(String(128), nullable=True)
    compiled_sql_hash: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    # "metadata" is reserved on declarative classes
    field_metadata: Mapped[Optional[Dict[str, Any]]] = mapped_column("metadata", JSON, nullable=True)

    created_by: Mapped[str] = mapped_column(String(100), nullable=False, default="system")
    updated_by: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, nullable=False, server_default=func.now(), onupdate=func.now()
    )

    def __repr__(self):
        return f"<DerivedFieldDefinition(id={self.id!r}, name={self.name!r})>"
