# report_compiler/derived_fields/schemas.py
"""Derived field domain type and the API schemas for derived-field definitions."""

import logging
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, FrozenSet, List, Optional, Tuple

from pydantic import BaseModel, ConfigDict, field_validator

from report_compiler.expressions.nodes import Node
from report_compiler.expressions.parser import parse
from report_compiler.joins.inference import ModelPair, infer_join_pairs
from report_compiler.joins.schemas import JoinCondition

logger = logging.getLogger(__name__)


class DerivedFieldKind(str, Enum):
    ROW = "row"
    AGGREGATE = "aggregate"


class DerivedFieldScope(str, Enum):
    TEMPLATE = "template"
    WORKSPACE = "workspace"


class DerivedFieldStatus(str, Enum):
    ACTIVE = "active"
    STALE = "stale"


@dataclass(frozen=True)
class DerivedField:
    """
    A named expression computing an extra output column.

    Instances are immutable; staleness reconciliation returns copies with an
    updated ``status`` and never touches the expression.
    """

    id: str
    name: str
    expression: str
    kind: DerivedFieldKind = DerivedFieldKind.ROW
    scope: DerivedFieldScope = DerivedFieldScope.TEMPLATE
    ast: Optional[Node] = None
    referenced_models: FrozenSet[str] = frozenset()
    referenced_fields: Dict[str, FrozenSet[str]] = field(default_factory=dict)
    join_dependencies: Tuple[ModelPair, ...] = ()
    status: DerivedFieldStatus = DerivedFieldStatus.ACTIVE
    visible: bool = True
    model_graph_signature: Optional[str] = None
    compiled_sql_hash: Optional[str] = None
    template_id: Optional[str] = None

    @property
    def is_stale(self) -> bool:
        return self.status == DerivedFieldStatus.STALE

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "expression": self.expression,
            "kind": self.kind.value,
            "scope": self.scope.value,
            "expression_ast": self.ast.to_dict() if self.ast is not None else None,
            "referenced_models": sorted(self.referenced_models),
            "referenced_fields": {
                model: sorted(fields) for model, fields in sorted(self.referenced_fields.items())
            },
            "join_dependencies": [list(pair) for pair in self.join_dependencies],
            "status": self.status.value,
            "visible": self.visible,
            "model_graph_signature": self.model_graph_signature,
            "compiled_sql_hash": self.compiled_sql_hash,
            "template_id": self.template_id,
        }


def build_derived_field(
    id: str,
    name: str,
    expression: str,
    kind: DerivedFieldKind = DerivedFieldKind.ROW,
    scope: DerivedFieldScope = DerivedFieldScope.TEMPLATE,
    **extra: Any,
) -> DerivedField:
    """
    Parse ``expression`` and create a field with its references and join
    dependencies pre-populated.

    Raises:
        ExpressionSyntaxError: if the expression does not parse.
    """
    parsed = parse(expression)
    return DerivedField(
        id=id,
        name=name,
        expression=expression,
        kind=DerivedFieldKind(kind),
        scope=DerivedFieldScope(scope),
        ast=parsed.ast,
        referenced_models=parsed.referenced_models,
        referenced_fields=dict(parsed.referenced_fields),
        join_dependencies=tuple(infer_join_pairs(parsed.referenced_models)),
        **extra,
    )


# ===== API SCHEMAS =====


class DerivedFieldBase(BaseModel):
    name: str
    expression: str
    kind: DerivedFieldKind = DerivedFieldKind.ROW
    scope: DerivedFieldScope = DerivedFieldScope.TEMPLATE
    template_id: Optional[str] = None
    expression_ast: Optional[Dict[str, Any]] = None
    model_graph_signature: Optional[str] = None
    metadata: Optional[Dict[str, Any]] = None

    model_config = ConfigDict(extra="forbid")

    @field_validator("name", "expression")
    @classmethod
    def not_blank(cls, v: str) -> str:
        if not v or not v.strip():
            raise ValueError("Value cannot be empty")
        return v.strip()


class DerivedFieldCreate(DerivedFieldBase):
    pass


class DerivedFieldUpdate(BaseModel):
    name: Optional[str] = None
    expression: Optional[str] = None
    kind: Optional[DerivedFieldKind] = None
    scope: Optional[DerivedFieldScope] = None
    expression_ast: Optional[Dict[str, Any]] = None
    model_graph_signature: Optional[str] = None
    metadata: Optional[Dict[str, Any]] = None

    model_config = ConfigDict(extra="forbid")

    @field_validator("name", "expression")
    @classmethod
    def not_blank(cls, v: Optional[str]) -> Optional[str]:
        if v is not None and not v.strip():
            raise ValueError("Value cannot be empty")
        return v.strip() if v is not None else v


class DerivedFieldRead(BaseModel):
    id: str
    template_id: Optional[str] = None
    name: str
    expression: str
    kind: DerivedFieldKind
    scope: DerivedFieldScope
    expression_ast: Optional[Dict[str, Any]] = None
    referenced_models: List[str] = []
    referenced_fields: Dict[str, List[str]] = {}
    join_dependencies: List[Tuple[str, str]] = []
    model_graph_signature: Optional[str] = None
    compiled_sql_hash: Optional[str] = None
    metadata: Optional[Dict[str, Any]] = None
    created_by: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)


class ReconcileFieldInput(BaseModel):
    """A derived field as the report builder currently holds it."""

    id: str
    name: str = ""
    expression: str
    kind: DerivedFieldKind = DerivedFieldKind.ROW
    referenced_models: List[str] = []
    join_dependencies: List[Tuple[str, str]] = []
    status: DerivedFieldStatus = DerivedFieldStatus.ACTIVE
    visible: bool = True

    model_config = ConfigDict(extra="forbid")


class ReconcileRequest(BaseModel):
    models: List[str]
    joins: List[JoinCondition] = []
    field_ids: Optional[List[str]] = None
    template_id: Optional[str] = None
    fields: List[ReconcileFieldInput] = []

    model_config = ConfigDict(extra="forbid")


class ReconciledField(BaseModel):
    id: str
    status: DerivedFieldStatus
    changed: bool
    referenced_models: List[str]
    coverage: List[Dict[str, Any]]
