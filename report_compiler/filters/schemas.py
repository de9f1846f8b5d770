# report_compiler/filters/schemas.py
"""Filter descriptors as submitted by the report builder."""

from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, field_validator

from .operators import FilterOperator, RightOperandType, ValueKind


class FieldRef(BaseModel):
    """A (model, field) reference."""

    model_id: str
    field_id: str

    model_config = ConfigDict(extra="forbid", frozen=True)

    @property
    def path(self) -> str:
        return f"{self.model_id}.{self.field_id}"


class ReportFilter(BaseModel):
    """
    A typed predicate: left field, operator, and a literal or a second field.

    Semantic checks (operator/type fit, value coercion) happen in the clause
    compiler so that every problem is reported in one pass.
    """

    id: Optional[str] = None
    left: FieldRef
    operator: FilterOperator
    right_type: RightOperandType = RightOperandType.VALUE
    value: Optional[str] = None
    right: Optional[FieldRef] = None
    value_kind: ValueKind = ValueKind.STRING

    model_config = ConfigDict(extra="forbid", frozen=True)

    @field_validator("value", mode="before")
    @classmethod
    def stringify_value(cls, v: Any) -> Optional[str]:
        if v is None or isinstance(v, str):
            return v
        if isinstance(v, bool):
            return "true" if v else "false"
        if isinstance(v, (int, float)):
            return str(v)
        raise ValueError("Filter value must be a string, number or boolean")
