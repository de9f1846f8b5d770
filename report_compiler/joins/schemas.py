# report_compiler/joins/schemas.py
"""Join conditions between two (model, field) references."""

from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, model_validator


class JoinType(str, Enum):
    INNER = "inner"
    LEFT = "left"
    RIGHT = "right"
    FULL = "full"


class JoinCondition(BaseModel):
    """``left_model.left_field = right_model.right_field`` with a join kind."""

    id: Optional[str] = None
    left_model: str
    left_field: str
    right_model: str
    right_field: str
    join_type: JoinType = JoinType.INNER
    description: Optional[str] = None

    model_config = ConfigDict(extra="forbid", frozen=True)

    @model_validator(mode="after")
    def distinct_models(self) -> "JoinCondition":
        if self.left_model == self.right_model:
            raise ValueError("A join must connect two different models")
        return self
