# report_compiler/expressions/nodes.py
"""AST node types for derived-field expressions and their JSON form."""

import math
from dataclasses import dataclass
from typing import Any, Dict, Tuple, Union

BINARY_OPERATORS = frozenset({"+", "-", "*", "/"})
UNARY_OPERATORS = frozenset({"+", "-"})
ALLOWED_FUNCTIONS = frozenset({"abs", "ceil", "coalesce", "floor", "greatest", "least", "round"})


@dataclass(frozen=True)
class ColumnRef:
    model_id: str
    field_id: str

    def to_dict(self) -> Dict[str, Any]:
        return {"type": "column", "model_id": self.model_id, "field_id": self.field_id}


@dataclass(frozen=True)
class Literal:
    value: Union[int, float, str, bool]
    value_type: str  # number | string | boolean

    def to_dict(self) -> Dict[str, Any]:
        return {"type": "literal", "value": self.value, "value_type": self.value_type}


@dataclass(frozen=True)
class BinaryOp:
    operator: str
    left: "Node"
    right: "Node"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "type": "binary",
            "operator": self.operator,
            "left": self.left.to_dict(),
            "right": self.right.to_dict(),
        }


@dataclass(frozen=True)
class UnaryOp:
    operator: str
    operand: "Node"

    def to_dict(self) -> Dict[str, Any]:
        return {"type": "unary", "operator": self.operator, "argument": self.operand.to_dict()}


@dataclass(frozen=True)
class FunctionCall:
    name: str
    args: Tuple["Node", ...]

    def to_dict(self) -> Dict[str, Any]:
        return {"type": "function", "name": self.name, "args": [arg.to_dict() for arg in self.args]}


Node = Union[ColumnRef, Literal, BinaryOp, UnaryOp, FunctionCall]


def _text(value: Any) -> str:
    return value.strip() if isinstance(value, str) else ""


def node_from_dict(payload: Any) -> Node:
    """
    Rebuild an AST from its JSON form.

    Raises:
        ValueError: if the payload is not a well-formed expression tree.
    """
    if not isinstance(payload, dict):
        raise ValueError("Expression node must be an object")

    node_type = payload.get("type")
    if node_type == "column":
        model_id = _text(payload.get("model_id"))
        field_id = _text(payload.get("field_id"))
        if not model_id or not field_id:
            raise ValueError("Column node requires model_id and field_id")
        return ColumnRef(model_id, field_id)

    if node_type == "literal":
        value = payload.get("value")
        value_type = payload.get("value_type")
        if value_type == "number" and isinstance(value, (int, float)) and not isinstance(value, bool):
            if not math.isfinite(value):
                raise ValueError("Numeric literal must be finite")
            return Literal(value, "number")
        if value_type == "string" and isinstance(value, str):
            return Literal(value, "string")
        if value_type == "boolean" and isinstance(value, bool):
            return Literal(value, "boolean")
        raise ValueError(f"Invalid literal of type {value_type!r}")

    if node_type == "binary":
        operator = payload.get("operator")
        if operator not in BINARY_OPERATORS:
            raise ValueError(f"Unsupported binary operator {operator!r}")
        return BinaryOp(operator, node_from_dict(payload.get("left")), node_from_dict(payload.get("right")))

    if node_type == "unary":
        operator = payload.get("operator")
        if operator not in UNARY_OPERATORS:
            raise ValueError(f"Unsupported unary operator {operator!r}")
        return UnaryOp(operator, node_from_dict(payload.get("argument")))

    if node_type == "function":
        name = _text(payload.get("name")).lower()
        if name not in ALLOWED_FUNCTIONS:
            raise ValueError(f"Unsupported function {name!r}")
        raw_args = payload.get("args")
        if raw_args is None:
            raw_args = []
        if not isinstance(raw_args, list):
            raise ValueError("Function args must be a list")
        return FunctionCall(name, tuple(node_from_dict(arg) for arg in raw_args))

    raise ValueError(f"Unknown expression node type {node_type!r}")


def iter_columns(node: Node):
    """Yield every column reference in the tree, left to right."""
    if isinstance(node, ColumnRef):
        yield node
    elif isinstance(node, BinaryOp):
        yield from iter_columns(node.left)
        yield from iter_columns(node.right)
    elif isinstance(node, UnaryOp):
        yield from iter_columns(node.operand)
    elif isinstance(node, FunctionCall):
        for arg in node.args:
            yield from iter_columns(arg)
