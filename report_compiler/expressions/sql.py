# report_compiler/expressions/sql.py
"""Render a derived-field AST as a SQLAlchemy column expression."""

from typing import Callable

from sqlalchemy import func, literal
from sqlalchemy.sql.elements import ColumnElement

from .nodes import BinaryOp, ColumnRef, FunctionCall, Literal, Node, UnaryOp

ColumnResolver = Callable[[ColumnRef], ColumnElement]

# SQLite spells the multi-argument greatest/least as scalar max/min.
_SQLITE_FUNCTIONS = {"greatest": "max", "least": "min"}


def compile_expression(node: Node, resolve_column: ColumnResolver, dialect: str = "postgresql") -> ColumnElement:
    """
    Args:
        node: Parsed expression tree.
        resolve_column: Maps a column reference to a column of the FROM clause.
        dialect: SQLAlchemy dialect name of the target database.
    """
    if isinstance(node, ColumnRef):
        return resolve_column(node)

    if isinstance(node, Literal):
        return literal(node.value)

    if isinstance(node, UnaryOp):
        operand = compile_expression(node.operand, resolve_column, dialect)
        return -operand if node.operator == "-" else operand

    if isinstance(node, BinaryOp):
        left = compile_expression(node.left, resolve_column, dialect)
        right = compile_expression(node.right, resolve_column, dialect)
        if node.operator == "+":
            return left + right
        if node.operator == "-":
            return left - right
        if node.operator == "*":
            return left * right
        # x / 0 yields NULL rather than a database error
        return left / func.nullif(right, 0)

    if isinstance(node, FunctionCall):
        args = [compile_expression(arg, resolve_column, dialect) for arg in node.args]
        name = node.name
        if dialect == "sqlite":
            name = _SQLITE_FUNCTIONS.get(name, name)
        return getattr(func, name)(*args)

    raise TypeError(f"Unsupported expression node {type(node).__name__}")
