"""Derived-field expression language."""

from .extraction import NormalizedAst, extract_model_references, normalize_ast
from .nodes import ALLOWED_FUNCTIONS, BinaryOp, ColumnRef, FunctionCall, Literal, Node, UnaryOp, node_from_dict
from .parser import ParsedExpression, parse, tokenize, try_parse

__all__ = [
    "ALLOWED_FUNCTIONS",
    "BinaryOp",
    "ColumnRef",
    "FunctionCall",
    "Literal",
    "Node",
    "NormalizedAst",
    "ParsedExpression",
    "UnaryOp",
    "extract_model_references",
    "node_from_dict",
    "normalize_ast",
    "parse",
    "tokenize",
    "try_parse",
]
