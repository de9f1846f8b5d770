# report_compiler/expressions/extraction.py
"""Permissive reference extraction and JSON AST normalization."""

import re
from dataclasses import dataclass
from typing import Any, Dict, FrozenSet, List, Optional, Tuple

from report_compiler.joins.inference import infer_join_pairs

from .nodes import Node, node_from_dict
from .parser import collect_references

_REFERENCE_RE = re.compile(r"(?<![\w.])([A-Za-z_][A-Za-z0-9_]*)\s*\.\s*([A-Za-z_][A-Za-z0-9_]*)")
_QUOTED_RE = re.compile(r"'(?:[^'\\]|\\.)*'|\"(?:[^\"\\]|\\.)*\"")


def extract_model_references(expression: str) -> FrozenSet[str]:
    """
    Regex scan for ``model.field`` tokens.

    Used only when strict parsing of a previously saved expression fails, so a
    legacy expression still reports which models it depends on.
    """
    if not expression:
        return frozenset()
    unquoted = _QUOTED_RE.sub(" ", expression)
    return frozenset(match.group(1) for match in _REFERENCE_RE.finditer(unquoted))


@dataclass(frozen=True)
class NormalizedAst:
    ast: Node
    referenced_models: FrozenSet[str]
    referenced_fields: Dict[str, List[str]]
    join_dependencies: List[Tuple[str, str]]


def normalize_ast(payload: Any) -> Optional[NormalizedAst]:
    """Validate a client-supplied JSON AST; ``None`` when it is malformed."""
    try:
        ast = node_from_dict(payload)
    except ValueError:
        return None
    models, fields = collect_references(ast)
    return NormalizedAst(
        ast=ast,
        referenced_models=models,
        referenced_fields={model: sorted(ids) for model, ids in sorted(fields.items())},
        join_dependencies=infer_join_pairs(models),
    )
