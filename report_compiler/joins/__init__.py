"""Join dependency inference and join-graph analysis."""

from .graph import JoinCoverage, JoinGraphAnalysis, analyze_join_graph, evaluate_coverage
from .inference import infer_join_pairs, join_key_set, pair_key
from .schemas import JoinCondition, JoinType

__all__ = [
    "JoinCondition",
    "JoinCoverage",
    "JoinGraphAnalysis",
    "JoinType",
    "analyze_join_graph",
    "evaluate_coverage",
    "infer_join_pairs",
    "join_key_set",
    "pair_key",
]
