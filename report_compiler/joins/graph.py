# report_compiler/joins/graph.py
"""
Connectivity analysis of the active model selection.

Components are discovered by breadth-first traversal in the order models
appear in the selection. The first component discovered is primary; every
model outside it is reported as disconnected, whatever the component sizes.
"""

import logging
from collections import deque
from dataclasses import dataclass
from typing import Dict, Iterable, List, Sequence, Set, Tuple

from .inference import ModelPair, infer_join_pairs, pair_key

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class JoinGraphAnalysis:
    degrees: Dict[str, int]
    components: List[List[str]]
    primary_index: int
    disconnected: List[str]

    @property
    def primary_component(self) -> List[str]:
        if not self.components:
            return []
        return self.components[self.primary_index]

    @property
    def is_connected(self) -> bool:
        return not self.disconnected

    def to_dict(self) -> dict:
        return {
            "degrees": dict(self.degrees),
            "components": [list(component) for component in self.components],
            "primary_index": self.primary_index,
            "disconnected": list(self.disconnected),
        }


@dataclass(frozen=True)
class JoinCoverage:
    pair: ModelPair
    satisfied: bool

    def to_dict(self) -> dict:
        return {"pair": list(self.pair), "satisfied": self.satisfied}


def analyze_join_graph(model_ids: Sequence[str], joins: Iterable) -> JoinGraphAnalysis:
    """
    Build the undirected adjacency of the selection and split it into components.

    ``joins`` are objects exposing ``left_model`` and ``right_model``. Joins that
    touch a model outside the selection, or join a model to itself, add no edge.
    """
    ordered: List[str] = []
    for model_id in model_ids:
        if model_id not in ordered:
            ordered.append(model_id)
    selected = set(ordered)

    adjacency: Dict[str, List[str]] = {model_id: [] for model_id in ordered}
    degrees: Dict[str, int] = {model_id: 0 for model_id in ordered}
    for join in joins:
        left, right = join.left_model, join.right_model
        if left not in selected or right not in selected or left == right:
            continue
        degrees[left] += 1
        degrees[right] += 1
        if right not in adjacency[left]:
            adjacency[left].append(right)
        if left not in adjacency[right]:
            adjacency[right].append(left)

    visited: Set[str] = set()
    components: List[List[str]] = []
    for start in ordered:
        if start in visited:
            continue
        component = []
        queue = deque([start])
        visited.add(start)
        while queue:
            current = queue.popleft()
            component.append(current)
            for neighbour in adjacency[current]:
                if neighbour not in visited:
                    visited.add(neighbour)
                    queue.append(neighbour)
        components.append(component)

    primary_index = 0
    primary = set(components[primary_index]) if components else set()
    disconnected = [model_id for model_id in ordered if model_id not in primary]
    if disconnected:
        logger.debug("Models not reachable from %s: %s", ordered[0], disconnected)

    return JoinGraphAnalysis(
        degrees=degrees,
        components=components,
        primary_index=primary_index,
        disconnected=disconnected,
    )


def evaluate_coverage(field, join_keys: Set[str]) -> List[JoinCoverage]:
    """
    Check each join dependency of a derived field against the active joins.

    Stored dependencies are used when present, otherwise they are inferred
    from the field's referenced models.
    """
    pairs: Sequence[Tuple[str, str]] = list(field.join_dependencies or ())
    if not pairs:
        pairs = infer_join_pairs(field.referenced_models or ())
    return [JoinCoverage(pair=tuple(pair), satisfied=pair_key(*pair) in join_keys) for pair in pairs]
