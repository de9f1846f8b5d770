# report_compiler/joins/inference.py
"""Which model pairs must be joined for a cross-model expression to be valid."""

from typing import Iterable, List, Set, Tuple

PAIR_SEPARATOR = "::"

ModelPair = Tuple[str, str]


def pair_key(left: str, right: str) -> str:
    """Canonical, order-independent key for an unordered model pair."""
    first, second = sorted((left, right))
    return f"{first}{PAIR_SEPARATOR}{second}"


def infer_join_pairs(referenced_models: Iterable[str]) -> List[ModelPair]:
    """
    All unordered pairs over the deduplicated, sorted referenced models.

    Zero or one referenced model needs no join, so the result is empty.
    """
    models = sorted(set(referenced_models))
    pairs: List[ModelPair] = []
    for index, left in enumerate(models):
        for right in models[index + 1:]:
            pairs.append((left, right))
    return pairs


def join_key_set(joins: Iterable) -> Set[str]:
    """Pair keys of every configured join (objects with left_model/right_model)."""
    keys = set()
    for join in joins:
        if join.left_model and join.right_model and join.left_model != join.right_model:
            keys.add(pair_key(join.left_model, join.right_model))
    return keys
