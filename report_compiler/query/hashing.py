# report_compiler/query/hashing.py
"""Stable hashes of JSON-shaped payloads."""

import hashlib
import json
from typing import Any


def canonical_json(payload: Any) -> str:
    """JSON with sorted keys and no insignificant whitespace."""
    return json.dumps(payload, sort_keys=True, separators=(",", ":"), default=str)


def compute_payload_hash(payload: Any) -> str:
    return hashlib.sha256(canonical_json(payload).encode("utf-8")).hexdigest()


def compute_query_hash(config) -> str:
    """Idempotency key of a QueryConfig: identical configs share one job and cache entry."""
    return compute_payload_hash(config.model_dump(mode="json"))
