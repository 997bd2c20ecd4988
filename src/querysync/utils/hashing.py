"""Hashing and normalization utilities for query keys and payloads."""

import hashlib
import json
from collections.abc import Mapping
from typing import Any


def hash_value(value: Any) -> str:
    """Create a deterministic hash of a value.

    Used to fingerprint fetched payloads so unchanged poll results can be
    detected cheaply.

    Args:
        value: Any JSON-serializable value.

    Returns:
        A hexadecimal hash string (first 16 chars of SHA-256).
    """
    if value is None:
        return "none"

    # Normalize to JSON with sorted keys for determinism
    normalized = json.dumps(value, sort_keys=True, default=str)
    return hashlib.sha256(normalized.encode()).hexdigest()[:16]


def freeze(value: Any) -> Any:
    """Convert a value into an equivalent hashable form.

    Mappings become tuples of sorted ``(key, value)`` pairs so that two
    maps with the same content compare equal regardless of insertion
    order. Lists, tuples and sets become tuples.

    Args:
        value: The value to freeze.

    Returns:
        A hashable representation of ``value``.
    """
    if isinstance(value, Mapping):
        return tuple(sorted((str(k), freeze(v)) for k, v in value.items()))
    if isinstance(value, (set, frozenset)):
        return tuple(sorted((freeze(v) for v in value), key=repr))
    if isinstance(value, (list, tuple)):
        return tuple(freeze(v) for v in value)
    return value
