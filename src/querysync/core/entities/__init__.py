"""Domain entities for querysync."""

from querysync.core.entities.cache_entry import CacheEntry, CacheSnapshot, EntryStatus
from querysync.core.entities.cache_key import (
    ANY,
    KeyLike,
    KeyPattern,
    QueryKey,
    as_pattern,
    make_key,
)
from querysync.core.entities.mutation import Mutation, MutationState
from querysync.core.entities.sync_config import ConflictPolicy, RetryPolicy, SyncConfig

__all__ = [
    "ANY",
    "CacheEntry",
    "CacheSnapshot",
    "EntryStatus",
    "KeyLike",
    "KeyPattern",
    "QueryKey",
    "as_pattern",
    "make_key",
    "Mutation",
    "MutationState",
    "ConflictPolicy",
    "RetryPolicy",
    "SyncConfig",
]
