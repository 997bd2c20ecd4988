"""Core domain layer for querysync."""

from querysync.core.entities import CacheEntry, KeyPattern, QueryKey, SyncConfig
from querysync.core.errors import (
    NetworkError,
    ServerError,
    StaleWriteConflict,
    SyncError,
    TransportError,
    ValidationError,
)
from querysync.core.interfaces import ICacheStore, IResourceTransport, IVisibilitySignal
from querysync.core.services import (
    Fetcher,
    KeyRegistry,
    MutationDispatcher,
    PollScheduler,
    SubscriberRegistry,
)

__all__ = [
    # Entities
    "CacheEntry",
    "KeyPattern",
    "QueryKey",
    "SyncConfig",
    # Errors
    "SyncError",
    "TransportError",
    "NetworkError",
    "ServerError",
    "ValidationError",
    "StaleWriteConflict",
    # Interfaces
    "ICacheStore",
    "IResourceTransport",
    "IVisibilitySignal",
    # Services
    "Fetcher",
    "KeyRegistry",
    "MutationDispatcher",
    "PollScheduler",
    "SubscriberRegistry",
]
