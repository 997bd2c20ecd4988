"""Infrastructure layer implementations for querysync."""

from querysync.infrastructure.stores import InMemoryCacheStore
from querysync.infrastructure.transports import HttpResourceTransport, InMemoryTransport
from querysync.infrastructure.visibility import ManualVisibility

__all__ = [
    "InMemoryCacheStore",
    "HttpResourceTransport",
    "InMemoryTransport",
    "ManualVisibility",
]
