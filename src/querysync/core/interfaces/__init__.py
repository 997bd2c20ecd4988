"""Core interfaces (Protocol classes) for querysync."""

from querysync.core.interfaces.cache_store import ICacheStore
from querysync.core.interfaces.transport import IResourceTransport, QueryFn
from querysync.core.interfaces.visibility import IVisibilitySignal, VisibilityListener

__all__ = [
    "ICacheStore",
    "IResourceTransport",
    "IVisibilitySignal",
    "QueryFn",
    "VisibilityListener",
]
