"""Cache store implementations."""

from querysync.infrastructure.stores.memory import InMemoryCacheStore

__all__ = ["InMemoryCacheStore"]
