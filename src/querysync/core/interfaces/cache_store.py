"""Cache store interface."""

from collections.abc import Callable, Iterable
from datetime import datetime
from typing import Any, Protocol

from querysync.core.entities.cache_entry import CacheEntry, CacheSnapshot
from querysync.core.entities.cache_key import KeyLike, QueryKey


class ICacheStore(Protocol):
    """Contract for the single writable source of truth of cached data.

    All methods are synchronous and never raise for absent or stale
    entries; absence and staleness are represented as data state.
    """

    def now(self) -> datetime:
        """Return the store's current time."""
        ...

    def get(self, key: QueryKey) -> CacheEntry | None:
        """Retrieve the entry for ``key``, or None if it was never created."""
        ...

    def set(self, key: QueryKey, data: Any, stale: bool = False) -> CacheEntry:
        """Store a successful fetch result.

        Args:
            key: The query key.
            data: The fetched data.
            stale: Store the data but mark it stale immediately.

        Returns:
            The new entry.
        """
        ...

    def patch(self, key: QueryKey, updater: Callable[[Any], Any]) -> bool:
        """Apply a pure, synchronous transformation to cached data.

        Returns:
            True if an entry with data existed and was patched.
        """
        ...

    def invalidate(self, key_or_pattern: KeyLike) -> int:
        """Mark every matching entry stale without clearing its data.

        Returns:
            Number of entries invalidated.
        """
        ...

    def is_stale(self, key: QueryKey, now: datetime | None = None) -> bool:
        """Check if ``key`` is absent, never fetched, or past ``stale_after``."""
        ...

    def mark_fetching(self, key: QueryKey) -> CacheEntry:
        """Record that a fetch for ``key`` started."""
        ...

    def mark_error(self, key: QueryKey, error: BaseException) -> CacheEntry:
        """Record a failed fetch, keeping the last good data."""
        ...

    def mark_cancelled(self, key: QueryKey) -> CacheEntry | None:
        """Record that a fetch for ``key`` was cancelled."""
        ...

    def snapshot(self, keys: Iterable[QueryKey]) -> CacheSnapshot:
        """Capture entry state for rollback."""
        ...

    def restore(self, snapshot: CacheSnapshot) -> None:
        """Restore entry state captured by ``snapshot``."""
        ...

    def keys(self) -> list[QueryKey]:
        """Return the keys of all entries."""
        ...

    def clear(self) -> None:
        """Drop every entry (full context reset)."""
        ...
