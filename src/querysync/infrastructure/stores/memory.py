"""In-memory cache store implementation."""

import copy
import logging
from collections.abc import Callable, Iterable, Iterator
from dataclasses import replace
from datetime import datetime, timezone
from typing import Any

from querysync.core.entities.cache_entry import CacheEntry, CacheSnapshot, EntryStatus
from querysync.core.entities.cache_key import KeyLike, QueryKey
from querysync.core.entities.sync_config import SyncConfig

logger = logging.getLogger(__name__)

Clock = Callable[[], datetime]


def utc_now() -> datetime:
    """Default clock."""
    return datetime.now(timezone.utc)


def _fetched_since(current: CacheEntry, saved: CacheEntry) -> bool:
    if current.fetched_at is None:
        return False
    return saved.fetched_at is None or current.fetched_at > saved.fetched_at


class InMemoryCacheStore:
    """Memory-resident cache store.

    Entries are never evicted: invalidation only marks them stale and a
    dormant entry keeps its data until ``clear()``. Entries are frozen
    and replaced on every change.
    """

    def __init__(
        self,
        config: SyncConfig | None = None,
        clock: Clock | None = None,
    ) -> None:
        """Initialize the in-memory cache store.

        Args:
            config: Sync configuration used to resolve per-key TTLs.
            clock: Callable returning the current aware datetime.
        """
        self._config = config or SyncConfig()
        self._clock = clock or utc_now
        self._entries: dict[QueryKey, CacheEntry] = {}

    def now(self) -> datetime:
        """Return the store's current time."""
        return self._clock()

    def get(self, key: QueryKey) -> CacheEntry | None:
        """Retrieve the entry for ``key``, or None if it was never created."""
        return self._entries.get(key)

    def set(self, key: QueryKey, data: Any, stale: bool = False) -> CacheEntry:
        """Store a successful fetch result.

        Sets ``status=success``, ``fetched_at=now`` and
        ``stale_after=now + ttl(key)``.

        Args:
            key: The query key.
            data: The fetched data.
            stale: Store the data but mark it stale immediately. Used when
                an invalidation landed while the fetch was in flight.

        Returns:
            The new entry.
        """
        now = self.now()
        current = self._entries.get(key) or CacheEntry.create(key)
        entry = replace(
            current,
            data=data,
            fetched_at=now,
            stale_after=now if stale else now + self._config.ttl_for(key),
            status=EntryStatus.SUCCESS,
            error=None,
            is_fetching=False,
        )
        self._entries[key] = entry
        return entry

    def patch(self, key: QueryKey, updater: Callable[[Any], Any]) -> bool:
        """Apply a pure, synchronous transformation to cached data.

        No-op if the entry is absent or has never received data.

        Args:
            key: The query key.
            updater: Function from current data to new data.

        Returns:
            True if the entry was patched.
        """
        entry = self._entries.get(key)
        if entry is None or not entry.has_data:
            return False
        self._entries[key] = replace(entry, data=updater(entry.data))
        return True

    def invalidate(self, key_or_pattern: KeyLike) -> int:
        """Mark every matching entry stale.

        Sets ``stale_after = now`` (never earlier than ``fetched_at``) and
        bumps the entry generation. Data is never cleared.

        Args:
            key_or_pattern: An exact key or a pattern.

        Returns:
            Number of entries invalidated.
        """
        now = self.now()
        count = 0
        for key in list(self._matching(key_or_pattern)):
            entry = self._entries[key]
            stale_after = entry.stale_after
            if entry.fetched_at is not None:
                stale_after = max(now, entry.fetched_at)
            self._entries[key] = replace(
                entry,
                stale_after=stale_after,
                generation=entry.generation + 1,
            )
            count += 1
        return count

    def is_stale(self, key: QueryKey, now: datetime | None = None) -> bool:
        """Check if ``key`` is absent, never fetched, or past ``stale_after``."""
        entry = self._entries.get(key)
        if entry is None:
            return True
        return entry.is_stale_at(now or self.now())

    def mark_fetching(self, key: QueryKey) -> CacheEntry:
        """Record that a fetch started.

        An entry without data moves to LOADING; an entry with data keeps
        its status and data and only raises ``is_fetching``.
        """
        current = self._entries.get(key) or CacheEntry.create(key)
        status = current.status if current.has_data else EntryStatus.LOADING
        entry = replace(current, status=status, is_fetching=True)
        self._entries[key] = entry
        return entry

    def mark_error(self, key: QueryKey, error: BaseException) -> CacheEntry:
        """Record a failed fetch, keeping the last good data and fetch time."""
        current = self._entries.get(key) or CacheEntry.create(key)
        entry = replace(
            current,
            status=EntryStatus.ERROR,
            error=error,
            is_fetching=False,
        )
        self._entries[key] = entry
        return entry

    def mark_cancelled(self, key: QueryKey) -> CacheEntry | None:
        """Record that a fetch was cancelled before it settled."""
        current = self._entries.get(key)
        if current is None:
            return None
        status = EntryStatus.IDLE if current.status == EntryStatus.LOADING else current.status
        entry = replace(current, status=status, is_fetching=False)
        self._entries[key] = entry
        return entry

    def snapshot(self, keys: Iterable[QueryKey]) -> CacheSnapshot:
        """Capture entry state of ``keys`` for rollback."""
        return CacheSnapshot.capture(
            {key: self._entries.get(key) for key in keys},
            taken_at=self.now(),
        )

    def restore(self, snapshot: CacheSnapshot) -> None:
        """Restore entry state captured by ``snapshot``.

        Captured fields are restored exactly; keys that had no entry at
        capture time are left alone. The live ``is_fetching``
        flag and ``generation`` are kept so in-flight fetches still see
        invalidations that happened in between.

        An entry refreshed from the server after the snapshot was taken
        is kept as is: a fetch replaces optimistic data, so there is
        nothing to undo and the older snapshot would hide newer rows.
        """
        for key, saved in snapshot.entries.items():
            current = self._entries.get(key)
            if saved is None:
                # patch() never creates entries, so there is nothing to undo
                continue
            if current is not None and _fetched_since(current, saved):
                logger.debug("Keeping %s, refetched since the snapshot", key)
                continue
            restored = replace(saved, data=copy.deepcopy(saved.data))
            if current is not None:
                restored = replace(
                    restored,
                    is_fetching=current.is_fetching,
                    generation=max(current.generation, saved.generation),
                )
            self._entries[key] = restored
        logger.debug("Restored %d cache entries", len(snapshot.entries))

    def keys(self) -> list[QueryKey]:
        """Return the keys of all entries."""
        return list(self._entries)

    def clear(self) -> None:
        """Drop every entry."""
        self._entries.clear()

    def _matching(self, key_or_pattern: KeyLike) -> Iterator[QueryKey]:
        if isinstance(key_or_pattern, QueryKey):
            if key_or_pattern in self._entries:
                yield key_or_pattern
            return
        for key in self._entries:
            if key_or_pattern.matches(key):
                yield key

    def __len__(self) -> int:
        """Return the number of entries in the store."""
        return len(self._entries)

    def __contains__(self, key: object) -> bool:
        return key in self._entries
