"""Cache entry entity."""

import copy
from collections.abc import Mapping
from dataclasses import dataclass, field, replace
from datetime import datetime
from enum import Enum
from typing import Any

from querysync.core.entities.cache_key import QueryKey


class EntryStatus(Enum):
    """Lifecycle status of a cache entry.

    IDLE: Never fetched (or a first fetch was cancelled).
    LOADING: First fetch in flight, no data yet.
    SUCCESS: Last fetch succeeded.
    ERROR: Last fetch failed; earlier data, if any, is kept.
    """

    IDLE = "idle"
    LOADING = "loading"
    SUCCESS = "success"
    ERROR = "error"


@dataclass(frozen=True)
class CacheEntry:
    """Immutable cache entry value object.

    The store replaces entries instead of mutating them, so a reference
    handed out by ``get()`` never changes under the caller.

    Invariant: ``stale_after >= fetched_at`` whenever both are set.
    ``generation`` is bumped on every invalidation and lets a fetch that
    started before an invalidation recognise that its result is already
    outdated.
    """

    key: QueryKey
    data: Any = None
    fetched_at: datetime | None = None
    stale_after: datetime | None = None
    status: EntryStatus = EntryStatus.IDLE
    error: BaseException | None = None
    is_fetching: bool = False
    generation: int = 0

    @property
    def has_data(self) -> bool:
        """Check if the entry ever received a successful fetch."""
        return self.fetched_at is not None

    def is_stale_at(self, now: datetime) -> bool:
        """Check if the entry is stale at ``now``.

        Args:
            now: The reference time.

        Returns:
            True if never fetched or ``now`` has reached ``stale_after``.
        """
        if self.fetched_at is None or self.stale_after is None:
            return True
        return now >= self.stale_after

    @classmethod
    def create(cls, key: QueryKey) -> "CacheEntry":
        """Factory for an entry that was never fetched."""
        return cls(key=key)


@dataclass(frozen=True)
class CacheSnapshot:
    """Captured state of a set of entries, used for optimistic rollback.

    ``None`` marks a key that had no entry when the snapshot was taken.
    """

    entries: Mapping[QueryKey, CacheEntry | None] = field(default_factory=dict)
    taken_at: datetime | None = None

    @property
    def keys(self) -> tuple[QueryKey, ...]:
        return tuple(self.entries)

    @classmethod
    def capture(
        cls,
        entries: Mapping[QueryKey, CacheEntry | None],
        taken_at: datetime,
    ) -> "CacheSnapshot":
        """Create a snapshot, deep-copying entry data.

        Args:
            entries: Current entries by key.
            taken_at: Capture time.

        Returns:
            A snapshot isolated from later in-place edits of the data.
        """
        return cls(
            entries={
                key: (
                    replace(entry, data=copy.deepcopy(entry.data))
                    if entry is not None
                    else None
                )
                for key, entry in entries.items()
            },
            taken_at=taken_at,
        )
