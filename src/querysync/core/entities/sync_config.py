"""Sync configuration entities."""

from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import timedelta
from enum import Enum

from querysync.core.entities.cache_key import QueryKey
from querysync.core.errors import SyncError


class ConflictPolicy(Enum):
    """What to do when a concurrent mutation committed against the same keys.

    LAST_WRITE_WINS: Log a warning and commit anyway.
    RAISE: Commit, then raise StaleWriteConflict to the caller.
    """

    LAST_WRITE_WINS = "last_write_wins"
    RAISE = "raise"


@dataclass(frozen=True)
class RetryPolicy:
    """Retry and backoff policy for fetches.

    The default makes exactly one attempt per invocation. Delays grow
    exponentially: ``min(base_delay * 2 ** attempt, max_delay)``.
    """

    max_attempts: int = 1
    base_delay: timedelta = timedelta(seconds=1)
    max_delay: timedelta = timedelta(seconds=10)
    retry_on: Callable[[SyncError], bool] | None = None

    def __post_init__(self) -> None:
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")

    def delay_for(self, attempt: int) -> float:
        """Seconds to wait after the given zero-based failed attempt."""
        delay = self.base_delay.total_seconds() * (2**attempt)
        return min(delay, self.max_delay.total_seconds())

    def should_retry(self, error: SyncError, attempt: int) -> bool:
        """Decide whether another attempt follows the failed ``attempt``.

        Args:
            error: The normalized error of the failed attempt.
            attempt: Zero-based index of the failed attempt.

        Returns:
            True if another attempt should be made.
        """
        if attempt + 1 >= self.max_attempts:
            return False
        if self.retry_on is not None:
            return self.retry_on(error)
        return error.retryable

    @classmethod
    def exponential(cls, max_attempts: int = 3) -> "RetryPolicy":
        """Policy with ``max_attempts`` attempts and the default backoff."""
        return cls(max_attempts=max_attempts)


@dataclass
class SyncConfig:
    """Sync configuration.

    Timing defaults follow the project views: data is considered fresh
    for 10 seconds and active views poll every 15 seconds.

    Adaptive polling:
        When adaptive_polling=True, a key whose payload came back unchanged
        ``adaptive_unchanged_ticks`` times in a row has its poll interval
        multiplied by ``adaptive_backoff``, never beyond
        ``max_poll_interval``. A changed payload restores the base interval.
    """

    enabled: bool = True
    stale_time: timedelta = timedelta(seconds=10)
    refresh_interval: timedelta = timedelta(seconds=15)
    # Per-resource TTL, looked up by sub-resource first, then resource type
    stale_time_overrides: dict[str, timedelta] = field(default_factory=dict)

    retry: RetryPolicy = field(default_factory=RetryPolicy)
    conflict_policy: ConflictPolicy = ConflictPolicy.LAST_WRITE_WINS

    # Delay before refetching after a committed write (eventually consistent backends)
    settle_delay: timedelta = timedelta(0)
    refetch_on_focus: bool = True

    adaptive_polling: bool = False
    adaptive_backoff: float = 2.0
    adaptive_unchanged_ticks: int = 3
    max_poll_interval: timedelta = timedelta(seconds=60)

    def __post_init__(self) -> None:
        """Validate timings."""
        if self.stale_time < timedelta(0):
            raise ValueError("stale_time must not be negative")
        if self.adaptive_backoff < 1.0:
            raise ValueError("adaptive_backoff must be >= 1.0")

    def ttl_for(self, key: QueryKey) -> timedelta:
        """Resolve the time-to-live for entries under ``key``."""
        for name in (key.sub_resource, key.resource_type):
            if name is not None and name in self.stale_time_overrides:
                return self.stale_time_overrides[name]
        return self.stale_time
