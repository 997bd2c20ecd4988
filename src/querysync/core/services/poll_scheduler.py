"""Poll scheduler - per-key background refresh while subscribed."""

import asyncio
import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import timedelta
from typing import Any

from querysync.core.entities.cache_key import QueryKey
from querysync.core.entities.sync_config import SyncConfig
from querysync.core.errors import SyncError
from querysync.core.interfaces.cache_store import ICacheStore
from querysync.core.interfaces.visibility import IVisibilitySignal
from querysync.core.services.fetcher import Fetcher
from querysync.utils.hashing import hash_value

logger = logging.getLogger(__name__)


@dataclass
class _PollState:
    base_interval: float
    interval: float
    wake: asyncio.Event = field(default_factory=asyncio.Event)
    task: "asyncio.Task[None] | None" = None
    fingerprint: str | None = None
    unchanged: int = 0


class PollScheduler:
    """Runs one independent polling loop per armed key.

    Each tick fetches only while the key has subscribers and the
    application is in the foreground; background ticks are skipped, not
    cancelled mid-flight. ``wake()`` makes the next tick happen at once,
    which is how invalidation takes priority over the schedule.
    """

    def __init__(
        self,
        fetcher: Fetcher,
        store: ICacheStore,
        is_active: Callable[[QueryKey], bool],
        visibility: IVisibilitySignal | None = None,
        config: SyncConfig | None = None,
    ) -> None:
        """Initialize the scheduler.

        Args:
            fetcher: Fetcher used by every tick.
            store: Store consulted for staleness.
            is_active: Returns True while a key has subscribers.
            visibility: Foreground signal. Always visible if omitted.
            config: Sync configuration (adaptive polling settings).
        """
        self._fetcher = fetcher
        self._store = store
        self._is_active = is_active
        self._visibility = visibility
        self._config = config or SyncConfig()
        self._states: dict[QueryKey, _PollState] = {}

    def arm(self, key: QueryKey, interval: timedelta) -> None:
        """Start (or re-time) the polling loop of ``key``.

        Args:
            key: The query key.
            interval: Time between ticks.

        Raises:
            ValueError: If ``interval`` is not positive.
        """
        seconds = interval.total_seconds()
        if seconds <= 0:
            raise ValueError("Poll interval must be positive")

        state = self._states.get(key)
        if state is not None:
            if state.base_interval == seconds:
                return
            self.disarm(key)

        state = _PollState(base_interval=seconds, interval=seconds)
        state.task = asyncio.ensure_future(self._run(key, state))
        self._states[key] = state
        logger.debug("Armed polling for %s every %.2fs", key, seconds)

    def disarm(self, key: QueryKey) -> None:
        """Stop polling ``key``. Cached data is left intact."""
        state = self._states.pop(key, None)
        if state is not None and state.task is not None:
            state.task.cancel()
            logger.debug("Disarmed polling for %s", key)

    def is_armed(self, key: QueryKey) -> bool:
        return key in self._states

    def armed_keys(self) -> list[QueryKey]:
        return list(self._states)

    def interval_for(self, key: QueryKey) -> timedelta | None:
        """Current (possibly adapted) interval of ``key``, or None if not armed."""
        state = self._states.get(key)
        if state is None:
            return None
        return timedelta(seconds=state.interval)

    def wake(self, key: QueryKey) -> bool:
        """Make the next tick of ``key`` happen immediately.

        Returns:
            True if the key is armed.
        """
        state = self._states.get(key)
        if state is None:
            return False
        state.wake.set()
        return True

    def wake_stale(
        self, predicate: Callable[[QueryKey], bool] | None = None
    ) -> list[QueryKey]:
        """Wake every armed key whose entry is stale.

        Args:
            predicate: Optional filter; only keys it accepts are woken.

        Returns:
            The keys that were woken.
        """
        woken = [
            key
            for key in self._states
            if self._store.is_stale(key) and (predicate is None or predicate(key))
        ]
        for key in woken:
            self.wake(key)
        return woken

    async def close(self) -> None:
        """Disarm every key and wait for the loops to finish."""
        tasks = [s.task for s in self._states.values() if s.task is not None]
        for key in list(self._states):
            self.disarm(key)
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)

    def _should_tick(self, key: QueryKey) -> bool:
        if not self._is_active(key):
            return False
        return self._visibility is None or self._visibility.is_visible()

    async def _run(self, key: QueryKey, state: _PollState) -> None:
        while True:
            try:
                await asyncio.wait_for(state.wake.wait(), timeout=state.interval)
            except asyncio.TimeoutError:
                pass
            state.wake.clear()

            if not self._should_tick(key):
                continue
            try:
                data = await self._fetcher.fetch(key)
            except SyncError as error:
                logger.warning("Poll of %s failed: %s", key, error)
                continue
            self._adapt(key, state, data)

    def _adapt(self, key: QueryKey, state: _PollState, data: Any) -> None:
        if not self._config.adaptive_polling:
            return
        fingerprint = hash_value(data)
        if fingerprint != state.fingerprint:
            state.fingerprint = fingerprint
            state.unchanged = 0
            state.interval = state.base_interval
            return

        state.unchanged += 1
        if state.unchanged >= self._config.adaptive_unchanged_ticks:
            state.unchanged = 0
            ceiling = max(
                self._config.max_poll_interval.total_seconds(), state.base_interval
            )
            state.interval = min(state.interval * self._config.adaptive_backoff, ceiling)
            logger.debug("Backed off polling of %s to %.2fs", key, state.interval)
