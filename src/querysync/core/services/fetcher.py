"""Fetcher - one logical fetch per key with request coalescing."""

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any

from querysync.core.entities.cache_key import QueryKey
from querysync.core.entities.sync_config import RetryPolicy
from querysync.core.errors import SyncError, wrap_transport_error
from querysync.core.interfaces.cache_store import ICacheStore
from querysync.core.services.key_registry import KeyRegistry
from querysync.core.services.resolver import QueryResolver

logger = logging.getLogger(__name__)


@dataclass
class _Flight:
    """An in-flight fetch and the entry generation it started from."""

    generation: int
    task: "asyncio.Task[Any]" = field(init=False)


class Fetcher:
    """Performs fetches through the resolver and records results in the store.

    Concurrent ``fetch()`` calls for the same key share one underlying task,
    so a key is never fetched concurrently with itself. Callers are
    shielded from each other: cancelling one waiter does not cancel the
    transport call the others (or a future subscriber) are waiting on.
    """

    def __init__(
        self,
        store: ICacheStore,
        resolver: QueryResolver,
        registry: KeyRegistry | None = None,
        retry: RetryPolicy | None = None,
    ) -> None:
        """Initialize the fetcher.

        Args:
            store: The cache store receiving results.
            resolver: Maps keys to transport calls.
            registry: Optional key registry; fetched keys are tracked in it.
            retry: Default retry policy. Defaults to a single attempt.
        """
        self._store = store
        self._resolver = resolver
        self._registry = registry
        self._retry = retry or RetryPolicy()
        self._in_flight: dict[QueryKey, _Flight] = {}
        self._background: set[asyncio.Task[Any]] = set()

        # Statistics
        self._transport_calls = 0
        self._coalesced = 0
        self._failures = 0

    @property
    def stats(self) -> dict[str, int]:
        """Get fetch statistics.

        Returns:
            Dictionary with transport calls, coalesced calls and failures.
        """
        return {
            "transport_calls": self._transport_calls,
            "coalesced": self._coalesced,
            "failures": self._failures,
        }

    def is_fetching(self, key: QueryKey) -> bool:
        flight = self._in_flight.get(key)
        return flight is not None and not flight.task.done()

    async def fetch(self, key: QueryKey, retry: RetryPolicy | None = None) -> Any:
        """Fetch ``key`` and store the result.

        Joins a fetch already in flight for the same key, unless that fetch
        started before the entry was last invalidated; in that case it
        waits for it to settle and starts a fresh one.

        Args:
            key: The query key.
            retry: Retry policy for a newly started fetch.

        Returns:
            The fetched data.

        Raises:
            SyncError: If the fetch failed. The entry keeps its last good
                data and records the error.
        """
        while True:
            flight = self._in_flight.get(key)
            if flight is None or flight.task.done():
                flight = self._start(key, retry or self._retry)
                return await asyncio.shield(flight.task)

            if flight.generation == self._generation(key):
                self._coalesced += 1
                logger.debug("Joining in-flight fetch for %s", key)
                return await asyncio.shield(flight.task)

            logger.debug("In-flight fetch for %s predates invalidation", key)
            await asyncio.wait({flight.task})

    def refresh(self, key: QueryKey) -> "asyncio.Task[Any]":
        """Start a background fetch for ``key``.

        Failures are recorded on the entry by ``fetch`` and only logged
        here; the task resolves to None in that case.

        Returns:
            The background task.
        """
        task = asyncio.ensure_future(self._refresh(key))
        self._background.add(task)
        task.add_done_callback(self._background.discard)
        return task

    async def close(self) -> None:
        """Cancel background and in-flight fetches."""
        keys = list(self._in_flight)
        tasks = list(self._background)
        tasks.extend(flight.task for flight in self._in_flight.values())
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        self._background.clear()
        self._in_flight.clear()

        # A task cancelled before its first step never reaches its handler
        for key in keys:
            entry = self._store.get(key)
            if entry is not None and entry.is_fetching:
                self._store.mark_cancelled(key)

    async def _refresh(self, key: QueryKey) -> Any:
        try:
            return await self.fetch(key)
        except SyncError as error:
            logger.warning("Background fetch for %s failed: %s", key, error)
            return None

    def _generation(self, key: QueryKey) -> int:
        entry = self._store.get(key)
        return entry.generation if entry is not None else 0

    def _start(self, key: QueryKey, policy: RetryPolicy) -> _Flight:
        if self._registry is not None:
            self._registry.track(key)
        entry = self._store.mark_fetching(key)
        flight = _Flight(generation=entry.generation)
        flight.task = asyncio.ensure_future(self._run(key, flight, policy))
        self._in_flight[key] = flight
        logger.debug("Fetching %s", key)
        return flight

    async def _run(self, key: QueryKey, flight: _Flight, policy: RetryPolicy) -> Any:
        try:
            data = await self._load(key, policy)
        except asyncio.CancelledError:
            self._store.mark_cancelled(key)
            raise
        except SyncError as error:
            self._failures += 1
            self._store.mark_error(key, error)
            logger.debug("Fetch for %s failed: %r", key, error)
            raise
        finally:
            if self._in_flight.get(key) is flight:
                del self._in_flight[key]

        # An invalidation during the flight means this data may predate the
        # write that caused it: keep it visible but leave the entry stale.
        superseded = self._generation(key) != flight.generation
        self._store.set(key, data, stale=superseded)
        logger.debug("Fetched %s%s", key, " (superseded)" if superseded else "")
        return data

    async def _load(self, key: QueryKey, policy: RetryPolicy) -> Any:
        query = self._resolver.resolve(key)
        attempt = 0
        while True:
            self._transport_calls += 1
            try:
                return await query()
            except Exception as exc:
                error = wrap_transport_error(exc)
                if not policy.should_retry(error, attempt):
                    if error is exc:
                        raise
                    raise error from exc
            delay = policy.delay_for(attempt)
            logger.info(
                "Retrying %s in %.2fs after attempt %d failed: %s",
                key,
                delay,
                attempt + 1,
                error,
            )
            await asyncio.sleep(delay)
            attempt += 1
