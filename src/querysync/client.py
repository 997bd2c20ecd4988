"""Sync client - main orchestrator for the data synchronization layer."""

import asyncio
import logging
from collections.abc import Awaitable, Callable, Iterable
from datetime import timedelta
from types import TracebackType
from typing import Any

from querysync.core.entities.cache_entry import CacheEntry
from querysync.core.entities.cache_key import KeyLike, QueryKey
from querysync.core.entities.sync_config import RetryPolicy, SyncConfig
from querysync.core.interfaces.cache_store import ICacheStore
from querysync.core.interfaces.transport import IResourceTransport, QueryFn
from querysync.core.interfaces.visibility import IVisibilitySignal
from querysync.core.services.fetcher import Fetcher
from querysync.core.services.handles import (
    AffectedSpec,
    MutationHandle,
    OptimisticSpec,
    QueryHandle,
)
from querysync.core.services.key_registry import HierarchyEdge, KeyRegistry
from querysync.core.services.mutation_dispatcher import (
    MutationDispatcher,
    OptimisticPatch,
)
from querysync.core.services.poll_scheduler import PollScheduler
from querysync.core.services.resolver import QueryResolver
from querysync.core.services.subscriber_registry import SubscriberRegistry
from querysync.infrastructure.stores.memory import Clock, InMemoryCacheStore
from querysync.infrastructure.visibility import ManualVisibility

logger = logging.getLogger(__name__)

# Sentinel: use the configured refresh interval
DEFAULT_INTERVAL: Any = object()


class SyncClient:
    """Explicitly constructed sync context shared by all consumers.

    This is the main entry point. It composes the key registry, cache
    store, fetcher, poll scheduler, subscriber registry and mutation
    dispatcher. Tests create isolated instances; there is no process-wide
    cache.

    Usage:
        client = SyncClient(SyncConfig(refresh_interval=timedelta(seconds=15)))
        client.register_transport("projects", projects_transport)
        register_project_hierarchy(client.registry)

        async with client:
            view = client.query(project_milestones("p1"))
            ...
            create = client.mutation(
                milestones_transport.create,
                affected=lambda payload: [project_milestones(payload["projectId"])],
                required=["projectId"],
            )
            await create.mutate_async({"projectId": "p1", "title": "Handover"})
    """

    def __init__(
        self,
        config: SyncConfig | None = None,
        *,
        store: ICacheStore | None = None,
        registry: KeyRegistry | None = None,
        resolver: QueryResolver | None = None,
        visibility: IVisibilitySignal | None = None,
        clock: Clock | None = None,
    ) -> None:
        """Initialize the sync client.

        Args:
            config: Sync configuration. Uses defaults if not provided.
            store: Cache store. Defaults to an InMemoryCacheStore.
            registry: Key registry. A fresh one if not provided.
            resolver: Query resolver. A fresh one if not provided.
            visibility: Foreground signal. Defaults to always visible.
            clock: Clock for the default store.
        """
        self._config = config or SyncConfig()
        self._registry = registry or KeyRegistry()
        self._store = store or InMemoryCacheStore(config=self._config, clock=clock)
        self._resolver = resolver or QueryResolver()
        self._visibility = visibility or ManualVisibility()

        self._fetcher = Fetcher(
            self._store,
            self._resolver,
            registry=self._registry,
            retry=self._config.retry,
        )
        self._scheduler = PollScheduler(
            self._fetcher,
            self._store,
            is_active=self._is_active,
            visibility=self._visibility,
            config=self._config,
        )
        self._subscribers = SubscriberRegistry(
            self._store,
            self._fetcher,
            self._scheduler,
            config=self._config,
        )
        self._dispatcher = MutationDispatcher(
            self._store,
            self._registry,
            config=self._config,
            on_invalidated=self._on_invalidated,
        )

        self._remove_listener: Callable[[], None] | None = None
        self._delayed: set[asyncio.Task[None]] = set()

        # Statistics
        self._hits = 0
        self._stale_hits = 0
        self._misses = 0

    @property
    def config(self) -> SyncConfig:
        return self._config

    @property
    def registry(self) -> KeyRegistry:
        return self._registry

    @property
    def store(self) -> ICacheStore:
        return self._store

    @property
    def resolver(self) -> QueryResolver:
        return self._resolver

    @property
    def fetcher(self) -> Fetcher:
        return self._fetcher

    @property
    def scheduler(self) -> PollScheduler:
        return self._scheduler

    @property
    def subscribers(self) -> SubscriberRegistry:
        return self._subscribers

    @property
    def dispatcher(self) -> MutationDispatcher:
        return self._dispatcher

    @property
    def visibility(self) -> IVisibilitySignal:
        return self._visibility

    @property
    def stats(self) -> dict[str, int]:
        """Get read and fetch statistics.

        Returns:
            Dictionary with read hits, stale hits, misses and the fetcher's
            counters.
        """
        return {
            "hits": self._hits,
            "stale_hits": self._stale_hits,
            "misses": self._misses,
            "total": self._hits + self._stale_hits + self._misses,
            **self._fetcher.stats,
        }

    # Lifecycle

    def init(self) -> "SyncClient":
        """Attach to the visibility signal. Safe to call twice."""
        if self._remove_listener is None:
            self._remove_listener = self._visibility.add_listener(
                self._on_visibility_change
            )
        return self

    async def dispose(self) -> None:
        """Drop subscriptions and cancel polling, refetches and fetches.

        Cached data is kept; use ``reset()`` to clear it.
        """
        if self._remove_listener is not None:
            self._remove_listener()
            self._remove_listener = None
        self._subscribers.clear()
        delayed = list(self._delayed)
        for task in delayed:
            task.cancel()
        if delayed:
            await asyncio.gather(*delayed, return_exceptions=True)
        await self._scheduler.close()
        await self._fetcher.close()

    def reset(self) -> None:
        """Clear every cached entry (e.g. on logout)."""
        self._store.clear()

    async def __aenter__(self) -> "SyncClient":
        return self.init()

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        await self.dispose()

    # Configuration

    def register_transport(self, resource_type: str, transport: IResourceTransport) -> None:
        """Register the transport serving ``resource_type``."""
        self._resolver.register_transport(resource_type, transport)

    def register_query(self, key_or_pattern: KeyLike, fn: QueryFn) -> None:
        """Register a custom query function for matching keys."""
        self._resolver.register_query(key_or_pattern, fn)

    def register_hierarchy(
        self,
        child: KeyLike,
        parent: KeyLike,
        bind: bool = True,
    ) -> HierarchyEdge:
        """Declare that invalidating ``parent`` also invalidates ``child``."""
        return self._registry.register_hierarchy(child, parent, bind=bind)

    # Reads

    def query(
        self,
        key: QueryKey,
        refresh_interval: timedelta | None = DEFAULT_INTERVAL,
        *,
        enabled: bool | None = None,
        refetch_on_focus: bool = True,
    ) -> QueryHandle:
        """Subscribe to ``key`` and return a live handle.

        Args:
            key: The query key.
            refresh_interval: Poll interval; the configured default if
                omitted, None to disable polling.
            enabled: False keeps the handle from fetching on its own.
                Defaults to False for a scoped key without a scope id.
            refetch_on_focus: Revalidate a stale key when the app returns
                to the foreground.

        Returns:
            A QueryHandle; ``close()`` it to unsubscribe.
        """
        if refresh_interval is DEFAULT_INTERVAL:
            refresh_interval = self._config.refresh_interval
        self._registry.track(key)
        subscription = self._subscribers.subscribe(
            key,
            refresh_interval,
            enabled=enabled,
            refetch_on_focus=refetch_on_focus,
        )
        return QueryHandle(self, subscription)

    def read(self, key: QueryKey) -> CacheEntry | None:
        """Stale-while-revalidate read.

        Returns the cached entry immediately. If it is absent or stale, a
        background fetch is started; an invalidated key is always stale,
        so the read after an invalidation always refetches.

        Returns:
            The current entry, or None if the key was never fetched.
        """
        self._registry.track(key)
        entry = self._store.get(key)
        if entry is None or not entry.has_data:
            self._misses += 1
        elif self._store.is_stale(key):
            self._stale_hits += 1
        else:
            self._hits += 1
            return entry

        if self._config.enabled:
            # Joins a fetch already in flight unless it predates an invalidation
            self._fetcher.refresh(key)
        return entry

    async def fetch(self, key: QueryKey, retry: RetryPolicy | None = None) -> Any:
        """Fetch ``key`` now; see ``Fetcher.fetch``."""
        return await self._fetcher.fetch(key, retry=retry)

    async def prefetch(self, keys: Iterable[QueryKey]) -> None:
        """Fetch every stale key of ``keys`` concurrently, ignoring failures.

        Failures stay recorded on the entries.
        """
        stale = [key for key in keys if self._store.is_stale(key)]
        if stale:
            await asyncio.gather(*(self._fetcher.refresh(key) for key in stale))

    def invalidate(self, key_or_pattern: KeyLike) -> list[QueryKey]:
        """Invalidate a key or pattern and its registered descendants.

        Subscribed keys are refetched right away; others wait for their
        next read.

        Returns:
            Every key that was invalidated.
        """
        keys = self._registry.cascade([key_or_pattern])
        for key in keys:
            self._store.invalidate(key)
        self._on_invalidated(keys)
        return keys

    # Writes

    def mutation(
        self,
        write_fn: Callable[..., Awaitable[Any]],
        affected: AffectedSpec,
        optimistic: OptimisticSpec | None = None,
        required: Iterable[str] = (),
    ) -> MutationHandle:
        """Bind a write function to the keys it affects.

        Args:
            write_fn: Coroutine function performing the write.
            affected: Keys/patterns, or a callable computing them from the
                mutation arguments.
            optimistic: Callable computing the optimistic patch from the
                mutation arguments.
            required: Payload fields checked before dispatch.

        Returns:
            A MutationHandle.
        """
        return MutationHandle(self, write_fn, affected, optimistic, required)

    async def mutate(
        self,
        write_fn: Callable[[], Awaitable[Any]],
        affected: Iterable[KeyLike],
        optimistic: OptimisticPatch | None = None,
    ) -> Any:
        """Perform a one-off mutation; see ``MutationDispatcher.perform``."""
        return await self._dispatcher.perform(write_fn, list(affected), optimistic)

    # Internals

    def _is_active(self, key: QueryKey) -> bool:
        return self._subscribers.is_enabled(key)

    def _on_invalidated(self, keys: list[QueryKey]) -> None:
        if not self._config.enabled:
            return
        active = [key for key in keys if self._subscribers.is_enabled(key)]
        if not active:
            return
        delay = self._config.settle_delay.total_seconds()
        if delay > 0:
            task = asyncio.ensure_future(self._revalidate_later(active, delay))
            self._delayed.add(task)
            task.add_done_callback(self._delayed.discard)
            return
        for key in active:
            self._revalidate(key)

    async def _revalidate_later(self, keys: list[QueryKey], delay: float) -> None:
        await asyncio.sleep(delay)
        for key in keys:
            if self._subscribers.is_enabled(key):
                self._revalidate(key)

    def _revalidate(self, key: QueryKey) -> None:
        # Armed keys go through their poll loop, which honours visibility
        if not self._scheduler.wake(key):
            self._fetcher.refresh(key)

    def _on_visibility_change(self, visible: bool) -> None:
        if not visible or not self._config.refetch_on_focus or not self._config.enabled:
            return
        wants_focus = self._subscribers.refetch_on_focus
        woken = self._scheduler.wake_stale(wants_focus)
        for key in self._subscribers.active_keys():
            if key in woken or self._scheduler.is_armed(key) or not wants_focus(key):
                continue
            if self._store.is_stale(key):
                self._fetcher.refresh(key)
        logger.debug("Foreground again; revalidating stale subscribed keys")
