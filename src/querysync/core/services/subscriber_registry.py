"""Subscriber registry - reference counts consumers per key."""

import itertools
import logging
from dataclasses import dataclass, field
from datetime import timedelta

from querysync.core.entities.cache_key import QueryKey
from querysync.core.entities.sync_config import SyncConfig
from querysync.core.interfaces.cache_store import ICacheStore
from querysync.core.services.fetcher import Fetcher
from querysync.core.services.poll_scheduler import PollScheduler

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SubscriptionHandle:
    """Opaque token returned by ``subscribe``."""

    key: QueryKey
    id: int


@dataclass(frozen=True)
class ConsumerOptions:
    """What one consumer asked for when it subscribed.

    A disabled consumer holds a reference but never triggers fetches,
    polling or revalidation, like a view whose parent id is not known yet.
    """

    refresh_interval: timedelta | None = None
    enabled: bool = True
    refetch_on_focus: bool = True


@dataclass
class Subscription:
    """Consumers of one key and their options.

    Invariant: ``ref_count >= 0``; polling is armed iff at least one
    enabled consumer asked for an interval.
    """

    key: QueryKey
    consumers: dict[int, ConsumerOptions] = field(default_factory=dict)

    @property
    def ref_count(self) -> int:
        return len(self.consumers)

    @property
    def enabled(self) -> bool:
        return any(c.enabled for c in self.consumers.values())

    @property
    def refetch_on_focus(self) -> bool:
        return any(c.enabled and c.refetch_on_focus for c in self.consumers.values())

    @property
    def refresh_interval(self) -> timedelta | None:
        """Shortest positive interval requested by an enabled consumer."""
        candidates = [
            c.refresh_interval
            for c in self.consumers.values()
            if c.enabled and c.refresh_interval and c.refresh_interval > timedelta(0)
        ]
        return min(candidates) if candidates else None


def is_resolvable(key: QueryKey) -> bool:
    """Check that a scoped key names its parent.

    ``("projects", None, "milestones")`` has no project to scope to, so
    fetching it would load the unscoped list instead.
    """
    return key.sub_resource is None or key.scope_id is not None


class SubscriberRegistry:
    """Tracks consumers per key and drives the poll scheduler."""

    def __init__(
        self,
        store: ICacheStore,
        fetcher: Fetcher,
        scheduler: PollScheduler,
        config: SyncConfig | None = None,
    ) -> None:
        self._store = store
        self._fetcher = fetcher
        self._scheduler = scheduler
        self._config = config or SyncConfig()
        self._subscriptions: dict[QueryKey, Subscription] = {}
        self._ids = itertools.count(1)

    def subscribe(
        self,
        key: QueryKey,
        refresh_interval: timedelta | None = None,
        *,
        enabled: bool | None = None,
        refetch_on_focus: bool = True,
    ) -> SubscriptionHandle:
        """Register a consumer of ``key``.

        When the key gains its first enabled consumer, a fetch starts if
        the entry is absent or stale. Polling is (re)armed with the
        shortest interval requested by an enabled consumer.

        Args:
            key: The query key.
            refresh_interval: Poll interval wanted by this consumer, or
                None for no polling.
            enabled: Whether this consumer may trigger fetches. Defaults
                to False for a scoped key without a scope id, True
                otherwise.
            refetch_on_focus: Whether returning to the foreground should
                revalidate the key for this consumer.

        Returns:
            A handle to pass to ``unsubscribe``.
        """
        if enabled is None:
            enabled = is_resolvable(key)
        subscription = self._subscriptions.setdefault(key, Subscription(key))
        was_enabled = subscription.enabled
        handle = SubscriptionHandle(key=key, id=next(self._ids))
        subscription.consumers[handle.id] = ConsumerOptions(
            refresh_interval=refresh_interval,
            enabled=enabled,
            refetch_on_focus=refetch_on_focus,
        )

        if self._config.enabled and enabled:
            self._sync_polling(subscription)
            if not was_enabled and self._store.is_stale(key):
                self._fetcher.refresh(key)

        logger.debug("Subscribed to %s (refs=%d)", key, subscription.ref_count)
        return handle

    def unsubscribe(self, handle: SubscriptionHandle) -> bool:
        """Release a consumer. Idempotent per handle.

        On the 1 -> 0 transition polling is disarmed; cached data and any
        in-flight fetch are left alone.

        Returns:
            True if the handle was active.
        """
        subscription = self._subscriptions.get(handle.key)
        if subscription is None or handle.id not in subscription.consumers:
            return False

        del subscription.consumers[handle.id]
        if subscription.ref_count == 0:
            del self._subscriptions[handle.key]
            self._scheduler.disarm(handle.key)
        elif self._config.enabled:
            self._sync_polling(subscription)

        logger.debug("Unsubscribed from %s (refs=%d)", handle.key, subscription.ref_count)
        return True

    def ref_count(self, key: QueryKey) -> int:
        subscription = self._subscriptions.get(key)
        return subscription.ref_count if subscription is not None else 0

    def is_active(self, key: QueryKey) -> bool:
        return self.ref_count(key) > 0

    def is_enabled(self, key: QueryKey) -> bool:
        """Check if ``key`` has a consumer that may trigger fetches."""
        subscription = self._subscriptions.get(key)
        return subscription is not None and subscription.enabled

    def refetch_on_focus(self, key: QueryKey) -> bool:
        """Check if an enabled consumer of ``key`` wants focus revalidation."""
        subscription = self._subscriptions.get(key)
        return subscription is not None and subscription.refetch_on_focus

    def active_keys(self) -> list[QueryKey]:
        return list(self._subscriptions)

    def clear(self) -> None:
        """Drop every subscription and disarm all polling."""
        for key in list(self._subscriptions):
            self._scheduler.disarm(key)
        self._subscriptions.clear()

    def _sync_polling(self, subscription: Subscription) -> None:
        interval = subscription.refresh_interval
        if interval is None:
            self._scheduler.disarm(subscription.key)
        else:
            self._scheduler.arm(subscription.key, interval)
