"""Query and mutation handles exposed to the UI layer."""

import asyncio
import logging
from collections.abc import Awaitable, Callable, Iterable, Mapping, Sequence
from typing import TYPE_CHECKING, Any, Union

from querysync.core.entities.cache_entry import CacheEntry, EntryStatus
from querysync.core.entities.cache_key import KeyLike, QueryKey
from querysync.core.entities.mutation import Mutation, MutationState
from querysync.core.errors import SyncError
from querysync.core.services.mutation_dispatcher import OptimisticPatch
from querysync.core.services.subscriber_registry import SubscriptionHandle

if TYPE_CHECKING:
    from querysync.client import SyncClient

logger = logging.getLogger(__name__)

AffectedSpec = Union[Sequence[KeyLike], Callable[..., Sequence[KeyLike]]]
OptimisticSpec = Callable[..., Union[OptimisticPatch, None]]


class QueryHandle:
    """Live view of one subscribed key: ``{data, status, error, refetch()}``.

    Every property reads the store on access; nothing is copied, so the
    handle is never behind the store across an await.
    """

    def __init__(self, client: "SyncClient", subscription: SubscriptionHandle) -> None:
        self._client = client
        self._subscription = subscription
        self._closed = False

    @property
    def key(self) -> QueryKey:
        return self._subscription.key

    @property
    def entry(self) -> CacheEntry | None:
        return self._client.store.get(self.key)

    @property
    def data(self) -> Any:
        entry = self.entry
        return entry.data if entry is not None else None

    @property
    def status(self) -> EntryStatus:
        entry = self.entry
        return entry.status if entry is not None else EntryStatus.IDLE

    @property
    def error(self) -> BaseException | None:
        entry = self.entry
        return entry.error if entry is not None else None

    @property
    def is_stale(self) -> bool:
        return self._client.store.is_stale(self.key)

    @property
    def is_fetching(self) -> bool:
        entry = self.entry
        return entry is not None and entry.is_fetching

    @property
    def closed(self) -> bool:
        return self._closed

    async def refetch(self) -> Any:
        """Fetch the key now, joining a fetch already in flight.

        Raises:
            SyncError: If the fetch failed.
        """
        return await self._client.fetch(self.key)

    def close(self) -> None:
        """Unsubscribe. Cached data is kept for the next subscriber."""
        if not self._closed:
            self._closed = True
            self._client.subscribers.unsubscribe(self._subscription)

    def __enter__(self) -> "QueryHandle":
        return self

    def __exit__(self, *exc_info: Any) -> None:
        self.close()

    def __repr__(self) -> str:
        return f"QueryHandle({self.key}, status={self.status.value})"


class MutationHandle:
    """Mutation primitive: ``{mutate(), mutate_async(), is_pending}``.

    ``write_fn`` receives the arguments given to ``mutate``. ``affected``
    and ``optimistic`` may be callables receiving the same arguments, so a
    handle can target the project named in its payload.
    """

    def __init__(
        self,
        client: "SyncClient",
        write_fn: Callable[..., Awaitable[Any]],
        affected: AffectedSpec,
        optimistic: OptimisticSpec | None = None,
        required: Iterable[str] = (),
    ) -> None:
        self._client = client
        self._write_fn = write_fn
        self._affected = affected
        self._optimistic = optimistic
        self._required = tuple(required)
        self._pending = 0
        self._tasks: set[asyncio.Task[Any]] = set()
        self.last: Mutation | None = None
        self.data: Any = None
        self.error: BaseException | None = None

    @property
    def is_pending(self) -> bool:
        return self._pending > 0

    @property
    def state(self) -> MutationState | None:
        return self.last.state if self.last is not None else None

    async def mutate_async(self, *args: Any, **kwargs: Any) -> Any:
        """Run the mutation and return the write result.

        Raises:
            SyncError: On validation or write failure (after rollback).
        """
        affected = self._affected(*args, **kwargs) if callable(self._affected) else self._affected
        optimistic = self._optimistic(*args, **kwargs) if self._optimistic else None
        payload = args[0] if args and isinstance(args[0], Mapping) else kwargs

        mutation = Mutation()
        self.last = mutation
        self._pending += 1
        try:
            result = await self._client.dispatcher.perform(
                lambda: self._write_fn(*args, **kwargs),
                affected,
                optimistic,
                required=self._required,
                payload=payload,
                mutation=mutation,
            )
        except SyncError as error:
            self.error = error
            raise
        finally:
            self._pending -= 1

        self.data = result
        self.error = None
        return result

    def mutate(self, *args: Any, **kwargs: Any) -> "asyncio.Task[Any]":
        """Fire-and-forget variant of ``mutate_async``.

        Failures are kept on ``error`` and logged instead of raised.

        Returns:
            The task running the mutation.
        """
        task = asyncio.ensure_future(self._mutate_quietly(*args, **kwargs))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def _mutate_quietly(self, *args: Any, **kwargs: Any) -> Any:
        try:
            return await self.mutate_async(*args, **kwargs)
        except SyncError as error:
            logger.warning("Mutation failed: %s", error)
            return None
