"""Mutation dispatcher - optimistic writes with cascading invalidation."""

import asyncio
import logging
from collections.abc import Awaitable, Callable, Iterable, Mapping, Sequence
from typing import Any, Union

from querysync.core.entities.cache_key import KeyLike, QueryKey
from querysync.core.entities.mutation import Mutation, MutationState
from querysync.core.entities.sync_config import ConflictPolicy, SyncConfig
from querysync.core.errors import (
    StaleWriteConflict,
    ValidationError,
    wrap_transport_error,
)
from querysync.core.interfaces.cache_store import ICacheStore
from querysync.core.services.key_registry import KeyRegistry

logger = logging.getLogger(__name__)

Updater = Callable[[Any], Any]
OptimisticPatch = Union[Updater, Mapping[KeyLike, Updater]]
WriteFn = Callable[[], Awaitable[Any]]
InvalidationHook = Callable[[list[QueryKey]], None]


class MutationDispatcher:
    """Executes writes and keeps the cache consistent around them.

    A mutation optionally patches the cache before the network call. On
    success it invalidates the affected keys together with their
    registered descendants and ancestors; on failure it restores the
    pre-mutation snapshot and performs no invalidation.

    Two mutations patching the same key nest: the second snapshot is taken
    after the first patch, so rolling back the second restores the first
    mutation's optimistic state (last-applied-wins, no merge).
    """

    def __init__(
        self,
        store: ICacheStore,
        registry: KeyRegistry,
        config: SyncConfig | None = None,
        on_invalidated: InvalidationHook | None = None,
    ) -> None:
        """Initialize the dispatcher.

        Args:
            store: The cache store.
            registry: Key registry used to expand and cascade patterns.
            config: Sync configuration (conflict policy).
            on_invalidated: Called with the invalidated keys after commit.
        """
        self._store = store
        self._registry = registry
        self._config = config or SyncConfig()
        self._on_invalidated = on_invalidated
        self._commit_versions: dict[QueryKey, int] = {}
        self._pending = 0

    @property
    def pending_count(self) -> int:
        """Number of mutations not yet settled."""
        return self._pending

    async def perform(
        self,
        write_fn: WriteFn,
        affected: Sequence[KeyLike],
        optimistic: OptimisticPatch | None = None,
        *,
        required: Iterable[str] = (),
        payload: Mapping[str, Any] | None = None,
        mutation: Mutation | None = None,
    ) -> Any:
        """Run a write through the mutation state machine.

        Args:
            write_fn: Zero-argument coroutine function doing the network write.
            affected: Keys or patterns the write changes.
            optimistic: Updater applied to every expanded affected key, or a
                mapping from key/pattern to updater.
            required: Fields that must be present (and not None) in
                ``payload`` before anything is dispatched.
            payload: The write payload checked against ``required``.
            mutation: Record to track state in; created if omitted.

        Returns:
            The result of ``write_fn``.

        Raises:
            ValidationError: A required field is missing.
            SyncError: The write failed; optimistic changes were rolled back.
            StaleWriteConflict: Only with ConflictPolicy.RAISE, after commit.
        """
        mutation = mutation or Mutation()
        mutation.affected = tuple(affected)

        missing = [name for name in required if (payload or {}).get(name) is None]
        if missing:
            error = ValidationError(f"Mutation is missing required fields: {missing}")
            mutation.error = error
            mutation.transition(MutationState.ROLLED_BACK)
            raise error

        self._pending += 1
        try:
            return await self._execute(write_fn, mutation, optimistic)
        finally:
            self._pending -= 1

    async def _execute(
        self,
        write_fn: WriteFn,
        mutation: Mutation,
        optimistic: OptimisticPatch | None,
    ) -> Any:
        versions = self._versions(mutation.affected)

        if optimistic is not None:
            self._apply_optimistic(mutation, optimistic)

        mutation.transition(MutationState.IN_FLIGHT)
        try:
            result = await write_fn()
        except asyncio.CancelledError:
            self._rollback(mutation)
            raise
        except Exception as exc:
            error = wrap_transport_error(exc)
            mutation.error = error
            self._rollback(mutation)
            if error is exc:
                raise
            raise error from exc

        conflicts = [k for k, v in versions.items() if self._commit_versions.get(k, 0) != v]
        self._commit(mutation, result)

        if conflicts:
            message = (
                f"Mutation {mutation.id} overlaps a concurrent commit on "
                f"{', '.join(str(k) for k in conflicts)}"
            )
            if self._config.conflict_policy == ConflictPolicy.RAISE:
                raise StaleWriteConflict(message, keys=conflicts, result=result)
            logger.warning("%s; last write wins", message)
        return result

    def _targets(self, item: KeyLike) -> list[QueryKey]:
        if isinstance(item, QueryKey):
            return [item]
        return self._registry.expand(item)

    def _versions(self, affected: Iterable[KeyLike]) -> dict[QueryKey, int]:
        versions: dict[QueryKey, int] = {}
        for item in affected:
            for key in self._targets(item):
                versions[key] = self._commit_versions.get(key, 0)
        return versions

    def _apply_optimistic(self, mutation: Mutation, optimistic: OptimisticPatch) -> None:
        updaters: dict[QueryKey, Updater] = {}
        if callable(optimistic):
            for item in mutation.affected:
                for key in self._targets(item):
                    updaters[key] = optimistic
        else:
            for item, updater in optimistic.items():
                for key in self._targets(item):
                    updaters[key] = updater

        mutation.snapshot = self._store.snapshot(updaters)
        for key, updater in updaters.items():
            self._store.patch(key, updater)
        mutation.transition(MutationState.OPTIMISTIC_APPLIED)
        logger.debug("Mutation %d patched %d keys optimistically", mutation.id, len(updaters))

    def _rollback(self, mutation: Mutation) -> None:
        if mutation.snapshot is not None:
            self._store.restore(mutation.snapshot)
        mutation.transition(MutationState.ROLLED_BACK)
        logger.warning("Mutation %d rolled back: %r", mutation.id, mutation.error)

    def _commit(self, mutation: Mutation, result: Any) -> None:
        keys = self._registry.cascade(mutation.affected, include_ancestors=True)
        for key in keys:
            self._store.invalidate(key)
            self._commit_versions[key] = self._commit_versions.get(key, 0) + 1

        mutation.result = result
        mutation.invalidated = tuple(keys)
        mutation.transition(MutationState.COMMITTED)
        logger.debug("Mutation %d committed; invalidated %d keys", mutation.id, len(keys))

        if self._on_invalidated is not None and keys:
            self._on_invalidated(keys)
