"""Mutation entities."""

import itertools
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from querysync.core.entities.cache_entry import CacheSnapshot
from querysync.core.entities.cache_key import KeyLike, QueryKey

_mutation_ids = itertools.count(1)


class MutationState(Enum):
    """States of a single mutation.

    PENDING -> [OPTIMISTIC_APPLIED] -> IN_FLIGHT -> COMMITTED | ROLLED_BACK
    """

    PENDING = "pending"
    OPTIMISTIC_APPLIED = "optimistic_applied"
    IN_FLIGHT = "in_flight"
    COMMITTED = "committed"
    ROLLED_BACK = "rolled_back"


_TRANSITIONS: dict[MutationState, frozenset[MutationState]] = {
    MutationState.PENDING: frozenset(
        {
            MutationState.OPTIMISTIC_APPLIED,
            MutationState.IN_FLIGHT,
            MutationState.ROLLED_BACK,
        }
    ),
    MutationState.OPTIMISTIC_APPLIED: frozenset(
        {MutationState.IN_FLIGHT, MutationState.ROLLED_BACK}
    ),
    MutationState.IN_FLIGHT: frozenset(
        {MutationState.COMMITTED, MutationState.ROLLED_BACK}
    ),
    MutationState.COMMITTED: frozenset(),
    MutationState.ROLLED_BACK: frozenset(),
}


@dataclass
class Mutation:
    """Record of one mutation moving through its state machine."""

    affected: tuple[KeyLike, ...] = ()
    id: int = field(default_factory=lambda: next(_mutation_ids))
    state: MutationState = MutationState.PENDING
    snapshot: CacheSnapshot | None = None
    invalidated: tuple[QueryKey, ...] = ()
    result: Any = None
    error: BaseException | None = None

    @property
    def is_settled(self) -> bool:
        return self.state in (MutationState.COMMITTED, MutationState.ROLLED_BACK)

    def transition(self, state: MutationState) -> None:
        """Move to ``state``.

        Raises:
            RuntimeError: If the transition is not allowed.
        """
        if state not in _TRANSITIONS[self.state]:
            raise RuntimeError(
                f"Mutation {self.id}: illegal transition "
                f"{self.state.value} -> {state.value}"
            )
        self.state = state
