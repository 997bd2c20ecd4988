"""Transport collaborator interfaces."""

from collections.abc import Awaitable, Callable
from typing import Any, Protocol

from querysync.core.entities.cache_key import QueryKey

QueryFn = Callable[[QueryKey], Awaitable[Any]]


class IResourceTransport(Protocol):
    """Contract for the per-resource backend collaborator.

    Implementations return parsed data or raise. Errors should be
    SyncError subclasses; anything else is normalized by the caller.
    The sync core never builds requests itself.
    """

    async def list(self, parent_id: str | None = None, **params: Any) -> Any:
        """List the collection, optionally scoped to a parent.

        Args:
            parent_id: Identifier of the owning resource (e.g. project id).
            **params: Optional query filters.

        Returns:
            The parsed collection.
        """
        ...

    async def get_one(self, id: str) -> Any:
        """Fetch a single item by id."""
        ...

    async def create(self, payload: dict[str, Any]) -> Any:
        """Create an item and return it."""
        ...

    async def update(self, id: str, payload: dict[str, Any]) -> Any:
        """Update an item and return it."""
        ...

    async def remove(self, id: str) -> Any:
        """Delete an item."""
        ...
