"""Query resolution - maps query keys onto transport calls."""

from collections.abc import Awaitable, Callable
from typing import Any

from querysync.core.entities.cache_key import KeyLike, KeyPattern, QueryKey, as_pattern
from querysync.core.errors import ValidationError
from querysync.core.interfaces.transport import IResourceTransport, QueryFn


class QueryResolver:
    """Resolves a query key into the transport call that loads it.

    Routing for keys without a custom query function:

    - ``projects``              -> ``transports["projects"].list(None)``
    - ``projects/p1``           -> ``transports["projects"].get_one("p1")``
    - ``projects/p1/tickets``   -> ``transports["tickets"].list("p1")``

    Key params are forwarded to ``list`` as keyword filters.
    """

    def __init__(self) -> None:
        self._transports: dict[str, IResourceTransport] = {}
        self._queries: list[tuple[KeyPattern, QueryFn]] = []

    def register_transport(self, resource_type: str, transport: IResourceTransport) -> None:
        """Register the transport serving ``resource_type``."""
        self._transports[resource_type] = transport

    def register_query(self, key_or_pattern: KeyLike, fn: QueryFn) -> None:
        """Register a custom query function.

        Custom functions take precedence over transport routing and are
        matched in registration order.

        Args:
            key_or_pattern: Keys served by ``fn``.
            fn: Coroutine function receiving the key.
        """
        self._queries.append((as_pattern(key_or_pattern), fn))

    def transport_for(self, resource_type: str) -> IResourceTransport:
        """Return the transport for ``resource_type``.

        Raises:
            ValidationError: If no transport is registered.
        """
        try:
            return self._transports[resource_type]
        except KeyError:
            raise ValidationError(
                f"No transport registered for resource {resource_type!r}"
            ) from None

    def resolve(self, key: QueryKey) -> Callable[[], Awaitable[Any]]:
        """Return a zero-argument coroutine function that loads ``key``.

        Raises:
            ValidationError: If the key cannot be routed.
        """
        for pattern, fn in self._queries:
            if pattern.matches(key):
                return lambda: fn(key)

        params = key.params_dict
        if key.sub_resource is not None:
            transport = self.transport_for(key.sub_resource)
            return lambda: transport.list(key.scope_id, **params)
        if key.scope_id is not None:
            transport = self.transport_for(key.resource_type)
            return lambda: transport.get_one(key.scope_id)  # type: ignore[arg-type]
        transport = self.transport_for(key.resource_type)
        return lambda: transport.list(None, **params)
