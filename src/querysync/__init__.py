"""querysync - Data synchronization layer for project-scoped read views.

An asyncio library that keeps cached views of a REST backend consistent
with the server through polling, on-demand fetches and write-triggered
cascade invalidation across a hierarchy of query keys.

Example:
    import httpx
    from querysync import SyncClient
    from querysync.resources import (
        default_config,
        project_milestones,
        register_http_transports,
        register_project_hierarchy,
    )

    async with httpx.AsyncClient(base_url="https://pm.example.com/api") as http:
        async with SyncClient(default_config()) as client:
            register_project_hierarchy(client.registry)
            register_http_transports(client, http)

            view = client.query(project_milestones("p1"))
            await view.refetch()
            print(view.data)

            create = client.mutation(
                client.resolver.transport_for("milestones").create,
                affected=lambda payload: [project_milestones(payload["projectId"])],
                optimistic=lambda payload: lambda rows: [*rows, payload],
                required=["projectId", "title"],
            )
            await create.mutate_async({"projectId": "p1", "title": "Handover"})

Staleness:
    Entries go stale ``stale_time`` after a successful fetch, or at once
    when invalidated. Stale data is still served while a background fetch
    replaces it.
"""

from querysync.client import SyncClient
from querysync.core.entities import (
    ANY,
    CacheEntry,
    CacheSnapshot,
    ConflictPolicy,
    EntryStatus,
    KeyPattern,
    Mutation,
    MutationState,
    QueryKey,
    RetryPolicy,
    SyncConfig,
    make_key,
)
from querysync.core.errors import (
    NetworkError,
    ServerError,
    StaleWriteConflict,
    SyncError,
    TransportError,
    ValidationError,
)
from querysync.core.interfaces import ICacheStore, IResourceTransport, IVisibilitySignal
from querysync.core.services import (
    Fetcher,
    KeyRegistry,
    MutationDispatcher,
    MutationHandle,
    PollScheduler,
    QueryHandle,
    QueryResolver,
    SubscriberRegistry,
)
from querysync.infrastructure import (
    HttpResourceTransport,
    InMemoryCacheStore,
    InMemoryTransport,
    ManualVisibility,
)

__version__ = "0.1.0"

__all__ = [
    # Version
    "__version__",
    # Client
    "SyncClient",
    "QueryHandle",
    "MutationHandle",
    # Core entities
    "ANY",
    "CacheEntry",
    "CacheSnapshot",
    "EntryStatus",
    "KeyPattern",
    "QueryKey",
    "make_key",
    "Mutation",
    "MutationState",
    "ConflictPolicy",
    "RetryPolicy",
    "SyncConfig",
    # Errors
    "SyncError",
    "TransportError",
    "NetworkError",
    "ServerError",
    "ValidationError",
    "StaleWriteConflict",
    # Core interfaces
    "ICacheStore",
    "IResourceTransport",
    "IVisibilitySignal",
    # Core services
    "Fetcher",
    "KeyRegistry",
    "MutationDispatcher",
    "PollScheduler",
    "QueryResolver",
    "SubscriberRegistry",
    # Infrastructure implementations
    "InMemoryCacheStore",
    "HttpResourceTransport",
    "InMemoryTransport",
    "ManualVisibility",
]
