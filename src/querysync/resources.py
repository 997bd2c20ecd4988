"""Query keys, hierarchy and timings of the project-management resources.

Every view of the application builds its keys through the factories
below, so two views showing the same collection share one cache entry.

Example:
    client = SyncClient(default_config())
    register_project_hierarchy(client.registry)
    register_http_transports(client, http)

    milestones = watch(client, project_milestones("p1"))
    files = watch(client, milestone_files("m1", visibility="client"))
"""

from dataclasses import dataclass
from datetime import timedelta
from typing import TYPE_CHECKING, Any

import httpx

from querysync.core.entities.cache_key import ANY, KeyPattern, QueryKey, make_key
from querysync.core.entities.sync_config import SyncConfig
from querysync.core.services.key_registry import KeyRegistry
from querysync.infrastructure.transports.http import HttpResourceTransport

if TYPE_CHECKING:
    from querysync.client import SyncClient
    from querysync.core.services.handles import QueryHandle

POLL_INTERVAL = timedelta(seconds=15)
STALE_TIME = timedelta(seconds=10)
FILES_STALE_TIME = timedelta(minutes=2)
USERS_STALE_TIME = timedelta(seconds=30)
CURRENT_USER_POLL_INTERVAL = timedelta(seconds=30)
CURRENT_USER_STALE_TIME = timedelta(seconds=15)

PROJECT_SUB_RESOURCES = (
    "variations",
    "invoices",
    "milestones",
    "tickets",
    "files",
    "approvals",
    "team",
)

# File lists are loaded on open and never revalidated in the background
FILE_SUB_RESOURCES = ("milestone-files", "variation-files")

# Global lists that aggregate the per-project list of the same name
GLOBAL_RESOURCES = ("variations", "tickets", "invoices", "approvals")

PENDING_VARIATION_STATUSES = frozenset({"Under Review", "Pending", "Submitted"})
OPEN_TICKET_STATUSES = frozenset({"Open", "In Progress"})


# Key factories


def projects() -> QueryKey:
    return make_key("projects")


def project(id: Any) -> QueryKey:
    return make_key("projects", id)


def project_variations(project_id: Any) -> QueryKey:
    return make_key("projects", project_id, "variations")


def project_invoices(project_id: Any) -> QueryKey:
    return make_key("projects", project_id, "invoices")


def project_milestones(project_id: Any) -> QueryKey:
    return make_key("projects", project_id, "milestones")


def project_tickets(project_id: Any) -> QueryKey:
    return make_key("projects", project_id, "tickets")


def project_files(project_id: Any) -> QueryKey:
    return make_key("projects", project_id, "files")


def project_approvals(project_id: Any) -> QueryKey:
    return make_key("projects", project_id, "approvals")


def project_team(project_id: Any) -> QueryKey:
    return make_key("projects", project_id, "team")


def all_variations() -> QueryKey:
    return make_key("variations")


def all_tickets() -> QueryKey:
    return make_key("tickets")


def all_invoices() -> QueryKey:
    return make_key("invoices")


def all_approvals() -> QueryKey:
    return make_key("approvals")


def clients() -> QueryKey:
    return make_key("clients")


def client(id: Any) -> QueryKey:
    return make_key("clients", id)


def users() -> QueryKey:
    return make_key("users")


def user(id: Any) -> QueryKey:
    return make_key("users", id)


def current_user() -> QueryKey:
    return make_key("auth", "me")


def branding_settings() -> QueryKey:
    return make_key("branding", "settings")


def milestone(id: Any) -> QueryKey:
    return make_key("milestones", id)


def milestone_files(
    milestone_id: Any,
    visibility: str | None = None,
    include: str | None = None,
) -> QueryKey:
    """Files of a milestone, optionally filtered by visibility."""
    return make_key(
        "milestones",
        milestone_id,
        "milestone-files",
        {"visibility": visibility, "include": include},
    )


def variation(id: Any) -> QueryKey:
    return make_key("variations", id)


def variation_files(variation_id: Any) -> QueryKey:
    return make_key("variations", variation_id, "variation-files")


# Hierarchy


def register_project_hierarchy(registry: KeyRegistry) -> None:
    """Declare the invalidation graph of the project resources.

    Invalidating a project reaches all of its sub-resources but no other
    project's. Global lists reach every per-project list of the same
    resource, so a write seen through one view refreshes the other.

    Args:
        registry: The registry receiving the edges.
    """
    any_project = KeyPattern.of("projects", ANY, None)
    registry.register_hierarchy(any_project, projects(), bind=False)
    for sub in PROJECT_SUB_RESOURCES:
        registry.register_hierarchy(KeyPattern.of("projects", ANY, sub), any_project)

    for name in GLOBAL_RESOURCES:
        registry.register_hierarchy(
            KeyPattern.of("projects", ANY, name),
            make_key(name),
            bind=False,
        )

    any_variation = KeyPattern.of("variations", ANY, None)
    any_variation_files = KeyPattern.of("variations", ANY, "variation-files")
    registry.register_hierarchy(any_variation, all_variations(), bind=False)
    registry.register_hierarchy(any_variation_files, any_variation)
    registry.register_hierarchy(
        any_variation_files,
        KeyPattern.of("projects", ANY, "variations"),
        bind=False,
    )

    any_milestone_files = KeyPattern.of("milestones", ANY, "milestone-files")
    registry.register_hierarchy(any_milestone_files, KeyPattern.of("milestones", ANY, None))
    registry.register_hierarchy(
        any_milestone_files,
        KeyPattern.of("projects", ANY, "milestones"),
        bind=False,
    )

    # Project rows embed client data
    registry.register_hierarchy(KeyPattern.of("clients", ANY, None), clients(), bind=False)
    registry.register_hierarchy(projects(), clients(), bind=False)

    registry.register_hierarchy(KeyPattern.of("users", ANY, None), users(), bind=False)


# Timings


def default_config(**overrides: Any) -> SyncConfig:
    """Sync configuration with the timings the project views use.

    Args:
        **overrides: SyncConfig fields replacing the defaults.

    Returns:
        A new SyncConfig.
    """
    options: dict[str, Any] = {
        "stale_time": STALE_TIME,
        "refresh_interval": POLL_INTERVAL,
        "stale_time_overrides": {
            "users": USERS_STALE_TIME,
            "auth": CURRENT_USER_STALE_TIME,
            "milestone-files": FILES_STALE_TIME,
            "variation-files": FILES_STALE_TIME,
        },
    }
    options.update(overrides)
    return SyncConfig(**options)


def refresh_interval_for(key: QueryKey) -> timedelta | None:
    """Poll interval a view of ``key`` should request, or None for no polling."""
    if key.resource_type == "users":
        # Polling users loops on auth errors for non-admins
        return None
    if key.resource_type == "auth":
        return CURRENT_USER_POLL_INTERVAL
    if key.sub_resource in FILE_SUB_RESOURCES:
        return None
    return POLL_INTERVAL


def refetch_on_focus_for(key: QueryKey) -> bool:
    """Whether a view of ``key`` revalidates when the app regains focus."""
    return key.sub_resource not in FILE_SUB_RESOURCES


def watch(client: "SyncClient", key: QueryKey) -> "QueryHandle":
    """Subscribe to ``key`` with the timings its view uses.

    A scoped key without a scope id stays disabled until the view is
    opened with a real id.
    """
    return client.query(
        key,
        refresh_interval_for(key),
        refetch_on_focus=refetch_on_focus_for(key),
    )


# Transports


def register_http_transports(client: "SyncClient", http: httpx.AsyncClient) -> None:
    """Register REST transports for every resource on ``client``.

    Args:
        client: The sync client.
        http: httpx client configured with the API base URL and auth headers.
    """
    client.register_transport("projects", HttpResourceTransport(http, "/projects"))
    for name in PROJECT_SUB_RESOURCES:
        client.register_transport(
            name,
            HttpResourceTransport(http, f"/{name}", scoped_path=f"/projects/{{parent_id}}/{name}"),
        )
    client.register_transport(
        "milestone-files",
        HttpResourceTransport(
            http, "/milestone-files", scoped_path="/milestone-files/{parent_id}"
        ),
    )
    client.register_transport(
        "variation-files",
        HttpResourceTransport(http, "/variations", scoped_path="/variations/{parent_id}/files"),
    )
    client.register_transport("clients", HttpResourceTransport(http, "/clients"))
    client.register_transport("users", HttpResourceTransport(http, "/users"))
    client.register_transport("auth", HttpResourceTransport(http, "/auth"))

    branding = HttpResourceTransport(http, "/branding")
    client.register_query(branding_settings(), lambda key: branding.list())


# Notification counts


@dataclass(frozen=True)
class NotificationCounts:
    """Sidebar badge counts."""

    variations: int = 0
    tickets: int = 0
    is_loading: bool = False


def count_notifications(
    variations: list[dict[str, Any]] | None,
    tickets: list[dict[str, Any]] | None,
) -> NotificationCounts:
    """Count variations awaiting review and tickets still open."""
    return NotificationCounts(
        variations=sum(
            1 for v in variations or [] if v.get("status") in PENDING_VARIATION_STATUSES
        ),
        tickets=sum(1 for t in tickets or [] if t.get("status") in OPEN_TICKET_STATUSES),
    )


def notification_counts(client: "SyncClient") -> NotificationCounts:
    """Compute the sidebar counts from the cached global lists.

    Reads are stale-while-revalidate: missing or stale lists are fetched in
    the background and the counts reflect what is cached right now.

    Returns:
        The counts; ``is_loading`` is set while either list has no data.
    """
    variation_entry = client.read(all_variations())
    ticket_entry = client.read(all_tickets())
    counts = count_notifications(
        variation_entry.data if variation_entry is not None else None,
        ticket_entry.data if ticket_entry is not None else None,
    )
    loading = any(
        entry is None or not entry.has_data for entry in (variation_entry, ticket_entry)
    )
    return NotificationCounts(counts.variations, counts.tickets, is_loading=loading)
