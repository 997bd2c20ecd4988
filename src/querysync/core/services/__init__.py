"""Domain services for querysync."""

from querysync.core.services.fetcher import Fetcher
from querysync.core.services.handles import MutationHandle, QueryHandle
from querysync.core.services.key_registry import HierarchyEdge, KeyRegistry
from querysync.core.services.mutation_dispatcher import MutationDispatcher
from querysync.core.services.poll_scheduler import PollScheduler
from querysync.core.services.resolver import QueryResolver
from querysync.core.services.subscriber_registry import (
    ConsumerOptions,
    Subscription,
    SubscriptionHandle,
    SubscriberRegistry,
)

__all__ = [
    "ConsumerOptions",
    "Fetcher",
    "HierarchyEdge",
    "KeyRegistry",
    "MutationDispatcher",
    "MutationHandle",
    "PollScheduler",
    "QueryHandle",
    "QueryResolver",
    "Subscription",
    "SubscriptionHandle",
    "SubscriberRegistry",
]
