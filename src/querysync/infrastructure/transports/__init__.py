"""Resource transport implementations."""

from querysync.infrastructure.transports.http import HttpResourceTransport
from querysync.infrastructure.transports.memory import InMemoryTransport

__all__ = [
    "HttpResourceTransport",
    "InMemoryTransport",
]
