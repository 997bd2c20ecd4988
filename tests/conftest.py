"""Pytest configuration for querysync tests."""

from collections.abc import AsyncIterator
from datetime import timedelta

import pytest

from querysync import InMemoryCacheStore, InMemoryTransport, SyncClient, SyncConfig
from querysync.resources import register_project_hierarchy
from tests.fakes import FakeClock


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def config() -> SyncConfig:
    """Config with a 10s TTL."""
    return SyncConfig(stale_time=timedelta(seconds=10))


@pytest.fixture
def store(config: SyncConfig, clock: FakeClock) -> InMemoryCacheStore:
    return InMemoryCacheStore(config=config, clock=clock)


@pytest.fixture
def milestones_transport() -> InMemoryTransport:
    """Milestones of two projects."""
    return InMemoryTransport(
        [
            {"id": "m1", "projectId": "p1", "title": "Foundations"},
            {"id": "m2", "projectId": "p1", "title": "Framing"},
            {"id": "m9", "projectId": "p2", "title": "Survey"},
        ],
        parent_field="projectId",
        id_prefix="m",
    )


@pytest.fixture
async def client(
    config: SyncConfig,
    clock: FakeClock,
    milestones_transport: InMemoryTransport,
) -> AsyncIterator[SyncClient]:
    """Initialized client with the project hierarchy and a milestones transport."""
    sync_client = SyncClient(config, clock=clock)
    register_project_hierarchy(sync_client.registry)
    sync_client.register_transport("milestones", milestones_transport)
    async with sync_client:
        yield sync_client
