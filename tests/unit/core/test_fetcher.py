"""Tests for Fetcher."""

import asyncio
from datetime import timedelta
from typing import Any
from unittest.mock import AsyncMock

import pytest

from querysync.core.entities import EntryStatus, QueryKey, RetryPolicy, make_key
from querysync.core.errors import NetworkError, ServerError, TransportError, ValidationError
from querysync.core.services import Fetcher, KeyRegistry, QueryResolver
from querysync.infrastructure.stores.memory import InMemoryCacheStore

KEY = make_key("projects", "p1", "milestones")
ROWS = [{"id": "m1"}, {"id": "m2"}]


class GatedQuery:
    """Query function that blocks until released and counts its calls."""

    def __init__(self, result: Any = None) -> None:
        self.result = result
        self.calls = 0
        self.gate = asyncio.Event()

    async def __call__(self, key: QueryKey) -> Any:
        self.calls += 1
        await self.gate.wait()
        return self.result


@pytest.fixture
def resolver() -> QueryResolver:
    return QueryResolver()


@pytest.fixture
def registry() -> KeyRegistry:
    return KeyRegistry()


@pytest.fixture
def fetcher(
    store: InMemoryCacheStore, resolver: QueryResolver, registry: KeyRegistry
) -> Fetcher:
    return Fetcher(store, resolver, registry=registry)


class TestFetcher:
    """Tests for Fetcher."""

    @pytest.mark.asyncio
    async def test_fetch_routes_through_transport(
        self, fetcher: Fetcher, resolver: QueryResolver, store: InMemoryCacheStore
    ) -> None:
        transport = AsyncMock()
        transport.list.return_value = ROWS
        resolver.register_transport("milestones", transport)

        data = await fetcher.fetch(KEY)

        assert data == ROWS
        transport.list.assert_awaited_once_with("p1")
        entry = store.get(KEY)
        assert entry is not None
        assert entry.status == EntryStatus.SUCCESS
        assert not entry.is_fetching

    @pytest.mark.asyncio
    async def test_fetch_tracks_key(
        self, fetcher: Fetcher, resolver: QueryResolver, registry: KeyRegistry
    ) -> None:
        resolver.register_query(KEY, AsyncMock(return_value=ROWS))

        await fetcher.fetch(KEY)

        assert registry.is_known(KEY)

    @pytest.mark.asyncio
    async def test_concurrent_fetches_coalesce(
        self, fetcher: Fetcher, resolver: QueryResolver
    ) -> None:
        """Concurrent fetches of one key make exactly one transport call."""
        query = GatedQuery(ROWS)
        resolver.register_query(KEY, query)

        tasks = [asyncio.create_task(fetcher.fetch(KEY)) for _ in range(5)]
        await asyncio.sleep(0)
        assert fetcher.is_fetching(KEY)
        query.gate.set()
        results = await asyncio.gather(*tasks)

        assert query.calls == 1
        assert results == [ROWS] * 5
        assert fetcher.stats["coalesced"] == 4
        assert not fetcher.is_fetching(KEY)

    @pytest.mark.asyncio
    async def test_fetch_after_invalidation_does_not_join_old_flight(
        self, fetcher: Fetcher, resolver: QueryResolver, store: InMemoryCacheStore
    ) -> None:
        """A flight that predates an invalidation is not reused."""
        query = GatedQuery(ROWS)
        resolver.register_query(KEY, query)

        first = asyncio.create_task(fetcher.fetch(KEY))
        await asyncio.sleep(0)
        store.invalidate(KEY)
        second = asyncio.create_task(fetcher.fetch(KEY))
        await asyncio.sleep(0)
        query.gate.set()
        await asyncio.gather(first, second)

        assert query.calls == 2
        assert not store.is_stale(KEY)

    @pytest.mark.asyncio
    async def test_superseded_result_is_stored_stale(
        self, fetcher: Fetcher, resolver: QueryResolver, store: InMemoryCacheStore
    ) -> None:
        query = GatedQuery(ROWS)
        resolver.register_query(KEY, query)

        task = asyncio.create_task(fetcher.fetch(KEY))
        await asyncio.sleep(0)
        store.invalidate(KEY)
        query.gate.set()
        await task

        entry = store.get(KEY)
        assert entry is not None
        assert entry.data == ROWS
        assert store.is_stale(KEY)

    @pytest.mark.asyncio
    async def test_failure_keeps_last_good_data(
        self, fetcher: Fetcher, resolver: QueryResolver, store: InMemoryCacheStore
    ) -> None:
        store.set(KEY, ROWS, stale=True)
        resolver.register_query(KEY, AsyncMock(side_effect=ConnectionError("refused")))

        with pytest.raises(NetworkError) as exc_info:
            await fetcher.fetch(KEY)

        assert isinstance(exc_info.value.__cause__, ConnectionError)
        entry = store.get(KEY)
        assert entry is not None
        assert entry.status == EntryStatus.ERROR
        assert entry.data == ROWS
        assert isinstance(entry.error, NetworkError)
        assert fetcher.stats["failures"] == 1

    @pytest.mark.asyncio
    async def test_unclassified_failure_becomes_transport_error(
        self, fetcher: Fetcher, resolver: QueryResolver
    ) -> None:
        resolver.register_query(KEY, AsyncMock(side_effect=KeyError("data")))

        with pytest.raises(TransportError):
            await fetcher.fetch(KEY)

    @pytest.mark.asyncio
    async def test_unroutable_key(self, fetcher: Fetcher) -> None:
        with pytest.raises(ValidationError):
            await fetcher.fetch(KEY)

    @pytest.mark.asyncio
    async def test_no_retry_by_default(
        self, fetcher: Fetcher, resolver: QueryResolver
    ) -> None:
        query = AsyncMock(side_effect=ServerError("boom", status_code=503))
        resolver.register_query(KEY, query)

        with pytest.raises(ServerError):
            await fetcher.fetch(KEY)

        assert query.await_count == 1

    @pytest.mark.asyncio
    async def test_retry_with_backoff(
        self, fetcher: Fetcher, resolver: QueryResolver
    ) -> None:
        query = AsyncMock(side_effect=[OSError("reset"), OSError("reset"), ROWS])
        resolver.register_query(KEY, query)
        policy = RetryPolicy(max_attempts=3, base_delay=timedelta(0))

        data = await fetcher.fetch(KEY, retry=policy)

        assert data == ROWS
        assert query.await_count == 3
        assert fetcher.stats["transport_calls"] == 3

    @pytest.mark.asyncio
    async def test_auth_failures_not_retried(
        self, fetcher: Fetcher, resolver: QueryResolver
    ) -> None:
        query = AsyncMock(side_effect=ServerError("unauthorized", status_code=401))
        resolver.register_query(KEY, query)

        with pytest.raises(ServerError):
            await fetcher.fetch(KEY, retry=RetryPolicy(max_attempts=3, base_delay=timedelta(0)))

        assert query.await_count == 1

    @pytest.mark.asyncio
    async def test_cancelled_waiter_does_not_cancel_fetch(
        self, fetcher: Fetcher, resolver: QueryResolver, store: InMemoryCacheStore
    ) -> None:
        """Another waiter still receives the result of the shared flight."""
        query = GatedQuery(ROWS)
        resolver.register_query(KEY, query)

        leaving = asyncio.create_task(fetcher.fetch(KEY))
        staying = asyncio.create_task(fetcher.fetch(KEY))
        await asyncio.sleep(0)
        leaving.cancel()
        query.gate.set()

        assert await staying == ROWS
        with pytest.raises(asyncio.CancelledError):
            await leaving
        entry = store.get(KEY)
        assert entry is not None
        assert entry.data == ROWS

    @pytest.mark.asyncio
    async def test_refresh_swallows_failures(
        self, fetcher: Fetcher, resolver: QueryResolver, store: InMemoryCacheStore
    ) -> None:
        resolver.register_query(KEY, AsyncMock(side_effect=OSError("down")))

        assert await fetcher.refresh(KEY) is None

        entry = store.get(KEY)
        assert entry is not None
        assert entry.status == EntryStatus.ERROR

    @pytest.mark.asyncio
    async def test_close_cancels_in_flight(
        self, fetcher: Fetcher, resolver: QueryResolver, store: InMemoryCacheStore
    ) -> None:
        resolver.register_query(KEY, GatedQuery(ROWS))
        task = fetcher.refresh(KEY)
        await asyncio.sleep(0)

        await fetcher.close()

        assert task.done()
        entry = store.get(KEY)
        assert entry is not None
        assert entry.status == EntryStatus.IDLE
        assert not entry.is_fetching
