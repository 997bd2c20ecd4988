"""Tests for InMemoryCacheStore."""

from datetime import timedelta

import pytest

from querysync.core.entities import EntryStatus, KeyPattern, SyncConfig, make_key
from querysync.core.errors import NetworkError
from querysync.infrastructure.stores.memory import InMemoryCacheStore
from tests.fakes import FakeClock

KEY = make_key("projects", "p1", "milestones")


class TestInMemoryCacheStore:
    """Tests for InMemoryCacheStore."""

    def test_set_and_get(self, store: InMemoryCacheStore, clock: FakeClock) -> None:
        """A set entry is fresh until its TTL passes."""
        store.set(KEY, [{"id": "m1"}])

        entry = store.get(KEY)
        assert entry is not None
        assert entry.data == [{"id": "m1"}]
        assert entry.status == EntryStatus.SUCCESS
        assert entry.fetched_at == clock.current
        assert entry.stale_after == clock.current + timedelta(seconds=10)
        assert not store.is_stale(KEY)

        clock.advance(10)
        assert store.is_stale(KEY)

    def test_get_missing(self, store: InMemoryCacheStore) -> None:
        assert store.get(KEY) is None
        assert store.is_stale(KEY)

    def test_set_stale(self, store: InMemoryCacheStore) -> None:
        store.set(KEY, [], stale=True)
        assert store.is_stale(KEY)

    def test_ttl_override(self, clock: FakeClock) -> None:
        store = InMemoryCacheStore(
            SyncConfig(stale_time_overrides={"milestones": timedelta(seconds=2)}),
            clock=clock,
        )
        store.set(KEY, [])

        clock.advance(2)

        assert store.is_stale(KEY)

    def test_invalidate_keeps_data(self, store: InMemoryCacheStore) -> None:
        store.set(KEY, [{"id": "m1"}])

        assert store.invalidate(KEY) == 1

        entry = store.get(KEY)
        assert entry is not None
        assert store.is_stale(KEY)
        assert entry.data == [{"id": "m1"}]
        assert entry.generation == 1

    def test_invalidate_is_idempotent(self, store: InMemoryCacheStore) -> None:
        """A second invalidation leaves the entry in the same observable state."""
        store.set(KEY, [{"id": "m1"}])
        store.invalidate(KEY)
        first = store.get(KEY)

        store.invalidate(KEY)
        second = store.get(KEY)

        assert first is not None and second is not None
        assert (first.data, first.stale_after, first.status) == (
            second.data,
            second.stale_after,
            second.status,
        )
        assert store.is_stale(KEY)

    def test_invalidate_pattern(self, store: InMemoryCacheStore) -> None:
        other = make_key("projects", "p2", "milestones")
        store.set(KEY, [])
        store.set(other, [])

        count = store.invalidate(KeyPattern.of("projects", "p1"))

        assert count == 1
        assert store.is_stale(KEY)
        assert not store.is_stale(other)

    def test_invalidate_missing_is_noop(self, store: InMemoryCacheStore) -> None:
        assert store.invalidate(KEY) == 0
        assert len(store) == 0

    def test_patch(self, store: InMemoryCacheStore) -> None:
        store.set(KEY, [{"id": "m1"}])

        assert store.patch(KEY, lambda rows: [*rows, {"id": "m2"}])

        entry = store.get(KEY)
        assert entry is not None
        assert entry.data == [{"id": "m1"}, {"id": "m2"}]

    def test_patch_absent_is_noop(self, store: InMemoryCacheStore) -> None:
        assert not store.patch(KEY, lambda rows: [*rows, {"id": "m2"}])
        assert KEY not in store

    def test_mark_fetching_and_error(self, store: InMemoryCacheStore) -> None:
        """A failed refresh keeps the last good data."""
        assert store.mark_fetching(KEY).status == EntryStatus.LOADING
        store.set(KEY, [{"id": "m1"}])

        fetching = store.mark_fetching(KEY)
        assert fetching.status == EntryStatus.SUCCESS
        assert fetching.is_fetching

        error = NetworkError("down")
        failed = store.mark_error(KEY, error)
        assert failed.status == EntryStatus.ERROR
        assert failed.error is error
        assert failed.data == [{"id": "m1"}]
        assert not failed.is_fetching

    def test_mark_cancelled(self, store: InMemoryCacheStore) -> None:
        store.mark_fetching(KEY)

        entry = store.mark_cancelled(KEY)

        assert entry is not None
        assert entry.status == EntryStatus.IDLE
        assert not entry.is_fetching

    def test_snapshot_restore(self, store: InMemoryCacheStore) -> None:
        """Restore brings back the exact captured data."""
        store.set(KEY, [{"id": "m1"}, {"id": "m2"}])
        before = store.get(KEY)
        snapshot = store.snapshot([KEY])

        store.patch(KEY, lambda rows: [*rows, {"id": "m3"}])
        store.restore(snapshot)

        after = store.get(KEY)
        assert before is not None and after is not None
        assert after.data == [{"id": "m1"}, {"id": "m2"}]
        assert after.stale_after == before.stale_after

    def test_restore_keeps_newer_generation(self, store: InMemoryCacheStore) -> None:
        store.set(KEY, [])
        snapshot = store.snapshot([KEY])
        store.invalidate(KEY)

        store.restore(snapshot)

        entry = store.get(KEY)
        assert entry is not None
        assert entry.generation == 1

    def test_restore_keeps_entry_refetched_since_snapshot(
        self, store: InMemoryCacheStore, clock: FakeClock
    ) -> None:
        """Server data that landed after the snapshot is not rolled back."""
        store.set(KEY, [{"id": "m1"}])
        snapshot = store.snapshot([KEY])
        store.patch(KEY, lambda rows: [*rows, {"id": "m3"}])
        clock.advance(1)
        store.invalidate(KEY)
        store.set(KEY, [{"id": "m1"}, {"id": "m5"}])

        store.restore(snapshot)

        entry = store.get(KEY)
        assert entry is not None
        assert entry.data == [{"id": "m1"}, {"id": "m5"}]
        assert entry.fetched_at == clock.current
        assert entry.generation == 1

    def test_restore_leaves_keys_absent_at_capture(
        self, store: InMemoryCacheStore, clock: FakeClock
    ) -> None:
        snapshot = store.snapshot([KEY])
        clock.advance(1)
        store.set(KEY, [{"id": "m1"}])

        store.restore(snapshot)

        entry = store.get(KEY)
        assert entry is not None
        assert entry.data == [{"id": "m1"}]

    def test_keys_and_clear(self, store: InMemoryCacheStore) -> None:
        store.set(KEY, [])
        assert store.keys() == [KEY]

        store.clear()

        assert len(store) == 0
        assert store.get(KEY) is None


@pytest.mark.parametrize("seconds,stale", [(9.9, False), (10, True)])
def test_stale_boundary(
    store: InMemoryCacheStore, clock: FakeClock, seconds: float, stale: bool
) -> None:
    """Entries turn stale exactly when the TTL elapses."""
    store.set(KEY, [])
    clock.advance(seconds)
    assert store.is_stale(KEY) is stale
