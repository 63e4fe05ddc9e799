# tests/test_store.py

from __future__ import annotations

from datetime import timedelta

import pytest

from airtime.scheduler import PersistenceError, ScheduleInvariantError, Subscription
from airtime.scheduler.service.store import ScheduleStore

from .conftest import T0, make_series


def pending_subscription(sub_id: str, due_offset_days: int, last: int = 0) -> Subscription:
    sub = Subscription(id=sub_id, subscriber_id=f"user-{sub_id}", series_id="s1", last_notified_episode=last)
    sub.set_pending(T0 + timedelta(days=due_offset_days), last + 1)
    return sub


async def test_find_all_pending_returns_only_projected_rows_in_due_order(store: ScheduleStore) -> None:
    await store.save(pending_subscription("late", 14))
    await store.save(pending_subscription("early", 7))
    await store.save(Subscription(id="idle", subscriber_id="u", series_id="s1"))

    pending = await store.find_all_pending()

    assert [s.id for s in pending] == ["early", "late"]
    assert pending[0].next_notify_time == T0 + timedelta(days=7)
    assert pending[0].next_notify_episode == 1


async def test_clear_pending_clears_both_fields(store: ScheduleStore) -> None:
    await store.save(pending_subscription("a", 7, last=2))

    assert await store.clear_pending("a") is True
    assert await store.clear_pending("a") is False
    assert await store.clear_pending("missing") is False

    sub = await store.get("a")
    assert sub.next_notify_time is None
    assert sub.next_notify_episode is None
    assert sub.last_notified_episode == 2


async def test_commit_delivery_advances_only_the_pending_episode(store: ScheduleStore) -> None:
    await store.save(pending_subscription("a", 7, last=4))

    assert await store.commit_delivery("a", 6) is False
    assert await store.commit_delivery("a", 5) is True
    # Already committed: a second commit for the same episode is stale
    assert await store.commit_delivery("a", 5) is False

    sub = await store.get("a")
    assert sub.last_notified_episode == 5
    assert not sub.has_pending


async def test_save_rejects_inconsistent_projection(store: ScheduleStore) -> None:
    sub = Subscription(id="bad", subscriber_id="u", series_id="s1", last_notified_episode=1)
    sub.next_notify_time = T0
    sub.next_notify_episode = 5

    with pytest.raises(ScheduleInvariantError):
        await store.save(sub)

    assert await store.get("bad") is None


async def test_write_failure_raises_persistence_error(store: ScheduleStore) -> None:
    await store._connection.execute("DROP TABLE subscriptions")

    with pytest.raises(PersistenceError):
        await store.save(Subscription(id="a", subscriber_id="u", series_id="s1"))


async def test_uninitialized_store_raises(tmp_path) -> None:
    store = ScheduleStore(tmp_path / "never.db")

    with pytest.raises(RuntimeError):
        await store.get("a")


async def test_series_and_subscriber_lookups(store: ScheduleStore) -> None:
    await store.save_series(make_series("s1", total=None, end_time=T0 + timedelta(days=60)))
    await store.save(Subscription(id="a", subscriber_id="u1", series_id="s1"))
    await store.save(Subscription(id="b", subscriber_id="u2", series_id="s1"))

    series = await store.get_series("s1")
    assert series.base_time == T0
    assert series.end_time == T0 + timedelta(days=60)
    assert series.total_episode_count is None
    assert await store.get_series("nope") is None

    found = await store.find_by_subscriber_and_series("u2", "s1")
    assert found.id == "b"
    assert [s.id for s in await store.list_subscriptions("u1")] == ["a"]

    assert await store.delete("a") is True
    assert await store.delete("a") is False


async def test_create_refuses_duplicate_subscriber_and_series(store: ScheduleStore) -> None:
    assert await store.create(Subscription(id="a", subscriber_id="u", series_id="s1")) is True
    assert await store.create(Subscription(id="b", subscriber_id="u", series_id="s1")) is False
    assert await store.create(Subscription(id="a", subscriber_id="v", series_id="s2")) is False

    rows = await store.list_subscriptions()
    assert [(r.id, r.subscriber_id) for r in rows] == [("a", "u")]


async def test_save_updates_in_place_and_never_replaces_another_row(store: ScheduleStore) -> None:
    await store.save(Subscription(id="a", subscriber_id="u", series_id="s1"))
    created = (await store.get("a")).created_at

    await store.save(pending_subscription("a", 7, last=0))
    updated = await store.get("a")
    assert updated.next_notify_episode == 1
    assert updated.created_at == created

    with pytest.raises(PersistenceError):
        await store.save(Subscription(id="b", subscriber_id="user-a", series_id="s1"))
    assert [r.id for r in await store.list_subscriptions()] == ["a"]


async def test_save_pending_requires_matching_progress(store: ScheduleStore) -> None:
    await store.save(Subscription(id="a", subscriber_id="u", series_id="s1", last_notified_episode=2))

    assert await store.save_pending("a", T0, 2) is False
    assert await store.save_pending("missing", T0, 3) is False
    assert not (await store.get("a")).has_pending

    assert await store.save_pending("a", T0, 3) is True
    stored = await store.get("a")
    assert stored.next_notify_episode == 3
    assert stored.next_notify_time == T0
