# tests/test_recovery.py

from __future__ import annotations

from datetime import datetime, timedelta, timezone

from airtime.scheduler import NotificationScheduler, Subscription
from airtime.scheduler.service.store import ScheduleStore

from .conftest import make_series
from .fakes import RecordingNotifier, wait_until


async def seed(db_path, rows: list[tuple[str, str, datetime]], series) -> None:
    """Persist series and pending subscriptions as a previous process would have."""
    store = ScheduleStore(db_path)
    await store.initialize()
    for s in series:
        await store.save_series(s)
    for sub_id, series_id, due in rows:
        sub = Subscription(id=sub_id, subscriber_id=f"user-{sub_id}", series_id=series_id, last_notified_episode=2)
        sub.set_pending(due, 3)
        await store.save(sub)
    await store.close()


async def test_recovery_arms_every_pending_row(db_path) -> None:
    now = datetime.now(timezone.utc)
    await seed(
        db_path,
        rows=[
            ("f1", "precise", now + timedelta(days=1)),
            ("f2", "precise", now + timedelta(days=2)),
            ("p1", "precise", now - timedelta(hours=1)),
            ("p2", "precise", now - timedelta(days=3)),
            ("gone", "coarse", now + timedelta(days=1)),
        ],
        series=[
            make_series("precise", total=None),
            make_series("coarse", period=None),
        ],
    )
    notifier = RecordingNotifier(block={"user-p1", "user-p2"})
    svc = NotificationScheduler(db_path=db_path, notifier=notifier)

    report = await svc.start()
    try:
        assert svc.pending_count() == 4
        assert svc.pending_ids() == {"f1", "f2", "p1", "p2"}
        assert (report.future, report.past_due, report.cleared, report.armed) == (2, 2, 1, 4)

        cleared = await svc.get("gone")
        assert not cleared.has_pending
        assert cleared.last_notified_episode == 2
    finally:
        notifier.release.set()
        await svc.stop()


async def test_past_due_row_is_delivered_after_restart(db_path) -> None:
    # A delivery that got stuck before the restart still has its projection
    await seed(
        db_path,
        rows=[("stuck", "precise", datetime.now(timezone.utc) - timedelta(minutes=5))],
        series=[make_series("precise", total=3)],
    )
    notifier = RecordingNotifier()
    svc = NotificationScheduler(db_path=db_path, notifier=notifier)

    await svc.start()
    try:
        await wait_until(lambda: notifier.episodes("user-stuck") == [3])
        await wait_until(lambda: svc.pending_count() == 0)

        stored = await svc.get("stuck")
        assert stored.last_notified_episode == 3
        assert not stored.has_pending
    finally:
        await svc.stop()


async def test_recovery_with_nothing_pending(db_path) -> None:
    svc = NotificationScheduler(db_path=db_path, notifier=RecordingNotifier())

    report = await svc.start()
    try:
        assert report.armed == 0
        assert svc.pending_count() == 0
        assert svc.state.recovered
    finally:
        await svc.stop()
