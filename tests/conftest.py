# tests/conftest.py

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest

from airtime.scheduler import NotificationScheduler, Series
from airtime.scheduler.service.store import ScheduleStore

from .fakes import RecordingNotifier

T0 = datetime(2024, 1, 1, tzinfo=timezone.utc)


def make_series(
    series_id: str = "s1",
    base_time: datetime | None = T0,
    period: str | None = "P7D",
    total: int | None = 12,
    end_time: datetime | None = None,
    name: str = "Frieren",
) -> Series:
    return Series(
        id=series_id,
        name=name,
        base_time=base_time,
        recurrence_period=period,
        end_time=end_time,
        total_episode_count=total,
    )


def future_series(series_id: str = "future", days: int = 1, total: int | None = 12) -> Series:
    """Series whose first episode airs ``days`` from now."""
    return make_series(
        series_id,
        base_time=datetime.now(timezone.utc) + timedelta(days=days),
        total=total,
    )


@pytest.fixture()
def db_path(tmp_path: Path) -> Path:
    return tmp_path / "airtime.db"


@pytest.fixture()
async def store(db_path: Path):
    s = ScheduleStore(db_path)
    await s.initialize()
    yield s
    await s.close()


@pytest.fixture()
def notifier() -> RecordingNotifier:
    return RecordingNotifier()


@pytest.fixture()
async def service(db_path: Path, notifier: RecordingNotifier):
    """Started scheduler backed by a real SQLite file and a recording notifier."""
    svc = NotificationScheduler(
        db_path=db_path,
        notifier=notifier,
        delivery_timeout_seconds=1.0,
        timezone="UTC",
    )
    await svc.start()
    yield svc
    await svc.stop()
