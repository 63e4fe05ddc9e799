"""Data models for series and subscriptions."""
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any
import uuid

from .errors import ScheduleInvariantError
from .schedule import parse_instant, parse_period, utcnow


def _iso(value: datetime | None) -> str | None:
    return value.isoformat() if value else None


@dataclass
class Series:
    """A show with a (possibly partial) release cadence.

    Read-only from the scheduler's point of view; written by metadata ingestion.
    """
    id: str
    name: str = ""
    name_cn: str | None = None

    # Timing: instant of episode 1, ISO-8601 duration between episodes,
    # optional end instant and optional episode count
    base_time: datetime | None = None
    recurrence_period: str | None = None
    end_time: datetime | None = None
    total_episode_count: int | None = None

    @property
    def display_name(self) -> str:
        """Localized name when present, original name otherwise."""
        if self.name_cn and self.name_cn.strip():
            return self.name_cn
        return self.name or self.id

    @property
    def has_precise_cadence(self) -> bool:
        return (
            self.base_time is not None
            and self.recurrence_period is not None
            and parse_period(self.recurrence_period) is not None
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "name_cn": self.name_cn,
            "base_time": _iso(self.base_time),
            "recurrence_period": self.recurrence_period,
            "end_time": _iso(self.end_time),
            "total_episode_count": self.total_episode_count,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Series":
        return cls(
            id=str(data["id"]),
            name=data.get("name") or "",
            name_cn=data.get("name_cn"),
            base_time=parse_instant(data.get("base_time")),
            recurrence_period=data.get("recurrence_period"),
            end_time=parse_instant(data.get("end_time")),
            total_episode_count=data.get("total_episode_count"),
        )


@dataclass
class SeriesDisplayInfo:
    """What the notifier needs to render one episode notification."""
    series_id: str
    display_name: str
    air_time: datetime | None = None
    air_time_display: str | None = None


@dataclass
class Subscription:
    """A subscriber tracking one series.

    ``next_notify_time``/``next_notify_episode`` form the pending projection:
    both set or both empty, and the episode is always the one after
    ``last_notified_episode``.
    """
    # Identity
    id: str = field(default_factory=lambda: uuid.uuid4().hex)
    subscriber_id: str = ""
    series_id: str = ""

    # Progress
    last_notified_episode: int = 0

    # Pending projection
    next_notify_time: datetime | None = None
    next_notify_episode: int | None = None

    # Timestamps
    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)

    @property
    def has_pending(self) -> bool:
        return self.next_notify_time is not None

    def set_pending(self, due: datetime, episode: int) -> None:
        if episode != self.last_notified_episode + 1:
            raise ScheduleInvariantError(
                f"Subscription {self.id}: pending episode {episode} does not follow "
                f"last notified episode {self.last_notified_episode}"
            )
        self.next_notify_time = due
        self.next_notify_episode = episode

    def clear_pending(self) -> None:
        self.next_notify_time = None
        self.next_notify_episode = None

    def check_invariants(self) -> None:
        """Raise ScheduleInvariantError if the projection is inconsistent."""
        if (self.next_notify_time is None) != (self.next_notify_episode is None):
            raise ScheduleInvariantError(
                f"Subscription {self.id}: next_notify_time and next_notify_episode "
                f"must be set together"
            )
        if (
            self.next_notify_episode is not None
            and self.next_notify_episode != self.last_notified_episode + 1
        ):
            raise ScheduleInvariantError(
                f"Subscription {self.id}: next_notify_episode={self.next_notify_episode} "
                f"but last_notified_episode={self.last_notified_episode}"
            )
        if self.last_notified_episode < 0:
            raise ScheduleInvariantError(
                f"Subscription {self.id}: negative last_notified_episode"
            )
