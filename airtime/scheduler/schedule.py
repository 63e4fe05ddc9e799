"""Air time calculation utilities.

Computes the broadcast instant of an episode from a series' base time and
recurrence period, and decides when a series' notification chain ends.
All instants are timezone-aware UTC datetimes.
"""
import re
from datetime import datetime, timedelta, timezone
from typing import TYPE_CHECKING
from zoneinfo import ZoneInfo

from loguru import logger

if TYPE_CHECKING:
    from .models import Series

logger = logger.bind(module="scheduler.schedule")

# PnW or PnDTnHnMnS; calendar units (years, months) are not exact durations
_PERIOD_RE = re.compile(
    r"^P(?:(?P<weeks>\d+)W)?(?:(?P<days>\d+)D)?"
    r"(?:T(?:(?P<hours>\d+)H)?(?:(?P<minutes>\d+)M)?(?:(?P<seconds>\d+(?:\.\d+)?)S)?)?$",
    re.IGNORECASE,
)


def utcnow() -> datetime:
    """Get the current instant as an aware UTC datetime."""
    return datetime.now(timezone.utc)


def ensure_utc(value: datetime) -> datetime:
    """Normalize a datetime to aware UTC. Naive values are taken as UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def parse_instant(value: str | datetime | None) -> datetime | None:
    """Parse an ISO-8601 instant (``Z`` suffix allowed) into aware UTC."""
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return ensure_utc(value)
    text = value.strip()
    if text.endswith(("Z", "z")):
        text = text[:-1] + "+00:00"
    return ensure_utc(datetime.fromisoformat(text))


def parse_period(text: str | None) -> timedelta | None:
    """Parse an ISO-8601 duration such as ``P7D`` or ``PT23H30M``.

    Returns None for missing, malformed, calendar-based or non-positive
    durations; callers treat that as "no precise cadence".
    """
    if not text:
        return None
    match = _PERIOD_RE.match(text.strip())
    if not match or text.strip().upper().endswith("T"):
        return None
    parts = {k: v for k, v in match.groupdict().items() if v is not None}
    if not parts:
        return None
    period = timedelta(
        weeks=int(parts.get("weeks", 0)),
        days=int(parts.get("days", 0)),
        hours=int(parts.get("hours", 0)),
        minutes=int(parts.get("minutes", 0)),
        seconds=float(parts.get("seconds", 0)),
    )
    if period <= timedelta(0):
        return None
    return period


def compute_air_time(series: "Series", episode: int) -> datetime | None:
    """Compute the air time of an episode.

    Args:
        series: The series with its timing data
        episode: 1-based episode number

    Returns:
        ``base_time + period * (episode - 1)``, or None if the series has no
        precise cadence

    Raises:
        ValueError: If episode is less than 1
    """
    if episode < 1:
        raise ValueError(f"Episode numbers are 1-based, got {episode}")

    if series.base_time is None or series.recurrence_period is None:
        return None

    period = parse_period(series.recurrence_period)
    if period is None:
        logger.debug(f"Cannot parse recurrence period: {series.recurrence_period!r}")
        return None

    return ensure_utc(series.base_time) + period * (episode - 1)


def should_terminate(
    series: "Series",
    episode: int,
    candidate_air_time: datetime | None,
) -> bool:
    """Check whether the notification chain should stop at this episode."""
    if series.total_episode_count is not None and episode > series.total_episode_count:
        return True
    if (
        series.end_time is not None
        and candidate_air_time is not None
        and ensure_utc(candidate_air_time) > ensure_utc(series.end_time)
    ):
        return True
    return False


def next_air_time(series: "Series", episode: int) -> datetime | None:
    """Compute the air time for an episode, including termination checks.

    Returns:
        Air time, or None if the chain should stop or cannot be scheduled
    """
    if series.total_episode_count is not None and episode > series.total_episode_count:
        logger.info(
            f"Series finished, stop scheduling: {series.display_name} "
            f"(series={series.id}, total={series.total_episode_count})"
        )
        return None

    air_time = compute_air_time(series, episode)
    if air_time is None:
        logger.debug(f"Cannot compute air time: {series.display_name} episode {episode}")
        return None

    if should_terminate(series, episode, air_time):
        logger.info(
            f"Air time past series end, stop scheduling: {series.display_name} "
            f"(series={series.id}, air_time={air_time.isoformat()}, "
            f"end_time={series.end_time.isoformat() if series.end_time else None})"
        )
        return None

    return air_time


def aired_episode_count(series: "Series", now: datetime | None = None) -> int:
    """Count the episodes that have already aired at ``now``.

    Used to initialize a new subscription so that history is never replayed.
    Returns 0 when the series has no precise cadence.
    """
    now = ensure_utc(now) if now else utcnow()
    first = compute_air_time(series, 1)
    period = parse_period(series.recurrence_period)
    if first is None or period is None or now < first:
        return 0

    count = int((now - first) // period) + 1

    if series.total_episode_count is not None:
        count = min(count, series.total_episode_count)
    if series.end_time is not None:
        end = ensure_utc(series.end_time)
        if end < first:
            return 0
        count = min(count, int((end - first) // period) + 1)

    return max(count, 0)


def format_air_time(
    air_time: datetime,
    tz: str = "Asia/Shanghai",
    now: datetime | None = None,
) -> str:
    """Format an air time relative to today in the given timezone.

    Returns:
        "today 16:35" / "tomorrow 22:00" / "yesterday 16:35" / "01-15 16:35"
    """
    zone = ZoneInfo(tz)
    local = ensure_utc(air_time).astimezone(zone)
    today = (ensure_utc(now) if now else utcnow()).astimezone(zone).date()
    time_str = local.strftime("%H:%M")

    if local.date() == today:
        return f"today {time_str}"
    if local.date() == today + timedelta(days=1):
        return f"tomorrow {time_str}"
    if local.date() == today - timedelta(days=1):
        return f"yesterday {time_str}"
    return local.strftime("%m-%d %H:%M")
