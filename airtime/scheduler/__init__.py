"""Scheduler module for precise-time episode notifications.

This module provides:
- Air time calculation from a series' base time and recurrence period
- A durable pending schedule per subscription (SQLite)
- asyncio-based timers that re-arm themselves after each delivery
- Startup recovery of pending timers
"""
# Core types
from .types import (
    RunOutcome,
    RunResult,
    RemoveResult,
    RecoveryReport,
    SchedulerStatus,
    SchedulerEvent,
)

# Errors
from .errors import (
    AirtimeError,
    PersistenceError,
    DeliveryError,
    ScheduleInvariantError,
    StaleSubscriptionError,
)

# Models
from .models import (
    Series,
    SeriesDisplayInfo,
    Subscription,
)

# Air time utilities
from .schedule import (
    compute_air_time,
    should_terminate,
    next_air_time,
    aired_episode_count,
    parse_period,
    parse_instant,
    format_air_time,
    utcnow,
)

# Notifiers
from .notifier import Notifier, LogNotifier, WebhookNotifier

# Service
from .service import NotificationScheduler

__all__ = [
    # Core types
    "RunOutcome",
    "RunResult",
    "RemoveResult",
    "RecoveryReport",
    "SchedulerStatus",
    "SchedulerEvent",
    # Errors
    "AirtimeError",
    "PersistenceError",
    "DeliveryError",
    "ScheduleInvariantError",
    "StaleSubscriptionError",
    # Models
    "Series",
    "SeriesDisplayInfo",
    "Subscription",
    # Air time utilities
    "compute_air_time",
    "should_terminate",
    "next_air_time",
    "aired_episode_count",
    "parse_period",
    "parse_instant",
    "format_air_time",
    "utcnow",
    # Notifiers
    "Notifier",
    "LogNotifier",
    "WebhookNotifier",
    # Service
    "NotificationScheduler",
]
