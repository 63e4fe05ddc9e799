"""Core type definitions for the notification scheduler.

Defines:
- Run outcomes of the execution engine
- Result types returned by service operations
- Event and status types for observability
"""
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any


def _iso(value: datetime | None) -> str | None:
    return value.isoformat() if value else None


# ============== Run Types ==============

class RunOutcome(str, Enum):
    """Outcome of a single timer firing."""
    DELIVERED = "delivered"     # Delivered and committed, chain continues or ends
    STUCK = "stuck"             # Notifier failed, state left untouched
    ABANDONED = "abandoned"     # Subscription gone or already advanced
    ERROR = "error"             # Persistence failed after delivery


@dataclass
class RunResult:
    """Result of running the execution engine for one subscription."""
    subscription_id: str
    outcome: RunOutcome
    episode: int | None = None
    next_notify_time: datetime | None = None
    next_notify_episode: int | None = None
    error: str | None = None

    @property
    def terminated(self) -> bool:
        """True when a delivery committed and no next episode was armed."""
        return self.outcome == RunOutcome.DELIVERED and self.next_notify_time is None

    def to_dict(self) -> dict[str, Any]:
        return {
            "subscription_id": self.subscription_id,
            "outcome": self.outcome.value,
            "episode": self.episode,
            "next_notify_time": _iso(self.next_notify_time),
            "next_notify_episode": self.next_notify_episode,
            "error": self.error,
        }


# ============== Result Types ==============

@dataclass
class RemoveResult:
    """Result of removing a subscription."""
    subscription_id: str
    removed: bool
    reason: str = ""

    def to_dict(self) -> dict[str, Any]:
        return {
            "subscription_id": self.subscription_id,
            "removed": self.removed,
            "reason": self.reason,
        }


@dataclass
class RecoveryReport:
    """Summary of a startup recovery pass."""
    future: int = 0
    past_due: int = 0
    cleared: int = 0
    armed: int = 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "future": self.future,
            "past_due": self.past_due,
            "cleared": self.cleared,
            "armed": self.armed,
        }


@dataclass
class SchedulerStatus:
    """Status of the scheduler service."""
    running: bool
    timers_live: int
    deliveries_in_flight: int
    next_due_at: datetime | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "running": self.running,
            "timers_live": self.timers_live,
            "deliveries_in_flight": self.deliveries_in_flight,
            "next_due_at": _iso(self.next_due_at),
        }


# ============== Event Types ==============

@dataclass
class SchedulerEvent:
    """Event emitted by the scheduler."""
    type: str
    subscription_id: str
    timestamp_ms: int
    payload: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "type": self.type,
            "subscription_id": self.subscription_id,
            "timestamp_ms": self.timestamp_ms,
            "payload": self.payload,
        }
