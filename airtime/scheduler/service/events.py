"""Event system for the notification scheduler.

Emits events for scheduling lifecycle changes.
"""
import time
from collections import deque
from typing import Any, Callable

from loguru import logger

from ..types import SchedulerEvent

logger = logger.bind(module="scheduler.events")


# Type alias for event handlers
EventHandler = Callable[[SchedulerEvent], None]


class EventEmitter:
    """Fans scheduler events out to registered handlers.

    Keeps the most recent events so status views can show what happened
    without subscribing up front.
    """

    def __init__(self, history_size: int = 100):
        self._handlers: list[EventHandler] = []
        self._recent: deque[SchedulerEvent] = deque(maxlen=history_size)

    def add_handler(self, handler: EventHandler) -> None:
        self._handlers.append(handler)

    def remove_handler(self, handler: EventHandler) -> bool:
        if handler not in self._handlers:
            return False
        self._handlers.remove(handler)
        return True

    def emit(self, event: SchedulerEvent) -> None:
        """Record the event and call every handler; one failing handler never stops the rest."""
        self._recent.append(event)
        for handler in list(self._handlers):
            try:
                handler(event)
            except Exception as e:
                logger.opt(exception=e).error(
                    f"Event handler failed on {event.type} "
                    f"(subscription={event.subscription_id or '-'}): {e}"
                )

    def recent(self, limit: int | None = None) -> list[SchedulerEvent]:
        """Most recent events, oldest first."""
        events = list(self._recent)
        if limit is not None:
            events = events[-limit:] if limit > 0 else []
        return events


def emit_event(
    emitter: EventEmitter,
    event_type: str,
    subscription_id: str,
    payload: dict[str, Any] | None = None,
) -> None:
    """Emit a subscription-related event.

    Args:
        emitter: Event emitter instance
        event_type: Type of event (e.g., "notification.delivered")
        subscription_id: ID of the subscription ("" for scheduler-wide events)
        payload: Additional event payload
    """
    event = SchedulerEvent(
        type=event_type,
        subscription_id=subscription_id,
        timestamp_ms=int(time.time() * 1000),
        payload=payload or {},
    )
    emitter.emit(event)


# Event type constants
class EventTypes:
    """Constants for event types."""

    # Scheduler lifecycle
    SCHEDULER_STARTED = "scheduler.started"
    SCHEDULER_STOPPED = "scheduler.stopped"
    RECOVERY_COMPLETED = "recovery.completed"

    # Notification lifecycle
    NOTIFICATION_SCHEDULED = "notification.scheduled"
    NOTIFICATION_CANCELLED = "notification.cancelled"
    NOTIFICATION_DELIVERED = "notification.delivered"
    NOTIFICATION_FAILED = "notification.failed"
    NOTIFICATION_ABANDONED = "notification.abandoned"

    # Chain
    CHAIN_TERMINATED = "chain.terminated"
