"""Main notification scheduler service.

This is the unified entry point for scheduling episode notifications.
Supports:
- Precise-time timers per subscription, re-armed after each delivery
- Durable pending schedule with startup recovery
- Cancellation on unsubscribe
"""
from __future__ import annotations

import asyncio
from datetime import datetime
from pathlib import Path
from typing import Any, Callable, Protocol

from loguru import logger

from ..errors import StaleSubscriptionError
from ..models import Series, Subscription
from ..notifier import LogNotifier, Notifier
from ..schedule import next_air_time, utcnow
from ..types import RecoveryReport, RemoveResult, RunResult, SchedulerEvent, SchedulerStatus
from .events import EventEmitter, emit_event, EventTypes
from .registry import ArmedTimer, TimerRegistry
from .state import SchedulerServiceDeps, SchedulerServiceState
from .store import ScheduleStore
from . import ops
from . import recovery
from . import timer

logger = logger.bind(module="scheduler.service")


class SeriesProvider(Protocol):
    """Read access to series metadata."""

    async def get_series(self, series_id: str) -> Series | None:
        ...


def _refresh(target: Subscription, source: Subscription) -> None:
    target.last_notified_episode = source.last_notified_episode
    target.next_notify_time = source.next_notify_time
    target.next_notify_episode = source.next_notify_episode


class NotificationScheduler:
    """Schedules one notification per newly aired episode for each subscription.

    The store is the durable truth; the timer registry is the live set of
    timers derived from it and rebuilt on start.
    """

    def __init__(
        self,
        db_path: str | Path = "~/.airtime/data/airtime.db",
        notifier: Notifier | None = None,
        series_provider: SeriesProvider | None = None,
        delivery_concurrency: int = 10,
        delivery_timeout_seconds: float = 30.0,
        timezone: str = "Asia/Shanghai",
        clock: Callable[[], datetime] = utcnow,
    ):
        """Initialize scheduler service.

        Args:
            db_path: Path to SQLite database for persistence
            notifier: Delivers notifications (defaults to LogNotifier)
            series_provider: Source of series metadata (defaults to the store)
            delivery_concurrency: Maximum deliveries running at once
            delivery_timeout_seconds: Upper bound for a single delivery
            timezone: Timezone used for air time display
            clock: Returns the current instant; injectable for tests
        """
        db_path = Path(db_path).expanduser()

        self.store = ScheduleStore(db_path)
        self.series: SeriesProvider = series_provider or self.store
        self.events = EventEmitter()
        self.deps = SchedulerServiceDeps(notifier=notifier or LogNotifier())
        self.state = SchedulerServiceState()
        self.clock = clock
        self.registry = TimerRegistry(clock=clock)

        self.delivery_concurrency = max(1, delivery_concurrency)
        self.delivery_timeout_seconds = delivery_timeout_seconds
        self.timezone = timezone

    async def start(self) -> RecoveryReport:
        """Start the scheduler service and recover persisted timers."""
        if self.state.running:
            logger.warning("Scheduler already running")
            return RecoveryReport(armed=self.registry.count())

        await self.store.initialize()
        self.state.delivery_slots = asyncio.Semaphore(self.delivery_concurrency)

        report = await recovery.recover_pending(self)
        self.state.recovered = True
        self.state.running = True

        emit_event(self.events, EventTypes.SCHEDULER_STARTED, "")
        logger.info("Notification scheduler started")
        return report

    async def stop(self) -> None:
        """Stop the scheduler service, dropping live timers."""
        if not self.state.running:
            return

        self.state.running = False
        cancelled = self.registry.cancel_all()
        logger.info(f"Stopping notification scheduler, cancelled {cancelled} pending timers")

        tasks = list(self.state.in_flight)
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)

        await self.store.close()
        self.state.reset()

        emit_event(self.events, EventTypes.SCHEDULER_STOPPED, "")
        logger.info("Notification scheduler stopped")

    async def status(self) -> SchedulerStatus:
        """Get scheduler status."""
        return SchedulerStatus(
            running=self.state.running,
            timers_live=self.registry.count(),
            deliveries_in_flight=len(self.state.in_flight),
            next_due_at=self.registry.next_due(),
        )

    # ============== Scheduling ==============

    async def schedule_next(self, subscription: Subscription) -> datetime | None:
        """Schedule the notification for a subscription's next episode.

        Idempotent: an existing timer for the subscription is replaced.

        Returns:
            The due instant, or None if nothing could be scheduled
        """
        if not self.state.running:
            raise RuntimeError("Scheduler not started")
        return await self.arm_next(subscription)

    async def arm_next(
        self,
        subscription: Subscription,
        series: Series | None = None,
    ) -> datetime | None:
        """Compute, persist and arm episode ``last_notified_episode + 1``.

        Progress is taken from the stored row, never from the caller's copy;
        ``subscription`` is refreshed to match what was written.

        Raises:
            PersistenceError: If saving the projection fails; nothing is armed
            StaleSubscriptionError: If the row was deleted or advanced
                concurrently; nothing is armed
        """
        if series is None:
            series = await self.series.get_series(subscription.series_id)
        if series is None:
            logger.debug(f"Subscription {subscription.id} has no series")
            return None
        if not series.has_precise_cadence:
            logger.debug(f"Skipping series without precise cadence: {series.display_name}")
            return None

        stored = await self.store.get(subscription.id)
        if stored is None:
            raise StaleSubscriptionError(f"Subscription {subscription.id} not found")

        episode = stored.last_notified_episode + 1
        due = next_air_time(series, episode)

        if due is None:
            # Chain ended or cadence changed; drop any stale projection
            self.registry.cancel(subscription.id)
            if stored.has_pending:
                await self.store.clear_pending(subscription.id)
            stored.clear_pending()
            _refresh(subscription, stored)
            return None

        stored.set_pending(due, episode)
        if not await self.store.save_pending(subscription.id, due, episode):
            raise StaleSubscriptionError(
                f"Subscription {subscription.id} changed before episode {episode} was scheduled"
            )
        _refresh(subscription, stored)

        self.arm(subscription)

        emit_event(
            self.events,
            EventTypes.NOTIFICATION_SCHEDULED,
            subscription.id,
            {"episode": episode, "due": due.isoformat()},
        )
        logger.info(
            f"Scheduled: {series.display_name} episode {episode} at {due.isoformat()} "
            f"(subscriber {subscription.subscriber_id})"
        )
        return due

    def arm(self, subscription: Subscription) -> ArmedTimer:
        """Arm a timer for the subscription's persisted projection."""
        if subscription.next_notify_time is None:
            raise ValueError(f"Subscription {subscription.id} has no pending projection")
        return self.registry.arm_or_replace(
            subscription.id,
            subscription.next_notify_time,
            self._on_fire,
            episode=subscription.next_notify_episode,
        )

    def _on_fire(self, armed: ArmedTimer) -> None:
        timer.on_timer_fired(self, armed)

    async def run_now(self, subscription_id: str) -> RunResult:
        """Execute a subscription's pending notification immediately."""
        return await timer.execute_notification(
            self, subscription_id, self.registry.get(subscription_id)
        )

    # ============== Cancellation ==============

    def cancel(self, subscription_id: str) -> bool:
        """Cancel the live timer only; the persisted projection is kept."""
        return self.registry.cancel(subscription_id)

    async def cancel_and_clear(self, subscription_id: str) -> bool:
        """Cancel the live timer and clear the persisted projection.

        Returns:
            True if a projection was cleared
        """
        self.registry.cancel(subscription_id)
        cleared = await self.store.clear_pending(subscription_id)
        if cleared:
            emit_event(self.events, EventTypes.NOTIFICATION_CANCELLED, subscription_id)
            logger.info(f"Cancelled and cleared schedule of subscription {subscription_id}")
        return cleared

    # ============== Subscriptions ==============

    async def subscribe(
        self,
        subscriber_id: str,
        series_id: str,
        aired_episodes: int | None = None,
    ) -> Subscription:
        """Create a subscription and schedule its next episode."""
        return await ops.subscribe(self, subscriber_id, series_id, aired_episodes)

    async def unsubscribe(self, subscription_id: str) -> RemoveResult:
        """Remove a subscription along with its timer and projection."""
        return await ops.unsubscribe(self, subscription_id)

    async def retrigger(self, subscription_id: str) -> datetime | None:
        """Re-arm a subscription whose delivery got stuck."""
        return await ops.retrigger(self, subscription_id)

    async def get(self, subscription_id: str) -> Subscription | None:
        return await self.store.get(subscription_id)

    # ============== Monitoring ==============

    def pending_count(self) -> int:
        """Number of live timers."""
        return self.registry.count()

    def pending_ids(self) -> set[str]:
        """Subscription ids with a live timer."""
        return self.registry.live_ids()

    # ============== Event Handling ==============

    def on_event(self, handler: Callable[[Any], None]) -> None:
        """Register an event handler."""
        self.events.add_handler(handler)

    def off_event(self, handler: Callable[[Any], None]) -> bool:
        """Unregister an event handler."""
        return self.events.remove_handler(handler)

    def recent_events(self, limit: int | None = None) -> list[SchedulerEvent]:
        return self.events.recent(limit)
