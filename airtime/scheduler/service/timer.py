"""Timer firing and notification execution.

When a timer fires, the work is handed off to its own asyncio task so a slow
delivery never delays other subscriptions. The task re-reads the
subscription, delivers, commits, and arms the next episode.
"""
import asyncio
from typing import TYPE_CHECKING

from loguru import logger

from ..errors import PersistenceError, StaleSubscriptionError
from ..models import SeriesDisplayInfo
from ..schedule import format_air_time
from ..types import RunOutcome, RunResult
from .events import emit_event, EventTypes
from .registry import ArmedTimer

if TYPE_CHECKING:
    from .service import NotificationScheduler

logger = logger.bind(module="scheduler.timer")


def on_timer_fired(service: "NotificationScheduler", timer: ArmedTimer) -> None:
    """Hand a fired timer off to an independent delivery task.

    Runs on the event loop inside the timer callback, so it only spawns.
    """
    task = asyncio.create_task(
        run_delivery(service, timer),
        name=f"deliver-{timer.subscription_id}",
    )
    service.state.in_flight.add(task)
    task.add_done_callback(lambda t: _on_delivery_done(service, t))


def _on_delivery_done(service: "NotificationScheduler", task: asyncio.Task) -> None:
    service.state.in_flight.discard(task)
    if task.cancelled():
        return
    exc = task.exception()
    if exc is not None:
        logger.opt(exception=exc).error(f"Delivery task {task.get_name()} crashed: {exc}")


async def run_delivery(service: "NotificationScheduler", timer: ArmedTimer) -> RunResult:
    """Run one fired timer, bounded by the delivery concurrency limit."""
    slots = service.state.delivery_slots
    if slots is None:
        return await execute_notification(service, timer.subscription_id, timer)
    async with slots:
        return await execute_notification(service, timer.subscription_id, timer)


def _release(service: "NotificationScheduler", subscription_id: str, timer: ArmedTimer | None) -> None:
    if timer is not None:
        service.registry.release(subscription_id, timer)


def _abandon(
    service: "NotificationScheduler",
    subscription_id: str,
    timer: ArmedTimer | None,
    reason: str,
    episode: int | None = None,
) -> RunResult:
    logger.warning(f"Abandoned notification for subscription {subscription_id}: {reason}")
    _release(service, subscription_id, timer)
    emit_event(
        service.events,
        EventTypes.NOTIFICATION_ABANDONED,
        subscription_id,
        {"reason": reason, "episode": episode},
    )
    return RunResult(
        subscription_id=subscription_id,
        outcome=RunOutcome.ABANDONED,
        episode=episode,
        error=reason,
    )


def _failed(
    service: "NotificationScheduler",
    subscription_id: str,
    timer: ArmedTimer | None,
    error: Exception,
    episode: int | None = None,
) -> RunResult:
    logger.opt(exception=error).error(
        f"Persistence failed for subscription {subscription_id}: {error}"
    )
    _release(service, subscription_id, timer)
    return RunResult(
        subscription_id=subscription_id,
        outcome=RunOutcome.ERROR,
        episode=episode,
        error=str(error)[:500],
    )


async def execute_notification(
    service: "NotificationScheduler",
    subscription_id: str,
    timer: ArmedTimer | None = None,
) -> RunResult:
    """Deliver the due episode of one subscription and arm the next one.

    Args:
        service: The scheduler service
        subscription_id: ID of the subscription whose timer fired
        timer: The fired timer, if any; its registry entry is released when
            the run ends, except when delivery fails

    Returns:
        Run result
    """
    # Re-read: cancel or unsubscribe may have happened since arming
    try:
        subscription = await service.store.get(subscription_id)
    except PersistenceError as e:
        return _failed(service, subscription_id, timer, e)

    if subscription is None:
        return _abandon(service, subscription_id, timer, "subscription not found")

    episode = subscription.next_notify_episode
    if episode is None:
        return _abandon(service, subscription_id, timer, "no pending episode")
    if timer is not None and timer.episode is not None and timer.episode != episode:
        return _abandon(
            service, subscription_id, timer,
            f"pending episode moved from {timer.episode} to {episode}", episode,
        )

    try:
        series = await service.series.get_series(subscription.series_id)
    except PersistenceError as e:
        return _failed(service, subscription_id, timer, e, episode)

    if series is None:
        return _abandon(
            service, subscription_id, timer, f"series {subscription.series_id} not found", episode,
        )

    info = SeriesDisplayInfo(
        series_id=series.id,
        display_name=series.display_name,
        air_time=subscription.next_notify_time,
        air_time_display=(
            format_air_time(subscription.next_notify_time, service.timezone)
            if subscription.next_notify_time else None
        ),
    )

    # Deliver; on failure leave both the row and the timer entry as they are
    try:
        await asyncio.wait_for(
            service.deps.notifier.deliver(subscription.subscriber_id, info, episode),
            timeout=service.delivery_timeout_seconds,
        )
    except Exception as e:
        logger.opt(exception=e).error(
            f"Delivery failed, keeping state for retry: subscription={subscription_id}, "
            f"series={series.id}, name={series.display_name}, episode={episode}, error={e!r}"
        )
        emit_event(
            service.events,
            EventTypes.NOTIFICATION_FAILED,
            subscription_id,
            {"episode": episode, "error": str(e)[:500]},
        )
        return RunResult(
            subscription_id=subscription_id,
            outcome=RunOutcome.STUCK,
            episode=episode,
            next_notify_time=subscription.next_notify_time,
            next_notify_episode=episode,
            error=str(e)[:500] or type(e).__name__,
        )

    logger.info(
        f"Delivered: {series.display_name} episode {episode} "
        f"(subscriber {subscription.subscriber_id}, series={series.id})"
    )

    # Commit the delivered episode
    try:
        committed = await service.store.commit_delivery(subscription_id, episode)
    except PersistenceError as e:
        return _failed(service, subscription_id, timer, e, episode)

    if not committed:
        return _abandon(
            service, subscription_id, timer, "advanced concurrently after delivery", episode,
        )

    _release(service, subscription_id, timer)
    subscription.last_notified_episode = episode
    subscription.clear_pending()

    emit_event(
        service.events,
        EventTypes.NOTIFICATION_DELIVERED,
        subscription_id,
        {"episode": episode, "series_id": series.id},
    )

    # Arm the next episode; this is a fresh registration, not recursion
    try:
        next_due = await service.arm_next(subscription, series)
    except PersistenceError as e:
        return _failed(service, subscription_id, None, e, episode)
    except StaleSubscriptionError as e:
        # Unsubscribed after the commit
        return _abandon(service, subscription_id, None, str(e), episode)

    if next_due is None:
        emit_event(
            service.events,
            EventTypes.CHAIN_TERMINATED,
            subscription_id,
            {"last_episode": episode, "series_id": series.id},
        )

    return RunResult(
        subscription_id=subscription_id,
        outcome=RunOutcome.DELIVERED,
        episode=episode,
        next_notify_time=next_due,
        next_notify_episode=subscription.next_notify_episode,
    )
