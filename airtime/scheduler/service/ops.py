"""Subscription operations for the scheduler service.

Contains the business logic around subscribing, unsubscribing and
retriggering stuck notifications.
"""
from datetime import datetime
from typing import TYPE_CHECKING

from loguru import logger

from ..errors import StaleSubscriptionError
from ..models import Subscription
from ..schedule import aired_episode_count
from ..types import RemoveResult
from .events import emit_event, EventTypes

if TYPE_CHECKING:
    from .service import NotificationScheduler

logger = logger.bind(module="scheduler.ops")


async def subscribe(
    service: "NotificationScheduler",
    subscriber_id: str,
    series_id: str,
    aired_episodes: int | None = None,
) -> Subscription:
    """Subscribe a subscriber to a series.

    Args:
        service: The scheduler service
        subscriber_id: Who gets notified
        series_id: Which series to follow
        aired_episodes: Episodes already aired; computed from the series'
            cadence when omitted

    Returns:
        The new subscription, or the existing one for this pair

    Raises:
        LookupError: If the series does not exist
    """
    existing = await service.store.find_by_subscriber_and_series(subscriber_id, series_id)
    if existing:
        return existing

    series = await service.series.get_series(series_id)
    if series is None:
        raise LookupError(f"Series {series_id} not found")

    if aired_episodes is None:
        aired_episodes = aired_episode_count(series, service.clock())
    if aired_episodes < 0:
        raise ValueError(f"aired_episodes must be >= 0, got {aired_episodes}")

    # Start from what already aired so history is never replayed
    subscription = Subscription(
        subscriber_id=subscriber_id,
        series_id=series_id,
        last_notified_episode=aired_episodes,
    )
    if not await service.store.create(subscription):
        # Lost a race with a concurrent subscribe for the same pair
        existing = await service.store.find_by_subscriber_and_series(subscriber_id, series_id)
        if existing is None:
            raise StaleSubscriptionError(
                f"Subscription of {subscriber_id} to {series_id} vanished during subscribe"
            )
        return existing

    logger.info(
        f"Subscribed {subscriber_id} to {series.display_name} "
        f"(subscription {subscription.id}, aired={aired_episodes})"
    )

    if series.has_precise_cadence:
        try:
            await service.arm_next(subscription, series)
        except StaleSubscriptionError as e:
            logger.warning(f"Subscription {subscription.id} removed before scheduling: {e}")
    else:
        logger.debug(f"No precise cadence for {series.display_name}, not scheduling")

    return subscription


async def unsubscribe(
    service: "NotificationScheduler",
    subscription_id: str,
) -> RemoveResult:
    """Cancel any timer, clear the projection and delete the subscription."""
    await service.cancel_and_clear(subscription_id)

    removed = await service.store.delete(subscription_id)
    # A delivery may have re-armed while the row was being removed
    service.registry.cancel(subscription_id)
    if not removed:
        return RemoveResult(
            subscription_id=subscription_id,
            removed=False,
            reason="Subscription not found",
        )

    logger.info(f"Removed subscription {subscription_id}")
    return RemoveResult(subscription_id=subscription_id, removed=True)


async def retrigger(
    service: "NotificationScheduler",
    subscription_id: str,
) -> datetime | None:
    """Re-arm a subscription, typically one stuck after a failed delivery.

    A persisted projection is armed as is (firing at once if past due);
    otherwise the next episode is computed.

    Returns:
        The due instant that was armed, or None
    """
    subscription = await service.store.get(subscription_id)
    if subscription is None:
        raise LookupError(f"Subscription {subscription_id} not found")

    if subscription.has_pending:
        service.arm(subscription)
        logger.info(
            f"Retriggered subscription {subscription_id} "
            f"episode {subscription.next_notify_episode}"
        )
        emit_event(
            service.events,
            EventTypes.NOTIFICATION_SCHEDULED,
            subscription_id,
            {"episode": subscription.next_notify_episode, "retrigger": True},
        )
        return subscription.next_notify_time

    return await service.arm_next(subscription)
