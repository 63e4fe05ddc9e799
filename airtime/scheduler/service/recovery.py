"""Startup recovery of armed notification timers.

Rebuilds the in-memory timer registry from the persisted pending schedule.
Run once, after the store is ready and before user actions are accepted.
"""
from typing import TYPE_CHECKING

from loguru import logger

from ..models import Subscription
from ..types import RecoveryReport
from .events import emit_event, EventTypes

if TYPE_CHECKING:
    from .service import NotificationScheduler

logger = logger.bind(module="scheduler.recovery")


async def recover_pending(service: "NotificationScheduler") -> RecoveryReport:
    """Re-arm a timer for every subscription with a pending projection.

    Rows whose series is gone or lost its precise cadence are cleared.
    Past-due rows are armed anyway and fire right away.

    Args:
        service: The scheduler service

    Returns:
        Counts of future, past-due, cleared and armed subscriptions
    """
    logger.info("Recovering scheduled notifications...")
    report = RecoveryReport()

    pending = await service.store.find_all_pending()
    if not pending:
        logger.info("No scheduled notifications to recover")
        emit_event(service.events, EventTypes.RECOVERY_COMPLETED, "", report.to_dict())
        return report

    # Validate everything first, then arm without awaiting in between so
    # past-due timers cannot fire before the whole set is armed
    to_arm: list[Subscription] = []
    for subscription in pending:
        series = await service.series.get_series(subscription.series_id)
        if series is None or not series.has_precise_cadence:
            await service.store.clear_pending(subscription.id)
            report.cleared += 1
            logger.info(
                f"Cleared stale schedule for subscription {subscription.id} "
                f"(series {subscription.series_id} has no precise cadence)"
            )
            continue
        to_arm.append(subscription)

    now = service.clock()
    for subscription in to_arm:
        if subscription.next_notify_time > now:
            report.future += 1
        else:
            report.past_due += 1
        service.arm(subscription)

    report.armed = len(to_arm)
    logger.info(
        f"Recovery completed: future={report.future}, past_due={report.past_due}, "
        f"cleared={report.cleared}, timers_live={service.registry.count()}"
    )
    emit_event(service.events, EventTypes.RECOVERY_COMPLETED, "", report.to_dict())
    return report
