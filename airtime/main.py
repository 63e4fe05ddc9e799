"""FastAPI entry point"""
import sys
from contextlib import asynccontextmanager
from datetime import datetime
from typing import Optional

from fastapi import FastAPI, HTTPException
from pydantic import BaseModel, Field
from loguru import logger

from . import __version__
from .config import settings
from .scheduler import (
    LogNotifier,
    NotificationScheduler,
    Series,
    WebhookNotifier,
    parse_period,
)

# Global service instance
scheduler: Optional[NotificationScheduler] = None


def setup_logging() -> None:
    """Route loguru output to stderr at the configured level."""
    logger.remove()
    logger.add(sys.stderr, level="DEBUG" if settings.debug else settings.log_level)


def build_scheduler() -> NotificationScheduler:
    """Create the scheduler with the notifier chosen by settings."""
    if settings.webhook_url:
        notifier = WebhookNotifier(
            settings.webhook_url,
            timeout_seconds=settings.delivery_timeout_seconds,
        )
    else:
        notifier = LogNotifier()

    return NotificationScheduler(
        db_path=settings.db_path,
        notifier=notifier,
        delivery_concurrency=settings.delivery_concurrency,
        delivery_timeout_seconds=settings.delivery_timeout_seconds,
        timezone=settings.timezone,
    )


@asynccontextmanager
async def lifespan(app: FastAPI):  # noqa: ARG001
    """Application lifecycle"""
    global scheduler

    setup_logging()
    logger.info("=" * 50)
    logger.info("  Airtime")
    logger.info(f"  Data dir: {settings.data_dir}")
    logger.info(f"  Notifier: {'webhook' if settings.webhook_url else 'log'}")
    logger.info("=" * 50)

    scheduler = build_scheduler()
    # Recovery runs inside start(), before any request is served
    report = await scheduler.start()
    logger.info(f"Recovered timers: {report.to_dict()}")

    yield

    logger.info("Shutting down...")
    await scheduler.stop()
    scheduler = None
    logger.info("Goodbye!")


app = FastAPI(
    title="Airtime",
    description="Precise-time episode notifications",
    version=__version__,
    lifespan=lifespan,
)


# ============== Pydantic Models ==============

class SeriesRequest(BaseModel):
    """Series metadata"""
    name: str
    name_cn: Optional[str] = None
    base_time: Optional[datetime] = None
    recurrence_period: Optional[str] = None
    end_time: Optional[datetime] = None
    total_episode_count: Optional[int] = Field(default=None, ge=0)


class SubscribeRequest(BaseModel):
    """Subscription request"""
    subscriber_id: str
    series_id: str
    aired_episodes: Optional[int] = Field(default=None, ge=0)


class SubscriptionResponse(BaseModel):
    """Subscription response"""
    id: str
    subscriber_id: str
    series_id: str
    last_notified_episode: int
    next_notify_time: Optional[datetime] = None
    next_notify_episode: Optional[int] = None
    armed: bool = False


def _require_scheduler() -> NotificationScheduler:
    if not scheduler or not scheduler.state.running:
        raise HTTPException(status_code=503, detail="Service not ready")
    return scheduler


def _subscription_response(svc: NotificationScheduler, subscription) -> SubscriptionResponse:
    return SubscriptionResponse(
        id=subscription.id,
        subscriber_id=subscription.subscriber_id,
        series_id=subscription.series_id,
        last_notified_episode=subscription.last_notified_episode,
        next_notify_time=subscription.next_notify_time,
        next_notify_episode=subscription.next_notify_episode,
        armed=subscription.id in svc.pending_ids(),
    )


# ============== REST API ==============

@app.get("/health")
@app.get("/api/health")
async def health():
    """Health check"""
    scheduler_status = {}
    if scheduler:
        status = await scheduler.status()
        scheduler_status = status.to_dict()

    return {
        "status": "ok",
        "version": __version__,
        "scheduler": scheduler_status,
    }


@app.put("/api/series/{series_id}")
async def put_series(series_id: str, request: SeriesRequest):
    """Create or update series metadata"""
    svc = _require_scheduler()

    if request.recurrence_period and parse_period(request.recurrence_period) is None:
        raise HTTPException(
            status_code=400,
            detail=f"Invalid recurrence period: {request.recurrence_period}",
        )

    series = Series.from_dict({"id": series_id, **request.model_dump()})
    await svc.store.save_series(series)
    return {"series": series.to_dict(), "precise_cadence": series.has_precise_cadence}


@app.get("/api/subscriptions")
async def list_subscriptions(subscriber_id: Optional[str] = None):
    """List subscriptions, optionally for one subscriber"""
    svc = _require_scheduler()

    subscriptions = await svc.store.list_subscriptions(subscriber_id)
    return {
        "subscriptions": [_subscription_response(svc, s) for s in subscriptions],
        "total": len(subscriptions),
    }


@app.get("/api/subscriptions/{subscription_id}", response_model=SubscriptionResponse)
async def get_subscription(subscription_id: str):
    """Get a subscription"""
    svc = _require_scheduler()

    subscription = await svc.get(subscription_id)
    if not subscription:
        raise HTTPException(status_code=404, detail="Subscription not found")
    return _subscription_response(svc, subscription)


@app.post("/api/subscriptions", response_model=SubscriptionResponse)
async def create_subscription(request: SubscribeRequest):
    """Subscribe to a series"""
    svc = _require_scheduler()

    try:
        subscription = await svc.subscribe(
            request.subscriber_id,
            request.series_id,
            aired_episodes=request.aired_episodes,
        )
    except LookupError as e:
        raise HTTPException(status_code=404, detail=str(e))

    return _subscription_response(svc, subscription)


@app.delete("/api/subscriptions/{subscription_id}")
async def delete_subscription(subscription_id: str):
    """Unsubscribe"""
    svc = _require_scheduler()

    result = await svc.unsubscribe(subscription_id)
    if not result.removed:
        raise HTTPException(status_code=404, detail=result.reason or "Subscription not found")

    return {"status": "deleted", "subscription_id": subscription_id}


@app.post("/api/subscriptions/{subscription_id}/retrigger")
async def retrigger_subscription(subscription_id: str):
    """Re-arm a subscription whose delivery got stuck"""
    svc = _require_scheduler()

    try:
        due = await svc.retrigger(subscription_id)
    except LookupError as e:
        raise HTTPException(status_code=404, detail=str(e))

    return {
        "subscription_id": subscription_id,
        "armed": due is not None,
        "due": due.isoformat() if due else None,
    }


@app.get("/api/scheduler/pending")
async def pending():
    """Live timers"""
    svc = _require_scheduler()
    return {
        "count": svc.pending_count(),
        "ids": sorted(svc.pending_ids()),
    }


@app.get("/api/scheduler/events")
async def recent_events(limit: int = 50):
    """Recent scheduler events, oldest first"""
    svc = _require_scheduler()
    return {"events": [e.to_dict() for e in svc.recent_events(limit)]}


# ============== Entry point ==============

def main():
    """Start the FastAPI server"""
    import uvicorn

    uvicorn.run(
        "airtime.main:app",
        host=settings.host,
        port=settings.port,
        reload=False,
    )


if __name__ == "__main__":
    main()
