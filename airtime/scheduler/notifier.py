"""Notification delivery for due episodes.

The scheduler only needs ``deliver``; how a notification reaches a
subscriber is up to the implementation:
- LogNotifier: log only (default when nothing is configured)
- WebhookNotifier: POST a JSON payload to an HTTP endpoint
"""
from typing import Any, Protocol

from loguru import logger

from .errors import DeliveryError
from .models import SeriesDisplayInfo
from .schedule import utcnow

logger = logger.bind(module="scheduler.notifier")


# ============== Protocol Definitions ==============

class Notifier(Protocol):
    """Protocol for delivering one episode notification.

    Implementations raise on failure. Delivering the same episode twice is
    acceptable; losing one is not.
    """

    async def deliver(
        self,
        subscriber_id: str,
        series: SeriesDisplayInfo,
        episode: int,
    ) -> None:
        ...


class LogNotifier:
    """Notifier that only writes the notification to the log."""

    def __init__(self):
        self.delivered: int = 0

    async def deliver(
        self,
        subscriber_id: str,
        series: SeriesDisplayInfo,
        episode: int,
    ) -> None:
        self.delivered += 1
        logger.info(
            f"New episode: {series.display_name} episode {episode} "
            f"(subscriber {subscriber_id}, air time {series.air_time_display or '-'})"
        )


class WebhookNotifier:
    """Deliver notifications by POSTing JSON to a webhook URL."""

    def __init__(
        self,
        url: str,
        headers: dict[str, str] | None = None,
        timeout_seconds: float = 30.0,
    ):
        """Initialize the webhook notifier.

        Args:
            url: Endpoint that receives the notification payload
            headers: Extra HTTP headers (e.g. authorization)
            timeout_seconds: Total request timeout
        """
        if not url:
            raise ValueError("No webhook URL configured")
        self.url = url
        self.headers = headers or {}
        self.timeout_seconds = timeout_seconds

    def build_payload(
        self,
        subscriber_id: str,
        series: SeriesDisplayInfo,
        episode: int,
    ) -> dict[str, Any]:
        return {
            "subscriber_id": subscriber_id,
            "series_id": series.series_id,
            "series_name": series.display_name,
            "episode": episode,
            "air_time": series.air_time.isoformat() if series.air_time else None,
            "air_time_display": series.air_time_display,
            "sent_at": utcnow().isoformat(),
        }

    async def deliver(
        self,
        subscriber_id: str,
        series: SeriesDisplayInfo,
        episode: int,
    ) -> None:
        import aiohttp

        payload = self.build_payload(subscriber_id, series, episode)
        timeout = aiohttp.ClientTimeout(total=self.timeout_seconds)

        try:
            async with aiohttp.ClientSession(timeout=timeout) as session:
                async with session.post(self.url, json=payload, headers=self.headers) as resp:
                    if resp.status >= 400:
                        raise DeliveryError(
                            f"Webhook failed with status {resp.status}: "
                            f"subscriber={subscriber_id}, series={series.series_id}"
                        )
        except aiohttp.ClientError as e:
            raise DeliveryError(f"Webhook request failed: {e}") from e

        logger.info(f"Webhook delivered: {series.display_name} episode {episode} -> {subscriber_id}")
