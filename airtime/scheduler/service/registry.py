"""In-memory registry of armed notification timers.

Keeps at most one live timer per subscription id. All mutations are plain
synchronous methods: on a single event loop they cannot interleave with
another coroutine, so replacing a timer is one indivisible step per key.
"""
import asyncio
from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable

from loguru import logger

from ..schedule import ensure_utc, utcnow

logger = logger.bind(module="scheduler.registry")


@dataclass(eq=False)
class ArmedTimer:
    """A cancelable timer for one subscription's next episode."""
    subscription_id: str
    due: datetime
    episode: int | None = None
    handle: asyncio.TimerHandle | None = field(default=None, repr=False)
    fired: bool = False

    def cancel(self) -> None:
        if self.handle is not None:
            self.handle.cancel()


# Called on the event loop when a timer fires; must not block
FireCallback = Callable[[ArmedTimer], None]


class TimerRegistry:
    """Map of subscription id -> armed timer."""

    def __init__(self, clock: Callable[[], datetime] = utcnow):
        self._timers: dict[str, ArmedTimer] = {}
        self._clock = clock

    def arm_or_replace(
        self,
        subscription_id: str,
        due: datetime,
        callback: FireCallback,
        episode: int | None = None,
    ) -> ArmedTimer:
        """Arm a timer, cancelling any existing one for the same id.

        A due instant in the past still fires, on the next loop iteration.
        """
        loop = asyncio.get_running_loop()
        due = ensure_utc(due)
        delay = max(0.0, (due - self._clock()).total_seconds())

        timer = ArmedTimer(subscription_id=subscription_id, due=due, episode=episode)
        timer.handle = loop.call_later(delay, self._fire, timer, callback)

        old = self._timers.get(subscription_id)
        self._timers[subscription_id] = timer
        if old is not None:
            old.cancel()
            logger.debug(f"Replaced timer for subscription {subscription_id}")

        return timer

    def _fire(self, timer: ArmedTimer, callback: FireCallback) -> None:
        if self._timers.get(timer.subscription_id) is not timer:
            # Replaced or cancelled after the loop had already queued it
            return
        timer.fired = True
        callback(timer)

    def cancel(self, subscription_id: str) -> bool:
        """Remove and cancel the timer for an id. No-op if absent."""
        timer = self._timers.pop(subscription_id, None)
        if timer is None:
            return False
        timer.cancel()
        return True

    def release(self, subscription_id: str, timer: ArmedTimer) -> bool:
        """Remove the entry only if it is still ``timer``.

        Used by the execution engine so that finishing a fired timer never
        drops a newer timer armed for the same id in the meantime.
        """
        if self._timers.get(subscription_id) is not timer:
            return False
        del self._timers[subscription_id]
        timer.cancel()
        return True

    def get(self, subscription_id: str) -> ArmedTimer | None:
        return self._timers.get(subscription_id)

    def count(self) -> int:
        return len(self._timers)

    def live_ids(self) -> set[str]:
        return set(self._timers)

    def next_due(self) -> datetime | None:
        """Earliest due instant among timers that have not fired yet."""
        pending = [t.due for t in self._timers.values() if not t.fired]
        return min(pending) if pending else None

    def cancel_all(self) -> int:
        """Cancel every timer. Returns how many were live."""
        timers = list(self._timers.values())
        self._timers.clear()
        for timer in timers:
            timer.cancel()
        return len(timers)
