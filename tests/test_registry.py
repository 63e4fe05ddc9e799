# tests/test_registry.py

from __future__ import annotations

from datetime import datetime, timedelta, timezone

from airtime.scheduler.service.registry import ArmedTimer, TimerRegistry

from .fakes import settle, wait_until


def now() -> datetime:
    return datetime.now(timezone.utc)


class Recorder:
    def __init__(self) -> None:
        self.fired: list[ArmedTimer] = []

    def __call__(self, timer: ArmedTimer) -> None:
        self.fired.append(timer)


async def test_arm_twice_keeps_one_live_timer() -> None:
    registry = TimerRegistry()
    fire = Recorder()

    first = registry.arm_or_replace("sub", now() + timedelta(hours=1), fire, episode=1)
    second = registry.arm_or_replace("sub", now() + timedelta(milliseconds=20), fire, episode=1)

    assert registry.count() == 1
    assert registry.get("sub") is second
    assert first.handle.cancelled()

    await wait_until(lambda: fire.fired)
    await settle()
    assert fire.fired == [second]


async def test_past_due_timer_fires_on_next_tick() -> None:
    registry = TimerRegistry()
    fire = Recorder()

    timer = registry.arm_or_replace("sub", now() - timedelta(days=30), fire)
    assert fire.fired == []

    await settle()
    assert fire.fired == [timer]
    assert timer.fired
    # Firing does not remove the entry; the engine releases it
    assert registry.live_ids() == {"sub"}


async def test_cancel_is_idempotent_and_stops_firing() -> None:
    registry = TimerRegistry()
    fire = Recorder()

    registry.arm_or_replace("sub", now() - timedelta(seconds=1), fire)
    assert registry.cancel("sub") is True
    assert registry.cancel("sub") is False
    assert registry.cancel("never") is False

    await settle()
    assert fire.fired == []
    assert registry.count() == 0


async def test_release_only_removes_the_same_timer() -> None:
    registry = TimerRegistry()
    fire = Recorder()

    old = registry.arm_or_replace("sub", now() + timedelta(hours=1), fire)
    new = registry.arm_or_replace("sub", now() + timedelta(hours=2), fire)

    assert registry.release("sub", old) is False
    assert registry.get("sub") is new
    assert registry.release("sub", new) is True
    assert registry.count() == 0


async def test_distinct_ids_are_independent() -> None:
    registry = TimerRegistry()
    fire = Recorder()
    soon = now() + timedelta(hours=1)

    registry.arm_or_replace("a", soon, fire)
    registry.arm_or_replace("b", soon + timedelta(hours=1), fire)
    registry.cancel("a")

    assert registry.live_ids() == {"b"}
    assert registry.next_due() == soon + timedelta(hours=1)
    assert registry.cancel_all() == 1
    assert registry.next_due() is None


async def test_injected_clock_decides_when_a_timer_is_due() -> None:
    frozen = datetime(2024, 1, 1, tzinfo=timezone.utc)
    registry = TimerRegistry(clock=lambda: frozen)
    fire = Recorder()

    registry.arm_or_replace("sub", datetime(2023, 12, 31, tzinfo=timezone.utc), fire)

    await settle()
    assert len(fire.fired) == 1
