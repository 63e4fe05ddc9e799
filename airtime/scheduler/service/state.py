"""State management for the scheduler service.

Contains dependency injection and runtime state management.
"""
import asyncio
from dataclasses import dataclass, field

from ..notifier import Notifier


@dataclass
class SchedulerServiceDeps:
    """Dependencies for the scheduler service.

    This allows for dependency injection of external services.
    """
    notifier: Notifier


@dataclass
class SchedulerServiceState:
    """Runtime state of the scheduler service."""
    running: bool = False
    recovered: bool = False

    # Delivery tasks currently executing, kept so they are not garbage
    # collected and can be cancelled on stop
    in_flight: set[asyncio.Task] = field(default_factory=set)

    # Bounds concurrent deliveries; created on start
    delivery_slots: asyncio.Semaphore | None = None

    def reset(self) -> None:
        """Reset state to initial values."""
        self.running = False
        self.recovered = False
        self.in_flight.clear()
        self.delivery_slots = None
