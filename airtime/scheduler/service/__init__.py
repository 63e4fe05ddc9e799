"""Scheduler service package.

This package contains the core scheduler service components:
- state.py: State management and dependencies
- store.py: SQLite persistence layer
- registry.py: In-memory timer registry
- timer.py: Timer firing and notification execution
- recovery.py: Startup recovery of pending timers
- ops.py: Subscription operations
- events.py: Event system
"""
from .service import NotificationScheduler

__all__ = ["NotificationScheduler"]
