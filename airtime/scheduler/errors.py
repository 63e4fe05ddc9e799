"""Exception types raised by the notification scheduler."""


class AirtimeError(Exception):
    """Base class for scheduler errors."""


class PersistenceError(AirtimeError):
    """A schedule store read or write failed."""


class DeliveryError(AirtimeError):
    """The notifier could not deliver an episode notification."""


class ScheduleInvariantError(AirtimeError, ValueError):
    """A subscription's pending projection is inconsistent.

    ``next_notify_time`` and ``next_notify_episode`` must be both set or both
    empty, and when set the episode must be ``last_notified_episode + 1``.
    """


class StaleSubscriptionError(AirtimeError, LookupError):
    """The stored subscription was deleted or advanced under a pending write."""
