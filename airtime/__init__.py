"""Airtime - precise-time episode notification service."""
__version__ = "0.1.0"
