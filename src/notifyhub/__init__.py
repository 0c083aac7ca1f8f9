"""Encrypted change-notification subscriptions with a delta polling fallback."""

__version__ = "0.1.0"
