"""Enumerations for subscription lifecycle and delivery modes."""
from __future__ import annotations

from enum import Enum

__all__ = ["SubscriptionState", "DeliveryMode", "PollMode"]


class _StrEnum(str, Enum):
    """Simple ``str``-backed enum compatible with Python 3.10."""

    def __str__(self) -> str:
        return str(self.value)


class SubscriptionState(_StrEnum):
    INACTIVE = "inactive"
    CREATING = "creating"
    ACTIVE = "active"
    RENEWING = "renewing"
    DELETING = "deleting"


class DeliveryMode(_StrEnum):
    PUSH = "push"
    POLL = "poll"


class PollMode(_StrEnum):
    TIMESTAMP = "timestamp"
    TOKEN = "token"
