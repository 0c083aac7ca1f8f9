"""Dataclasses for subscriptions, poll cursors and normalized change records."""
from __future__ import annotations

import re
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any, Mapping

from .enums import DeliveryMode

__all__ = [
    "SubscriptionRecord",
    "PollCursor",
    "NormalizedChangeRecord",
    "ChangeBatch",
    "isoformat_z",
    "parse_datetime",
    "source_timestamp",
]


def _utcnow() -> datetime:
    return datetime.now(tz=timezone.utc)


def isoformat_z(dt: datetime) -> str:
    moment = dt.astimezone(timezone.utc)
    return moment.replace(microsecond=moment.microsecond // 1000 * 1000).isoformat().replace("+00:00", "Z")


_FRACTION = re.compile(r"\.(\d+)")


def parse_datetime(value: Any) -> datetime | None:
    """Parse the remote service's ISO-8601 stamps (``Z`` suffix, up to 7 fractional digits)."""
    if isinstance(value, datetime):
        return value if value.tzinfo else value.replace(tzinfo=timezone.utc)
    if not isinstance(value, str) or not value:
        return None
    text = value.strip()
    if text.endswith("Z") or text.endswith("z"):
        text = text[:-1] + "+00:00"
    text = _FRACTION.sub(lambda m: "." + m.group(1)[:6].ljust(6, "0"), text, count=1)
    try:
        parsed = datetime.fromisoformat(text)
    except ValueError:
        return None
    return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)


def source_timestamp(payload: Any) -> datetime | None:
    if not isinstance(payload, Mapping):
        return None
    for key in ("lastModifiedDateTime", "createdDateTime"):
        stamp = parse_datetime(payload.get(key))
        if stamp is not None:
            return stamp
    return None


@dataclass(slots=True)
class SubscriptionRecord:
    subscription_id: str
    resource_path: str
    expires_at: datetime
    client_state: str = field(repr=False)
    certificate_fingerprint: str
    notification_url: str | None = None
    created_at: datetime = field(default_factory=_utcnow)

    def is_expired(self, at: datetime | None = None) -> bool:
        return (at or _utcnow()) >= self.expires_at

    def renewal_due(self, margin: timedelta, at: datetime | None = None) -> bool:
        return (at or _utcnow()) >= self.expires_at - margin

    def as_dict(self) -> dict[str, Any]:
        return {
            "subscriptionId": self.subscription_id,
            "resourcePath": self.resource_path,
            "expiresAt": isoformat_z(self.expires_at),
            "clientState": self.client_state,
            "certificateFingerprint": self.certificate_fingerprint,
            "notificationUrl": self.notification_url,
            "createdAt": isoformat_z(self.created_at),
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "SubscriptionRecord":
        expires_at = parse_datetime(data.get("expiresAt"))
        if expires_at is None:
            raise ValueError("subscription record is missing expiresAt")
        return cls(
            subscription_id=str(data["subscriptionId"]),
            resource_path=str(data["resourcePath"]),
            expires_at=expires_at,
            client_state=str(data["clientState"]),
            certificate_fingerprint=str(data["certificateFingerprint"]),
            notification_url=data.get("notificationUrl"),
            created_at=parse_datetime(data.get("createdAt")) or _utcnow(),
        )


@dataclass(slots=True)
class PollCursor:
    """Fallback polling state. Only one of the two fields is used per resource."""

    last_checked_at: datetime | None = None
    delta_token: str | None = None

    def as_dict(self) -> dict[str, Any]:
        return {
            "lastCheckedAt": isoformat_z(self.last_checked_at) if self.last_checked_at else None,
            "deltaToken": self.delta_token,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "PollCursor":
        return cls(
            last_checked_at=parse_datetime(data.get("lastCheckedAt")),
            delta_token=data.get("deltaToken") or None,
        )


@dataclass(frozen=True, slots=True)
class NormalizedChangeRecord:
    payload: Any
    received_via: DeliveryMode
    source_timestamp: datetime | None = None

    def as_dict(self) -> dict[str, Any]:
        return {
            "payload": self.payload,
            "receivedVia": self.received_via.value,
            "sourceTimestamp": isoformat_z(self.source_timestamp) if self.source_timestamp else None,
        }


@dataclass(frozen=True, slots=True)
class ChangeBatch:
    """All records produced by one inbound delivery or one poll cycle, emitted as a unit."""

    records: tuple[NormalizedChangeRecord, ...]
    received_via: DeliveryMode
    produced_at: datetime = field(default_factory=_utcnow)

    def __len__(self) -> int:
        return len(self.records)

    def __iter__(self):
        return iter(self.records)
