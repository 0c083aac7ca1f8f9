"""Typed views over inbound notification items.

Each item of an inbound ``value`` array is parsed into exactly one variant:

* :class:`EncryptedNotification` - carries ``encryptedContent`` (rich notification)
* :class:`LifecycleNotification` - carries ``lifecycleEvent`` (subscription removed, missed, ...)
* :class:`PlainNotification` - a change notification without resource data encryption
* :class:`OpaqueNotification` - anything else, passed through untouched
"""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Mapping, Union

__all__ = [
    "EncryptedEnvelope",
    "EncryptedNotification",
    "LifecycleNotification",
    "PlainNotification",
    "OpaqueNotification",
    "Notification",
    "parse_notification",
    "parse_batch",
]


@dataclass(frozen=True, slots=True)
class EncryptedEnvelope:
    """Wire fields of ``encryptedContent``; values are still base64 text."""

    encryption_certificate_id: str | None
    encrypted_symmetric_key: str
    ciphertext: str
    integrity_tag: str
    certificate_thumbprint: str | None = None

    @classmethod
    def from_wire(cls, raw: Mapping[str, Any], *, fallback_certificate_id: Any = None) -> "EncryptedEnvelope":
        cert_id = raw.get("encryptionCertificateId") or fallback_certificate_id
        return cls(
            encryption_certificate_id=str(cert_id) if cert_id else None,
            encrypted_symmetric_key=str(raw.get("dataKey") or ""),
            ciphertext=str(raw.get("data") or ""),
            integrity_tag=str(raw.get("dataSignature") or ""),
            certificate_thumbprint=raw.get("encryptionCertificateThumbprint"),
        )


@dataclass(frozen=True, slots=True)
class _Base:
    raw: Mapping[str, Any] = field(repr=False)

    @property
    def subscription_id(self) -> str | None:
        value = self.raw.get("subscriptionId")
        return str(value) if value else None

    @property
    def client_state(self) -> str | None:
        value = self.raw.get("clientState")
        return str(value) if value is not None else None


@dataclass(frozen=True, slots=True)
class EncryptedNotification(_Base):
    envelope: EncryptedEnvelope

    @property
    def metadata(self) -> dict[str, Any]:
        """The notification without its encrypted blob."""
        return {k: v for k, v in self.raw.items() if k != "encryptedContent"}


@dataclass(frozen=True, slots=True)
class LifecycleNotification(_Base):
    @property
    def event(self) -> str:
        return str(self.raw.get("lifecycleEvent"))


@dataclass(frozen=True, slots=True)
class PlainNotification(_Base):
    pass


@dataclass(frozen=True, slots=True)
class OpaqueNotification:
    raw: Any


Notification = Union[EncryptedNotification, LifecycleNotification, PlainNotification, OpaqueNotification]


def parse_notification(item: Any) -> Notification:
    if not isinstance(item, Mapping):
        return OpaqueNotification(raw=item)
    encrypted = item.get("encryptedContent")
    if isinstance(encrypted, Mapping):
        envelope = EncryptedEnvelope.from_wire(encrypted, fallback_certificate_id=item.get("encryptionCertificateId"))
        return EncryptedNotification(raw=item, envelope=envelope)
    if item.get("lifecycleEvent"):
        return LifecycleNotification(raw=item)
    if "subscriptionId" in item or "changeType" in item:
        return PlainNotification(raw=item)
    return OpaqueNotification(raw=item)


def parse_batch(body: Any) -> list[Notification] | None:
    """Parse the ``value`` array of an inbound body; ``None`` when the body has none."""
    if not isinstance(body, Mapping):
        return None
    value = body.get("value")
    if not isinstance(value, list):
        return None
    return [parse_notification(item) for item in value]
