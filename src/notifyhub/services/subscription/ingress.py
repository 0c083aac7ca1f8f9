from __future__ import annotations

import asyncio
import hmac
import json
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, List, Optional, Tuple

from notifyhub.services.crypto import envelope as codec
from notifyhub.services.errors import (
    ClientStateMismatch,
    IntegrityViolation,
    ItemRejected,
    PayloadDecryptError,
    UnknownKeyFingerprint,
)

from .enums import DeliveryMode
from .feed import ChangeFeed
from .models import ChangeBatch, NormalizedChangeRecord, source_timestamp
from .notifications import (
    EncryptedNotification,
    LifecycleNotification,
    Notification,
    OpaqueNotification,
    PlainNotification,
    parse_batch,
)
from .storage import HeldKey, SubscriptionStorage

__all__ = ["IngressReport", "IngressResult", "LifecycleListener", "NotificationIngressHandler"]

_log = logging.getLogger("notifyhub.subscription.ingress")

LifecycleListener = Callable[[str, Optional[str]], Awaitable[None]]


def _utcnow() -> datetime:
    return datetime.now(tz=timezone.utc)


@dataclass(slots=True)
class IngressReport:
    received: int = 0
    accepted: int = 0
    dropped: List[Tuple[int, str]] = field(default_factory=list)
    lifecycle_events: List[str] = field(default_factory=list)


@dataclass(slots=True)
class IngressResult:
    batch: ChangeBatch
    report: IngressReport


class NotificationIngressHandler:
    """Turns one inbound delivery into one :class:`ChangeBatch`.

    Item failures are contained: an item that cannot be matched to a held key,
    authenticated or decrypted is dropped and the rest of the batch continues.
    """

    def __init__(
        self,
        storage: SubscriptionStorage,
        *,
        feed: ChangeFeed | None = None,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._storage = storage
        self._feed = feed
        self._clock = clock
        self._lifecycle_listeners: list[LifecycleListener] = []

    def add_lifecycle_listener(self, listener: LifecycleListener) -> None:
        """Called with ``(event, subscription_id)`` for every accepted lifecycle item, after the batch is published."""
        self._lifecycle_listeners.append(listener)

    async def handle(self, body: Any) -> IngressResult:
        received_at = self._clock()
        report = IngressReport()
        items = parse_batch(body)
        records: list[NormalizedChangeRecord] = []
        lifecycle: list[tuple[str, str | None]] = []

        if items is None:
            # handshake or provider metadata without a value array
            report.received = 1
            report.accepted = 1
            records.append(NormalizedChangeRecord(payload=body, received_via=DeliveryMode.PUSH, source_timestamp=received_at))
        else:
            report.received = len(items)
            held = self._storage.held_keys() if items else {}
            client_states = {h.client_state for h in held.values() if h.client_state}
            for index, item in enumerate(items):
                try:
                    payload = self._open(item, held, client_states)
                except ItemRejected as exc:
                    report.dropped.append((index, exc.reason))
                    _log.info(
                        "dropped notification item",
                        extra={"index": index, "reason": exc.reason, "error": str(exc)},
                    )
                    continue
                if isinstance(item, LifecycleNotification):
                    report.lifecycle_events.append(item.event)
                    lifecycle.append((item.event, item.subscription_id))
                records.append(
                    NormalizedChangeRecord(
                        payload=payload,
                        received_via=DeliveryMode.PUSH,
                        source_timestamp=source_timestamp(payload) or received_at,
                    )
                )
                report.accepted += 1
                # decrypt is CPU bound; let other deliveries run between items
                await asyncio.sleep(0)

        batch = ChangeBatch(records=tuple(records), received_via=DeliveryMode.PUSH, produced_at=received_at)
        _log.debug(
            "inbound delivery processed",
            extra={"received": report.received, "accepted": report.accepted, "dropped": len(report.dropped)},
        )
        if self._feed is not None:
            await self._feed.publish(batch)
        for event, subscription_id in lifecycle:
            await self._notify_lifecycle(event, subscription_id)
        return IngressResult(batch=batch, report=report)

    async def _notify_lifecycle(self, event: str, subscription_id: str | None) -> None:
        for listener in list(self._lifecycle_listeners):
            try:
                await listener(event, subscription_id)
            except Exception:
                _log.warning("lifecycle listener failed", extra={"event": event}, exc_info=True)

    # ------------------------------------------------------------------
    def _open(self, item: Notification, held: dict[str, HeldKey], client_states: set[str]) -> Any:
        if isinstance(item, OpaqueNotification):
            return item.raw
        if isinstance(item, EncryptedNotification):
            return self._decrypt(item, held)
        if isinstance(item, (PlainNotification, LifecycleNotification)):
            self._check_client_state(item.client_state, client_states)
            return dict(item.raw)
        return item  # pragma: no cover - exhaustive above

    @staticmethod
    def _check_client_state(received: str | None, expected: set[str]) -> None:
        if received is None or not expected:
            return
        if not any(hmac.compare_digest(received.encode("utf-8"), e.encode("utf-8")) for e in expected):
            raise ClientStateMismatch("client state does not match any held subscription")

    def _decrypt(self, item: EncryptedNotification, held: dict[str, HeldKey]) -> dict[str, Any]:
        env = item.envelope
        key = held.get(env.encryption_certificate_id or "")
        if key is None:
            raise UnknownKeyFingerprint(env.encryption_certificate_id)
        if key.client_state is not None:
            self._check_client_state(item.client_state, {key.client_state})

        wrapped = codec.b64decode(env.encrypted_symmetric_key, what="dataKey")
        try:
            symmetric_key = codec.decrypt_symmetric_key(wrapped, key.keys.private_key)
        except ItemRejected:
            if key.current:
                _log.warning("content key failed to unwrap with the current key", extra={"fingerprint": key.keys.fingerprint})
            else:
                _log.info("content key failed to unwrap with a retired key", extra={"fingerprint": key.keys.fingerprint})
            raise

        ciphertext = codec.b64decode(env.ciphertext, what="data")
        tag = codec.b64decode(env.integrity_tag, what="dataSignature")
        if not codec.verify_integrity(ciphertext, tag, symmetric_key):
            raise IntegrityViolation("data signature does not match the encrypted content")

        plaintext = codec.decrypt_payload(ciphertext, symmetric_key)
        try:
            decoded = json.loads(plaintext.decode("utf-8"))
        except (UnicodeDecodeError, ValueError) as exc:
            raise PayloadDecryptError("decrypted content is not JSON") from exc

        merged = item.metadata
        if isinstance(decoded, dict):
            merged.update(decoded)
        else:
            merged["resourceData"] = decoded
        return merged
