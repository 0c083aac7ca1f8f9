"""Persisted state contract on top of a :class:`~notifyhub.ports.scratch.ScratchStore`.

Keys written to the store:

``subscription``
    JSON with the active :class:`SubscriptionRecord` and its key material.
    Written with a single ``set`` so a record never exists without its keys.
``retired_keys``
    Key material of rotated-out subscriptions, kept until ``retiredUntil``.
``poll_cursor``
    The :class:`PollCursor` of the fallback poller.
``user_id``
    Cached id of the signed-in user (needed to poll all chats).
"""
from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Callable

from notifyhub.ports.scratch import ScratchStore
from notifyhub.services.crypto.pki import KeyMaterial

from .models import PollCursor, SubscriptionRecord, isoformat_z, parse_datetime

__all__ = ["ActiveSubscription", "HeldKey", "SubscriptionStorage"]

_log = logging.getLogger("notifyhub.subscription.storage")

KEY_SUBSCRIPTION = "subscription"
KEY_RETIRED = "retired_keys"
KEY_CURSOR = "poll_cursor"
KEY_USER_ID = "user_id"


def _utcnow() -> datetime:
    return datetime.now(tz=timezone.utc)


@dataclass(slots=True)
class ActiveSubscription:
    record: SubscriptionRecord
    keys: KeyMaterial


@dataclass(slots=True)
class HeldKey:
    """A private key the ingress handler may use, with the client state it expects."""

    keys: KeyMaterial
    client_state: str | None
    current: bool


class SubscriptionStorage:
    def __init__(
        self,
        store: ScratchStore,
        *,
        passphrase: str | None = None,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._store = store
        self._passphrase = passphrase
        self._clock = clock
        # parsed keys by fingerprint; PEM parsing is far slower than a dict hit
        self._key_cache: dict[tuple[str, str], KeyMaterial] = {}

    @property
    def store(self) -> ScratchStore:
        return self._store

    # ------------------------------------------------------------------
    # json helpers
    # ------------------------------------------------------------------
    def _read_json(self, key: str) -> Any | None:
        raw = self._store.get(key)
        if raw is None:
            return None
        try:
            return json.loads(raw.decode("utf-8"))
        except (UnicodeDecodeError, ValueError):
            _log.warning("discarding unreadable scratch entry", extra={"key": key})
            return None

    def _write_json(self, key: str, value: Any) -> None:
        self._store.set(key, json.dumps(value, ensure_ascii=False, sort_keys=True).encode("utf-8"))

    def _dump_keys(self, keys: KeyMaterial) -> dict[str, Any]:
        return {
            "certificatePem": keys.public_certificate_pem,
            "privateKeyPem": keys.private_key_pem(self._passphrase),
            "fingerprint": keys.fingerprint,
        }

    def _load_keys(self, data: dict[str, Any]) -> KeyMaterial:
        cert_pem = data["certificatePem"]
        key_pem = data["privateKeyPem"]
        cache_key = (data.get("fingerprint") or "", key_pem)
        cached = self._key_cache.get(cache_key)
        if cached is not None:
            return cached
        keys = KeyMaterial.from_pem(certificate_pem=cert_pem, private_key_pem=key_pem, passphrase=self._passphrase)
        self._key_cache[cache_key] = keys
        return keys

    # ------------------------------------------------------------------
    # active subscription
    # ------------------------------------------------------------------
    def load(self) -> ActiveSubscription | None:
        data = self._read_json(KEY_SUBSCRIPTION)
        if not isinstance(data, dict):
            return None
        try:
            record = SubscriptionRecord.from_dict(data["record"])
            keys = self._load_keys(data["keys"])
        except (KeyError, TypeError, ValueError):
            _log.warning("stored subscription is incomplete; ignoring it", exc_info=True)
            return None
        return ActiveSubscription(record=record, keys=keys)

    def save(self, record: SubscriptionRecord, keys: KeyMaterial) -> None:
        self._write_json(KEY_SUBSCRIPTION, {"record": record.as_dict(), "keys": self._dump_keys(keys)})

    def update_record(self, record: SubscriptionRecord) -> None:
        data = self._read_json(KEY_SUBSCRIPTION)
        if not isinstance(data, dict) or "keys" not in data:
            raise LookupError("no stored subscription to update")
        data["record"] = record.as_dict()
        self._write_json(KEY_SUBSCRIPTION, data)

    def clear(self) -> None:
        self._store.delete(KEY_SUBSCRIPTION)
        self._key_cache.clear()

    # ------------------------------------------------------------------
    # rotated keys
    # ------------------------------------------------------------------
    def retire(self, keys: KeyMaterial, *, client_state: str | None, grace: timedelta) -> None:
        entries = self._live_retired_entries()
        entries.append(
            {
                **self._dump_keys(keys),
                "clientState": client_state,
                "retiredUntil": isoformat_z(self._clock() + grace),
            }
        )
        self._write_json(KEY_RETIRED, entries)

    def _live_retired_entries(self) -> list[dict[str, Any]]:
        data = self._read_json(KEY_RETIRED)
        if not isinstance(data, list):
            return []
        now = self._clock()
        live = []
        for entry in data:
            until = parse_datetime(entry.get("retiredUntil")) if isinstance(entry, dict) else None
            if until is not None and until > now:
                live.append(entry)
        if len(live) != len(data):
            if live:
                self._write_json(KEY_RETIRED, live)
            else:
                self._store.delete(KEY_RETIRED)
        return live

    def held_keys(self) -> dict[str, HeldKey]:
        """Current key plus rotated-out keys still inside their grace window, by fingerprint."""
        held: dict[str, HeldKey] = {}
        for entry in self._live_retired_entries():
            try:
                keys = self._load_keys(entry)
            except (KeyError, TypeError, ValueError):
                continue
            held[keys.fingerprint] = HeldKey(keys=keys, client_state=entry.get("clientState"), current=False)
        active = self.load()
        if active is not None:
            held[active.keys.fingerprint] = HeldKey(keys=active.keys, client_state=active.record.client_state, current=True)
        return held

    # ------------------------------------------------------------------
    # polling
    # ------------------------------------------------------------------
    def load_cursor(self) -> PollCursor:
        data = self._read_json(KEY_CURSOR)
        if not isinstance(data, dict):
            return PollCursor()
        return PollCursor.from_dict(data)

    def save_cursor(self, cursor: PollCursor) -> None:
        self._write_json(KEY_CURSOR, cursor.as_dict())

    def reset_cursor(self) -> None:
        self._store.delete(KEY_CURSOR)

    def get_user_id(self) -> str | None:
        raw = self._store.get(KEY_USER_ID)
        return raw.decode("utf-8") if raw else None

    def set_user_id(self, user_id: str) -> None:
        self._store.set(KEY_USER_ID, user_id.encode("utf-8"))
