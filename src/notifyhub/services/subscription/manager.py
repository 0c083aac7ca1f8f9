from __future__ import annotations

import asyncio
import logging
import secrets
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Mapping

from notifyhub.config import const
from notifyhub.ports.remote import RemoteApiClient
from notifyhub.services.crypto.pki import KeyMaterial, generate_key_material
from notifyhub.services.errors import (
    RemoteRequestError,
    RenewalFailure,
    SubscriptionCreateError,
    SubscriptionStateError,
)
from notifyhub.services.remote.client import split_link

from .enums import SubscriptionState
from .models import SubscriptionRecord, isoformat_z, parse_datetime
from .storage import SubscriptionStorage

__all__ = ["SubscriptionLifecycleManager"]

_log = logging.getLogger("notifyhub.subscription.manager")


def _utcnow() -> datetime:
    return datetime.now(tz=timezone.utc)


class SubscriptionLifecycleManager:
    """Owns one remote push subscription slot and the key material bound to it.

    State machine::

        INACTIVE -> CREATING -> ACTIVE -> RENEWING -> ACTIVE -> DELETING -> INACTIVE

    A failed create returns to INACTIVE, a failed renewal returns to ACTIVE and
    raises :class:`RenewalFailure`; the caller then re-activates from scratch
    (see :meth:`renew_or_reactivate`).
    """

    def __init__(
        self,
        client: RemoteApiClient,
        storage: SubscriptionStorage,
        *,
        api_version: str = const.API_VERSION,
        lifetime: timedelta = const.SUBSCRIPTION_LIFETIME,
        key_grace: timedelta = const.PRIOR_KEY_GRACE,
        modulus_bits: int = const.RSA_MODULUS_BITS,
        timeout: float = const.ACTIVATION_TIMEOUT,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._client = client
        self._storage = storage
        self._api_version = api_version
        self._lifetime = lifetime
        self._key_grace = key_grace
        self._modulus_bits = modulus_bits
        self._timeout = timeout
        self._clock = clock
        self._lock = asyncio.Lock()
        self._state = SubscriptionState.ACTIVE if storage.load() is not None else SubscriptionState.INACTIVE

    # ------------------------------------------------------------------
    @property
    def state(self) -> SubscriptionState:
        return self._state

    @property
    def record(self) -> SubscriptionRecord | None:
        active = self._storage.load()
        return active.record if active else None

    def _path(self, suffix: str = "") -> str:
        return f"/{self._api_version}/subscriptions{suffix}"

    def _require(self, operation: str, *allowed: SubscriptionState) -> None:
        if self._state not in allowed:
            raise SubscriptionStateError(operation, self._state)

    async def _call(
        self,
        method: str,
        path: str,
        body: Mapping[str, Any] | None = None,
        query: Mapping[str, Any] | None = None,
    ) -> Any:
        try:
            return await asyncio.wait_for(self._client.request(method, path, body, query), timeout=self._timeout)
        except asyncio.TimeoutError as exc:
            raise RemoteRequestError(
                f"{method} {path} timed out after {self._timeout}s",
                status_code=0,
                method=method,
                path=path,
            ) from exc

    # ------------------------------------------------------------------
    async def activate(self, resource_path: str, notification_url: str) -> SubscriptionRecord:
        async with self._lock:
            self._require("activate", SubscriptionState.INACTIVE)
            self._state = SubscriptionState.CREATING
            try:
                record = await self._create(resource_path, notification_url)
            except BaseException:
                self._state = SubscriptionState.INACTIVE
                raise
            self._state = SubscriptionState.ACTIVE
            return record

    async def _create(self, resource_path: str, notification_url: str) -> SubscriptionRecord:
        # RSA generation is CPU bound; keep the event loop responsive
        keys: KeyMaterial = await asyncio.to_thread(generate_key_material, self._modulus_bits)
        client_state = secrets.token_urlsafe(32)
        now = self._clock()
        expires_at = now + self._lifetime
        body = {
            "changeType": "created",
            "notificationUrl": notification_url,
            "resource": resource_path,
            "includeResourceData": True,
            "encryptionCertificate": keys.certificate_b64,
            "encryptionCertificateId": keys.fingerprint,
            "expirationDateTime": isoformat_z(expires_at),
            "clientState": client_state,
        }
        try:
            response = await self._call("POST", self._path(), body)
        except RemoteRequestError as exc:
            _log.warning(
                "subscription create rejected",
                extra={"resource": resource_path, "status": exc.status_code, "error_code": exc.error_code},
            )
            raise SubscriptionCreateError(f"remote service rejected subscription for {resource_path}: {exc}") from exc
        subscription_id = response.get("id") if isinstance(response, Mapping) else None
        if not subscription_id:
            raise SubscriptionCreateError("remote service returned no subscription id")
        remote_expiry = parse_datetime(response.get("expirationDateTime"))
        record = SubscriptionRecord(
            subscription_id=str(subscription_id),
            resource_path=resource_path,
            expires_at=remote_expiry or expires_at,
            client_state=client_state,
            certificate_fingerprint=keys.fingerprint,
            notification_url=notification_url,
            created_at=now,
        )
        # single write: record and keys land together or not at all
        self._storage.save(record, keys)
        _log.info(
            "subscription active",
            extra={
                "subscription_id": record.subscription_id,
                "resource": resource_path,
                "expires_at": isoformat_z(record.expires_at),
                "fingerprint": keys.fingerprint,
            },
        )
        return record

    # ------------------------------------------------------------------
    async def check_exists(self) -> bool:
        if self._state is SubscriptionState.INACTIVE:
            return False
        record = self.record
        if record is None:
            return False
        try:
            await self._call("GET", self._path(f"/{record.subscription_id}"))
        except RemoteRequestError as exc:
            if exc.not_found:
                _log.info("subscription no longer exists remotely", extra={"subscription_id": record.subscription_id})
                return False
            raise
        return True

    async def list_remote(self) -> list[dict[str, Any]]:
        """All subscriptions the remote service reports for the signed-in app."""
        items: list[dict[str, Any]] = []
        path, query = self._path(), None
        while True:
            response = await self._call("GET", path, None, query)
            if not isinstance(response, Mapping):
                break
            items.extend(item for item in response.get("value") or [] if isinstance(item, Mapping))
            next_link = response.get("@odata.nextLink")
            if not next_link:
                break
            path, query = split_link(next_link)
        return items

    # ------------------------------------------------------------------
    async def renew(self) -> SubscriptionRecord:
        async with self._lock:
            self._require("renew", SubscriptionState.ACTIVE)
            active = self._storage.load()
            if active is None:
                raise RenewalFailure("no stored subscription to renew")
            record = active.record
            now = self._clock()
            if record.is_expired(now):
                raise RenewalFailure(f"subscription {record.subscription_id} already expired")

            self._state = SubscriptionState.RENEWING
            try:
                expires_at = now + self._lifetime
                try:
                    response = await self._call(
                        "PATCH",
                        self._path(f"/{record.subscription_id}"),
                        {"expirationDateTime": isoformat_z(expires_at)},
                    )
                except RemoteRequestError as exc:
                    _log.warning("subscription renewal failed", extra={"subscription_id": record.subscription_id})
                    raise RenewalFailure(f"renewal of {record.subscription_id} failed: {exc}") from exc

                remote_expiry = parse_datetime(response.get("expirationDateTime")) if isinstance(response, Mapping) else None
                new_expiry = remote_expiry or expires_at
                if new_expiry <= record.expires_at:
                    raise RenewalFailure(f"renewal of {record.subscription_id} did not extend expiry")
                record.expires_at = new_expiry
                self._storage.update_record(record)
            finally:
                self._state = SubscriptionState.ACTIVE

            _log.info(
                "subscription renewed",
                extra={"subscription_id": record.subscription_id, "expires_at": isoformat_z(record.expires_at)},
            )
            return record

    async def renew_or_reactivate(self) -> SubscriptionRecord:
        """Fast-path renewal; on failure tear down and create a fresh subscription."""
        try:
            return await self.renew()
        except RenewalFailure as exc:
            record = self.record
            if record is None or not record.notification_url:
                raise
            _log.info("re-activating after renewal failure", extra={"reason": str(exc)})
            await self.deactivate(retain_key=True)
            return await self.activate(record.resource_path, record.notification_url)

    # ------------------------------------------------------------------
    async def deactivate(self, *, retain_key: bool = False) -> bool:
        """Best-effort remote delete, then unconditional local teardown.

        Returns whether the remote delete succeeded. With ``retain_key`` the
        private key stays usable for in-flight notifications for the grace window.
        """
        async with self._lock:
            active = self._storage.load()
            if active is None:
                self._state = SubscriptionState.INACTIVE
                return True
            self._state = SubscriptionState.DELETING
            record = active.record
            remote_ok = False
            try:
                await self._call("DELETE", self._path(f"/{record.subscription_id}"))
                remote_ok = True
            except RemoteRequestError as exc:
                remote_ok = exc.not_found
                if not exc.not_found:
                    _log.warning(
                        "remote subscription delete failed",
                        extra={"subscription_id": record.subscription_id, "status": exc.status_code},
                    )
            finally:
                if retain_key:
                    self._storage.retire(active.keys, client_state=record.client_state, grace=self._key_grace)
                self._storage.clear()
                self._state = SubscriptionState.INACTIVE
            _log.info("subscription deactivated", extra={"subscription_id": record.subscription_id, "remote_deleted": remote_ok})
            return remote_ok

    # ------------------------------------------------------------------
    def status(self) -> dict[str, Any]:
        record = self.record
        cursor = self._storage.load_cursor()
        return {
            "state": self._state.value,
            "subscriptionId": record.subscription_id if record else None,
            "resourcePath": record.resource_path if record else None,
            "expiresAt": isoformat_z(record.expires_at) if record else None,
            "certificateFingerprint": record.certificate_fingerprint if record else None,
            **cursor.as_dict(),
        }
