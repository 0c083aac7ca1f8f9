from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone
from typing import Awaitable, Callable

from notifyhub.config import const
from notifyhub.services.errors import (
    CryptoGenerationError,
    NotifyHubError,
    RemoteRequestError,
    SubscriptionCreateError,
)
from notifyhub.services.scheduler import Scheduler

from .enums import SubscriptionState
from .manager import SubscriptionLifecycleManager
from .poller import DeltaPoller
from .resources import ResourceSpec

__all__ = ["SubscriptionSupervisor"]

_log = logging.getLogger("notifyhub.subscription.supervisor")


def _utcnow() -> datetime:
    return datetime.now(tz=timezone.utc)


class SubscriptionSupervisor:
    """Keeps push delivery alive and polls whenever push is not carrying changes."""

    def __init__(
        self,
        manager: SubscriptionLifecycleManager,
        poller: DeltaPoller,
        resource: ResourceSpec,
        *,
        notification_url: str | None,
        push_enabled: bool = True,
        renew_interval: float = const.RENEW_INTERVAL,
        poll_interval: float = const.POLL_INTERVAL,
        renewal_margin: timedelta = const.RENEWAL_MARGIN,
        scheduler: Scheduler | None = None,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._manager = manager
        self._poller = poller
        self._resource = resource
        self._notification_url = notification_url
        self._push_enabled = push_enabled and bool(notification_url)
        self._renew_interval = renew_interval
        self._poll_interval = poll_interval
        self._renewal_margin = renewal_margin
        self._scheduler = scheduler or Scheduler()
        self._clock = clock
        self.fallback = False

    @property
    def push_live(self) -> bool:
        return self._push_enabled and not self.fallback and self._manager.state is SubscriptionState.ACTIVE

    async def start(self) -> None:
        if self._push_enabled:
            await self._scheduler.ensure_every("subscription", self._renew_interval, self.tick_subscription, run_now=True)
        await self._scheduler.ensure_every("poll", self._poll_interval, self.tick_poll)
        await self._scheduler.start()

    async def stop(self) -> None:
        await self._scheduler.stop()

    async def tick_subscription(self) -> None:
        if not self._push_enabled or not self._notification_url:
            return
        await self._guarded(self._maintain)

    async def _maintain(self) -> None:
        manager = self._manager
        if manager.state is SubscriptionState.INACTIVE:
            await manager.activate(self._resource.subscription_resource, self._notification_url)
            self.fallback = False
            return
        if manager.state is not SubscriptionState.ACTIVE:
            return
        if not await manager.check_exists():
            await manager.deactivate(retain_key=True)
            await manager.activate(self._resource.subscription_resource, self._notification_url)
            self.fallback = False
            return
        record = manager.record
        if record is not None and record.renewal_due(self._renewal_margin, self._clock()):
            await manager.renew_or_reactivate()
            self.fallback = False

    async def _reauthorize(self) -> None:
        if self._manager.state is SubscriptionState.ACTIVE:
            await self._manager.renew_or_reactivate()
            self.fallback = False

    async def _guarded(self, action: Callable[[], Awaitable[None]]) -> None:
        try:
            await action()
        except (SubscriptionCreateError, CryptoGenerationError) as exc:
            if not self.fallback:
                _log.warning("push subscription unavailable; falling back to polling", extra={"error": str(exc)})
            self.fallback = True
        except RemoteRequestError as exc:
            _log.warning("subscription health check failed", extra={"error": str(exc), "status": exc.status_code})
        except NotifyHubError as exc:
            _log.warning("subscription maintenance failed", extra={"error": str(exc)})

    async def tick_poll(self) -> None:
        if self.push_live:
            return
        await self._poll_once()

    async def _poll_once(self) -> None:
        try:
            await self._poller.poll()
        except NotifyHubError as exc:
            # the next scheduled cycle retries
            _log.warning("poll cycle failed", extra={"error": str(exc)})

    async def on_lifecycle_event(self, event: str, subscription_id: str | None) -> None:
        """React to a lifecycle notification instead of waiting for the next tick."""
        record = self._manager.record
        if record is not None and subscription_id and subscription_id != record.subscription_id:
            _log.info("ignoring lifecycle event for another subscription", extra={"event": event, "subscription_id": subscription_id})
            return
        _log.info("lifecycle event received", extra={"event": event, "subscription_id": subscription_id})
        if event == "subscriptionRemoved":
            await self.tick_subscription()
        elif event == "reauthorizationRequired":
            if self._push_enabled:
                await self._guarded(self._reauthorize)
        elif event == "missed":
            # notifications were dropped upstream; catch up by polling even while push is live
            await self._poll_once()
