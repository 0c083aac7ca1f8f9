from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timezone
from typing import Any, Callable, Mapping

from notifyhub.config import const
from notifyhub.ports.remote import RemoteApiClient
from notifyhub.services.errors import NoDataFoundError, RemoteRequestError
from notifyhub.services.remote.client import split_link

from .enums import DeliveryMode, PollMode
from .feed import ChangeFeed
from .models import ChangeBatch, NormalizedChangeRecord, PollCursor, isoformat_z, source_timestamp
from .resources import ResourceSpec
from .storage import SubscriptionStorage

__all__ = ["DeltaPoller"]

_log = logging.getLogger("notifyhub.subscription.poller")

NEXT_LINK = "@odata.nextLink"
DELTA_LINK = "@odata.deltaLink"


def _utcnow() -> datetime:
    return datetime.now(tz=timezone.utc)


class DeltaPoller:
    """Lists changes directly from the remote API when push delivery is not in use.

    Timestamp mode filters on ``lastModifiedDateTime`` and advances the cursor
    to the time captured before the first request. Token mode follows the
    remote delta chain and stores the final delta link only once every page of
    the cycle has been read. A failed cycle leaves the cursor where it was.
    """

    def __init__(
        self,
        client: RemoteApiClient,
        storage: SubscriptionStorage,
        resource: ResourceSpec,
        *,
        feed: ChangeFeed | None = None,
        api_version: str = const.API_VERSION,
        page_size: int = const.POLL_PAGE_SIZE,
        timeout: float = const.POLL_TIMEOUT,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._client = client
        self._storage = storage
        self._resource = resource
        self._feed = feed
        self._api_version = api_version
        self._page_size = page_size
        self._timeout = timeout
        self._clock = clock
        self._lock = asyncio.Lock()

    @property
    def mode(self) -> PollMode:
        return self._resource.poll_mode

    async def poll(self, *, manual: bool = False) -> list[NormalizedChangeRecord]:
        """Run one poll cycle and return its records in page order."""
        polled_at = self._clock()
        async with self._lock:
            try:
                items = await asyncio.wait_for(self._cycle(manual), timeout=self._timeout)
            except asyncio.TimeoutError as exc:
                raise RemoteRequestError(
                    f"poll cycle timed out after {self._timeout}s",
                    status_code=0,
                    method="GET",
                    path=self._resource.subscription_resource,
                ) from exc
        records = [
            NormalizedChangeRecord(
                payload=item,
                received_via=DeliveryMode.POLL,
                source_timestamp=source_timestamp(item) or polled_at,
            )
            for item in items
        ]
        if self._feed is not None and records:
            await self._feed.publish(ChangeBatch(records=tuple(records), received_via=DeliveryMode.POLL, produced_at=polled_at))
        return records

    # ------------------------------------------------------------------
    async def _resolve_path(self) -> str:
        user_id = None
        if self._resource.needs_user_id:
            user_id = self._resource.user_id or self._storage.get_user_id()
            if not user_id:
                me = await self._client.request("GET", f"/{self._api_version}/me")
                user_id = me.get("id") if isinstance(me, Mapping) else None
                if not user_id:
                    raise RemoteRequestError("could not resolve the signed-in user id", status_code=0, path="/me")
                self._storage.set_user_id(str(user_id))
        return self._resource.poll_path(self._api_version, user_id=user_id)

    async def _cycle(self, manual: bool) -> list[Any]:
        poll_start = self._clock()
        path = await self._resolve_path()

        if manual:
            page = await self._client.request("GET", path, None, {"$top": const.MANUAL_PAGE_SIZE})
            items = _page_items(page)[: const.MANUAL_PAGE_SIZE]
            if not items:
                raise NoDataFoundError()
            _log.info("manual poll returned data", extra={"items": len(items)})
            return items

        cursor = self._storage.load_cursor()
        if self.mode is PollMode.TOKEN:
            if cursor.delta_token:
                path, query = split_link(cursor.delta_token)
            else:
                query = {"$top": self._page_size}
        else:
            since = cursor.last_checked_at or poll_start
            query = {
                "$filter": f"lastModifiedDateTime gt {isoformat_z(since)}",
                "$top": self._page_size,
            }

        items: list[Any] = []
        delta_link: str | None = None
        pages = 0
        while True:
            page = await self._client.request("GET", path, None, query)
            pages += 1
            items.extend(_page_items(page))
            if not isinstance(page, Mapping):
                break
            delta_link = page.get(DELTA_LINK) or delta_link
            next_link = page.get(NEXT_LINK)
            if not next_link:
                break
            # the next link already carries the filter and paging state
            path, query = split_link(next_link)

        if self.mode is PollMode.TOKEN:
            new_cursor = PollCursor(delta_token=delta_link or cursor.delta_token)
        else:
            new_cursor = PollCursor(last_checked_at=poll_start)
        self._storage.save_cursor(new_cursor)
        _log.info(
            "poll cycle finished",
            extra={"mode": self.mode.value, "pages": pages, "items": len(items)},
        )
        return items


def _page_items(page: Any) -> list[Any]:
    if isinstance(page, Mapping):
        value = page.get("value")
        if isinstance(value, list):
            return list(value)
    return []
