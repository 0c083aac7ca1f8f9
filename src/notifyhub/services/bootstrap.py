"""Wires settings into a ready-to-use set of pipeline components."""
from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from notifyhub.adapters.store.sqlite import SQLiteScratchStore
from notifyhub.ports.remote import RemoteApiClient
from notifyhub.ports.scratch import ScratchStore
from notifyhub.services.remote.client import GraphHttpClient
from notifyhub.services.settings import Settings
from notifyhub.services.subscription import (
    ChangeFeed,
    DeltaPoller,
    NotificationIngressHandler,
    ResourceSpec,
    SubscriptionLifecycleManager,
    SubscriptionStorage,
    SubscriptionSupervisor,
)

__all__ = ["Runtime", "build_runtime"]


@dataclass(slots=True)
class Runtime:
    settings: Settings
    store: ScratchStore
    client: RemoteApiClient
    storage: SubscriptionStorage
    feed: ChangeFeed
    resource: ResourceSpec
    manager: SubscriptionLifecycleManager
    ingress: NotificationIngressHandler
    poller: DeltaPoller
    supervisor: SubscriptionSupervisor

    def close(self) -> None:
        close = getattr(self.store, "close", None)
        if callable(close):
            close()

    async def aclose(self) -> None:
        """Release the HTTP connection pool, then the store."""
        aclose = getattr(self.client, "aclose", None)
        if callable(aclose):
            await aclose()
        self.close()


def build_runtime(
    settings: Settings,
    *,
    store: ScratchStore | None = None,
    client: RemoteApiClient | None = None,
    feed: ChangeFeed | None = None,
    **manager_options: Any,
) -> Runtime:
    store = store or SQLiteScratchStore(settings.resolved_store_path(), instance_id=settings.instance_id)
    client = client or GraphHttpClient.from_settings(settings)
    feed = feed or ChangeFeed()
    storage = SubscriptionStorage(store, passphrase=settings.key_passphrase)
    resource = ResourceSpec.from_settings(settings.resource)
    manager = SubscriptionLifecycleManager(client, storage, api_version=settings.api_version, **manager_options)
    ingress = NotificationIngressHandler(storage, feed=feed)
    poller = DeltaPoller(client, storage, resource, feed=feed, api_version=settings.api_version)
    supervisor = SubscriptionSupervisor(
        manager,
        poller,
        resource,
        notification_url=settings.notification_url,
        push_enabled=settings.push_enabled,
        renew_interval=settings.renew_interval,
        poll_interval=settings.poll_interval,
    )
    ingress.add_lifecycle_listener(supervisor.on_lifecycle_event)
    return Runtime(
        settings=settings,
        store=store,
        client=client,
        storage=storage,
        feed=feed,
        resource=resource,
        manager=manager,
        ingress=ingress,
        poller=poller,
        supervisor=supervisor,
    )
