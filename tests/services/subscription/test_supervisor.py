from __future__ import annotations

from datetime import timedelta

import pytest

from notifyhub.services.errors import RemoteRequestError
from notifyhub.services.subscription import (
    DeltaPoller,
    ResourceSpec,
    SubscriptionLifecycleManager,
    SubscriptionState,
    SubscriptionSupervisor,
)

RESOURCE = ResourceSpec(kind="chat", chat_id="19:abc")
URL = "https://hooks.example.test/notifications"
CHAT_PATH = "/v1.0/chats/19:abc/messages"


def _created(body, query):
    return {"id": "sub-1", "expirationDateTime": body["expirationDateTime"]}


@pytest.fixture
def parts(remote, storage, clock):
    manager = SubscriptionLifecycleManager(remote, storage, clock=clock)
    poller = DeltaPoller(remote, storage, RESOURCE, clock=clock)
    supervisor = SubscriptionSupervisor(manager, poller, RESOURCE, notification_url=URL, clock=clock)
    remote.on("GET", CHAT_PATH, {"value": []})
    return manager, poller, supervisor


@pytest.mark.anyio
async def test_first_tick_activates_and_polling_pauses(parts, remote):
    manager, _, supervisor = parts
    remote.on("POST", "/v1.0/subscriptions", _created)

    await supervisor.tick_subscription()
    assert manager.state is SubscriptionState.ACTIVE
    assert supervisor.push_live

    await supervisor.tick_poll()
    assert remote.calls_to("GET", CHAT_PATH) == []


@pytest.mark.anyio
async def test_create_failure_falls_back_to_polling(parts, remote):
    manager, _, supervisor = parts
    remote.on("POST", "/v1.0/subscriptions", RemoteRequestError("no permission", status_code=403))

    await supervisor.tick_subscription()
    assert supervisor.fallback is True
    assert manager.state is SubscriptionState.INACTIVE

    await supervisor.tick_poll()
    assert len(remote.calls_to("GET", CHAT_PATH)) == 1


@pytest.mark.anyio
async def test_renewal_happens_inside_margin(parts, remote, clock):
    manager, _, supervisor = parts
    remote.on("POST", "/v1.0/subscriptions", _created)
    remote.on("GET", "/v1.0/subscriptions/sub-1", {"id": "sub-1"})
    remote.on("PATCH", "/v1.0/subscriptions/sub-1", lambda body, query: body)
    await supervisor.tick_subscription()

    clock.advance(minutes=30)
    await supervisor.tick_subscription()
    assert remote.calls_to("PATCH") == []

    clock.advance(minutes=16)
    await supervisor.tick_subscription()
    assert len(remote.calls_to("PATCH")) == 1
    assert manager.record.expires_at == clock.now + timedelta(minutes=55)


@pytest.mark.anyio
async def test_vanished_subscription_is_recreated(parts, remote, storage):
    manager, _, supervisor = parts
    ids = iter(["sub-1", "sub-2"])
    remote.on("POST", "/v1.0/subscriptions", lambda body, query: {"id": next(ids), "expirationDateTime": body["expirationDateTime"]})
    await supervisor.tick_subscription()
    first_fingerprint = manager.record.certificate_fingerprint

    # GET and DELETE both answer 404: the remote side dropped it
    await supervisor.tick_subscription()

    assert manager.record.subscription_id == "sub-2"
    assert first_fingerprint in storage.held_keys()


@pytest.mark.anyio
async def test_poll_errors_do_not_escape(remote, storage, clock):
    manager = SubscriptionLifecycleManager(remote, storage, clock=clock)
    poller = DeltaPoller(remote, storage, RESOURCE, clock=clock)
    supervisor = SubscriptionSupervisor(manager, poller, RESOURCE, notification_url=None, clock=clock)
    remote.on("GET", CHAT_PATH, RemoteRequestError("throttled", status_code=429))

    assert supervisor.push_live is False
    await supervisor.tick_poll()
    await supervisor.tick_subscription()
    assert remote.calls_to("POST") == []


@pytest.mark.anyio
async def test_removed_event_recreates_subscription(parts, remote):
    manager, _, supervisor = parts
    ids = iter(["sub-1", "sub-2"])
    remote.on("POST", "/v1.0/subscriptions", lambda body, query: {"id": next(ids), "expirationDateTime": body["expirationDateTime"]})
    await supervisor.tick_subscription()

    await supervisor.on_lifecycle_event("subscriptionRemoved", "sub-1")

    assert manager.record.subscription_id == "sub-2"
    assert supervisor.push_live


@pytest.mark.anyio
async def test_reauthorization_event_renews(parts, remote, clock):
    manager, _, supervisor = parts
    remote.on("POST", "/v1.0/subscriptions", _created)
    remote.on("PATCH", "/v1.0/subscriptions/sub-1", lambda body, query: body)
    await supervisor.tick_subscription()
    clock.advance(minutes=5)

    await supervisor.on_lifecycle_event("reauthorizationRequired", "sub-1")

    assert len(remote.calls_to("PATCH")) == 1
    assert manager.record.expires_at == clock.now + timedelta(minutes=55)


@pytest.mark.anyio
async def test_missed_event_polls_while_push_is_live(parts, remote):
    _, _, supervisor = parts
    remote.on("POST", "/v1.0/subscriptions", _created)
    await supervisor.tick_subscription()
    assert supervisor.push_live

    await supervisor.on_lifecycle_event("missed", "sub-1")

    assert len(remote.calls_to("GET", CHAT_PATH)) == 1


@pytest.mark.anyio
async def test_events_for_other_subscriptions_are_ignored(parts, remote):
    _, _, supervisor = parts
    remote.on("POST", "/v1.0/subscriptions", _created)
    await supervisor.tick_subscription()

    await supervisor.on_lifecycle_event("missed", "sub-other")
    await supervisor.on_lifecycle_event("subscriptionRemoved", "sub-other")

    assert remote.calls_to("GET") == []
    assert len(remote.calls_to("POST")) == 1
