from __future__ import annotations

import json
from datetime import timedelta

import pytest

from notifyhub.adapters.store.sqlite import SQLiteScratchStore
from notifyhub.services.subscription import PollCursor, SubscriptionRecord, SubscriptionStorage


def _record(clock, key_material, **overrides):
    fields = dict(
        subscription_id="sub-1",
        resource_path="/chats/getAllMessages",
        expires_at=clock.now + timedelta(minutes=55),
        client_state="state-1",
        certificate_fingerprint=key_material.fingerprint,
        notification_url="https://hooks.example.test/notifications",
        created_at=clock.now,
    )
    fields.update(overrides)
    return SubscriptionRecord(**fields)


def test_record_and_keys_survive_a_restart(tmp_path, clock, key_material):
    db = tmp_path / "state" / "notifyhub.sqlite"
    store = SQLiteScratchStore(db, instance_id="node-a")
    SubscriptionStorage(store, clock=clock).save(_record(clock, key_material), key_material)
    store.close()

    reopened = SQLiteScratchStore(db, instance_id="node-a")
    try:
        active = SubscriptionStorage(reopened, clock=clock).load()
        assert active is not None
        assert active.record.subscription_id == "sub-1"
        assert active.record.expires_at == clock.now + timedelta(minutes=55)
        assert active.keys.fingerprint == key_material.fingerprint
    finally:
        reopened.close()


def test_instances_do_not_see_each_other(tmp_path, clock, key_material):
    db = tmp_path / "notifyhub.sqlite"
    a = SQLiteScratchStore(db, instance_id="a")
    b = SQLiteScratchStore(db, instance_id="b")
    try:
        SubscriptionStorage(a, clock=clock).save(_record(clock, key_material), key_material)
        assert a.keys() == ["subscription"]
        assert b.keys() == []
        assert SubscriptionStorage(b, clock=clock).load() is None
    finally:
        a.close()
        b.close()


def test_private_key_is_encrypted_with_passphrase(store, clock, key_material):
    storage = SubscriptionStorage(store, passphrase="hunter2", clock=clock)
    storage.save(_record(clock, key_material), key_material)

    stored = json.loads(store.get("subscription"))
    assert "ENCRYPTED PRIVATE KEY" in stored["keys"]["privateKeyPem"]

    fresh = SubscriptionStorage(store, passphrase="hunter2", clock=clock)
    assert fresh.load().keys.fingerprint == key_material.fingerprint


def test_corrupt_entry_reads_as_empty(store, storage):
    store.set("subscription", b"{not json")
    assert storage.load() is None
    store.set("subscription", json.dumps({"record": {"subscriptionId": "x"}}).encode())
    assert storage.load() is None


def test_update_record_requires_existing_entry(storage, clock, key_material):
    with pytest.raises(LookupError):
        storage.update_record(_record(clock, key_material))


def test_clear_leaves_cursor_alone(storage, clock, key_material):
    storage.save(_record(clock, key_material), key_material)
    storage.save_cursor(PollCursor(delta_token="https://x/delta?$deltatoken=t"))
    storage.clear()
    assert storage.load() is None
    assert storage.load_cursor().delta_token == "https://x/delta?$deltatoken=t"


def test_retired_keys_expire_and_are_purged(store, storage, clock, key_material, other_key_material):
    storage.retire(key_material, client_state="old", grace=timedelta(minutes=10))
    storage.save(_record(clock, other_key_material, client_state="new"), other_key_material)

    held = storage.held_keys()
    assert set(held) == {key_material.fingerprint, other_key_material.fingerprint}
    assert held[key_material.fingerprint].client_state == "old"
    assert held[other_key_material.fingerprint].current is True

    clock.advance(minutes=10)
    assert set(storage.held_keys()) == {other_key_material.fingerprint}
    assert store.get("retired_keys") is None


def test_cursor_round_trip(storage, clock):
    assert storage.load_cursor() == PollCursor()
    storage.save_cursor(PollCursor(last_checked_at=clock.now))
    assert storage.load_cursor().last_checked_at == clock.now
    storage.reset_cursor()
    assert storage.load_cursor() == PollCursor()


def test_user_id_cache(storage):
    assert storage.get_user_id() is None
    storage.set_user_id("u-1")
    assert storage.get_user_id() == "u-1"
