from __future__ import annotations

import base64
import json
import os
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Callable

import pytest

from notifyhub.adapters.store.memory import InMemoryScratchStore
from notifyhub.services.crypto.envelope import compute_integrity_tag, encrypt_payload, wrap_symmetric_key
from notifyhub.services.crypto.pki import KeyMaterial, generate_key_material
from notifyhub.services.errors import RemoteRequestError
from notifyhub.services.subscription import SubscriptionStorage


@pytest.fixture
def anyio_backend():
    return "asyncio"


@dataclass
class Call:
    method: str
    path: str
    body: Any
    query: dict | None


class FakeRemote:
    """Scripted stand-in for the remote API client.

    Responses queued for a (method, path) are consumed in order; the last one
    sticks. A response may be a value, an exception to raise, or a callable
    ``(body, query) -> value`` (sync or async).
    """

    def __init__(self) -> None:
        self.calls: list[Call] = []
        self._routes: dict[tuple[str, str], list[Any]] = {}

    def on(self, method: str, path: str, *responses: Any) -> "FakeRemote":
        self._routes.setdefault((method.upper(), path), []).extend(responses)
        return self

    def calls_to(self, method: str, path: str | None = None) -> list[Call]:
        return [c for c in self.calls if c.method == method and (path is None or c.path == path)]

    async def request(self, method: str, path: str, body: Any = None, query: Any = None) -> Any:
        method = method.upper()
        self.calls.append(Call(method, path, body, dict(query) if query else None))
        queue = self._routes.get((method, path))
        if not queue:
            raise RemoteRequestError(f"{method} {path}: not found", status_code=404, method=method, path=path)
        response = queue[0] if len(queue) == 1 else queue.pop(0)
        if isinstance(response, BaseException):
            raise response
        if callable(response):
            result = response(body, query)
            if hasattr(result, "__await__"):
                result = await result
            return result
        return response


class FakeClock:
    def __init__(self, start: datetime | None = None) -> None:
        self.now = start or datetime(2026, 10, 16, 12, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: float) -> datetime:
        self.now = self.now + timedelta(**kwargs)
        return self.now


def _b64(data: bytes) -> str:
    return base64.b64encode(data).decode("ascii")


def seal_item(
    keys: KeyMaterial,
    payload: Any,
    *,
    client_state: str | None = None,
    subscription_id: str = "sub-1",
    fingerprint: str | None = None,
) -> dict[str, Any]:
    """Encrypt ``payload`` into a notification item exactly as the remote service does."""
    symmetric_key = os.urandom(32)
    data = encrypt_payload(json.dumps(payload).encode("utf-8"), symmetric_key)
    item: dict[str, Any] = {
        "subscriptionId": subscription_id,
        "changeType": "created",
        "resource": "teams('t1')/channels('c1')/messages('m1')",
        "encryptedContent": {
            "data": _b64(data),
            "dataSignature": _b64(compute_integrity_tag(data, symmetric_key)),
            "dataKey": _b64(wrap_symmetric_key(symmetric_key, keys.private_key.public_key())),
            "encryptionCertificateId": fingerprint or keys.fingerprint,
        },
    }
    if client_state is not None:
        item["clientState"] = client_state
    return item


@pytest.fixture(scope="session")
def key_material() -> KeyMaterial:
    return generate_key_material()


@pytest.fixture(scope="session")
def other_key_material() -> KeyMaterial:
    return generate_key_material()


@pytest.fixture
def seal() -> Callable[..., dict[str, Any]]:
    return seal_item


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def store() -> InMemoryScratchStore:
    return InMemoryScratchStore()


@pytest.fixture
def storage(store, clock) -> SubscriptionStorage:
    return SubscriptionStorage(store, clock=clock)


@pytest.fixture
def remote() -> FakeRemote:
    return FakeRemote()
