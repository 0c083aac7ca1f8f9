from __future__ import annotations

import json

import httpx
import pytest

from notifyhub.services.errors import RemoteRequestError
from notifyhub.services.remote.client import GraphHttpClient, split_link


def _client(handler) -> GraphHttpClient:
    return GraphHttpClient(
        base_url="https://graph.example.test",
        access_token="tok",
        transport=httpx.MockTransport(handler),
    )


@pytest.mark.anyio
async def test_request_sends_bearer_json_and_query():
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["auth"] = request.headers["Authorization"]
        seen["url"] = str(request.url)
        seen["body"] = json.loads(request.content)
        return httpx.Response(201, json={"id": "sub-1"})

    result = await _client(handler).request("post", "/v1.0/subscriptions", {"resource": "/chats/x/messages"}, {"$top": 5})

    assert result == {"id": "sub-1"}
    assert seen["auth"] == "Bearer tok"
    assert seen["url"].startswith("https://graph.example.test/v1.0/subscriptions?")
    assert "%24top=5" in seen["url"] or "$top=5" in seen["url"]
    assert seen["body"] == {"resource": "/chats/x/messages"}


@pytest.mark.anyio
async def test_error_envelope_is_parsed():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(404, json={"error": {"code": "ResourceNotFound", "message": "gone"}})

    with pytest.raises(RemoteRequestError) as info:
        await _client(handler).request("GET", "/v1.0/subscriptions/x")

    assert info.value.not_found
    assert info.value.error_code == "ResourceNotFound"
    assert "gone" in str(info.value)


@pytest.mark.anyio
async def test_empty_success_body_returns_empty_mapping():
    result = await _client(lambda request: httpx.Response(204)).request("DELETE", "/v1.0/subscriptions/x")
    assert result == {}


@pytest.mark.anyio
async def test_transport_failure_has_status_zero():
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("refused", request=request)

    with pytest.raises(RemoteRequestError) as info:
        await _client(handler).request("GET", "/v1.0/me")
    assert info.value.status_code == 0


def test_split_link():
    path, query = split_link("https://graph.microsoft.com/v1.0/chats/x/messages?$skiptoken=abc&$top=50")
    assert path == "/v1.0/chats/x/messages"
    assert query == {"$skiptoken": "abc", "$top": "50"}


@pytest.mark.anyio
async def test_requests_share_one_connection_pool_until_closed():
    client = _client(lambda request: httpx.Response(200, json={"value": []}))

    await client.request("GET", "/v1.0/subscriptions")
    pool = client._http
    await client.request("GET", "/v1.0/subscriptions")
    assert client._http is pool

    await client.aclose()
    assert pool.is_closed
    assert client._http is None
    # usable again after close
    assert await client.request("GET", "/v1.0/subscriptions") == {"value": []}
    await client.aclose()
