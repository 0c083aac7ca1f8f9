from __future__ import annotations

import asyncio

import pytest

from notifyhub.services.subscription import ChangeBatch, ChangeFeed, DeliveryMode, NormalizedChangeRecord


def _batch(*ids: str) -> ChangeBatch:
    return ChangeBatch(
        records=tuple(NormalizedChangeRecord(payload={"id": i}, received_via=DeliveryMode.POLL) for i in ids),
        received_via=DeliveryMode.POLL,
    )


@pytest.mark.anyio
async def test_subscribers_receive_batches_in_publish_order():
    feed = ChangeFeed()
    stream = feed.subscribe()
    first = asyncio.ensure_future(stream.__anext__())
    await asyncio.sleep(0)

    await feed.publish(_batch("a"))
    await feed.publish(_batch("b", "c"))

    assert [r.payload["id"] for r in await first] == ["a"]
    assert [r.payload["id"] for r in await stream.__anext__()] == ["b", "c"]
    await stream.aclose()


@pytest.mark.anyio
async def test_async_listener_and_removal():
    feed = ChangeFeed(history=1)
    seen = []

    async def listener(batch):
        seen.append(len(batch))

    feed.add_listener(listener)
    await feed.publish(_batch("a"))
    feed.remove_listener(listener)
    await feed.publish(_batch("b", "c"))

    assert seen == [1]
    assert [len(b) for b in feed.history] == [2]


@pytest.mark.anyio
async def test_failing_listener_does_not_block_others():
    feed = ChangeFeed()
    seen = []

    def broken(batch):
        raise RuntimeError("listener bug")

    feed.add_listener(broken)
    feed.add_listener(seen.append)
    await feed.publish(_batch("a"))
    assert len(seen) == 1
