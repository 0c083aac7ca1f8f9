from __future__ import annotations

import asyncio

import pytest

from notifyhub.services.scheduler import Scheduler


@pytest.mark.anyio
async def test_run_now_job_fires_and_stop_is_clean():
    scheduler = Scheduler()
    fired = asyncio.Event()

    async def action():
        fired.set()

    await scheduler.ensure_every("tick", 3600, action, run_now=True)
    await scheduler.start()
    try:
        await asyncio.wait_for(fired.wait(), timeout=5)
    finally:
        await scheduler.stop()


@pytest.mark.anyio
async def test_failing_job_does_not_stop_the_loop():
    scheduler = Scheduler()
    calls = []
    ok = asyncio.Event()

    async def broken():
        calls.append("broken")
        raise RuntimeError("boom")

    async def healthy():
        ok.set()

    await scheduler.ensure_every("broken", 3600, broken, run_now=True)
    await scheduler.ensure_every("healthy", 3600, healthy, run_now=True)
    await scheduler.start()
    try:
        await asyncio.wait_for(ok.wait(), timeout=5)
    finally:
        await scheduler.stop()
    assert calls == ["broken"]


@pytest.mark.anyio
async def test_ensure_every_updates_existing_job():
    scheduler = Scheduler()

    async def noop():
        return None

    first = await scheduler.ensure_every("job", 10, noop)
    second = await scheduler.ensure_every("job", 20, noop)
    assert first is second
    assert second.interval == 20.0
    await scheduler.delete("job")


@pytest.mark.anyio
async def test_stop_waits_for_cancelled_jobs():
    scheduler = Scheduler()
    started = asyncio.Event()
    unwound = []

    async def slow():
        started.set()
        try:
            await asyncio.sleep(3600)
        finally:
            unwound.append("slow")

    await scheduler.ensure_every("slow", 3600, slow, run_now=True)
    await scheduler.start()
    await asyncio.wait_for(started.wait(), timeout=5)

    await scheduler.stop()

    assert unwound == ["slow"]
    assert not scheduler._running
