from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass, field
from typing import Awaitable, Callable, Dict

_log = logging.getLogger("notifyhub.scheduler")

Action = Callable[[], Awaitable[None]]


@dataclass
class Job:
    name: str
    interval: float
    action: Action
    enabled: bool = True
    next_run: float = field(default_factory=lambda: time.time())
    running: bool = False


class Scheduler:
    """
    Minimal in-process scheduler:
      * jobs are kept in memory only;
      * each due job runs as its own task, a job never overlaps with itself.
    """

    def __init__(self) -> None:
        self._jobs: Dict[str, Job] = {}
        self._lock = asyncio.Lock()
        self._task: asyncio.Task | None = None
        self._stopped = asyncio.Event()
        self._stopped.set()
        self._running: set[asyncio.Task] = set()

    async def start(self) -> None:
        if self._task and not self._task.done():
            return
        self._stopped.clear()
        self._task = asyncio.create_task(self._run(), name="notifyhub-scheduler")
        _log.info("scheduler started")

    async def stop(self) -> None:
        self._stopped.set()
        if self._task and not self._task.done():
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
        running = list(self._running)
        for task in running:
            task.cancel()
        if running:
            await asyncio.gather(*running, return_exceptions=True)

    async def ensure_every(self, name: str, interval: float, action: Action, *, run_now: bool = False) -> Job:
        """
        Create or update a simple "every N seconds" job.
        """
        interval = float(interval)
        now = time.time()
        async with self._lock:
            job = self._jobs.get(name)
            if job is None:
                job = Job(name=name, interval=interval, action=action, next_run=now if run_now else now + interval)
                self._jobs[name] = job
                _log.info("scheduler job created name=%s interval=%ss", name, interval)
            else:
                job.interval = interval
                job.action = action
                if job.next_run < now:
                    job.next_run = now + interval
                _log.info("scheduler job updated name=%s interval=%ss", name, interval)
            return job

    async def delete(self, name: str) -> None:
        async with self._lock:
            if self._jobs.pop(name, None) is not None:
                _log.info("scheduler job deleted name=%s", name)

    async def _run(self) -> None:
        try:
            while not self._stopped.is_set():
                async with self._lock:
                    jobs = [j for j in self._jobs.values() if j.enabled]

                if not jobs:
                    await asyncio.sleep(0.5)
                    continue

                now = time.time()
                due = [j for j in jobs if j.next_run <= now and not j.running]
                if not due:
                    sleep_for = max(0.1, min(j.next_run for j in jobs) - now)
                    await asyncio.sleep(sleep_for)
                    continue

                for job in due:
                    job.next_run = now + job.interval
                    job.running = True
                    task = asyncio.create_task(self._fire(job), name=f"notifyhub-scheduler-job-{job.name}")
                    self._running.add(task)
                    task.add_done_callback(self._running.discard)
                await asyncio.sleep(0)  # yield control
        except asyncio.CancelledError:
            pass
        except Exception:
            _log.warning("scheduler loop crashed", exc_info=True)
        finally:
            _log.info("scheduler stopped")

    async def _fire(self, job: Job) -> None:
        try:
            await job.action()
        except Exception:
            _log.warning("scheduler job failed name=%s", job.name, exc_info=True)
        finally:
            job.running = False
