from __future__ import annotations

import asyncio
import inspect
import logging
from collections import deque
from typing import Any, AsyncIterator, Awaitable, Callable, Deque, List, Union

from .models import ChangeBatch

__all__ = ["ChangeFeed", "BatchListener"]

_log = logging.getLogger("notifyhub.subscription.feed")

BatchListener = Callable[[ChangeBatch], Union[None, Awaitable[None]]]


class ChangeFeed:
    """Fan-out of change batches to listeners and queue subscribers.

    Push and poll producers publish here; consumers see the same
    :class:`ChangeBatch` shape regardless of delivery mode and must tolerate
    duplicates between the two paths.
    """

    def __init__(self, *, history: int = 100, queue_size: int = 1000) -> None:
        self._listeners: List[BatchListener] = []
        self._queues: List[asyncio.Queue[ChangeBatch]] = []
        self._history: Deque[ChangeBatch] = deque(maxlen=history)
        self._queue_size = queue_size

    def add_listener(self, listener: BatchListener) -> None:
        self._listeners.append(listener)

    def remove_listener(self, listener: BatchListener) -> None:
        if listener in self._listeners:
            self._listeners.remove(listener)

    @property
    def history(self) -> list[ChangeBatch]:
        return list(self._history)

    async def publish(self, batch: ChangeBatch) -> None:
        if not batch.records:
            return
        self._history.append(batch)
        for queue in list(self._queues):
            try:
                queue.put_nowait(batch)
            except asyncio.QueueFull:
                _log.warning("change feed subscriber is full; dropping batch", extra={"size": len(batch)})
        for listener in list(self._listeners):
            try:
                result: Any = listener(batch)
                if inspect.isawaitable(result):
                    await result
            except Exception:
                _log.warning("change feed listener failed", exc_info=True)

    async def subscribe(self) -> AsyncIterator[ChangeBatch]:
        queue: asyncio.Queue[ChangeBatch] = asyncio.Queue(maxsize=self._queue_size)
        self._queues.append(queue)
        try:
            while True:
                yield await queue.get()
        finally:
            self._queues.remove(queue)
