"""
singleflight.py — Coalesce concurrent loads of the same key.

The first caller for a key starts the load as an asyncio Task; callers that
arrive while it is running await the same Task. Callers await it through
asyncio.shield, so a caller that is cancelled (client disconnect, timeout)
leaves the load running and its result still lands in the cache.

The registry is plain process-wide state. asyncio is single-threaded, so no
lock is needed between the lookup and the insert.
"""

import asyncio
import logging
from typing import Awaitable, Callable, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")


class SingleFlight:
    def __init__(self) -> None:
        self._inflight: dict[str, asyncio.Task] = {}

    def in_flight(self, key: str) -> bool:
        return key in self._inflight

    def keys(self) -> list[str]:
        return list(self._inflight)

    async def do(self, key: str, load: Callable[[], Awaitable[T]]) -> T:
        task = self._inflight.get(key)
        if task is None:
            task = asyncio.create_task(load(), name=f"singleflight:{key}")
            self._inflight[key] = task
            task.add_done_callback(lambda t, k=key: self._forget(k, t))
        else:
            logger.debug("Joining in-flight load for %s", key)
        return await asyncio.shield(task)

    def _forget(self, key: str, task: asyncio.Task) -> None:
        if self._inflight.get(key) is task:
            del self._inflight[key]
        # Mark the exception retrieved; every waiter already received it.
        if not task.cancelled():
            task.exception()
