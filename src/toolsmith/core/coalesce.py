"""Keyed in-flight coalescing.

Concurrent callers asking for the same key join the task that is already
running instead of starting a duplicate. Once the task settles the key
is released, so the next call starts fresh.
"""

from __future__ import annotations

import asyncio
from typing import Any, Awaitable, Callable, Hashable, TypeVar

import structlog

logger = structlog.get_logger()

T = TypeVar("T")


class KeyedCoalescer:
    def __init__(self, name: str = "coalescer") -> None:
        self.name = name
        self._inflight: dict[Hashable, asyncio.Task[Any]] = {}

    async def run(self, key: Hashable, factory: Callable[[], Awaitable[T]]) -> T:
        task = self._inflight.get(key)
        if task is not None:
            logger.debug("coalesced_join", coalescer=self.name, key=str(key))
            return await asyncio.shield(task)

        task = asyncio.ensure_future(factory())
        self._inflight[key] = task
        task.add_done_callback(lambda _t, k=key: self._release(k, _t))
        return await asyncio.shield(task)

    def _release(self, key: Hashable, task: asyncio.Task[Any]) -> None:
        if self._inflight.get(key) is task:
            del self._inflight[key]

    @property
    def inflight(self) -> int:
        return len(self._inflight)
