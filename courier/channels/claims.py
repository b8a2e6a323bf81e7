"""
Claim Table - Exclusive holds on hashable keys, safe across threads and loops.

An asyncio.Lock belongs to whichever event loop first waits on it, so two
threads each running their own loop cannot share one. Holders here are
tracked with concurrent.futures.Future objects instead: waiters await the
holder's future through asyncio.wrap_future from their own loop, and an
entry is removed as soon as its holder releases it.
"""
from __future__ import annotations

import asyncio
import threading
from concurrent.futures import Future
from contextlib import asynccontextmanager
from typing import AsyncIterator, Hashable


class ClaimTable:
    """One holder per key; everyone else waits for the release"""

    def __init__(self):
        self._guard = threading.Lock()
        self._held: dict[Hashable, Future] = {}

    def __len__(self) -> int:
        with self._guard:
            return len(self._held)

    async def _acquire(self, key: Hashable) -> Future:
        while True:
            with self._guard:
                current = self._held.get(key)
                if current is None:
                    released: Future = Future()
                    self._held[key] = released
                    return released
            # shield keeps a cancelled waiter from cancelling the holder's future
            await asyncio.shield(asyncio.wrap_future(current))

    def _release(self, key: Hashable, released: Future) -> None:
        with self._guard:
            if self._held.get(key) is released:
                del self._held[key]
        if not released.done():
            released.set_result(None)

    @asynccontextmanager
    async def hold(self, key: Hashable) -> AsyncIterator[None]:
        released = await self._acquire(key)
        try:
            yield
        finally:
            self._release(key, released)
