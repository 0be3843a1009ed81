"""
Per-key write mutex for read-modify-write sequences on whole collections.

Waiters queue in FIFO order; release hands the key straight to the oldest
live waiter, so a key is never observed as free while someone is queued.
There is no timeout: a holder that never releases blocks the key for good,
which is why callers go through ``hold()``.
"""

from __future__ import annotations

import asyncio
from collections import deque
from contextlib import asynccontextmanager
from typing import AsyncIterator, Deque, Dict, Set


class KeyedMutex:
    """
    Mutual exclusion scoped by key string.

    One instance is shared by every repository in a process so that all
    writers of a collection key contend on the same lock.
    """

    def __init__(self) -> None:
        self._held: Set[str] = set()
        self._waiters: Dict[str, Deque[asyncio.Future]] = {}

    def locked(self, key: str) -> bool:
        return key in self._held

    def waiting(self, key: str) -> int:
        return sum(1 for w in self._waiters.get(key, ()) if not w.done())

    async def acquire(self, key: str) -> None:
        if key not in self._held and not self.waiting(key):
            self._held.add(key)
            return

        waiter = asyncio.get_running_loop().create_future()
        self._waiters.setdefault(key, deque()).append(waiter)
        try:
            await waiter
        except asyncio.CancelledError:
            if waiter.done() and not waiter.cancelled():
                # Ownership was handed over just before the cancellation landed.
                self.release(key)
            raise

    def release(self, key: str) -> None:
        if key not in self._held:
            raise RuntimeError(f"release of unheld key {key!r}")

        queue = self._waiters.get(key)
        while queue:
            waiter = queue.popleft()
            if not waiter.done():
                # key stays in _held: ownership moves to the waiter
                waiter.set_result(None)
                return
        self._waiters.pop(key, None)
        self._held.discard(key)

    @asynccontextmanager
    async def hold(self, key: str) -> AsyncIterator[None]:
        """Acquire ``key`` for the duration of the block; released on every exit path."""
        await self.acquire(key)
        try:
            yield
        finally:
            self.release(key)
