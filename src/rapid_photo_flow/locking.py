"""
FIFO mutual exclusion for read-modify-write cycles on the shared document.

Every mutation of the document is a full read, an in-memory change and a full
write. Two such cycles interleaving at an ``await`` would each read the same
snapshot and the second write would silently drop the first one's change, so
each cycle runs as a critical section under a ``DocumentLock``.

Waiters are served strictly in arrival order: ``release()`` hands ownership
directly to the oldest waiter, so a newly arriving caller can never overtake
a queued one.
"""

from __future__ import annotations

import asyncio
from collections import deque
from typing import Awaitable, Callable, Deque, TypeVar

T = TypeVar("T")


class DocumentLock:
    """
    Asynchronous FIFO lock admitting one critical section at a time.

    There is no timeout and no deadlock detection: a critical section that
    never completes stalls every later caller.
    """

    def __init__(self) -> None:
        self._locked = False
        self._waiters: Deque[asyncio.Future[None]] = deque()

    def locked(self) -> bool:
        return self._locked

    @property
    def waiting(self) -> int:
        """Number of callers currently queued behind the active section."""
        return sum(1 for waiter in self._waiters if not waiter.done())

    async def acquire(self) -> None:
        if not self._locked:
            self._locked = True
            return

        waiter: asyncio.Future[None] = asyncio.get_running_loop().create_future()
        self._waiters.append(waiter)
        try:
            await waiter
        except asyncio.CancelledError:
            if waiter.done() and not waiter.cancelled():
                # Ownership was handed over before the cancellation landed.
                self.release()
            elif waiter in self._waiters:
                self._waiters.remove(waiter)
            raise

    def release(self) -> None:
        if not self._locked:
            raise RuntimeError("DocumentLock released while not held")

        while self._waiters:
            waiter = self._waiters.popleft()
            if not waiter.done():
                # The lock stays held; ownership moves to the waiter.
                waiter.set_result(None)
                return
        self._locked = False

    async def with_lock(self, operation: Callable[[], Awaitable[T]]) -> T:
        """
        Run ``operation`` as a critical section.

        The lock is released on every exit path before the operation's result
        or exception reaches the caller.
        """
        await self.acquire()
        try:
            return await operation()
        finally:
            self.release()

    async def __aenter__(self) -> "DocumentLock":
        await self.acquire()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        self.release()
