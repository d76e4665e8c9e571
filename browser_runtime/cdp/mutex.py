from __future__ import annotations

import asyncio
from collections import deque
from collections.abc import Callable
from contextlib import suppress


class Guard:
    """Held lock; releasing it hands the mutex to the next waiter."""

    def __init__(self, mutex: Mutex, on_release: Callable[[], None] | None = None) -> None:
        self._mutex = mutex
        self._on_release = on_release
        self._released = False

    def release(self) -> None:
        if self._released:
            return
        self._released = True
        if self._on_release is not None:
            self._on_release()
        self._mutex._release()

    def __enter__(self) -> Guard:
        return self

    def __exit__(self, *args) -> None:
        self.release()


class Mutex:
    """First-come-first-served async lock, one holder at a time.

    Usage::

        async with mutex:
            ...

        guard = await mutex.acquire()
        try:
            ...
        finally:
            guard.release()
    """

    def __init__(self) -> None:
        self._locked = False
        self._waiters: deque[asyncio.Future] = deque()

    @property
    def locked(self) -> bool:
        return self._locked

    async def acquire(self, on_release: Callable[[], None] | None = None) -> Guard:
        if not self._locked:
            self._locked = True
            return Guard(self, on_release)
        waiter = asyncio.get_running_loop().create_future()
        self._waiters.append(waiter)
        try:
            await waiter
        except asyncio.CancelledError:
            if waiter.done() and not waiter.cancelled():
                # Ownership was handed over right before cancellation; pass it on.
                self._release()
            else:
                with suppress(ValueError):
                    self._waiters.remove(waiter)
            raise
        return Guard(self, on_release)

    def _release(self) -> None:
        while self._waiters:
            waiter = self._waiters.popleft()
            if not waiter.done():
                waiter.set_result(None)
                return
        self._locked = False

    async def __aenter__(self) -> Guard:
        self._guard = await self.acquire()
        return self._guard

    async def __aexit__(self, *args) -> None:
        self._guard.release()


__all__ = ["Guard", "Mutex"]
