"""Counting concurrency gate with introspectable state."""

from __future__ import annotations

import asyncio

from .models import LimiterStatus


class ConcurrencyLimiter:
    """Bounded-concurrency primitive shared by everything that fans out.

    Waiters are admitted in the order they called :meth:`acquire`; nothing
    stronger than that is promised.  Use as an async context manager so the
    slot is released however the guarded block exits::

        async with limiter:
            await download(part)
    """

    def __init__(self, max_concurrent: int) -> None:
        if max_concurrent < 1:
            raise ValueError("max_concurrent must be at least 1")
        self._max = max_concurrent
        self._semaphore = asyncio.Semaphore(max_concurrent)
        self._active = 0
        self._queued = 0

    @property
    def max_concurrent(self) -> int:
        return self._max

    @property
    def active(self) -> int:
        return self._active

    @property
    def queued(self) -> int:
        return self._queued

    async def acquire(self) -> None:
        self._queued += 1
        try:
            await self._semaphore.acquire()
        finally:
            self._queued -= 1
        self._active += 1

    def release(self) -> None:
        if self._active == 0:
            raise RuntimeError("release() called without a matching acquire()")
        self._active -= 1
        self._semaphore.release()

    async def __aenter__(self) -> ConcurrencyLimiter:
        await self.acquire()
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        self.release()

    def status(self) -> LimiterStatus:
        return LimiterStatus(
            active_downloads=self._active,
            queued_downloads=self._queued,
            max_concurrent=self._max,
            available_slots=self._max - self._active,
        )
