"""
Admission control and cancellable waits.

The admission gate caps how many requests are in flight against the remote
service at once, across every query in the process. It is created once by
the application and injected into the fetch engine.
"""

import asyncio
from contextlib import asynccontextmanager
from typing import AsyncIterator, Awaitable, Optional, TypeVar

import structlog

from .exceptions import QueryCancelledError

logger = structlog.get_logger(__name__)

T = TypeVar("T")


async def wait_cancellable(awaitable: Awaitable[T], cancel: Optional[asyncio.Event] = None) -> T:
    """
    Await ``awaitable`` unless ``cancel`` is set first.

    Raises QueryCancelledError when the cancellation signal wins. The
    wrapped operation is cancelled in that case.
    """
    if cancel is None:
        return await awaitable

    if cancel.is_set():
        if asyncio.iscoroutine(awaitable):
            awaitable.close()
        raise QueryCancelledError()

    task = asyncio.ensure_future(awaitable)
    waiter = asyncio.ensure_future(cancel.wait())
    try:
        await asyncio.wait({task, waiter}, return_when=asyncio.FIRST_COMPLETED)
    except asyncio.CancelledError:
        task.cancel()
        raise
    finally:
        waiter.cancel()

    if task.done():
        return task.result()

    # The operation may still complete before the cancellation lands
    task.cancel()
    try:
        return await task
    except asyncio.CancelledError:
        raise QueryCancelledError() from None


async def cancellable_sleep(delay: float, cancel: Optional[asyncio.Event] = None) -> None:
    """Sleep for ``delay`` seconds, waking early with QueryCancelledError."""
    if delay <= 0:
        return
    await wait_cancellable(asyncio.sleep(delay), cancel)


class AdmissionGate:
    """
    Counting semaphore bounding concurrent remote requests.

    A slot is held only for the duration of one network call, never across
    backoff sleeps.
    """

    def __init__(self, capacity: int = 5) -> None:
        if capacity < 1:
            raise ValueError("admission gate capacity must be at least 1")
        self.capacity = capacity
        self._semaphore = asyncio.Semaphore(capacity)
        self._in_flight = 0

    @property
    def in_flight(self) -> int:
        return self._in_flight

    @property
    def available(self) -> int:
        return self.capacity - self._in_flight

    async def acquire(self, cancel: Optional[asyncio.Event] = None) -> None:
        """Wait for a free slot."""
        await wait_cancellable(self._semaphore.acquire(), cancel)
        self._in_flight += 1

    def release(self) -> None:
        self._in_flight -= 1
        self._semaphore.release()

    @asynccontextmanager
    async def slot(self, cancel: Optional[asyncio.Event] = None) -> AsyncIterator[None]:
        """Hold one slot for the body of the ``async with`` block."""
        await self.acquire(cancel)
        try:
            yield
        finally:
            self.release()
