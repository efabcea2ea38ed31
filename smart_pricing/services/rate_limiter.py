"""Per-store request throttle for the Shopify Admin API.

Every outbound call for a store goes through that store's throttle, whatever
component issued it. Calls are dispatched one at a time in arrival order
with a fixed minimum gap between dispatches.

API handlers run on uvicorn's event loop while the scheduler runs its own
loop in a separate thread, so the queue is guarded by a ``threading.Lock``
and each waiter is woken on its own loop.
"""
import asyncio
import logging
import threading
import time
from collections import deque
from typing import Any, Awaitable, Callable, Dict

LOG = logging.getLogger(__name__)


def _grant(future: asyncio.Future) -> None:
    if not future.done():
        future.set_result(None)


class RequestThrottle:
    """Serializes calls and keeps ``min_interval`` seconds between dispatches."""

    def __init__(self, min_interval: float):
        self.min_interval = min_interval
        self._mutex = threading.Lock()
        self._busy = False
        self._waiters = deque()
        self._last_dispatch = 0.0

    async def _acquire(self) -> None:
        loop = asyncio.get_running_loop()
        with self._mutex:
            if not self._busy and not self._waiters:
                self._busy = True
                return
            waiter = (loop, loop.create_future())
            self._waiters.append(waiter)

        try:
            await waiter[1]
        except asyncio.CancelledError:
            with self._mutex:
                if waiter in self._waiters:
                    self._waiters.remove(waiter)
                    raise
            # The turn was already handed to us
            self._release()
            raise

    def _release(self) -> None:
        with self._mutex:
            while self._waiters:
                loop, future = self._waiters.popleft()
                try:
                    loop.call_soon_threadsafe(_grant, future)
                    return
                except RuntimeError:
                    LOG.warning("Dropping throttle waiter whose event loop is closed")
            self._busy = False

    async def run(self, call: Callable[[], Awaitable[Any]]) -> Any:
        await self._acquire()
        try:
            wait = self.min_interval - (time.monotonic() - self._last_dispatch)
            if wait > 0:
                await asyncio.sleep(wait)
            self._last_dispatch = time.monotonic()
            return await call()
        finally:
            self._release()


class StoreRateLimiter:
    """Registry of one ``RequestThrottle`` per store."""

    def __init__(self, min_interval_ms: int):
        self.min_interval = max(min_interval_ms, 0) / 1000.0
        self._throttles: Dict[Any, RequestThrottle] = {}
        self._registry_lock = threading.Lock()

    def for_store(self, store_key) -> RequestThrottle:
        with self._registry_lock:
            throttle = self._throttles.get(store_key)
            if throttle is None:
                throttle = RequestThrottle(self.min_interval)
                self._throttles[store_key] = throttle
            return throttle

    async def run(self, store_key, call: Callable[[], Awaitable[Any]]) -> Any:
        return await self.for_store(store_key).run(call)
