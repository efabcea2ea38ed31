import asyncio
import threading
import time

import pytest

from smart_pricing.services.rate_limiter import StoreRateLimiter


@pytest.mark.asyncio
async def test_calls_for_a_store_run_in_arrival_order():
    limiter = StoreRateLimiter(0)
    order = []

    def make_call(n):
        async def call():
            await asyncio.sleep(0)
            order.append(n)
            return n
        return call

    results = await asyncio.gather(*(limiter.run(1, make_call(n)) for n in range(5)))

    assert order == [0, 1, 2, 3, 4]
    assert results == [0, 1, 2, 3, 4]


@pytest.mark.asyncio
async def test_minimum_interval_between_dispatches():
    limiter = StoreRateLimiter(50)
    dispatched = []

    async def call():
        dispatched.append(time.monotonic())

    await asyncio.gather(limiter.run("shop", call), limiter.run("shop", call))

    assert dispatched[1] - dispatched[0] >= 0.045


@pytest.mark.asyncio
async def test_errors_propagate_and_release_the_queue():
    limiter = StoreRateLimiter(0)

    async def failing():
        raise RuntimeError("boom")

    async def ok():
        return "ok"

    with pytest.raises(RuntimeError):
        await limiter.run(1, failing)
    assert await limiter.run(1, ok) == "ok"


def test_one_throttle_per_store():
    limiter = StoreRateLimiter(500)

    assert limiter.for_store(1) is limiter.for_store(1)
    assert limiter.for_store(1) is not limiter.for_store(2)
    assert limiter.for_store(1).min_interval == 0.5


def test_callers_on_separate_event_loops_share_the_queue():
    limiter = StoreRateLimiter(20)
    first_started = threading.Event()
    timeline = []

    def api_caller():
        async def call():
            first_started.set()
            timeline.append(("api", "start"))
            await asyncio.sleep(0.1)
            timeline.append(("api", "end"))

        asyncio.run(limiter.run(1, call))

    def scheduler_caller():
        async def call():
            timeline.append(("scheduler", "start"))

        first_started.wait(timeout=5)
        asyncio.run(limiter.run(1, call))

    threads = [threading.Thread(target=api_caller), threading.Thread(target=scheduler_caller)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join(timeout=5)

    assert not any(thread.is_alive() for thread in threads)
    assert timeline == [("api", "start"), ("api", "end"), ("scheduler", "start")]


@pytest.mark.asyncio
async def test_cancelled_waiter_leaves_the_queue():
    limiter = StoreRateLimiter(0)
    release = asyncio.Event()

    async def holder():
        await release.wait()
        return "held"

    async def ok():
        return "ok"

    held = asyncio.ensure_future(limiter.run(1, holder))
    await asyncio.sleep(0)
    waiting = asyncio.ensure_future(limiter.run(1, ok))
    await asyncio.sleep(0)
    waiting.cancel()
    release.set()

    assert await held == "held"
    with pytest.raises(asyncio.CancelledError):
        await waiting
    assert await limiter.run(1, ok) == "ok"
