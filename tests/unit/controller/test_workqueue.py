"""Unit tests for the rate limited work queue."""

import asyncio

import pytest

from athenz_istio_auth.controller.workqueue import RateLimitingQueue


@pytest.mark.unit
class TestRateLimitingQueue:
    def test_duplicate_adds_are_coalesced(self):
        async def scenario():
            queue = RateLimitingQueue("test")
            queue.add("sync")
            queue.add("sync")
            assert len(queue) == 1

            key = await queue.get()
            assert key == "sync"
            assert len(queue) == 0
            queue.done(key)
            assert queue._queue.empty()

        asyncio.run(scenario())

    def test_add_while_processing_requeues_after_done(self):
        async def scenario():
            queue = RateLimitingQueue("test")
            queue.add("sync")
            key = await queue.get()

            queue.add("sync")
            assert queue._queue.empty()

            queue.done(key)
            assert await asyncio.wait_for(queue.get(), timeout=1) == "sync"

        asyncio.run(scenario())

    def test_backoff_is_exponential_and_capped(self):
        queue = RateLimitingQueue("test", base_delay=0.5, max_delay=3.0)

        delays = [queue.when("sync") for _ in range(5)]

        assert delays == [0.5, 1.0, 2.0, 3.0, 3.0]
        assert queue.num_requeues("sync") == 5

        queue.forget("sync")
        assert queue.num_requeues("sync") == 0
        assert queue.when("sync") == 0.5

    def test_add_rate_limited_adds_after_delay(self):
        async def scenario():
            queue = RateLimitingQueue("test", base_delay=0.01)
            queue.add_rate_limited("sync")
            assert len(queue) == 0

            key = await asyncio.wait_for(queue.get(), timeout=1)
            assert key == "sync"
            assert queue.num_requeues("sync") == 1

        asyncio.run(scenario())

    def test_shut_down_releases_waiters(self):
        async def scenario():
            queue = RateLimitingQueue("test")
            waiters = [asyncio.create_task(queue.get()) for _ in range(2)]
            await asyncio.sleep(0)

            queue.shut_down()

            results = await asyncio.wait_for(asyncio.gather(*waiters), timeout=1)
            assert results == [None, None]
            assert queue.shutting_down

            queue.add("sync")
            assert len(queue) == 0
            assert await queue.get() is None

        asyncio.run(scenario())
