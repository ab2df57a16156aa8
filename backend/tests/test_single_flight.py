"""
Single-flight tests.
"""

import asyncio

import pytest

from image_resizer.single_flight import SingleFlight


class TestSingleFlight:
    """Per-key deduplication"""

    @pytest.mark.asyncio
    async def test_concurrent_calls_share_one_run(self):
        """Test: N concurrent callers, one execution, same result"""
        flight = SingleFlight(name="test")
        calls = []

        async def work():
            calls.append(1)
            await asyncio.sleep(0.01)
            return "done"

        results = await asyncio.gather(*[flight.run("k", work) for _ in range(5)])

        assert results == ["done"] * 5
        assert len(calls) == 1
        assert len(flight) == 0

    @pytest.mark.asyncio
    async def test_different_keys_run_separately(self):
        flight = SingleFlight()
        calls = []

        async def work(key):
            calls.append(key)
            await asyncio.sleep(0.01)
            return key

        results = await asyncio.gather(
            flight.run("a", lambda: work("a")),
            flight.run("b", lambda: work("b")),
        )

        assert results == ["a", "b"]
        assert sorted(calls) == ["a", "b"]

    @pytest.mark.asyncio
    async def test_sequential_calls_rerun(self):
        """Test: a finished key starts fresh"""
        flight = SingleFlight()
        calls = []

        async def work():
            calls.append(1)
            return len(calls)

        assert await flight.run("k", work) == 1
        assert await flight.run("k", work) == 2

    @pytest.mark.asyncio
    async def test_error_reaches_every_waiter(self):
        flight = SingleFlight()

        async def fail():
            await asyncio.sleep(0.01)
            raise RuntimeError("boom")

        results = await asyncio.gather(
            flight.run("k", fail), flight.run("k", fail), return_exceptions=True
        )

        assert all(isinstance(r, RuntimeError) for r in results)
        assert not flight.in_flight("k")

    @pytest.mark.asyncio
    async def test_start_reports_leader(self):
        flight = SingleFlight()
        gate = asyncio.Event()

        async def work():
            await gate.wait()
            return 1

        task1, leader1 = flight.start("k", work)
        task2, leader2 = flight.start("k", work)

        assert leader1 is True
        assert leader2 is False
        assert task1 is task2
        assert flight.in_flight("k")

        gate.set()
        assert await task1 == 1

    @pytest.mark.asyncio
    async def test_waiter_cancellation_does_not_cancel_work(self):
        """Test: a cancelled caller leaves the shared task running"""
        flight = SingleFlight()
        gate = asyncio.Event()

        async def work():
            await gate.wait()
            return "finished"

        waiter = asyncio.ensure_future(flight.run("k", work))
        await asyncio.sleep(0)
        task, _ = flight.start("k", work)

        waiter.cancel()
        with pytest.raises(asyncio.CancelledError):
            await waiter

        gate.set()
        assert await task == "finished"
