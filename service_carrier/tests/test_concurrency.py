"""
Unit tests for the bounded gather helper.
"""

import asyncio

import pytest

from shared.concurrency import BoundedGather, gather_bounded


class TestBoundedGather:
    """Test cases for bounded concurrency."""

    @pytest.mark.asyncio
    async def test_limits_in_flight_work(self):
        state = {"current": 0, "peak": 0}

        def job(value):
            async def run():
                state["current"] += 1
                state["peak"] = max(state["peak"], state["current"])
                await asyncio.sleep(0.01)
                state["current"] -= 1
                return value
            return run

        results = await gather_bounded([job(i) for i in range(10)], 3)

        assert results == list(range(10))
        assert state["peak"] == 3

    @pytest.mark.asyncio
    async def test_results_follow_submission_order(self):
        def job(value, delay):
            async def run():
                await asyncio.sleep(delay)
                return value
            return run

        results = await gather_bounded([job("slow", 0.02), job("fast", 0.0)], 2)

        assert results == ["slow", "fast"]

    @pytest.mark.asyncio
    async def test_exceptions_returned_in_place(self):
        async def ok():
            return 1

        async def fail():
            raise ValueError("page failed")

        results = await gather_bounded([ok, fail, ok], 2, return_exceptions=True)

        assert results[0] == 1
        assert isinstance(results[1], ValueError)
        assert results[2] == 1

    @pytest.mark.asyncio
    async def test_first_exception_propagates_by_default(self):
        async def fail():
            raise ValueError("page failed")

        with pytest.raises(ValueError):
            await BoundedGather(2).gather([fail])

    def test_limit_must_be_positive(self):
        with pytest.raises(ValueError):
            BoundedGather(0)
