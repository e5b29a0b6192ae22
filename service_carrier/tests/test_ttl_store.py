"""
Unit tests for the TTL store and the paginated fetch cache.
"""

import asyncio
import gc

import pytest

from service_carrier.app.adapters.results import ApiResult
from service_carrier.app.caching.ttl_store import FetchCache, TTLStore
from shared.test_helpers import FakeClock


class DummyMetrics:
    """Minimal metrics collector stub."""

    def __init__(self):
        self.counters = []

    def increment_counter(self, metric_name: str, **labels):
        self.counters.append((metric_name, labels))


@pytest.fixture
def clock():
    return FakeClock()


class TestTTLStore:
    """Test cases for TTLStore."""

    def test_round_trip(self, clock):
        store = TTLStore(60, 10, clock=clock)
        value = {"items": [1, 2, 3]}

        store.set("k", value)

        assert store.get("k") is value

    def test_entry_expires_after_ttl(self, clock):
        store = TTLStore(60, 10, clock=clock)
        entry = store.set("k", "v")

        assert entry.expires_at == clock() + 60
        clock.advance(59)
        assert store.get("k") == "v"
        clock.advance(1)
        assert store.get("k") is None
        assert len(store) == 0

    def test_overflow_evicts_oldest(self, clock):
        store = TTLStore(60, 2, clock=clock)

        store.set("a", 1)
        store.set("b", 2)
        store.set("c", 3)

        assert len(store) == 2
        assert "a" not in store
        assert store.get("c") == 3

    def test_replacing_key_resets_expiry(self, clock):
        store = TTLStore(60, 10, clock=clock)
        store.set("k", "old")
        clock.advance(30)
        store.set("k", "new")
        clock.advance(45)

        assert store.get("k") == "new"

    def test_delete_prefix(self, clock):
        store = TTLStore(60, 10, clock=clock)
        store.set("key-1|/shipments|page=1", 1)
        store.set("key-1|/shipments|page=2", 2)
        store.set("key-2|/shipments|page=1", 3)

        assert store.delete_prefix("key-1|") == 2
        assert store.get("key-2|/shipments|page=1") == 3
        assert len(store) == 1

    def test_hits_and_misses_are_counted(self, clock):
        metrics = DummyMetrics()
        store = TTLStore(60, 10, clock=clock, name="shipments", metrics=metrics)

        store.get("k")
        store.set("k", 1)
        store.get("k")

        assert metrics.counters == [
            ("cache_misses_total", {"cache_type": "shipments"}),
            ("cache_hits_total", {"cache_type": "shipments"}),
        ]


class TestFetchCache:
    """Test cases for FetchCache."""

    @pytest.fixture
    def cache(self, clock):
        return FetchCache(TTLStore(60, 200, clock=clock, name="shipments"))

    def test_key_ignores_param_order(self):
        first = FetchCache.make_key("key", "/shipments", {"page": 1, "limit": 15, "numbers": ["A", "B"]})
        second = FetchCache.make_key("key", "/shipments", {"numbers": ["A", "B"], "limit": 15, "page": 1})

        assert first == second

    def test_key_treats_empty_filters_as_absent(self):
        bare = FetchCache.make_key("key", "/shipments", {"page": 1})
        padded = FetchCache.make_key("key", "/shipments", {"page": 1, "ids": [], "numbers": None})

        assert bare == padded

    def test_key_distinguishes_sequence_items_from_commas(self):
        joined = FetchCache.make_key("key", "/shipments", {"numbers": ["1,2"]})
        split = FetchCache.make_key("key", "/shipments", {"numbers": ["1", "2"]})

        assert joined != split
        assert split == "key|/shipments|numbers[]=1|numbers[]=2"

    def test_key_escapes_separator_in_values(self):
        smuggled = FetchCache.make_key("key", "/shipments", {"numbers": ["1|numbers[]=2"]})
        split = FetchCache.make_key("key", "/shipments", {"numbers": ["1", "2"]})

        assert smuggled != split

    def test_key_is_partitioned_by_api_key(self):
        assert FetchCache.make_key("key-1", "/shipments", {"page": 1}) != FetchCache.make_key(
            "key-2", "/shipments", {"page": 1}
        )

    @pytest.mark.asyncio
    async def test_fresh_hit_skips_loader(self, cache):
        calls = []

        async def loader():
            calls.append(1)
            return ApiResult.ok({"page": 1})

        first = await cache.fetch("k", loader)
        second = await cache.fetch("k", loader)

        assert first is second
        assert len(calls) == 1

    @pytest.mark.asyncio
    async def test_concurrent_identical_requests_share_one_load(self, cache):
        calls = []
        release = asyncio.Event()

        async def loader():
            calls.append(1)
            await release.wait()
            return ApiResult.ok({"page": 1})

        tasks = [asyncio.ensure_future(cache.fetch("k", loader)) for _ in range(5)]
        await asyncio.sleep(0)
        assert cache.inflight_count == 1

        release.set()
        results = await asyncio.gather(*tasks)

        assert len(calls) == 1
        assert all(result is results[0] for result in results)
        assert cache.inflight_count == 0

    @pytest.mark.asyncio
    async def test_failures_are_not_cached(self, cache):
        calls = []

        async def loader():
            calls.append(1)
            return ApiResult.fail("HTTP 503", 503)

        await cache.fetch("k", loader)
        result = await cache.fetch("k", loader)

        assert not result.success
        assert len(calls) == 2

    @pytest.mark.asyncio
    async def test_loader_exception_clears_inflight_marker(self, cache):
        attempts = []

        async def loader():
            attempts.append(1)
            if len(attempts) == 1:
                raise RuntimeError("boom")
            return ApiResult.ok({"page": 1})

        with pytest.raises(RuntimeError):
            await cache.fetch("k", loader)

        assert cache.inflight_count == 0
        result = await cache.fetch("k", loader)
        assert result.success

    @pytest.mark.asyncio
    async def test_failed_load_after_all_callers_cancel_is_not_reported(self, cache):
        reported = []
        loop = asyncio.get_running_loop()
        previous_handler = loop.get_exception_handler()
        loop.set_exception_handler(lambda _loop, context: reported.append(context))
        release = asyncio.Event()

        async def loader():
            await release.wait()
            raise RuntimeError("boom")

        try:
            caller = asyncio.ensure_future(cache.fetch("k", loader))
            await asyncio.sleep(0)
            caller.cancel()
            with pytest.raises(asyncio.CancelledError):
                await caller

            release.set()
            for _ in range(5):
                await asyncio.sleep(0)
            del caller
            gc.collect()
        finally:
            loop.set_exception_handler(previous_handler)

        assert cache.inflight_count == 0
        assert reported == []

    @pytest.mark.asyncio
    async def test_entries_expire(self, cache, clock):
        calls = []

        async def loader():
            calls.append(1)
            return ApiResult.ok(len(calls))

        await cache.fetch("k", loader)
        clock.advance(61)
        result = await cache.fetch("k", loader)

        assert result.data == 2

    @pytest.mark.asyncio
    async def test_invalidate_prefix(self, cache):
        async def loader():
            return ApiResult.ok("v")

        await cache.fetch("key-1|/shipments|page=1", loader)
        await cache.fetch("key-2|/shipments|page=1", loader)

        assert cache.invalidate("key-1|") == 1
        assert "key-2|/shipments|page=1" in cache.store
