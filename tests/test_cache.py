"""
Tests for cache module.
"""
import asyncio
import threading
import pytest
from unittest.mock import patch

from stock_proxy.services.cache import ResponseCache, run_cache_sweeper


class FakeClock:
    def __init__(self):
        self.now = 0.0

    def __call__(self):
        return self.now


@pytest.fixture
def clock():
    return FakeClock()


class TestResponseCache:
    """Tests for ResponseCache class."""

    def test_set_and_get(self, clock):
        cache = ResponseCache(default_ttl_seconds=60, clock=clock)
        data = {"price": 100}

        cache.set("NVDA_history_50", data)
        result = cache.get("NVDA_history_50")

        assert result == data

    def test_get_nonexistent_key(self, clock):
        cache = ResponseCache(default_ttl_seconds=60, clock=clock)

        assert cache.get("NONEXISTENT") is None

    def test_expired_entry_returns_none(self, clock):
        cache = ResponseCache(clock=clock)
        cache.set("NVDA_history_50", [1, 2, 3], ttl_seconds=30)

        clock.now = 29.999
        assert cache.get("NVDA_history_50") == [1, 2, 3]

        clock.now = 30
        assert cache.get("NVDA_history_50") is None
        assert cache.size == 0  # evicted on lookup

    def test_ttl_is_not_extended_by_reads(self, clock):
        cache = ResponseCache(clock=clock)
        cache.set("NVDA_history_50", "v", ttl_seconds=30)

        clock.now = 20
        assert cache.get("NVDA_history_50") == "v"

        clock.now = 31
        assert cache.get("NVDA_history_50") is None

    def test_ttl_is_per_entry(self, clock):
        cache = ResponseCache(clock=clock)
        cache.set("all_stocks", {"Nvidia": "NVDA"}, ttl_seconds=3600)
        cache.set("NVDA_history_50", [1.0], ttl_seconds=30)

        clock.now = 100

        assert cache.get("all_stocks") == {"Nvidia": "NVDA"}
        assert cache.get("NVDA_history_50") is None

    def test_set_replaces_whole_entry_and_restarts_ttl(self, clock):
        cache = ResponseCache(clock=clock)
        cache.set("k", "old", ttl_seconds=10)

        clock.now = 8
        cache.set("k", "new", ttl_seconds=10)

        clock.now = 15
        assert cache.get("k") == "new"

    def test_non_positive_ttl_rejected(self, clock):
        cache = ResponseCache(clock=clock)

        with pytest.raises(ValueError):
            cache.set("k", "v", ttl_seconds=0)

    def test_delete_existing_key(self, clock):
        cache = ResponseCache(default_ttl_seconds=60, clock=clock)
        cache.set("NVDA", {"price": 100})

        deleted = cache.delete("NVDA")

        assert deleted is True
        assert cache.get("NVDA") is None

    def test_delete_nonexistent_key(self, clock):
        cache = ResponseCache(default_ttl_seconds=60, clock=clock)

        assert cache.delete("NONEXISTENT") is False

    def test_invalidate_by_prefix(self, clock):
        cache = ResponseCache(default_ttl_seconds=60, clock=clock)
        cache.set("NVDA_history_50", 1)
        cache.set("NVDA_history_latest", 2)
        cache.set("NVDAX_history_50", 3)
        cache.set("PYPL_history_50", 4)

        removed = cache.invalidate("NVDA_history_")

        assert removed == 2
        assert cache.get("NVDA_history_50") is None
        assert cache.get("NVDAX_history_50") == 3
        assert cache.get("PYPL_history_50") == 4

    def test_invalidate_without_prefix_clears_everything(self, clock):
        cache = ResponseCache(default_ttl_seconds=60, clock=clock)
        cache.set("all_stocks", {})
        cache.set("PYPL_history_50", [])

        assert cache.invalidate() == 2
        assert cache.size == 0

    def test_clear(self, clock):
        cache = ResponseCache(default_ttl_seconds=60, clock=clock)
        cache.set("NVDA", {"price": 100})
        cache.set("PYPL", {"price": 200})

        count = cache.clear()

        assert count == 2
        assert cache.size == 0

    def test_cleanup_expired(self, clock):
        cache = ResponseCache(clock=clock)
        cache.set("NVDA", {"price": 100}, ttl_seconds=1)
        cache.set("PYPL", {"price": 200}, ttl_seconds=1)

        clock.now = 1.1

        # Add fresh entry
        cache.set("MSFT", {"price": 300}, ttl_seconds=60)

        removed = cache.cleanup_expired()

        assert removed == 2
        assert cache.get("MSFT") == {"price": 300}

    def test_size_property(self, clock):
        cache = ResponseCache(default_ttl_seconds=60, clock=clock)

        assert cache.size == 0

        cache.set("NVDA", {"price": 100})
        assert cache.size == 1

        cache.set("PYPL", {"price": 200})
        assert cache.size == 2

    def test_explicit_default_ttl_is_not_replaced(self, clock):
        cache = ResponseCache(default_ttl_seconds=5, clock=clock)
        cache.set("NVDA", 1)

        clock.now = 5
        assert cache.get("NVDA") is None

    @pytest.mark.parametrize("ttl", [0, -1])
    def test_non_positive_default_ttl_rejected(self, clock, ttl):
        with pytest.raises(ValueError):
            ResponseCache(default_ttl_seconds=ttl, clock=clock)

    def test_size_is_consistent_under_concurrent_writes(self, clock):
        cache = ResponseCache(default_ttl_seconds=60, clock=clock)

        def write(start):
            for i in range(start, start + 200):
                cache.set(f"KEY{i}", i)

        threads = [threading.Thread(target=write, args=(n * 200,)) for n in range(4)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        assert cache.size == 800

    def test_uses_config_ttl_by_default(self):
        with patch('stock_proxy.services.cache.settings') as mock_settings:
            mock_settings.cache_ttl_default_seconds = 120
            cache = ResponseCache()

            assert cache._default_ttl == 120


@pytest.mark.asyncio
class TestCacheSweeper:
    """Tests for the periodic expiry sweep."""

    async def test_sweeper_removes_expired_entries(self, clock):
        cache = ResponseCache(clock=clock)
        cache.set("NVDA_history_50", [1.0], ttl_seconds=30)
        cache.set("all_stocks", {}, ttl_seconds=3600)
        clock.now = 60

        sweeper = asyncio.create_task(run_cache_sweeper(cache, interval_seconds=0.01))
        await asyncio.sleep(0.05)
        sweeper.cancel()
        with pytest.raises(asyncio.CancelledError):
            await sweeper

        assert cache.size == 1
        assert cache.get("all_stocks") == {}
