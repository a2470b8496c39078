"""Tests for agentlink.caching — TTL cache and recent verifications."""

import threading

import pytest

from agentlink.caching import CacheEntry, CacheStats, TTLCache, VerificationCache


class FakeClock:
    def __init__(self, t=1000.0):
        self.t = t

    def __call__(self):
        return self.t

    def advance(self, seconds):
        self.t += seconds


@pytest.fixture
def clock():
    return FakeClock()


class TestCacheEntry:
    def test_no_ttl_never_expires(self):
        assert not CacheEntry("v", 0, None).is_expired(1e12)

    def test_expired(self):
        assert CacheEntry("v", 0, 10).is_expired(11)
        assert not CacheEntry("v", 0, 10).is_expired(10)


class TestCacheStats:
    def test_hit_rate_empty(self):
        assert CacheStats().hit_rate == 0.0

    def test_hit_rate(self):
        assert CacheStats(hits=3, misses=1).hit_rate == 0.75

    def test_to_dict(self):
        d = CacheStats(hits=10, misses=5).to_dict()
        assert d["hits"] == 10
        assert "hit_rate" in d


class TestTTLCache:
    def test_get_set(self, clock):
        c = TTLCache(clock=clock)
        c.set("a", 1)
        assert c.get("a") == 1
        assert c.get("missing", default=42) == 42

    def test_expiry_on_read(self, clock):
        c = TTLCache(default_ttl=10, clock=clock)
        c.set("a", 1)
        clock.advance(11)
        assert c.get("a") is None
        assert len(c) == 0
        assert c.stats.expirations == 1

    def test_per_entry_ttl(self, clock):
        c = TTLCache(default_ttl=10, clock=clock)
        c.set("long", 1, ttl=100)
        clock.advance(50)
        assert c.get("long") == 1

    def test_lru_eviction(self, clock):
        c = TTLCache(max_size=2, clock=clock)
        c.set("a", 1)
        c.set("b", 2)
        c.get("a")
        c.set("c", 3)
        assert c.get("b") is None
        assert c.get("a") == 1
        assert c.stats.evictions == 1

    def test_cleanup_expired(self, clock):
        c = TTLCache(default_ttl=10, clock=clock)
        c.set("a", 1)
        c.set("b", 2, ttl=100)
        clock.advance(20)
        assert c.cleanup_expired() == 1
        assert len(c) == 1

    def test_delete_and_clear(self, clock):
        c = TTLCache(clock=clock)
        c.set("a", 1)
        assert c.delete("a")
        assert not c.delete("a")
        c.set("b", 2)
        c.clear()
        assert len(c) == 0

    def test_invalid_config(self):
        with pytest.raises(ValueError):
            TTLCache(max_size=0)
        with pytest.raises(ValueError):
            TTLCache(default_ttl=0)

    def test_thread_safety(self):
        c = TTLCache(max_size=50)

        def writer(n):
            for i in range(100):
                c.set(f"{n}-{i}", i)
                c.get(f"{n}-{i}")

        threads = [threading.Thread(target=writer, args=(n,)) for n in range(4)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()
        assert len(c) == 50


class TestVerificationCache:
    def test_remember_recent(self, clock):
        vc = VerificationCache(ttl=60, clock=clock)
        vc.remember("world_id", "0xABC", {"ok": True})
        assert vc.recent("world_id", "0xabc") == {"ok": True}
        assert vc.recent("self_id", "0xabc") is None

    def test_expires(self, clock):
        vc = VerificationCache(ttl=60, clock=clock)
        vc.remember("world_id", "0x1", True)
        clock.advance(61)
        assert vc.recent("world_id", "0x1") is None

    def test_sweep_and_forget(self, clock):
        vc = VerificationCache(ttl=60, clock=clock)
        vc.remember("world_id", "0x1", True)
        vc.remember("world_id", "0x2", True)
        assert vc.forget("world_id", "0x2")
        clock.advance(61)
        assert vc.sweep() == 1
        assert vc.stats["sets"] == 2
