"""Read-through TTL cache: local tier and the shared Redis tier."""
from fnmatch import fnmatch

import pytest

from backend.core.cache import TTLCache


class FakeClock:
    def __init__(self):
        self.now = 0.0

    def __call__(self):
        return self.now


class FakeRedis:
    """Just the string commands TTLCache uses; keys never expire on their own."""

    def __init__(self):
        self.data = {}
        self.ttls = {}

    def get(self, key):
        return self.data.get(key)

    def setex(self, key, ttl, value):
        self.data[key] = value
        self.ttls[key] = ttl

    def ttl(self, key):
        return self.ttls.get(key, -1) if key in self.data else -2

    def incr(self, key):
        self.data[key] = str(int(self.data.get(key, 0)) + 1)
        return int(self.data[key])

    def scan_iter(self, match="*", count=None):
        return [k for k in list(self.data) if fnmatch(k, match)]

    def delete(self, *keys):
        for k in keys:
            self.data.pop(k, None)
            self.ttls.pop(k, None)


class TestTTLCache:

    def test_get_or_compute_computes_once(self):
        cache = TTLCache(max_entries=10, default_ttl=60)
        calls = []

        def compute():
            calls.append(1)
            return {"v": 1}

        assert cache.get_or_compute("k", compute) == {"v": 1}
        assert cache.get_or_compute("k", compute) == {"v": 1}
        assert len(calls) == 1

    def test_none_is_not_cached(self):
        cache = TTLCache()
        calls = []
        cache.get_or_compute("k", lambda: calls.append(1))
        cache.get_or_compute("k", lambda: calls.append(1))
        assert len(calls) == 2

    def test_entries_expire(self):
        clock = FakeClock()
        cache = TTLCache(default_ttl=10, clock=clock)
        cache.set("k", 1)
        clock.now = 9.9
        assert cache.get("k") == 1
        clock.now = 10.1
        assert cache.get("k") is None

    def test_per_call_ttl(self):
        clock = FakeClock()
        cache = TTLCache(default_ttl=300, clock=clock)
        cache.get_or_compute("k", lambda: 1, ttl=5)
        clock.now = 6
        assert cache.get("k") is None

    def test_lru_eviction(self):
        cache = TTLCache(max_entries=2, default_ttl=60)
        cache.set("a", 1)
        cache.set("b", 2)
        cache.get("a")
        cache.set("c", 3)
        assert cache.get("a") == 1
        assert cache.get("b") is None
        assert cache.get("c") == 3
        assert len(cache) == 2

    def test_invalidate_all(self):
        cache = TTLCache()
        cache.set("a", 1)
        cache.set("b", 2)
        cache.invalidate_all()
        assert len(cache) == 0
        assert cache.get("a") is None


class TestSharedTier:

    @pytest.fixture
    def backend(self):
        return FakeRedis()

    def test_value_visible_to_other_process(self, backend):
        worker = TTLCache(redis_client=backend)
        api = TTLCache(redis_client=backend)
        worker.set("finance:WHEAT:48", {"observations": 3})
        assert api.get("finance:WHEAT:48") == {"observations": 3}

    def test_invalidate_reaches_other_local_tier(self, backend):
        worker = TTLCache(redis_client=backend)
        api = TTLCache(redis_client=backend)
        api.set("finance:WHEAT:48", {"observations": 3})
        assert api.get("finance:WHEAT:48") == {"observations": 3}

        worker.invalidate_all()

        assert api.get("finance:WHEAT:48") is None
        assert "flip:finance:WHEAT:48" not in backend.data

    def test_entries_written_after_invalidate_are_served(self, backend):
        worker = TTLCache(redis_client=backend)
        api = TTLCache(redis_client=backend)
        worker.invalidate_all()
        api.set("k", 2)
        assert api.get("k") == 2
        assert worker.get("k") == 2

    def test_generation_key_survives_invalidate(self, backend):
        cache = TTLCache(redis_client=backend)
        cache.set("k", 1)
        cache.invalidate_all()
        cache.invalidate_all()
        assert backend.data["flip:__generation__"] == "2"

    def test_local_copy_follows_remaining_redis_ttl(self, backend):
        clock = FakeClock()
        worker = TTLCache(redis_client=backend, default_ttl=300)
        api = TTLCache(redis_client=backend, default_ttl=300, clock=clock)
        worker.set("k", 1, ttl=5)

        assert api.get("k") == 1
        backend.delete("flip:k")     # redis expired it
        clock.now = 6
        assert api.get("k") is None
