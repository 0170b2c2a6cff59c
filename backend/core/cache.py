# backend/core/cache.py
"""
Read-through cache with a bounded in-process tier and an optional Redis tier.

  1) local memory: LRU-bounded, per-entry TTL
  2) redis (shared across API instances and the worker), only when CACHE_REDIS_URL is set

With Redis, every local entry is stamped with a shared generation counter.
invalidate_all() bumps the counter, so local copies held by other processes
stop being served on their next read. Without Redis the cache is private to
its process and entries written elsewhere only age out by TTL.

Values that go to Redis must be JSON-serialisable.
"""
import json
import logging
import threading
import time
from collections import OrderedDict
from typing import Any, Callable, Optional

import redis

from backend.config import get_settings

logger = logging.getLogger(__name__)

_MISSING = object()
_UNKNOWN = object()


class TTLCache:

    def __init__(self, max_entries: int = 10000, default_ttl: float = 300,
                 redis_url: str = "", prefix: str = "flip:", clock: Callable[[], float] = time.monotonic,
                 redis_client=None):
        self.max_entries = max(1, int(max_entries))
        self.default_ttl = default_ttl
        self.prefix = prefix
        self._clock = clock
        self._local: "OrderedDict[str, tuple[float, Any, Any]]" = OrderedDict()
        self._lock = threading.Lock()
        self._redis = redis_client
        if self._redis is None and redis_url:
            self._redis = redis.from_url(redis_url, decode_responses=True,
                                         socket_timeout=2, socket_connect_timeout=2)
        self._generation_key = f"{prefix}__generation__"

    # -------------------------
    # local tier
    # -------------------------
    def _local_get(self, key: str, generation: Any) -> Any:
        with self._lock:
            hit = self._local.get(key)
            if hit is None:
                return _MISSING
            expires_at, stamp, value = hit
            if self._clock() > expires_at or stamp != generation:
                self._local.pop(key, None)
                return _MISSING
            self._local.move_to_end(key)
            return value

    def _local_set(self, key: str, value: Any, ttl: float, generation: Any) -> None:
        with self._lock:
            self._local[key] = (self._clock() + ttl, generation, value)
            self._local.move_to_end(key)
            while len(self._local) > self.max_entries:
                self._local.popitem(last=False)

    # -------------------------
    # shared generation
    # -------------------------
    def _generation(self) -> Any:
        """Current shared generation; None without Redis, _UNKNOWN when Redis is unreachable."""
        if self._redis is None:
            return None
        try:
            return int(self._redis.get(self._generation_key) or 0)
        except redis.RedisError as e:
            logger.warning(f"Redis cache generation read failed: {e}")
            return _UNKNOWN

    # -------------------------
    # public API
    # -------------------------
    def get(self, key: str, default: Any = None) -> Any:
        generation = self._generation()
        if generation is _UNKNOWN:
            return default
        value = self._local_get(key, generation)
        if value is not _MISSING:
            return value
        if self._redis is None:
            return default
        try:
            raw = self._redis.get(self.prefix + key)
            remaining = self._redis.ttl(self.prefix + key) if raw is not None else -2
        except redis.RedisError as e:
            logger.warning(f"Redis cache read failed for {key}: {e}")
            return default
        if raw is None:
            return default
        value = json.loads(raw)
        # never keep the local copy longer than redis keeps the shared one
        ttl = min(self.default_ttl, remaining) if remaining and remaining > 0 else self.default_ttl
        self._local_set(key, value, ttl, generation)
        return value

    def set(self, key: str, value: Any, ttl: Optional[float] = None) -> None:
        ttl = ttl if ttl and ttl > 0 else self.default_ttl
        generation = self._generation()
        if generation is _UNKNOWN:
            return
        self._local_set(key, value, ttl, generation)
        if self._redis is None:
            return
        try:
            self._redis.setex(self.prefix + key, int(max(1, ttl)), json.dumps(value, separators=(",", ":")))
        except (redis.RedisError, TypeError) as e:
            logger.warning(f"Redis cache write failed for {key}: {e}")

    def get_or_compute(self, key: str, compute: Callable[[], Any], ttl: Optional[float] = None) -> Any:
        """Cached value for key, or compute(), store and return it. None results are not cached."""
        value = self.get(key, _MISSING)
        if value is not _MISSING:
            return value
        value = compute()
        if value is not None:
            self.set(key, value, ttl)
        return value

    def invalidate_all(self) -> None:
        """Drop every entry here and, through the generation counter, in every process sharing Redis."""
        with self._lock:
            self._local.clear()
        if self._redis is None:
            logger.info("🧠 Cache invalidated (local only)")
            return
        try:
            self._redis.incr(self._generation_key)
            keys = [k for k in self._redis.scan_iter(match=f"{self.prefix}*", count=500)
                    if k != self._generation_key]
            if keys:
                self._redis.delete(*keys)
        except redis.RedisError as e:
            logger.warning(f"Redis cache invalidate failed: {e}")
            return
        logger.info("🧠 Cache invalidated")

    def __len__(self) -> int:
        return len(self._local)


_cache: Optional[TTLCache] = None


def get_cache() -> TTLCache:
    """Process-wide cache built from settings."""
    global _cache
    if _cache is None:
        s = get_settings()
        _cache = TTLCache(
            max_entries=s.CACHE_MAX_ENTRIES,
            default_ttl=s.CACHE_TTL_SECONDS,
            redis_url=s.CACHE_REDIS_URL,
            prefix=s.CACHE_REDIS_PREFIX,
        )
    return _cache
