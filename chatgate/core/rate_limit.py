"""Best-effort request counters for the access gate."""

from __future__ import annotations

import time
from collections import OrderedDict
from threading import Lock
from typing import Callable, Protocol

from chatgate.config.settings import settings
from chatgate.util.logger import logger

try:
    import redis
except Exception:  # pragma: no cover - optional dependency
    redis = None


class RateLimiter(Protocol):
    def increment(self, key: str) -> int:
        """Count one request for ``key`` and return the count in the current window."""


class InMemoryRateLimiter:
    """Thread-safe per-process counter with TTL and max-size control."""

    def __init__(
        self,
        window_seconds: int = 3600,
        max_entries: int = 50000,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.window_seconds = max(1, int(window_seconds))
        self.max_entries = max(1000, int(max_entries))
        self._clock = clock
        # key -> (count, expires_at)，按首次出现顺序排列
        self._counts: OrderedDict[str, tuple[int, float]] = OrderedDict()
        self._lock = Lock()

    def _prune(self, now: float) -> None:
        keys_to_drop: list[str] = []
        for key, (_, expires_at) in self._counts.items():
            if expires_at > now:
                break
            keys_to_drop.append(key)
        for key in keys_to_drop:
            self._counts.pop(key, None)

        while len(self._counts) > self.max_entries:
            self._counts.popitem(last=False)

    def increment(self, key: str) -> int:
        with self._lock:
            now = self._clock()
            self._prune(now)
            count, expires_at = self._counts.get(key, (0, now + self.window_seconds))
            if expires_at <= now:
                count, expires_at = 0, now + self.window_seconds
            count += 1
            self._counts[key] = (count, expires_at)
            return count

    def __len__(self) -> int:
        with self._lock:
            return len(self._counts)


class RedisRateLimiter:
    """Redis-backed counter for deployments with several gateway instances."""

    def __init__(self, redis_url: str, key_prefix: str = "chatgate", window_seconds: int = 3600) -> None:
        if redis is None:  # pragma: no cover - depends on optional package
            raise RuntimeError("redis package is not installed, cannot use RedisRateLimiter")
        self.client = redis.Redis.from_url(redis_url, decode_responses=True)
        self.key_prefix = key_prefix.strip() or "chatgate"
        self.window_seconds = max(1, int(window_seconds))

    def _key(self, key: str) -> str:
        return f"{self.key_prefix}:rate:{key}"

    def increment(self, key: str) -> int:
        redis_key = self._key(key)
        pipe = self.client.pipeline()
        pipe.incr(redis_key)
        # NX keeps the first expiry so the counter dies with its hour bucket.
        pipe.expire(redis_key, self.window_seconds, nx=True)
        count, _ = pipe.execute()
        return int(count)


def build_rate_limiter() -> RateLimiter:
    backend = settings.rate_limit_backend.strip().lower()
    if backend == "redis":
        logger.info("rate limiter backend=redis url=%s", settings.redis_url)
        return RedisRateLimiter(
            redis_url=settings.redis_url,
            key_prefix=settings.redis_key_prefix,
            window_seconds=settings.rate_limit_window_seconds,
        )
    return InMemoryRateLimiter(
        window_seconds=settings.rate_limit_window_seconds,
        max_entries=settings.rate_limit_max_keys,
    )


def hour_bucket(now_ts: float, window_seconds: int = 3600) -> int:
    return int(now_ts // max(1, int(window_seconds)))
