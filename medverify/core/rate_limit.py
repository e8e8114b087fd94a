"""
Sliding-window rate limiting.

Counters are keyed by an arbitrary string (the OTP flow uses the normalized
identifier). Two stores are provided:

* ``InMemoryRateLimitStore`` keeps a timestamp log per key in process memory,
  guarded by a per-key lock. Correct for a single-process deployment.
* ``RedisRateLimitStore`` keeps the log in a Redis sorted set and updates it
  with a Lua script, so several workers share one window.

Only allowed hits are recorded; a rejected request does not extend the window.
"""
import time
import uuid
from collections import deque
from dataclasses import dataclass
from threading import Lock
from typing import Callable, Deque, Dict, Protocol

from medverify.core.config import settings
from medverify.core.logger import logger


@dataclass(frozen=True)
class RateLimitResult:
    allowed: bool
    count: int
    limit: int
    retry_after: int


class RateLimitStore(Protocol):
    async def hit(self, key: str, limit: int, window_seconds: int) -> RateLimitResult:
        ...


class InMemoryRateLimitStore:
    def __init__(self, clock: Callable[[], float] = time.monotonic):
        self._clock = clock
        self._windows: Dict[str, Deque[float]] = {}
        self._locks: Dict[str, Lock] = {}
        # When each key's newest hit ages out of its window
        self._drained_at: Dict[str, float] = {}
        self._registry_lock = Lock()

    def _lock_for(self, key: str) -> Lock:
        with self._registry_lock:
            lock = self._locks.get(key)
            if lock is None:
                lock = self._locks[key] = Lock()
            return lock

    async def hit(self, key: str, limit: int, window_seconds: int) -> RateLimitResult:
        with self._lock_for(key):
            now = self._clock()
            window = self._windows.setdefault(key, deque())
            while window and window[0] <= now - window_seconds:
                window.popleft()

            if len(window) >= limit:
                retry_after = max(1, int(window[0] + window_seconds - now))
                return RateLimitResult(False, len(window), limit, retry_after)

            window.append(now)
            self._drained_at[key] = now + window_seconds
            return RateLimitResult(True, len(window), limit, 0)

    def prune(self) -> int:
        """Forget keys whose windows have fully drained. Returns how many were dropped."""
        with self._registry_lock:
            now = self._clock()
            stale = [key for key, drained_at in self._drained_at.items() if drained_at <= now]
            dropped = 0
            for key in stale:
                lock = self._locks.get(key)
                # A key mid-hit is kept for the next pass
                if lock is not None and not lock.acquire(blocking=False):
                    continue
                self._windows.pop(key, None)
                self._drained_at.pop(key, None)
                self._locks.pop(key, None)
                if lock is not None:
                    lock.release()
                dropped += 1
            return dropped

    def reset(self, key: str | None = None):
        with self._registry_lock:
            if key is None:
                self._windows.clear()
                self._drained_at.clear()
                self._locks.clear()
            else:
                self._windows.pop(key, None)
                self._drained_at.pop(key, None)
                self._locks.pop(key, None)


# KEYS[1] = window key; ARGV = now, window, limit, member
SLIDING_WINDOW_SCRIPT = """
local key = KEYS[1]
local now = tonumber(ARGV[1])
local window = tonumber(ARGV[2])
local limit = tonumber(ARGV[3])
redis.call('ZREMRANGEBYSCORE', key, '-inf', now - window)
local count = redis.call('ZCARD', key)
if count >= limit then
    local oldest = redis.call('ZRANGE', key, 0, 0, 'WITHSCORES')
    return {0, count, tostring(oldest[2])}
end
redis.call('ZADD', key, now, ARGV[4])
redis.call('EXPIRE', key, math.ceil(window))
return {1, count + 1, '0'}
"""


class RedisRateLimitStore:
    def __init__(self, redis, prefix: str = "ratelimit"):
        self.redis = redis
        self.prefix = prefix

    async def hit(self, key: str, limit: int, window_seconds: int) -> RateLimitResult:
        now = time.time()
        allowed, count, oldest = await self.redis.eval(
            SLIDING_WINDOW_SCRIPT,
            1,
            f"{self.prefix}:{key}",
            now,
            window_seconds,
            limit,
            f"{now}:{uuid.uuid4().hex}",
        )
        if int(allowed):
            return RateLimitResult(True, int(count), limit, 0)
        retry_after = max(1, int(float(oldest) + window_seconds - now))
        return RateLimitResult(False, int(count), limit, retry_after)


class SlidingWindowRateLimiter:
    def __init__(self, store: RateLimitStore, limit: int, window_seconds: int):
        self.store = store
        self.limit = limit
        self.window_seconds = window_seconds

    async def hit(self, key: str) -> RateLimitResult:
        return await self.store.hit(key, self.limit, self.window_seconds)


_memory_store = InMemoryRateLimitStore()


def get_rate_limit_store() -> RateLimitStore:
    if settings.RATE_LIMIT_BACKEND == "redis":
        from medverify.core.redis import redis_client

        if redis_client.enabled:
            return RedisRateLimitStore(redis_client.redis)
        logger.warning("RATE_LIMIT_BACKEND=redis but REDIS_URL is not set, using in-process counters")
    return _memory_store


def get_otp_rate_limiter() -> SlidingWindowRateLimiter:
    return SlidingWindowRateLimiter(
        get_rate_limit_store(),
        limit=settings.OTP_RATE_LIMIT_MAX_REQUESTS,
        window_seconds=settings.OTP_RATE_LIMIT_WINDOW_SECONDS,
    )
