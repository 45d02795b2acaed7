"""Fixed-window rate limiting, in-process or Redis-backed.

Learn: A fixed window counts requests per key until the window's reset
time passes, then starts over at zero. It is cheaper than a sliding log
and good enough for an advisory limiter. The gateway never turns a
limiter problem into a 5xx.

Two backends share one result shape:
- FixedWindowRateLimiter: process-local dict guarded by a lock. The
  read-increment-write is atomic here, so no caller is admitted over the
  limit inside one process.
- RedisRateLimiter: INCR on a window-aligned key, shared across workers.
  Falls back to the in-process limiter when Redis errors out.

Across several processes using the in-memory backend each process keeps
its own counters, so a key can see up to (processes - 1) extra requests
per window. That slack is accepted for an advisory limiter.
"""

import threading
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Callable, Optional

import redis.asyncio as aioredis
import structlog

logger = structlog.get_logger()


@dataclass(frozen=True)
class RateLimitResult:
    """Outcome of one limit check. reset_at is epoch seconds."""

    allowed: bool
    remaining: int
    reset_at: float
    limit: int = 0

    @property
    def reset_at_iso(self) -> str:
        return datetime.fromtimestamp(self.reset_at, tz=timezone.utc).isoformat()

    def retry_after(self, now: Optional[float] = None) -> int:
        """Whole seconds until the window resets (at least 1)."""
        now = time.time() if now is None else now
        return max(1, int(self.reset_at - now + 0.999))

    def headers(self) -> dict[str, str]:
        headers = {
            "X-RateLimit-Limit": str(self.limit),
            "X-RateLimit-Remaining": str(self.remaining),
            "X-RateLimit-Reset": self.reset_at_iso,
        }
        if not self.allowed:
            headers["Retry-After"] = str(self.retry_after())
        return headers


@dataclass
class RateWindow:
    key: str
    count: int
    reset_at: float


class FixedWindowRateLimiter:
    """Keyed fixed-window counter (per-process)."""

    def __init__(
        self,
        sweep_interval_ms: int = 10_000,
        clock: Callable[[], float] = time.time,
    ):
        self._windows: dict[str, RateWindow] = {}
        self._lock = threading.Lock()
        self._clock = clock
        self._sweep_interval = max(0, sweep_interval_ms) / 1000.0
        self._last_sweep = 0.0

    def __len__(self) -> int:
        return len(self._windows)

    def check_limit(
        self, key: str, max_requests: int, window_ms: int
    ) -> RateLimitResult:
        """Count one request against `key` and report whether it is allowed."""
        if not key:
            key = "_anon"
        window = window_ms / 1000.0
        now = self._clock()

        with self._lock:
            if now - self._last_sweep >= self._sweep_interval:
                self._sweep(now, window)

            entry = self._windows.get(key)
            if entry is None:
                entry = RateWindow(key=key, count=0, reset_at=now + window)
                self._windows[key] = entry
            elif now > entry.reset_at:
                entry.count = 0
                entry.reset_at = now + window

            entry.count += 1
            count, reset_at = entry.count, entry.reset_at

        return RateLimitResult(
            allowed=count <= max_requests,
            remaining=max(0, max_requests - count),
            reset_at=reset_at,
            limit=max_requests,
        )

    async def check(
        self, key: str, max_requests: int, window_ms: int
    ) -> RateLimitResult:
        return self.check_limit(key, max_requests, window_ms)

    def sweep(self) -> int:
        """Drop every window that has already reset. Returns entries removed."""
        with self._lock:
            now = self._clock()
            expired = [k for k, w in self._windows.items() if w.reset_at < now]
            for k in expired:
                del self._windows[k]
            self._last_sweep = now
            return len(expired)

    def _sweep(self, now: float, window: float) -> None:
        # Caller holds the lock.
        window_start = now - window
        expired = [k for k, w in self._windows.items() if w.reset_at < window_start]
        for k in expired:
            del self._windows[k]
        self._last_sweep = now


class RedisRateLimiter:
    """Fixed-window limiter shared across processes through Redis.

    Learn: Windows are aligned to wall-clock multiples of window_ms so
    every worker computes the same key without coordination. INCR is
    atomic on the server; the first increment sets a TTL of two windows.
    """

    def __init__(
        self,
        redis: aioredis.Redis,
        fallback: Optional[FixedWindowRateLimiter] = None,
        key_prefix: str = "ownergate:rl:",
        clock: Callable[[], float] = time.time,
    ):
        self._redis = redis
        self._fallback = fallback if fallback is not None else FixedWindowRateLimiter()
        self._prefix = key_prefix
        self._clock = clock

    async def check(
        self, key: str, max_requests: int, window_ms: int
    ) -> RateLimitResult:
        now_ms = int(self._clock() * 1000)
        bucket = now_ms // window_ms
        reset_at = (bucket + 1) * window_ms / 1000.0
        redis_key = f"{self._prefix}{key or '_anon'}:{bucket}"

        try:
            count = await self._redis.incr(redis_key)
            if count == 1:
                await self._redis.pexpire(redis_key, window_ms * 2)
        except Exception as e:
            logger.warning("ratelimit.redis_unavailable", error=str(e))
            return self._fallback.check_limit(key, max_requests, window_ms)

        return RateLimitResult(
            allowed=count <= max_requests,
            remaining=max(0, max_requests - count),
            reset_at=reset_at,
            limit=max_requests,
        )

    async def close(self) -> None:
        await self._redis.aclose()


# Process-wide default limiter, used by handlers that call check_limit()
# directly with their own thresholds.
_default_limiter = FixedWindowRateLimiter()


def check_limit(identifier: str, max_requests: int, window_ms: int) -> RateLimitResult:
    """Check a custom per-action ceiling against the process-wide limiter."""
    return _default_limiter.check_limit(identifier, max_requests, window_ms)
