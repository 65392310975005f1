import logging
import math
import threading
import time
from collections import deque
from collections.abc import Callable
from uuid import uuid4

import redis

from artisan_booking.core.config import settings

logger = logging.getLogger(__name__)


class BookingRateLimiter:
    """Sliding-window cap on booking attempts per caller.

    Windows live in redis when a url is configured. The process-local windows
    serve every attempt made while redis is unreachable.
    """

    def __init__(
        self,
        redis_url: str | None = None,
        prefix: str = "rl:bookings",
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._redis = None
        if redis_url:
            self._redis = redis.Redis.from_url(
                redis_url,
                socket_connect_timeout=0.2,
                socket_timeout=0.2,
            )
        self._prefix = prefix
        self._clock = clock
        self._windows: dict[str, deque[float]] = {}
        self._last_sweep = clock()
        self._lock = threading.Lock()

    def hit(self, key: str, limit: int, window_seconds: int) -> int:
        """Record an attempt under ``key``; 0 means allowed, otherwise seconds to wait."""
        if self._redis is not None:
            try:
                return self._hit_redis(key, limit, window_seconds)
            except redis.RedisError:
                logger.warning("rate_limiter_fallback key=%s", key)
        return self._hit_local(key, limit, window_seconds)

    def _hit_redis(self, key: str, limit: int, window_seconds: int) -> int:
        redis_key = f"{self._prefix}:{key}"
        now_ms = int(time.time() * 1000)
        window_ms = window_seconds * 1000
        member = f"{now_ms}:{uuid4().hex}"

        pipe = self._redis.pipeline()
        pipe.zremrangebyscore(redis_key, 0, now_ms - window_ms)
        pipe.zadd(redis_key, {member: now_ms})
        pipe.zcard(redis_key)
        pipe.zrange(redis_key, 0, 0, withscores=True)
        pipe.pexpire(redis_key, window_ms)
        _, _, count, oldest, _ = pipe.execute()
        if count <= limit:
            return 0

        # refused attempts do not extend the window
        self._redis.zrem(redis_key, member)
        oldest_ms = oldest[0][1] if oldest else now_ms
        return max(1, math.ceil((oldest_ms + window_ms - now_ms) / 1000))

    def _hit_local(self, key: str, limit: int, window_seconds: int) -> int:
        now = self._clock()
        boundary = now - window_seconds
        with self._lock:
            if now - self._last_sweep >= window_seconds:
                self._sweep(boundary)
                self._last_sweep = now

            window = self._windows.setdefault(key, deque())
            while window and window[0] <= boundary:
                window.popleft()
            if len(window) >= limit:
                return max(1, math.ceil(window[0] + window_seconds - now))
            window.append(now)
            return 0

    def _sweep(self, boundary: float) -> None:
        for key in list(self._windows):
            window = self._windows[key]
            while window and window[0] <= boundary:
                window.popleft()
            if not window:
                del self._windows[key]

    def reset(self) -> None:
        with self._lock:
            self._windows.clear()
            self._last_sweep = self._clock()
        if self._redis is None:
            return
        try:
            keys = list(self._redis.scan_iter(match=f"{self._prefix}:*"))
            if keys:
                self._redis.delete(*keys)
        except redis.RedisError:
            logger.warning("rate_limiter_reset_failed backend=redis")


def _build_rate_limiter() -> BookingRateLimiter:
    if settings.rate_limit_backend.strip().lower() == "redis":
        return BookingRateLimiter(redis_url=settings.rate_limit_redis_url)
    return BookingRateLimiter()


rate_limiter = _build_rate_limiter()
