# pymailflow/mail/rate_limiter.py
import logging
import time
import uuid
from collections import deque
from threading import Lock
from typing import Callable, Deque, Optional

from pymailflow.config import RateLimitConfig

logger = logging.getLogger(__name__)

# KEYS[1] window zset; ARGV: now, window start, limit, ttl seconds, member
_ALLOW_LUA = """
    redis.call('ZREMRANGEBYSCORE', KEYS[1], '-inf', '(' .. ARGV[2])
    if redis.call('ZCARD', KEYS[1]) >= tonumber(ARGV[3]) then
        return 0
    end
    redis.call('ZADD', KEYS[1], ARGV[1], ARGV[5])
    redis.call('EXPIRE', KEYS[1], ARGV[4])
    return 1
"""


class RateLimiter:
    """
    Sliding-window limiter: at most ``limit`` sends in any ``seconds`` window.

    With a Redis client the window is shared by every process using the same
    key; without one it only covers the current process.
    """

    def __init__(
        self,
        key: str = "mail",
        limit: int = 100,
        seconds: float = 60,
        redis_client=None,
        clock: Callable[[], float] = time.time,
    ):
        if limit <= 0 or seconds <= 0:
            raise ValueError("limit and seconds must be positive")
        self.key = key
        self.limit = limit
        self.seconds = seconds
        self.clock = clock
        self.redis_client = redis_client
        self._hits: Deque[float] = deque()
        self._lock = Lock()
        self._allow_script = redis_client.register_script(_ALLOW_LUA) if redis_client is not None else None

    @classmethod
    def from_config(cls, config: RateLimitConfig, redis_client=None) -> "RateLimiter":
        return cls(config.key, config.limit, config.seconds, redis_client=redis_client)

    @property
    def redis_key(self) -> str:
        return f"ratelimit:{self.key}"

    def _prune(self, now: float) -> None:
        window_start = now - self.seconds
        while self._hits and self._hits[0] < window_start:
            self._hits.popleft()

    def _window(self, now: float) -> list:
        if self.redis_client is not None:
            return [float(s) for _, s in self.redis_client.zrangebyscore(
                self.redis_key, now - self.seconds, "+inf", withscores=True
            )]
        with self._lock:
            self._prune(now)
            return list(self._hits)

    def allow(self) -> bool:
        now = self.clock()
        if self._allow_script is not None:
            allowed = self._allow_script(
                keys=[self.redis_key],
                args=[repr(now), repr(now - self.seconds), self.limit,
                      int(self.seconds) + 1, f"{now!r}-{uuid.uuid4().hex}"],
            ) == 1
        else:
            with self._lock:
                self._prune(now)
                allowed = len(self._hits) < self.limit
                if allowed:
                    self._hits.append(now)
        if not allowed:
            logger.warning(f"Rate limit of {self.limit} per {self.seconds}s reached for key {self.key}")
        return allowed

    def remaining(self) -> int:
        return max(0, self.limit - len(self._window(self.clock())))

    def reset_in(self) -> float:
        """Seconds until the oldest send in the window expires."""
        now = self.clock()
        window = self._window(now)
        if not window:
            return 0.0
        return max(0.0, min(window) + self.seconds - now)

    def reset(self) -> None:
        if self.redis_client is not None:
            self.redis_client.delete(self.redis_key)
        with self._lock:
            self._hits.clear()

    def stats(self) -> dict:
        now = self.clock()
        current = len(self._window(now))
        return {
            "key": self.key,
            "limit": self.limit,
            "window_seconds": self.seconds,
            "current_requests": current,
            "remaining_requests": max(0, self.limit - current),
            "reset_in_seconds": self.reset_in(),
        }
