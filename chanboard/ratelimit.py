"""
Fixed-window admission control for mutation endpoints.

Supports an in-memory fallback for tests/local runs and a Redis-backed
implementation shared by every worker process.
"""

from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass, field
from typing import Callable, Protocol

import redis
from redis import exceptions as redis_exceptions

logger = logging.getLogger(__name__)


class RateLimiter(Protocol):
    """Admits at most ``points`` calls per key in each window."""

    def consume(self, key: str) -> bool:
        ...


@dataclass
class InMemoryRateLimiter:
    """Process-wide counters keyed by caller address."""

    points: int = 20
    window_seconds: int = 60
    clock: Callable[[], float] = time.monotonic
    _windows: dict[str, tuple[float, int]] = field(default_factory=dict)
    _lock: threading.Lock = field(default_factory=threading.Lock)

    def consume(self, key: str) -> bool:
        now = self.clock()
        with self._lock:
            started, count = self._windows.get(key, (now, 0))
            if now - started >= self.window_seconds:
                started, count = now, 0
            if count >= self.points:
                self._windows[key] = (started, count)
                return False
            self._windows[key] = (started, count + 1)
            self._prune(now)
            return True

    def _prune(self, now: float) -> None:
        expired = [
            key
            for key, (started, _) in self._windows.items()
            if now - started >= self.window_seconds
        ]
        for key in expired:
            del self._windows[key]

    def reset(self) -> None:
        with self._lock:
            self._windows.clear()


@dataclass
class RedisRateLimiter:
    """Redis-backed counters: INCR on the key, EXPIRE set when the window opens."""

    url: str
    points: int = 20
    window_seconds: int = 60
    key_prefix: str = "chanboard:ratelimit"

    def __post_init__(self):
        self.client = redis.Redis.from_url(self.url)

    def _key(self, key: str) -> str:
        return f"{self.key_prefix}:{key}"

    def consume(self, key: str) -> bool:
        redis_key = self._key(key)
        try:
            pipe = self.client.pipeline()
            pipe.incr(redis_key)
            pipe.expire(redis_key, self.window_seconds, nx=True)
            count, _ = pipe.execute()
        except redis_exceptions.RedisError as exc:
            # Resets and timeouts happen on managed Redis. Admit the request
            # and reconnect for the next one.
            logger.warning("Rate limiter Redis error (%s), admitting %s", exc, key)
            self.client = redis.Redis.from_url(self.url)
            return True
        return int(count) <= self.points
