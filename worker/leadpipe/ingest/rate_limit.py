"""Sliding-window admission control consulted on cache misses."""

import logging
import math
import threading
import time
from collections import deque
from dataclasses import dataclass
from typing import Callable, Deque, Dict, Optional

import psycopg2

from leadpipe.core.config import Settings
from leadpipe.core.db import get_connection

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RateLimitResult:
    ok: bool
    remaining: int = 0
    retry_after_seconds: Optional[int] = None
    reset_ms: int = 0


class RateLimitedError(RuntimeError):
    """Raised when a caller exhausts a rate-limit bucket."""

    def __init__(self, retry_after_seconds: int, message: str = "Rate limit exceeded") -> None:
        super().__init__(message)
        self.retry_after_seconds = retry_after_seconds
        self.message = message


def _retry_after(reset_ms: float) -> int:
    return max(int(math.ceil(reset_ms / 1000)), 1)


def _now_ms() -> float:
    return time.time() * 1000


class SlidingWindowRateLimiter:
    """Per-process buckets of hit timestamps. Only valid for a single instance."""

    def __init__(self, clock: Callable[[], float] = _now_ms, sweep_every: int = 1000) -> None:
        self._clock = clock
        self._buckets: Dict[str, Deque[float]] = {}
        self._lock = threading.Lock()
        self._sweep_every = max(sweep_every, 1)
        self._calls = 0
        self._max_window_ms = 0

    def consume(self, key: str, limit: int, window_ms: int) -> RateLimitResult:
        with self._lock:
            now = self._clock()
            self._max_window_ms = max(self._max_window_ms, window_ms)
            self._calls += 1
            if self._calls % self._sweep_every == 0:
                self._sweep(now)

            hits = self._buckets.get(key) or deque()
            cutoff = now - window_ms
            while hits and hits[0] <= cutoff:
                hits.popleft()

            if len(hits) >= limit:
                if not hits:
                    self._buckets.pop(key, None)
                reset_ms = max(hits[0] + window_ms - now, 0) if hits else window_ms
                return RateLimitResult(ok=False, retry_after_seconds=_retry_after(reset_ms), reset_ms=int(reset_ms))

            hits.append(now)
            self._buckets[key] = hits
            reset_ms = max(hits[0] + window_ms - now, 0)
            return RateLimitResult(ok=True, remaining=max(limit - len(hits), 0), reset_ms=int(reset_ms))

    def _sweep(self, now: float) -> None:
        # drop buckets with no hit inside the widest window seen
        cutoff = now - self._max_window_ms
        stale = [key for key, hits in self._buckets.items() if not hits or hits[-1] <= cutoff]
        for key in stale:
            del self._buckets[key]

    def __len__(self) -> int:
        return len(self._buckets)

    def clear(self) -> None:
        with self._lock:
            self._buckets.clear()


class PostgresRateLimiter:
    """Buckets shared across instances through the ``rate_limit_consume`` SQL function."""

    def consume(self, key: str, limit: int, window_ms: int) -> RateLimitResult:
        try:
            with get_connection() as conn:
                with conn.cursor() as cur:
                    cur.execute("SELECT * FROM rate_limit_consume(%s, %s, %s)", (key, window_ms, limit))
                    row = cur.fetchone()
                conn.commit()
        except (psycopg2.Error, RuntimeError) as exc:
            logger.error("rate_limit_consume failed for key=%s: %s; allowing request", key, exc)
            return RateLimitResult(ok=True, remaining=limit, reset_ms=window_ms)

        if not row:
            logger.error("rate_limit_consume returned no row for key=%s; allowing request", key)
            return RateLimitResult(ok=True, remaining=limit, reset_ms=window_ms)

        allowed, remaining, reset_ms = row
        reset_ms = int(reset_ms or window_ms)
        if not allowed:
            return RateLimitResult(ok=False, retry_after_seconds=_retry_after(reset_ms), reset_ms=reset_ms)
        return RateLimitResult(ok=True, remaining=int(remaining or 0), reset_ms=reset_ms)


def build_rate_limiter(settings: Settings):
    if settings.rate_limit_backend == "postgres":
        return PostgresRateLimiter()
    return SlidingWindowRateLimiter()


def admit(limiter, caller: str, provider: str, settings: Settings) -> None:
    """Consume the global bucket, then the provider bucket.

    A global rejection leaves the provider bucket untouched.
    """
    window_ms = settings.rate_limit_window_ms

    global_result = limiter.consume(f"global:{caller}", settings.global_rate_limit, window_ms)
    if not global_result.ok:
        logger.info("Global rate limit hit for caller=%s", caller)
        raise RateLimitedError(global_result.retry_after_seconds or 1, "Too many requests")

    provider_result = limiter.consume(f"{provider}:{caller}", settings.provider_rate_limit, window_ms)
    if not provider_result.ok:
        logger.info("Provider rate limit hit for caller=%s provider=%s", caller, provider)
        raise RateLimitedError(provider_result.retry_after_seconds or 1, f"Too many {provider} requests")
