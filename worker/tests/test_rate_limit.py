import psycopg2
import pytest

from leadpipe.core import db
from leadpipe.core.config import Settings
from leadpipe.ingest import rate_limit
from leadpipe.ingest.rate_limit import (
    PostgresRateLimiter,
    RateLimitedError,
    RateLimitResult,
    SlidingWindowRateLimiter,
    admit,
)


class FakeClock:
    def __init__(self, now=1_000_000.0):
        self.now = now

    def __call__(self):
        return self.now


def settings(**kwargs):
    values = dict(database_url="", global_rate_limit=3, provider_rate_limit=2, rate_limit_window_ms=60_000)
    values.update(kwargs)
    return Settings(**values)


def test_sliding_window_rejects_over_limit():
    clock = FakeClock()
    limiter = SlidingWindowRateLimiter(clock=clock)

    first = limiter.consume("k", 2, 60_000)
    clock.now += 10_000
    second = limiter.consume("k", 2, 60_000)
    third = limiter.consume("k", 2, 60_000)

    assert first.ok and first.remaining == 1
    assert second.ok and second.remaining == 0
    assert third.ok is False
    assert third.retry_after_seconds == 50
    assert third.reset_ms == 50_000


def test_window_slides_as_hits_expire():
    clock = FakeClock()
    limiter = SlidingWindowRateLimiter(clock=clock)
    limiter.consume("k", 1, 1_000)

    clock.now += 999
    assert limiter.consume("k", 1, 1_000).ok is False

    clock.now += 1
    assert limiter.consume("k", 1, 1_000).ok is True


def test_retry_after_is_at_least_one_second():
    clock = FakeClock()
    limiter = SlidingWindowRateLimiter(clock=clock)
    limiter.consume("k", 1, 1_000)
    clock.now += 999.5

    result = limiter.consume("k", 1, 1_000)

    assert result.ok is False
    assert result.retry_after_seconds == 1


def test_buckets_are_independent():
    limiter = SlidingWindowRateLimiter(clock=FakeClock())
    limiter.consume("a", 1, 1_000)

    assert limiter.consume("b", 1, 1_000).ok is True


def test_admit_checks_global_before_provider():
    calls = []

    class RecordingLimiter:
        def consume(self, key, limit, window_ms):
            calls.append((key, limit, window_ms))
            return RateLimitResult(ok=False, retry_after_seconds=7)

    with pytest.raises(RateLimitedError) as excinfo:
        admit(RecordingLimiter(), "1.2.3.4", "mock", settings())

    assert excinfo.value.retry_after_seconds == 7
    assert calls == [("global:1.2.3.4", 3, 60_000)]


def test_admit_provider_bucket_after_global():
    limiter = SlidingWindowRateLimiter(clock=FakeClock())
    cfg = settings()

    admit(limiter, "caller", "mock", cfg)
    admit(limiter, "caller", "mock", cfg)
    with pytest.raises(RateLimitedError):
        admit(limiter, "caller", "mock", cfg)

    # the provider rejection consumed the third global slot
    admit(limiter, "caller", "google_places", settings(global_rate_limit=4))


def test_postgres_limiter_maps_function_row(monkeypatch):
    executed = []

    class Cursor:
        def __enter__(self):
            return self

        def __exit__(self, *exc):
            return False

        def execute(self, sql, params):
            executed.append((sql, params))

        def fetchone(self):
            return (False, 0, 1500)

    class Connection:
        def cursor(self):
            return Cursor()

        def commit(self):
            pass

    class Pool:
        def getconn(self):
            return Connection()

        def putconn(self, conn):
            pass

    monkeypatch.setattr(db, "_connection_pool", Pool())

    result = PostgresRateLimiter().consume("global:x", 30, 60_000)

    assert result.ok is False
    assert result.retry_after_seconds == 2
    assert executed[0][1] == ("global:x", 60_000, 30)


def test_postgres_limiter_fails_open(monkeypatch, caplog):
    def broken_connection():
        raise psycopg2.OperationalError("down")

    monkeypatch.setattr(rate_limit, "get_connection", broken_connection)

    with caplog.at_level("ERROR"):
        result = PostgresRateLimiter().consume("global:x", 30, 60_000)

    assert result.ok is True
    assert result.remaining == 30
    assert "allowing request" in " ".join(caplog.messages)


def test_build_rate_limiter_selects_backend():
    assert isinstance(rate_limit.build_rate_limiter(settings()), SlidingWindowRateLimiter)
    assert isinstance(rate_limit.build_rate_limiter(settings(rate_limit_backend="postgres")), PostgresRateLimiter)


def test_expired_buckets_are_swept():
    clock = FakeClock()
    limiter = SlidingWindowRateLimiter(clock=clock, sweep_every=1)
    for index in range(50):
        limiter.consume(f"global:10.0.0.{index}", 5, 60_000)
    assert len(limiter) == 50

    clock.now += 60_001
    limiter.consume("global:fresh", 5, 60_000)

    assert len(limiter) == 1


def test_rejected_empty_bucket_is_not_kept():
    limiter = SlidingWindowRateLimiter(clock=FakeClock())

    assert limiter.consume("global:spoofed", 0, 60_000).ok is False
    assert len(limiter) == 0
