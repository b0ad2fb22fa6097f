"""Database helpers for the worker."""

import logging
from contextlib import contextmanager
from typing import Optional

import psycopg2
from psycopg2 import pool

from leadpipe.core.config import get_settings

logger = logging.getLogger(__name__)

_connection_pool: Optional[pool.SimpleConnectionPool] = None


SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS provider_runs (
    id BIGSERIAL PRIMARY KEY,
    provider TEXT NOT NULL,
    intent_hash TEXT NOT NULL,
    request_id TEXT,
    intent JSONB NOT NULL DEFAULT '{}'::jsonb,
    status TEXT NOT NULL CHECK (status IN ('running', 'success', 'error')),
    fetched_count INTEGER NOT NULL DEFAULT 0,
    returned_count INTEGER NOT NULL DEFAULT 0,
    inserted_raw INTEGER NOT NULL DEFAULT 0,
    skipped_duplicates INTEGER NOT NULL DEFAULT 0,
    next_cursor TEXT,
    exhausted BOOLEAN NOT NULL DEFAULT FALSE,
    error_code TEXT,
    error_message TEXT,
    error_retryable BOOLEAN NOT NULL DEFAULT FALSE,
    created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
    started_at TIMESTAMPTZ,
    finished_at TIMESTAMPTZ,
    UNIQUE (provider, intent_hash)
);

CREATE TABLE IF NOT EXISTS companies_raw (
    id BIGSERIAL PRIMARY KEY,
    source TEXT NOT NULL,
    source_id TEXT NOT NULL,
    payload JSONB NOT NULL,
    created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
    updated_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
    UNIQUE (source, source_id)
);

CREATE TABLE IF NOT EXISTS provider_run_raws (
    run_id BIGINT NOT NULL REFERENCES provider_runs (id),
    raw_id BIGINT NOT NULL REFERENCES companies_raw (id),
    PRIMARY KEY (run_id, raw_id)
);

CREATE TABLE IF NOT EXISTS company_classifications (
    raw_id BIGINT PRIMARY KEY REFERENCES companies_raw (id),
    primary_industry TEXT NOT NULL,
    sub_niche TEXT NOT NULL DEFAULT '',
    service_type TEXT NOT NULL,
    b2b_b2c TEXT NOT NULL,
    is_good_fit BOOLEAN NOT NULL,
    fit_reason TEXT NOT NULL,
    confidence INTEGER NOT NULL,
    source TEXT NOT NULL,
    updated_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
);

CREATE TABLE IF NOT EXISTS rate_limit_hits (
    key TEXT NOT NULL,
    hit_at TIMESTAMPTZ NOT NULL
);
CREATE INDEX IF NOT EXISTS rate_limit_hits_key_hit_at ON rate_limit_hits (key, hit_at);

CREATE OR REPLACE FUNCTION rate_limit_consume(p_key TEXT, p_window_ms INTEGER, p_limit INTEGER)
RETURNS TABLE (allowed BOOLEAN, remaining INTEGER, reset_ms BIGINT)
LANGUAGE plpgsql AS $$
DECLARE
    v_now TIMESTAMPTZ := clock_timestamp();
    v_cutoff TIMESTAMPTZ := v_now - make_interval(secs => p_window_ms / 1000.0);
    v_count INTEGER;
    v_oldest TIMESTAMPTZ;
BEGIN
    PERFORM pg_advisory_xact_lock(hashtext(p_key));
    DELETE FROM rate_limit_hits WHERE key = p_key AND hit_at <= v_cutoff;
    SELECT count(*), min(hit_at) INTO v_count, v_oldest FROM rate_limit_hits WHERE key = p_key;

    IF v_count >= p_limit THEN
        RETURN QUERY SELECT FALSE, 0,
            GREATEST((EXTRACT(EPOCH FROM (v_oldest - v_cutoff)) * 1000)::BIGINT, 0);
        RETURN;
    END IF;

    INSERT INTO rate_limit_hits (key, hit_at) VALUES (p_key, v_now);
    RETURN QUERY SELECT TRUE, p_limit - v_count - 1,
        GREATEST((EXTRACT(EPOCH FROM (COALESCE(v_oldest, v_now) - v_cutoff)) * 1000)::BIGINT, 0);
END
$$;
"""


def init_pool(minconn: int = 1, maxconn: int = 5) -> pool.SimpleConnectionPool:
    """Initialise and return the shared connection pool."""
    global _connection_pool
    if _connection_pool is None:
        settings = get_settings()
        if not settings.database_url:
            raise RuntimeError("DATABASE_URL is required for database connections")
        _connection_pool = pool.SimpleConnectionPool(
            minconn,
            maxconn,
            dsn=settings.database_url,
            connect_timeout=10,
        )
        logger.info("Database connection pool initialised")
    return _connection_pool


@contextmanager
def get_connection():
    """Context manager yielding a pooled connection.

    Rolls back on error so a failed statement never leaks an aborted
    transaction back into the pool.
    """
    pg_pool = init_pool()
    conn = pg_pool.getconn()
    try:
        yield conn
    except psycopg2.Error:
        conn.rollback()
        raise
    finally:
        pg_pool.putconn(conn)


def init_schema() -> None:
    """Create tables, indexes and the rate limit function if missing."""
    with get_connection() as conn:
        with conn.cursor() as cur:
            cur.execute(SCHEMA_SQL)
        conn.commit()
    logger.info("Database schema applied")
