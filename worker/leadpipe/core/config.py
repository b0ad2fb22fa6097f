"""Application configuration helpers."""

import logging
import os
from dataclasses import dataclass
from functools import lru_cache

from dotenv import load_dotenv

logger = logging.getLogger(__name__)

RATE_LIMIT_BACKENDS = {"memory", "postgres"}


@dataclass(frozen=True)
class Settings:
    database_url: str
    google_api_key: str = ""
    serpapi_api_key: str = ""
    worker_port: int = 9000
    cache_ttl_seconds: int = 24 * 60 * 60
    global_rate_limit: int = 30
    provider_rate_limit: int = 10
    rate_limit_window_ms: int = 60_000
    rate_limit_backend: str = "memory"
    run_stale_seconds: int = 300
    default_search_limit: int = 25
    default_region_code: str = "SE"
    default_language_code: str = "sv"


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Load settings from environment variables with sensible defaults."""
    load_dotenv()

    database_url = os.getenv("DATABASE_URL", "")
    google_api_key = os.getenv("GOOGLE_API_KEY", "")
    serpapi_api_key = os.getenv("SERPAPI_API_KEY", "")
    worker_port = int(os.getenv("WORKER_PORT", "9000"))
    cache_ttl_seconds = int(os.getenv("CACHE_TTL_SECONDS", str(24 * 60 * 60)))
    global_rate_limit = int(os.getenv("RATE_LIMIT_GLOBAL", "30"))
    provider_rate_limit = int(os.getenv("RATE_LIMIT_PROVIDER", "10"))
    rate_limit_window_ms = int(os.getenv("RATE_LIMIT_WINDOW_MS", "60000"))
    run_stale_seconds = int(os.getenv("RUN_STALE_SECONDS", "300"))
    default_search_limit = int(os.getenv("DEFAULT_SEARCH_LIMIT", "25"))
    default_region_code = (os.getenv("DEFAULT_REGION_CODE") or "SE").strip().upper()
    default_language_code = (os.getenv("DEFAULT_LANGUAGE_CODE") or "sv").strip().lower()

    rate_limit_backend = (os.getenv("RATE_LIMIT_BACKEND") or "memory").strip().lower()
    if rate_limit_backend not in RATE_LIMIT_BACKENDS:
        logger.warning("Unknown RATE_LIMIT_BACKEND=%s; falling back to in-process limiter.", rate_limit_backend)
        rate_limit_backend = "memory"

    if not database_url:
        logger.warning("DATABASE_URL is not set; database operations will fail.")
    if not google_api_key:
        logger.warning("GOOGLE_API_KEY is not configured; google_places searches will fail.")
    if not serpapi_api_key:
        logger.warning("SERPAPI_API_KEY is not configured; serpapi searches will fail.")

    return Settings(
        database_url=database_url,
        google_api_key=google_api_key,
        serpapi_api_key=serpapi_api_key,
        worker_port=worker_port,
        cache_ttl_seconds=cache_ttl_seconds,
        global_rate_limit=global_rate_limit,
        provider_rate_limit=provider_rate_limit,
        rate_limit_window_ms=rate_limit_window_ms,
        rate_limit_backend=rate_limit_backend,
        run_stale_seconds=run_stale_seconds,
        default_search_limit=default_search_limit,
        default_region_code=default_region_code,
        default_language_code=default_language_code,
    )
