"""Serves finished runs for repeated intents within the cache lifetime."""

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Optional

from leadpipe.ingest.fingerprint import fingerprint
from leadpipe.models import IngestSummary, ProviderRun, RUN_SUCCESS, SearchIntent

logger = logging.getLogger(__name__)

DEFAULT_CACHE_TTL_SECONDS = 24 * 60 * 60


@dataclass
class CacheLookup:
    hit: bool
    summary: Optional[IngestSummary] = None


def summary_from_run(run: ProviderRun, intent: SearchIntent, *, cached: bool) -> IngestSummary:
    return IngestSummary(
        run_id=run.id,
        cached=cached,
        status=run.status,
        provider=intent.provider,
        intent=intent,
        request_id=run.request_id,
        fetched_count=run.fetched_count,
        returned_count=run.returned_count,
        inserted_raw=run.inserted_raw,
        skipped_duplicates=run.skipped_duplicates,
        next_cursor=run.next_cursor,
        exhausted=run.exhausted,
    )


def is_expired(created_at: Optional[datetime], now: datetime, ttl_seconds: int) -> bool:
    if not isinstance(created_at, datetime):
        return True
    if created_at.tzinfo is None:
        created_at = created_at.replace(tzinfo=timezone.utc)
    return (now - created_at).total_seconds() > ttl_seconds


def lookup_cached_run(
    store,
    intent: SearchIntent,
    now: Optional[datetime] = None,
    ttl_seconds: int = DEFAULT_CACHE_TTL_SECONDS,
) -> CacheLookup:
    """Hit only for a SUCCESS run created no more than ``ttl_seconds`` ago."""
    now = now or datetime.now(timezone.utc)
    run = store.get_run_by_fingerprint(intent.provider, fingerprint(intent))

    if run is None or run.status != RUN_SUCCESS:
        return CacheLookup(hit=False)
    if is_expired(run.created_at, now, ttl_seconds):
        logger.debug("Run %s expired (created_at=%s)", run.id, run.created_at)
        return CacheLookup(hit=False)

    logger.info("Cache hit for provider=%s run=%s", intent.provider, run.id)
    return CacheLookup(hit=True, summary=summary_from_run(run, intent, cached=True))
