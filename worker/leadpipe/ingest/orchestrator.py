"""Run state machine: cache, admission, provider call, persistence, derivation.

A run is keyed by (provider, fingerprint) and moves RUNNING -> SUCCESS or
RUNNING -> ERROR. Every transition out of a status is a conditional UPDATE
on the store, so concurrent callers for the same fingerprint cannot both
re-attempt the same row:

* ERROR with a retryable code goes back to RUNNING in place (same id).
* RUNNING is left alone unless it started more than ``run_stale_seconds``
  ago, in which case the owner is presumed dead and the row is taken over.
* SUCCESS past the cache lifetime is refreshed in place.
"""

import logging
from datetime import datetime, timedelta, timezone
from typing import Callable, Optional, Tuple

from leadpipe.core.config import Settings, get_settings
from leadpipe.derive.classification import classify_company
from leadpipe.derive.scoring import score_lead
from leadpipe.etl.transform import to_raw_company
from leadpipe.ingest.cache import lookup_cached_run, summary_from_run
from leadpipe.ingest.fingerprint import fingerprint
from leadpipe.ingest.rate_limit import admit, build_rate_limiter
from leadpipe.ingest.retry import compute_retry_after_seconds, is_run_retryable
from leadpipe.ingest.upsert import upsert_raw_records
from leadpipe.models import (
    Classification,
    INTERNAL_ERROR_CODE,
    IngestSummary,
    ProviderError,
    ProviderResult,
    ProviderRun,
    RUN_ERROR,
    RUN_RUNNING,
    RUN_SUCCESS,
    ScoreResult,
    SearchIntent,
)
from leadpipe.providers.gateway import get_adapter, run_provider_search

logger = logging.getLogger(__name__)

_MAX_ERROR_MESSAGE = 500


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def reclassify_raw(store, raw_id: int) -> Optional[Tuple[Classification, ScoreResult]]:
    """Re-run classification for one stored record and persist it.

    Returns None when the raw row does not exist. The score is not stored.
    """
    row = store.get_raw_by_id(raw_id)
    if row is None:
        return None
    raw = to_raw_company(row.get("payload"), source=row.get("source"), source_id=row.get("source_id"))
    classification = classify_company(raw)
    store.upsert_classification(raw_id, classification)
    return classification, score_lead(raw, classification)


class RunOrchestrator:
    def __init__(
        self,
        store,
        search_provider: Callable[[SearchIntent], ProviderResult] = run_provider_search,
        limiter=None,
        settings: Optional[Settings] = None,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self.store = store
        self.settings = settings or get_settings()
        self.limiter = limiter or build_rate_limiter(self.settings)
        self._search_provider = search_provider
        self._clock = clock

    # ---------- Entry points ----------

    def search(self, intent: SearchIntent, caller: str = "anonymous") -> IngestSummary:
        """Serve from cache, else admit through the rate limiter and ingest.

        Raises ``UnknownProviderError`` before any lookup and
        ``RateLimitedError`` when either bucket is exhausted.
        """
        get_adapter(intent.provider)

        cached = lookup_cached_run(
            self.store, intent, now=self._clock(), ttl_seconds=self.settings.cache_ttl_seconds
        )
        if cached.hit:
            return cached.summary

        stored = self.store.get_run_by_fingerprint(intent.provider, fingerprint(intent))
        if stored is not None and stored.status == RUN_ERROR and not is_run_retryable(
            stored.error_code, stored.error_retryable
        ):
            logger.info("Run %s failed with non-retryable code=%s", stored.id, stored.error_code)
            return self._stored_error_summary(stored, intent)

        admit(self.limiter, caller, intent.provider, self.settings)
        return self.ingest(intent)

    def ingest(self, intent: SearchIntent) -> IngestSummary:
        intent_hash = fingerprint(intent)
        run_id, created = self.store.create_run(intent.provider, intent_hash, intent)
        if created:
            return self._attempt(run_id, intent)

        run = self.store.get_run(run_id)
        if run is None:
            raise RuntimeError(f"Run {run_id} disappeared after create_run")

        if run.status == RUN_ERROR:
            if not is_run_retryable(run.error_code, run.error_retryable):
                logger.info("Run %s failed with non-retryable code=%s", run.id, run.error_code)
                return self._stored_error_summary(run, intent)
            if self.store.reset_run(run.id, expected_status=RUN_ERROR):
                logger.info("Retrying run %s after code=%s", run.id, run.error_code)
                return self._attempt(run.id, intent)
            return self._in_progress_summary(run.id, intent)

        now = self._clock()
        if run.status == RUN_RUNNING:
            stale_before = now - timedelta(seconds=self.settings.run_stale_seconds)
            if self.store.reset_run(run.id, expected_status=RUN_RUNNING, older_than=stale_before):
                logger.warning("Took over stale run %s (started_at=%s)", run.id, run.started_at)
                return self._attempt(run.id, intent)
            return self._in_progress_summary(run.id, intent)

        expired_before = now - timedelta(seconds=self.settings.cache_ttl_seconds)
        if self.store.reset_run(run.id, expected_status=RUN_SUCCESS, older_than=expired_before):
            logger.info("Refreshing expired run %s", run.id)
            return self._attempt(run.id, intent)
        return summary_from_run(run, intent, cached=True)

    # ---------- Attempt ----------

    def _attempt(self, run_id: int, intent: SearchIntent) -> IngestSummary:
        try:
            result = self._search_provider(intent)
            if not result.ok:
                return self._record_failure(run_id, intent, result)
            return self._record_success(run_id, intent, result)
        except Exception as exc:
            logger.exception("Run %s aborted: %s", run_id, exc)
            self._mark_internal_error(run_id, exc)
            raise

    def _record_failure(self, run_id: int, intent: SearchIntent, result: ProviderResult) -> IngestSummary:
        meta = result.meta
        error = result.error or ProviderError(code="UNKNOWN", message="Provider failed")
        retryable = is_run_retryable(error.code, error.retryable)

        self.store.finalize_run(
            run_id,
            status=RUN_ERROR,
            fetched_count=meta.fetched_count,
            returned_count=meta.returned_count,
            inserted_raw=0,
            skipped_duplicates=0,
            next_cursor=meta.next_cursor,
            exhausted=meta.exhausted,
            error_code=error.code,
            error_message=error.message[:_MAX_ERROR_MESSAGE],
            error_retryable=retryable,
        )
        return IngestSummary(
            run_id=run_id,
            cached=False,
            status=RUN_ERROR,
            provider=intent.provider,
            intent=intent,
            request_id=meta.request_id or intent.request_id,
            fetched_count=meta.fetched_count,
            returned_count=meta.returned_count,
            next_cursor=meta.next_cursor,
            exhausted=meta.exhausted,
            retryable=retryable,
            retry_after_seconds=compute_retry_after_seconds(error.code, meta.retry_after_seconds),
            error=error,
        )

    def _record_success(self, run_id: int, intent: SearchIntent, result: ProviderResult) -> IngestSummary:
        meta = result.meta
        upserted = upsert_raw_records(self.store, result.records)
        raw_ids = list(upserted.raw_ids_by_source_id.values())
        self.store.attach_raw_ids_to_run(run_id, raw_ids)

        derived = sum(1 for raw_id in raw_ids if self._derive(raw_id))
        logger.info("Run %s derived %d/%d records", run_id, derived, len(raw_ids))

        self.store.finalize_run(
            run_id,
            status=RUN_SUCCESS,
            fetched_count=meta.fetched_count,
            returned_count=meta.returned_count,
            inserted_raw=upserted.inserted_raw,
            skipped_duplicates=upserted.skipped_duplicates,
            next_cursor=meta.next_cursor,
            exhausted=meta.exhausted,
        )
        return IngestSummary(
            run_id=run_id,
            cached=False,
            status=RUN_SUCCESS,
            provider=intent.provider,
            intent=intent,
            request_id=meta.request_id or intent.request_id,
            fetched_count=meta.fetched_count,
            returned_count=meta.returned_count,
            inserted_raw=upserted.inserted_raw,
            skipped_duplicates=upserted.skipped_duplicates,
            next_cursor=meta.next_cursor,
            exhausted=meta.exhausted,
        )

    def _derive(self, raw_id: int) -> bool:
        """Classify one stored record. Failures are logged and skipped."""
        try:
            derived = reclassify_raw(self.store, raw_id)
            if derived is None:
                logger.warning("Raw row %s vanished before derivation", raw_id)
                return False
        except Exception as exc:  # noqa: BLE001
            logger.exception("Derivation failed for raw_id=%s: %s", raw_id, exc)
            return False
        return True

    def _mark_internal_error(self, run_id: int, exc: Exception) -> None:
        try:
            self.store.finalize_run(
                run_id,
                status=RUN_ERROR,
                fetched_count=0,
                returned_count=0,
                inserted_raw=0,
                skipped_duplicates=0,
                exhausted=False,
                error_code=INTERNAL_ERROR_CODE,
                error_message=(str(exc) or type(exc).__name__)[:_MAX_ERROR_MESSAGE],
                error_retryable=True,
            )
        except Exception as mark_exc:  # noqa: BLE001
            logger.error("Could not mark run %s as failed: %s", run_id, mark_exc)

    # ---------- Summaries ----------

    def _stored_error_summary(self, run: ProviderRun, intent: SearchIntent) -> IngestSummary:
        summary = summary_from_run(run, intent, cached=False)
        summary.retryable = False
        summary.retry_after_seconds = 0
        summary.error = ProviderError(
            code=run.error_code or "UNKNOWN",
            message=run.error_message or "Provider run failed",
            retryable=False,
        )
        return summary

    def _in_progress_summary(self, run_id: int, intent: SearchIntent) -> IngestSummary:
        run = self.store.get_run(run_id)
        if run is None:
            raise RuntimeError(f"Run {run_id} disappeared while in progress")
        logger.info("Run %s is owned by another request (status=%s)", run.id, run.status)
        return summary_from_run(run, intent, cached=False)
