"""Postgres-backed persistence for runs, raw companies and classifications.

Every write is keyed on a primary or unique key and is safe to repeat. Run
status transitions are single conditional UPDATEs so two concurrent callers
can never both move the same row out of a given status.
"""

import logging
from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple

from psycopg2 import extras

from leadpipe.core.db import get_connection
from leadpipe.models import Classification, ProviderRun, RUN_ERROR, RUN_RUNNING, RUN_SUCCESS, SearchIntent

logger = logging.getLogger(__name__)

_RUN_COLUMNS = (
    "id, provider, intent_hash, status, fetched_count, returned_count, inserted_raw, "
    "skipped_duplicates, next_cursor, exhausted, request_id, intent, created_at, "
    "started_at, finished_at, error_code, error_message, error_retryable"
)

_INSERT_RUN = """
INSERT INTO provider_runs (provider, intent_hash, request_id, intent, status, started_at)
VALUES (%(provider)s, %(intent_hash)s, %(request_id)s, %(intent)s, 'running', NOW())
ON CONFLICT (provider, intent_hash) DO NOTHING
RETURNING id;
"""

_RESET_RUN = """
UPDATE provider_runs SET
    status = 'running',
    started_at = NOW(),
    finished_at = NULL,
    fetched_count = 0,
    returned_count = 0,
    inserted_raw = 0,
    skipped_duplicates = 0,
    next_cursor = NULL,
    exhausted = FALSE,
    error_code = NULL,
    error_message = NULL,
    error_retryable = FALSE{extra_set}
WHERE id = %(run_id)s AND status = %(expected_status)s{extra_where}
RETURNING id;
"""

_FINALIZE_RUN = """
UPDATE provider_runs SET
    status = %(status)s,
    fetched_count = %(fetched_count)s,
    returned_count = %(returned_count)s,
    inserted_raw = %(inserted_raw)s,
    skipped_duplicates = %(skipped_duplicates)s,
    next_cursor = %(next_cursor)s,
    exhausted = %(exhausted)s,
    error_code = %(error_code)s,
    error_message = %(error_message)s,
    error_retryable = %(error_retryable)s,
    finished_at = NOW()
WHERE id = %(run_id)s AND status = 'running'
RETURNING id;
"""

_UPSERT_RAW = """
INSERT INTO companies_raw (source, source_id, payload, updated_at)
VALUES %s
ON CONFLICT (source, source_id) DO UPDATE SET
    payload = EXCLUDED.payload,
    updated_at = NOW()
RETURNING id, source_id;
"""

_ATTACH_RAW = """
INSERT INTO provider_run_raws (run_id, raw_id)
VALUES %s
ON CONFLICT (run_id, raw_id) DO NOTHING;
"""

_UPSERT_CLASSIFICATION = """
INSERT INTO company_classifications (
    raw_id,
    primary_industry,
    sub_niche,
    service_type,
    b2b_b2c,
    is_good_fit,
    fit_reason,
    confidence,
    source,
    updated_at
) VALUES (
    %(raw_id)s,
    %(primary_industry)s,
    %(sub_niche)s,
    %(service_type)s,
    %(b2b_b2c)s,
    %(is_good_fit)s,
    %(fit_reason)s,
    %(confidence)s,
    %(source)s,
    NOW()
)
ON CONFLICT (raw_id) DO UPDATE SET
    primary_industry = EXCLUDED.primary_industry,
    sub_niche = EXCLUDED.sub_niche,
    service_type = EXCLUDED.service_type,
    b2b_b2c = EXCLUDED.b2b_b2c,
    is_good_fit = EXCLUDED.is_good_fit,
    fit_reason = EXCLUDED.fit_reason,
    confidence = EXCLUDED.confidence,
    source = EXCLUDED.source,
    updated_at = NOW();
"""


def row_to_run(row: Dict[str, Any]) -> ProviderRun:
    intent = row.get("intent")
    return ProviderRun(
        id=row["id"],
        provider=row["provider"],
        fingerprint=row["intent_hash"],
        status=row["status"],
        fetched_count=row.get("fetched_count") or 0,
        returned_count=row.get("returned_count") or 0,
        inserted_raw=row.get("inserted_raw") or 0,
        skipped_duplicates=row.get("skipped_duplicates") or 0,
        next_cursor=row.get("next_cursor"),
        exhausted=bool(row.get("exhausted")),
        request_id=row.get("request_id"),
        intent=intent if isinstance(intent, dict) else {},
        created_at=row.get("created_at"),
        started_at=row.get("started_at"),
        finished_at=row.get("finished_at"),
        error_code=row.get("error_code"),
        error_message=row.get("error_message"),
        error_retryable=bool(row.get("error_retryable")),
    )


def row_to_classification(row: Dict[str, Any]) -> Classification:
    return Classification(
        primary_industry=row.get("primary_industry") or "other",
        sub_niche=row.get("sub_niche") or "",
        service_type=row.get("service_type") or "other",
        b2b_b2c=row.get("b2b_b2c") or "unknown",
        is_good_fit=bool(row.get("is_good_fit")),
        fit_reason=row.get("fit_reason") or "",
        confidence=row.get("confidence") or 0,
        source=row.get("source") or "rules",
    )


class PostgresStore:
    """Persistence collaborator used by the orchestrator and the leads read path."""

    # ---------- Runs ----------

    def create_run(self, provider: str, fingerprint: str, intent: SearchIntent) -> Tuple[int, bool]:
        """Insert a RUNNING run, or return the existing id for (provider, fingerprint).

        Returns ``(run_id, created)``.
        """
        params = {
            "provider": provider,
            "intent_hash": fingerprint,
            "request_id": intent.request_id,
            "intent": extras.Json(intent.to_dict()),
        }
        with get_connection() as conn:
            with conn.cursor() as cur:
                cur.execute(_INSERT_RUN, params)
                inserted = cur.fetchone()
                if inserted is None:
                    cur.execute(
                        "SELECT id FROM provider_runs WHERE provider = %s AND intent_hash = %s",
                        (provider, fingerprint),
                    )
                    existing = cur.fetchone()
            conn.commit()

        if inserted is not None:
            logger.info("Created run %s for provider=%s fingerprint=%s", inserted[0], provider, fingerprint)
            return inserted[0], True
        if existing is None:
            raise RuntimeError(f"provider_runs row vanished for {provider}/{fingerprint}")
        return existing[0], False

    def get_run(self, run_id: int) -> Optional[ProviderRun]:
        with get_connection() as conn:
            with conn.cursor(cursor_factory=extras.RealDictCursor) as cur:
                cur.execute(f"SELECT {_RUN_COLUMNS} FROM provider_runs WHERE id = %s", (run_id,))
                row = cur.fetchone()
        return row_to_run(row) if row else None

    def get_run_by_fingerprint(self, provider: str, fingerprint: str) -> Optional[ProviderRun]:
        with get_connection() as conn:
            with conn.cursor(cursor_factory=extras.RealDictCursor) as cur:
                cur.execute(
                    f"SELECT {_RUN_COLUMNS} FROM provider_runs WHERE provider = %s AND intent_hash = %s",
                    (provider, fingerprint),
                )
                row = cur.fetchone()
        return row_to_run(row) if row else None

    def list_runs(self, provider: Optional[str] = None, status: Optional[str] = None, limit: int = 25) -> List[ProviderRun]:
        clauses: List[str] = []
        params: List[Any] = []
        if provider:
            clauses.append("provider = %s")
            params.append(provider)
        if status:
            clauses.append("status = %s")
            params.append(status)
        where = f"WHERE {' AND '.join(clauses)} " if clauses else ""
        params.append(limit)

        with get_connection() as conn:
            with conn.cursor(cursor_factory=extras.RealDictCursor) as cur:
                cur.execute(
                    f"SELECT {_RUN_COLUMNS} FROM provider_runs {where}ORDER BY created_at DESC LIMIT %s",
                    params,
                )
                rows = cur.fetchall()
        return [row_to_run(row) for row in rows]

    def reset_run(self, run_id: int, expected_status: str = RUN_ERROR, older_than: Optional[datetime] = None) -> bool:
        """Move a run back to RUNNING and clear the previous attempt's outputs.

        Only succeeds while the row is still in ``expected_status``. With
        ``older_than`` a RUNNING row must have started, and a SUCCESS row must
        have been created, before that instant. Resetting a SUCCESS row restarts
        its cache lifetime.
        """
        extra_set = ""
        extra_where = ""
        params: Dict[str, Any] = {"run_id": run_id, "expected_status": expected_status}
        if expected_status == RUN_SUCCESS:
            extra_set = ",\n    created_at = NOW()"
        if older_than is not None:
            column = "created_at" if expected_status == RUN_SUCCESS else "started_at"
            extra_where = f" AND {column} < %(older_than)s"
            params["older_than"] = older_than

        sql = _RESET_RUN.format(extra_set=extra_set, extra_where=extra_where)
        with get_connection() as conn:
            with conn.cursor() as cur:
                cur.execute(sql, params)
                row = cur.fetchone()
            conn.commit()

        if row is None:
            logger.info("Run %s was not in status=%s; reset skipped", run_id, expected_status)
            return False
        logger.info("Reset run %s from %s to %s", run_id, expected_status, RUN_RUNNING)
        return True

    def finalize_run(
        self,
        run_id: int,
        *,
        status: str,
        fetched_count: int,
        returned_count: int,
        inserted_raw: int,
        skipped_duplicates: int,
        next_cursor: Optional[str] = None,
        exhausted: bool = False,
        error_code: Optional[str] = None,
        error_message: Optional[str] = None,
        error_retryable: bool = False,
    ) -> bool:
        """Record the outcome of an attempt. False when the run is no longer RUNNING."""
        params = {
            "run_id": run_id,
            "status": status,
            "fetched_count": fetched_count,
            "returned_count": returned_count,
            "inserted_raw": inserted_raw,
            "skipped_duplicates": skipped_duplicates,
            "next_cursor": next_cursor,
            "exhausted": exhausted,
            "error_code": error_code,
            "error_message": error_message,
            "error_retryable": error_retryable,
        }
        with get_connection() as conn:
            with conn.cursor() as cur:
                cur.execute(_FINALIZE_RUN, params)
                row = cur.fetchone()
            conn.commit()
        if row is None:
            logger.warning("Run %s is no longer running; %s result not recorded", run_id, status)
            return False
        logger.info("Finalized run %s status=%s", run_id, status)
        return True

    # ---------- Run <-> raw links ----------

    def attach_raw_ids_to_run(self, run_id: int, raw_ids: Iterable[int]) -> None:
        rows = [(run_id, raw_id) for raw_id in raw_ids]
        if not rows:
            return
        with get_connection() as conn:
            with conn.cursor() as cur:
                extras.execute_values(cur, _ATTACH_RAW, rows)
            conn.commit()

    def get_raw_ids_for_run(self, run_id: int) -> List[int]:
        with get_connection() as conn:
            with conn.cursor() as cur:
                cur.execute("SELECT raw_id FROM provider_run_raws WHERE run_id = %s ORDER BY raw_id", (run_id,))
                rows = cur.fetchall()
        return [row[0] for row in rows]

    # ---------- Raw companies ----------

    def prefetch_raw_ids(self, source: str, source_ids: Sequence[str]) -> Dict[str, int]:
        """Map source_id -> raw id for the rows that already exist."""
        if not source_ids:
            return {}
        with get_connection() as conn:
            with conn.cursor() as cur:
                cur.execute(
                    "SELECT id, source_id FROM companies_raw WHERE source = %s AND source_id = ANY(%s)",
                    (source, list(source_ids)),
                )
                rows = cur.fetchall()
        return {source_id: raw_id for raw_id, source_id in rows}

    def upsert_raw_rows(self, rows: Sequence[Dict[str, Any]]) -> Dict[str, int]:
        """Insert-or-replace rows keyed on (source, source_id); returns source_id -> id."""
        if not rows:
            return {}
        values = [(row["source"], row["source_id"], extras.Json(row["payload"])) for row in rows]
        with get_connection() as conn:
            with conn.cursor() as cur:
                returned = extras.execute_values(
                    cur, _UPSERT_RAW, values, template="(%s, %s, %s, NOW())", page_size=len(values), fetch=True
                )
            conn.commit()
        return {source_id: raw_id for raw_id, source_id in returned}

    def get_raw_by_id(self, raw_id: int) -> Optional[Dict[str, Any]]:
        with get_connection() as conn:
            with conn.cursor(cursor_factory=extras.RealDictCursor) as cur:
                cur.execute("SELECT id, source, source_id, payload FROM companies_raw WHERE id = %s", (raw_id,))
                row = cur.fetchone()
        return dict(row) if row else None

    def get_raw_rows(self, raw_ids: Sequence[int]) -> List[Dict[str, Any]]:
        if not raw_ids:
            return []
        with get_connection() as conn:
            with conn.cursor(cursor_factory=extras.RealDictCursor) as cur:
                cur.execute(
                    "SELECT id, source, source_id, payload FROM companies_raw WHERE id = ANY(%s)",
                    (list(raw_ids),),
                )
                rows = cur.fetchall()
        return [dict(row) for row in rows]

    # ---------- Classifications ----------

    def upsert_classification(self, raw_id: int, classification: Classification) -> None:
        params = {
            "raw_id": raw_id,
            "primary_industry": classification.primary_industry,
            "sub_niche": classification.sub_niche,
            "service_type": classification.service_type,
            "b2b_b2c": classification.b2b_b2c,
            "is_good_fit": classification.is_good_fit,
            "fit_reason": classification.fit_reason,
            "confidence": classification.confidence,
            "source": classification.source,
        }
        with get_connection() as conn:
            with conn.cursor() as cur:
                cur.execute(_UPSERT_CLASSIFICATION, params)
            conn.commit()
        logger.debug("Upserted classification for raw_id=%s", raw_id)

    def get_classifications(self, raw_ids: Sequence[int]) -> Dict[int, Classification]:
        if not raw_ids:
            return {}
        with get_connection() as conn:
            with conn.cursor(cursor_factory=extras.RealDictCursor) as cur:
                cur.execute(
                    "SELECT raw_id, primary_industry, sub_niche, service_type, b2b_b2c, is_good_fit, "
                    "fit_reason, confidence, source FROM company_classifications WHERE raw_id = ANY(%s)",
                    (list(raw_ids),),
                )
                rows = cur.fetchall()
        return {row["raw_id"]: row_to_classification(row) for row in rows}
