"""Idempotent dedup-and-insert of provider records into companies_raw."""

import logging
from dataclasses import dataclass, field
from typing import Dict, List, Sequence

import psycopg2

from leadpipe.etl.transform import to_raw_row
from leadpipe.models import ProviderRecord

logger = logging.getLogger(__name__)

CHUNK_SIZE = 250


@dataclass
class UpsertResult:
    raw_ids_by_source_id: Dict[str, int] = field(default_factory=dict)
    inserted_raw: int = 0
    skipped_duplicates: int = 0


def _chunks(items: Sequence[str], size: int) -> List[Sequence[str]]:
    return [items[start : start + size] for start in range(0, len(items), size)]


def prefetch_existing(store, source: str, source_ids: Sequence[str]) -> Dict[str, int]:
    """Best-effort lookup of rows that already exist.

    A failing chunk stops the lookup; the counts then under-report duplicates
    but the upsert itself still runs.
    """
    existing: Dict[str, int] = {}
    for chunk in _chunks(source_ids, CHUNK_SIZE):
        try:
            existing.update(store.prefetch_raw_ids(source, chunk))
        except (psycopg2.Error, RuntimeError) as exc:
            logger.warning("Pre-fetch of existing raw ids failed for source=%s: %s", source, exc)
            break
    return existing


def upsert_raw_records(store, records: Sequence[ProviderRecord]) -> UpsertResult:
    if not records:
        return UpsertResult()

    sources = {record.source for record in records}
    if len(sources) > 1:
        raise ValueError(f"upsert_raw_records expects a single source, got {sorted(sources)}")
    source = sources.pop()

    # Postgres rejects one statement updating the same key twice; last record wins.
    rows_by_source_id = {record.source_id: to_raw_row(record) for record in records}
    source_ids = list(rows_by_source_id)

    preexisting = prefetch_existing(store, source, source_ids)
    upserted = store.upsert_raw_rows(list(rows_by_source_id.values()))

    inserted = max(len(upserted) - len(preexisting), 0)
    logger.info(
        "Upserted %d raw rows for source=%s (inserted=%d, duplicates=%d)",
        len(upserted),
        source,
        inserted,
        len(preexisting),
    )
    return UpsertResult(
        raw_ids_by_source_id=upserted,
        inserted_raw=inserted,
        skipped_duplicates=len(preexisting),
    )
