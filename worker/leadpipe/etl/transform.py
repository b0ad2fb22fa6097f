"""Utilities for turning stored and provider payloads into RawCompany objects."""

import logging
from dataclasses import replace
from typing import Any, Dict, List, Optional

from leadpipe.models import PRESENCE_LEVELS, ProviderRecord, RawCompany

logger = logging.getLogger(__name__)


def strip_or_none(value: Any) -> Optional[str]:
    if value is None:
        return None
    value_str = str(value).strip()
    return value_str or None


def safe_float(value: Any) -> Optional[float]:
    if value is None or isinstance(value, bool):
        return None
    try:
        result = float(value)
    except (TypeError, ValueError):
        return None
    if result != result or result in (float("inf"), float("-inf")):
        return None
    return result


def safe_int(value: Any) -> Optional[int]:
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return int(value)

    if isinstance(value, str):
        digits = "".join(ch for ch in value if ch.isdigit())
        if digits:
            try:
                return int(digits)
            except ValueError:
                return None
    return None


def _string_list(value: Any) -> List[str]:
    if not isinstance(value, list):
        return []
    return [item for item in value if isinstance(item, str)]


def to_raw_company(payload: Dict[str, Any], source: Optional[str] = None, source_id: Optional[str] = None) -> RawCompany:
    """Rebuild the canonical RawCompany from a companies_raw payload.

    Older payloads used ``reviewCount``; it is read as ``review_count`` when the
    latter is missing. Column values win over payload values for the key.
    """
    payload = payload if isinstance(payload, dict) else {}

    review_count = payload.get("review_count")
    if review_count is None:
        review_count = payload.get("reviewCount")

    presence = payload.get("socialPresence")
    if presence not in PRESENCE_LEVELS:
        presence = None

    raw_payload = payload.get("rawPayload")

    return RawCompany(
        source=strip_or_none(source) or strip_or_none(payload.get("source")) or "other",
        source_id=strip_or_none(source_id) or strip_or_none(payload.get("sourceId")) or "unknown",
        name=strip_or_none(payload.get("name")) or "Unknown Company",
        categories=_string_list(payload.get("categories")),
        website=strip_or_none(payload.get("website")),
        address=strip_or_none(payload.get("address")),
        city=strip_or_none(payload.get("city")),
        country=strip_or_none(payload.get("country")),
        description=strip_or_none(payload.get("description")),
        rating=safe_float(payload.get("rating")),
        review_count=safe_int(review_count),
        social_presence=presence,
        raw_payload=raw_payload if isinstance(raw_payload, dict) else None,
    )


def to_raw_row(record: ProviderRecord) -> Dict[str, Any]:
    """Row accepted by PostgresStore.upsert_raw_rows.

    The record-level source and id are the canonical key and override whatever
    the adapter put on the company; the verbatim provider payload is kept.
    """
    company = replace(
        record.company,
        source=record.source,
        source_id=record.source_id,
        raw_payload=record.raw_payload,
    )
    return {
        "source": record.source,
        "source_id": record.source_id,
        "payload": company.to_payload(),
    }
