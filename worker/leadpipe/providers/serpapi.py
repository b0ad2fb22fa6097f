"""SerpAPI Google Maps adapter.

SerpAPI charges per request; the run cache upstream dedupes identical
intents, so this adapter makes exactly one call per attempt and leaves
retries to the run-reset path.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, Iterable, List, Optional, Tuple

from serpapi import GoogleSearch

from leadpipe.core.config import get_settings
from leadpipe.etl.transform import safe_float, safe_int, strip_or_none
from leadpipe.models import ProviderMeta, ProviderRecord, ProviderResult, RawCompany, SearchIntent
from leadpipe.providers.base import ProviderAdapter

logger = logging.getLogger(__name__)

RESULTS_PER_PAGE = 20


def build_serpapi_params(intent: SearchIntent, api_key: str) -> Dict[str, Any]:
    """Construct SerpAPI request parameters for the Google Maps engine."""
    query = intent.query.strip()
    location = intent.location or intent.location_text or intent.city
    if location:
        query = f"{query} in {location}"

    params: Dict[str, Any] = {
        "engine": "google_maps",
        "q": query,
        "api_key": api_key,
        "type": "search",
    }
    if intent.lat is not None and intent.lng is not None:
        params["ll"] = f"@{intent.lat},{intent.lng},14z"
    if intent.country:
        params["gl"] = intent.country.lower()

    start = _start_offset(intent)
    if start:
        params["start"] = start
    return params


def _start_offset(intent: SearchIntent) -> int:
    if intent.cursor and intent.cursor.isdigit():
        return int(intent.cursor)
    if intent.page and intent.page > 1:
        return (intent.page - 1) * RESULTS_PER_PAGE
    return 0


def classify_serpapi_error(message: str) -> Tuple[str, bool]:
    """Map a SerpAPI error string to (code, retryable)."""
    lowered = message.lower()
    if "api key" in lowered or "unauthorized" in lowered:
        return "AUTH", False
    if "run out of searches" in lowered or "rate limit" in lowered or "too many requests" in lowered:
        return "RATE_LIMITED", True
    if "hasn't returned any results" in lowered:
        return "BAD_REQUEST", False
    return "UPSTREAM", True


def _extract_items(data: Dict[str, Any]) -> Iterable[Any]:
    """SerpAPI sometimes returns local_results as a list or nested dict."""
    local_results = data.get("local_results")
    if isinstance(local_results, list):
        return local_results
    if isinstance(local_results, dict):
        logger.debug("local_results is dict with keys: %s", list(local_results.keys())[:10])
        for maybe in (local_results.get("places"), local_results.get("results"), local_results.get("local_results")):
            if isinstance(maybe, list):
                return maybe

    place_results = data.get("place_results")
    if isinstance(place_results, list):
        return place_results
    if isinstance(place_results, dict):
        return [place_results]
    return []


def _categories(raw: Dict[str, Any], intent: SearchIntent) -> List[str]:
    types = raw.get("types")
    if isinstance(types, list):
        values = [t.strip() for t in types if isinstance(t, str) and t.strip()]
        if values:
            return values
    single = strip_or_none(raw.get("type"))
    if single:
        return [single]
    return [intent.query.strip().lower()]


def parse_serpapi_maps(data: Optional[Dict[str, Any]], intent: SearchIntent) -> List[ProviderRecord]:
    """Extract SerpAPI local/place results into provider records."""
    if not data:
        return []

    records: List[ProviderRecord] = []
    for raw in _extract_items(data):
        if not isinstance(raw, dict):
            continue

        name = strip_or_none(raw.get("title") or raw.get("name"))
        source_id = strip_or_none(raw.get("place_id") or raw.get("data_id"))
        if not name or not source_id:
            logger.debug("Skipping SerpAPI item without name or id: %s", str(raw)[:200])
            continue

        company = RawCompany(
            source=SerpApiAdapter.name,
            source_id=source_id,
            name=name,
            categories=_categories(raw, intent),
            website=strip_or_none(raw.get("website")),
            address=strip_or_none(raw.get("address")),
            city=intent.location or intent.city,
            country=intent.country,
            description=strip_or_none(raw.get("description")),
            rating=safe_float(raw.get("rating")),
            review_count=safe_int(raw.get("reviews_count") or raw.get("reviews")),
            raw_payload=raw,
        )
        records.append(ProviderRecord(source=company.source, source_id=source_id, raw_payload=raw, company=company))

    return records


def _next_cursor(data: Dict[str, Any], intent: SearchIntent, item_count: int) -> Optional[str]:
    pagination = data.get("serpapi_pagination") or {}
    if not isinstance(pagination, dict) or not pagination.get("next"):
        return None
    return str(_start_offset(intent) + max(item_count, RESULTS_PER_PAGE))


class SerpApiAdapter(ProviderAdapter):
    name = "serpapi"

    def search(self, intent: SearchIntent) -> ProviderResult:
        api_key = get_settings().serpapi_api_key
        if not api_key:
            return self.error_result(intent, "AUTH", "SERPAPI_API_KEY is not configured")

        params = build_serpapi_params(intent, api_key)
        logger.info("Calling SerpAPI for q=%s start=%s", params["q"], params.get("start", 0))
        try:
            data = GoogleSearch(params).get_dict()
        except Exception as exc:  # noqa: BLE001
            logger.warning("SerpAPI request failed: %s", exc)
            return self.error_result(intent, "UPSTREAM", f"SerpAPI request failed: {exc}", retryable=True)

        if not data:
            return self.error_result(intent, "UPSTREAM", "SerpAPI returned an empty payload.", retryable=True)

        if data.get("error"):
            message = str(data["error"])
            code, retryable = classify_serpapi_error(message)
            if code == "BAD_REQUEST":
                # "no results" is reported as an error by SerpAPI
                return ProviderResult.success(
                    [], ProviderMeta(provider=self.name, request_id=intent.request_id, exhausted=True)
                )
            logger.error("SerpAPI returned an error response: %s", message)
            return self.error_result(intent, code, f"SerpAPI returned an error response: {message}", retryable=retryable)

        items = list(_extract_items(data))
        records = parse_serpapi_maps(data, intent)
        if intent.limit:
            records = records[: intent.limit]
        if not records:
            logger.warning(
                "SerpAPI response had no usable results. keys=%s preview=%s",
                list(data.keys())[:10],
                str(data.get("local_results"))[:200],
            )

        next_cursor = _next_cursor(data, intent, len(items))
        return ProviderResult.success(
            records,
            ProviderMeta(
                provider=self.name,
                request_id=intent.request_id,
                fetched_count=len(items),
                returned_count=len(records),
                next_cursor=next_cursor,
                exhausted=next_cursor is None,
            ),
        )
