"""Google Places API (New) text search adapter."""

import logging
from typing import Any, Dict, List, Optional

import requests

from leadpipe.core.config import get_settings
from leadpipe.etl.transform import safe_float, safe_int, strip_or_none
from leadpipe.models import ProviderMeta, ProviderRecord, ProviderResult, RawCompany, SearchIntent
from leadpipe.providers.base import ProviderAdapter

logger = logging.getLogger(__name__)
_SESSION = requests.Session()
_SEARCH_TEXT_URL = "https://places.googleapis.com/v1/places:searchText"
_FIELD_MASK = ",".join(
    (
        "places.id",
        "places.displayName",
        "places.formattedAddress",
        "places.rating",
        "places.userRatingCount",
        "places.websiteUri",
        "places.types",
        "places.primaryType",
        "places.businessStatus",
        "places.location",
        "nextPageToken",
    )
)
_REQUEST_TIMEOUT = 10
_MAX_PAGE_SIZE = 20


def map_status_to_error_code(status: int) -> str:
    if status in (401, 403):
        return "AUTH"
    if status == 429:
        return "RATE_LIMITED"
    if status == 400:
        return "BAD_REQUEST"
    if status == 408:
        return "TIMEOUT"
    if status >= 500:
        return "UPSTREAM"
    return "UNKNOWN"


def build_text_query(intent: SearchIntent) -> str:
    location = intent.location or intent.location_text or intent.city
    query = intent.query.strip()
    return f"{query} {location}" if location else query


def build_request_body(intent: SearchIntent) -> Dict[str, Any]:
    settings = get_settings()
    body: Dict[str, Any] = {
        "textQuery": build_text_query(intent),
        "languageCode": settings.default_language_code,
        "regionCode": (intent.country or settings.default_region_code).upper(),
        "pageSize": min(intent.limit or _MAX_PAGE_SIZE, _MAX_PAGE_SIZE),
    }
    if intent.cursor:
        body["pageToken"] = intent.cursor
    if intent.lat is not None and intent.lng is not None:
        body["locationBias"] = {
            "circle": {
                "center": {"latitude": intent.lat, "longitude": intent.lng},
                "radius": float(intent.radius_m or 5000),
            }
        }
    return body


def to_provider_record(place: Dict[str, Any], intent: SearchIntent) -> ProviderRecord:
    display_name = place.get("displayName")
    if isinstance(display_name, dict):
        display_name = display_name.get("text")
    name = strip_or_none(display_name) or "Unknown"

    raw_types = place.get("types") if isinstance(place.get("types"), list) else []
    types = [t for t in raw_types if isinstance(t, str) and t.strip()]
    categories = types or [intent.query.strip().lower()]

    company = RawCompany(
        source=GooglePlacesAdapter.name,
        source_id=strip_or_none(place["id"]),
        name=name,
        categories=categories,
        website=strip_or_none(place.get("websiteUri")),
        address=strip_or_none(place.get("formattedAddress")),
        city=intent.location or intent.city,
        country=(intent.country or get_settings().default_region_code).upper(),
        rating=safe_float(place.get("rating")),
        review_count=safe_int(place.get("userRatingCount")),
        raw_payload=place,
    )
    return ProviderRecord(source=company.source, source_id=company.source_id, raw_payload=place, company=company)


def _retry_after(response: requests.Response) -> Optional[float]:
    return safe_float(response.headers.get("Retry-After"))


class GooglePlacesAdapter(ProviderAdapter):
    name = "google_places"

    def search(self, intent: SearchIntent) -> ProviderResult:
        api_key = get_settings().google_api_key
        if not api_key:
            return self.error_result(intent, "AUTH", "GOOGLE_API_KEY is not configured")

        headers = {
            "Content-Type": "application/json",
            "X-Goog-Api-Key": api_key,
            "X-Goog-FieldMask": _FIELD_MASK,
        }
        try:
            response = _SESSION.post(
                _SEARCH_TEXT_URL, json=build_request_body(intent), headers=headers, timeout=_REQUEST_TIMEOUT
            )
        except requests.Timeout as exc:
            logger.warning("places:searchText timed out: %s", exc)
            return self.error_result(intent, "TIMEOUT", f"Google Places request timed out: {exc}", retryable=True)
        except requests.RequestException as exc:
            logger.warning("places:searchText request failed: %s", exc)
            return self.error_result(intent, "UPSTREAM", f"Google Places request failed: {exc}", retryable=True)

        if response.status_code >= 400:
            code = map_status_to_error_code(response.status_code)
            logger.error("places:searchText failed: status=%s body=%s", response.status_code, response.text[:500])
            return self.error_result(
                intent,
                code,
                f"Google Places searchText failed ({response.status_code}): {response.text[:500]}",
                retryable=response.status_code >= 500 or response.status_code == 429,
                retry_after_seconds=_retry_after(response),
            )

        try:
            payload = response.json() or {}
        except ValueError as exc:
            return self.error_result(intent, "UPSTREAM", f"Google Places returned invalid JSON: {exc}", retryable=True)

        if not isinstance(payload, dict):
            logger.error("places:searchText returned a non-object body: %s", str(payload)[:200])
            return self.error_result(intent, "UPSTREAM", "Google Places returned an unexpected payload", retryable=True)

        places = payload.get("places") if isinstance(payload.get("places"), list) else []

        records: List[ProviderRecord] = []
        for place in places:
            if not isinstance(place, dict) or not strip_or_none(place.get("id")):
                logger.debug("Skipping place without id: %s", place)
                continue
            if place.get("businessStatus") == "CLOSED_PERMANENTLY":
                continue
            records.append(to_provider_record(place, intent))

        next_cursor = strip_or_none(payload.get("nextPageToken"))
        logger.info("Fetched %d places (%d kept) for query=%s", len(places), len(records), build_text_query(intent))
        return ProviderResult.success(
            records,
            ProviderMeta(
                provider=self.name,
                request_id=intent.request_id,
                fetched_count=len(places),
                returned_count=len(records),
                next_cursor=next_cursor,
                exhausted=next_cursor is None,
            ),
        )
