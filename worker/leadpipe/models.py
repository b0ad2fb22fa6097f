"""Core data models shared by the ingestion pipeline."""

from __future__ import annotations

import math
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional

PROVIDERS = ("mock", "google_places", "serpapi")
SOCIAL_PRESENCE_FILTERS = ("any", "low", "medium", "high")
PRESENCE_LEVELS = ("low", "medium", "high")

RUN_RUNNING = "running"
RUN_SUCCESS = "success"
RUN_ERROR = "error"

ERROR_CODES = ("RATE_LIMITED", "AUTH", "BAD_REQUEST", "UPSTREAM", "TIMEOUT", "UNKNOWN")
INTERNAL_ERROR_CODE = "INTERNAL"


class IntentError(ValueError):
    """Raised when a search payload cannot be turned into a SearchIntent."""


@dataclass(slots=True)
class SearchIntent:
    """Caller-supplied search request for one provider."""

    provider: str
    query: str
    country: Optional[str] = None
    city: Optional[str] = None
    location: Optional[str] = None
    location_text: Optional[str] = None
    lat: Optional[float] = None
    lng: Optional[float] = None
    radius_m: Optional[float] = None
    limit: Optional[int] = None
    page: Optional[int] = None
    cursor: Optional[str] = None
    niche_hint: Optional[str] = None
    request_id: Optional[str] = None
    social_presence: str = "any"

    @classmethod
    def from_payload(cls, payload: Dict[str, Any]) -> "SearchIntent":
        """Validate a JSON payload (camelCase or snake_case keys) into an intent."""
        if not isinstance(payload, dict):
            raise IntentError("payload must be a JSON object")

        provider = payload.get("provider")
        if not isinstance(provider, str) or provider not in PROVIDERS:
            raise IntentError("Missing or invalid 'provider'")

        query = payload.get("query")
        if not isinstance(query, str) or not query.strip():
            raise IntentError("Missing or invalid 'query'")

        request_id = _get_str(payload, "requestId", "request_id")
        if not request_id:
            request_id = str(uuid.uuid4())

        presence = payload.get("socialPresence", payload.get("social_presence"))
        if presence in (None, ""):
            presence = "any"
        if presence not in SOCIAL_PRESENCE_FILTERS:
            raise IntentError("socialPresence must be one of any, low, medium, high")

        cursor = payload.get("cursor")
        if cursor is not None and not isinstance(cursor, str):
            raise IntentError("cursor must be a string")

        return cls(
            provider=provider,
            query=query.strip(),
            country=_get_str(payload, "country"),
            city=_get_str(payload, "city"),
            location=_get_str(payload, "location"),
            location_text=_get_str(payload, "locationText", "location_text"),
            lat=_get_number(payload, "lat"),
            lng=_get_number(payload, "lng"),
            radius_m=_get_number(payload, "radius_m", "radiusM"),
            limit=_get_int(payload, "limit"),
            page=_get_int(payload, "page"),
            cursor=cursor,
            niche_hint=_get_str(payload, "nicheHint", "niche_hint"),
            request_id=request_id.strip(),
            social_presence=presence,
        )

    def to_dict(self) -> Dict[str, Any]:
        data = {
            "provider": self.provider,
            "query": self.query,
            "country": self.country,
            "city": self.city,
            "location": self.location,
            "locationText": self.location_text,
            "lat": self.lat,
            "lng": self.lng,
            "radius_m": self.radius_m,
            "limit": self.limit,
            "page": self.page,
            "cursor": self.cursor,
            "nicheHint": self.niche_hint,
            "requestId": self.request_id,
            "socialPresence": self.social_presence,
        }
        return {key: value for key, value in data.items() if value is not None}


@dataclass(slots=True)
class RawCompany:
    """Normalized snapshot of a business returned by a provider."""

    source: str
    source_id: str
    name: str
    categories: List[str] = field(default_factory=list)
    website: Optional[str] = None
    address: Optional[str] = None
    city: Optional[str] = None
    country: Optional[str] = None
    description: Optional[str] = None
    rating: Optional[float] = None
    review_count: Optional[int] = None
    social_presence: Optional[str] = None
    raw_payload: Optional[Dict[str, Any]] = field(default=None, repr=False)

    @property
    def has_website(self) -> bool:
        return bool(self.website and self.website.strip())

    def to_payload(self) -> Dict[str, Any]:
        """Shape stored in companies_raw.payload."""
        payload: Dict[str, Any] = {
            "source": self.source,
            "sourceId": self.source_id,
            "name": self.name,
            "categories": list(self.categories),
            "website": self.website,
            "address": self.address,
            "city": self.city,
            "country": self.country,
            "description": self.description,
            "rating": self.rating,
            "review_count": self.review_count,
            "socialPresence": self.social_presence,
        }
        payload = {key: value for key, value in payload.items() if value is not None}
        payload["rawPayload"] = self.raw_payload or {}
        return payload


@dataclass(slots=True)
class ProviderRecord:
    source: str
    source_id: str
    raw_payload: Dict[str, Any]
    company: RawCompany


@dataclass(slots=True)
class ProviderMeta:
    provider: str
    request_id: Optional[str] = None
    fetched_count: int = 0
    returned_count: int = 0
    next_cursor: Optional[str] = None
    exhausted: bool = False
    retry_after_seconds: Optional[float] = None


@dataclass(slots=True)
class ProviderError:
    code: str
    message: str
    retryable: bool = False
    details: Any = None


@dataclass(slots=True)
class ProviderResult:
    """Either ok with records, or not ok with an error. Meta is always present."""

    ok: bool
    meta: ProviderMeta
    records: List[ProviderRecord] = field(default_factory=list)
    error: Optional[ProviderError] = None

    @classmethod
    def success(cls, records: List[ProviderRecord], meta: ProviderMeta) -> "ProviderResult":
        return cls(ok=True, records=records, meta=meta)

    @classmethod
    def failure(cls, error: ProviderError, meta: ProviderMeta) -> "ProviderResult":
        return cls(ok=False, error=error, meta=meta)


@dataclass(slots=True)
class ProviderRun:
    """A row of provider_runs."""

    id: int
    provider: str
    fingerprint: str
    status: str
    fetched_count: int = 0
    returned_count: int = 0
    inserted_raw: int = 0
    skipped_duplicates: int = 0
    next_cursor: Optional[str] = None
    exhausted: bool = False
    request_id: Optional[str] = None
    intent: Dict[str, Any] = field(default_factory=dict)
    created_at: Optional[datetime] = None
    started_at: Optional[datetime] = None
    finished_at: Optional[datetime] = None
    error_code: Optional[str] = None
    error_message: Optional[str] = None
    error_retryable: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "provider": self.provider,
            "fingerprint": self.fingerprint,
            "status": self.status,
            "fetchedCount": self.fetched_count,
            "returnedCount": self.returned_count,
            "insertedRaw": self.inserted_raw,
            "skippedDuplicates": self.skipped_duplicates,
            "nextCursor": self.next_cursor,
            "exhausted": self.exhausted,
            "requestId": self.request_id,
            "intent": self.intent,
            "createdAt": _isoformat(self.created_at),
            "startedAt": _isoformat(self.started_at),
            "finishedAt": _isoformat(self.finished_at),
            "errorCode": self.error_code,
            "errorMessage": self.error_message,
        }


@dataclass(slots=True)
class IngestSummary:
    """Caller-facing result of a search request."""

    run_id: Optional[int]
    cached: bool
    status: str
    provider: str
    intent: SearchIntent
    request_id: Optional[str] = None
    fetched_count: int = 0
    returned_count: int = 0
    inserted_raw: int = 0
    skipped_duplicates: int = 0
    next_cursor: Optional[str] = None
    exhausted: bool = False
    retryable: Optional[bool] = None
    retry_after_seconds: Optional[int] = None
    error: Optional[ProviderError] = None

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            "runId": self.run_id,
            "cached": self.cached,
            "status": self.status,
            "provider": self.provider,
            "requestId": self.request_id,
            "fetchedCount": self.fetched_count,
            "returnedCount": self.returned_count,
            "insertedRaw": self.inserted_raw,
            "skippedDuplicates": self.skipped_duplicates,
            "nextCursor": self.next_cursor,
            "exhausted": self.exhausted,
        }
        if self.retryable is not None:
            data["retryable"] = self.retryable
        if self.retry_after_seconds is not None:
            data["retryAfterSeconds"] = self.retry_after_seconds
        if self.error is not None:
            data["error"] = {
                "code": self.error.code,
                "message": self.error.message,
                "retryable": self.error.retryable,
            }
        data["intent"] = self.intent.to_dict()
        return data


@dataclass(slots=True)
class Classification:
    primary_industry: str
    sub_niche: str
    service_type: str
    b2b_b2c: str
    is_good_fit: bool
    fit_reason: str
    confidence: int
    source: str = "rules"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "primaryIndustry": self.primary_industry,
            "subNiche": self.sub_niche,
            "serviceType": self.service_type,
            "b2b_b2c": self.b2b_b2c,
            "isGoodFit": self.is_good_fit,
            "fitScoreReason": self.fit_reason,
            "confidence": self.confidence,
            "source": self.source,
        }


@dataclass(slots=True, frozen=True)
class ScoreResult:
    score: int
    opportunity: int
    readiness: int
    risk: int
    risk_profile: Optional[str]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "value": self.score,
            "opportunity": self.opportunity,
            "readiness": self.readiness,
            "risk": self.risk,
            "riskProfile": self.risk_profile,
        }


@dataclass(slots=True, frozen=True)
class Signal:
    kind: str
    code: str
    message: str
    strength: str

    def to_dict(self) -> Dict[str, Any]:
        return {"kind": self.kind, "code": self.code, "message": self.message, "strength": self.strength}


@dataclass(slots=True)
class Signals:
    work_types: List[Signal] = field(default_factory=list)
    resistances: List[Signal] = field(default_factory=list)

    @property
    def all(self) -> List[Signal]:
        return [*self.resistances, *self.work_types]


@dataclass(slots=True, frozen=True)
class WeightedNeed:
    key: str
    label: str
    weight: int

    def to_dict(self) -> Dict[str, Any]:
        return {"key": self.key, "label": self.label, "weight": self.weight}


@dataclass(slots=True)
class DerivedNeeds:
    needs: List[WeightedNeed] = field(default_factory=list)
    reasons: List[str] = field(default_factory=list)


@dataclass(slots=True)
class CapabilityProfile:
    line_of_business: str
    capabilities: Dict[str, bool] = field(default_factory=dict)


@dataclass(slots=True)
class FitResult:
    fit_score: int
    matched_needs: List[str] = field(default_factory=list)
    missing_needs: List[str] = field(default_factory=list)
    reasons: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "fitScore": self.fit_score,
            "matchedNeeds": list(self.matched_needs),
            "missingNeeds": list(self.missing_needs),
            "reasons": list(self.reasons),
        }


def _isoformat(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value is not None else None


def _get_str(payload: Dict[str, Any], *keys: str) -> Optional[str]:
    for key in keys:
        value = payload.get(key)
        if value is None:
            continue
        if not isinstance(value, str):
            raise IntentError(f"{key} must be a string")
        value = value.strip()
        return value or None
    return None


def _get_number(payload: Dict[str, Any], *keys: str) -> Optional[float]:
    for key in keys:
        value = payload.get(key)
        if value is None:
            continue
        if isinstance(value, bool) or not isinstance(value, (int, float)):
            raise IntentError(f"{key} must be numeric")
        if not math.isfinite(value):
            raise IntentError(f"{key} must be a finite number")
        return value
    return None


def _get_int(payload: Dict[str, Any], key: str) -> Optional[int]:
    value = _get_number(payload, key)
    if value is None:
        return None
    if value != int(value):
        raise IntentError(f"{key} must be an integer")
    return int(value)
