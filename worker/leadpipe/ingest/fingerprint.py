"""Stable identity for a search intent."""

import hashlib
import json
from typing import Any, Dict

from leadpipe.models import SearchIntent

FINGERPRINT_LENGTH = 16


def canonical_intent(intent: SearchIntent) -> Dict[str, Any]:
    """Fields that change what a provider returns. ``request_id`` is tracing only."""
    stable = {
        "provider": intent.provider,
        "query": intent.query,
        "country": intent.country,
        "city": intent.city,
        "location": intent.location,
        "locationText": intent.location_text,
        "lat": intent.lat,
        "lng": intent.lng,
        "radius_m": intent.radius_m,
        "limit": intent.limit,
        "page": intent.page,
        "cursor": intent.cursor,
        "nicheHint": intent.niche_hint,
        # "any" and an absent filter select the same listings
        "socialPresence": None if intent.social_presence == "any" else intent.social_presence,
    }
    return {key: value for key, value in stable.items() if value is not None}


def fingerprint(intent: SearchIntent) -> str:
    canonical = json.dumps(canonical_intent(intent), sort_keys=True, separators=(",", ":"), ensure_ascii=False)
    return hashlib.sha256(canonical.encode("utf-8")).hexdigest()[:FINGERPRINT_LENGTH]
