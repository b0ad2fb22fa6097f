"""Deterministic synthetic provider used for development and tests."""

import math
from typing import List, Optional

from leadpipe.derive.facts import round_half_up
from leadpipe.models import ProviderMeta, ProviderRecord, ProviderResult, RawCompany, SearchIntent
from leadpipe.providers.base import ProviderAdapter

MAX_MOCK_RECORDS = 10


def fnv1a_32(text: str) -> int:
    h = 0x811C9DC5
    for char in text:
        h ^= ord(char)
        h = (h * 0x01000193) & 0xFFFFFFFF
    return h


def _round1(value: float) -> float:
    return round_half_up(value * 10) / 10


def _clamp(value: float, low: float, high: float) -> float:
    return max(low, min(high, value))


def _clamp_int(value: float, low: int, high: int) -> int:
    return int(max(low, min(high, math.trunc(value))))


class MockAdapter(ProviderAdapter):
    """Same query, location and presence filter always yield the same listings."""

    name = "mock"

    def search(self, intent: SearchIntent) -> ProviderResult:
        query = intent.query or ""
        count = min(intent.limit or 25, MAX_MOCK_RECORDS)
        location = (intent.location or intent.city or "").strip() or None
        presence = intent.social_presence if intent.social_presence in ("low", "medium", "high") else ""

        records = [self._build_record(query, location, presence, n) for n in range(1, count + 1)]
        return ProviderResult.success(
            records,
            ProviderMeta(
                provider=self.name,
                request_id=intent.request_id,
                fetched_count=len(records),
                returned_count=len(records),
                next_cursor=None,
                exhausted=True,
            ),
        )

    def _build_record(self, query: str, location: Optional[str], presence: str, n: int) -> ProviderRecord:
        seed = fnv1a_32(f"{query}|{location or ''}|{presence}|{n}") % 1_000_000
        source_id = f"mock_{fnv1a_32(f'{query}_{n}'):x}"
        website_url = f"https://mock{n}.example.com"

        rating = _round1(_clamp(3.5 + (seed % 150) / 100, 3.5, 4.9))
        review_count = _clamp_int((seed % 360) - 20, 0, 320)
        website: Optional[str] = website_url if seed % 5 != 0 else None

        if presence == "low":
            website = website_url if seed % 4 == 0 else None
            review_count = _clamp_int(math.floor(review_count * 0.45), 0, 140)
            rating = _round1(_clamp(rating - (0.2 if seed % 3 == 0 else 0.0), 3.5, 4.9))
        elif presence == "medium":
            website = None if seed % 8 == 0 else website_url
            review_count = _clamp_int(math.floor(review_count * 0.9 + 5), 10, 260)
            rating = _round1(_clamp(rating, 3.7, 4.8))
        elif presence == "high":
            website = None if seed % 6 == 0 else website_url
            review_count = _clamp_int(math.floor(review_count * 1.15 + 20), 30, 340)
            rating = _round1(_clamp(rating - (0.3 if seed % 7 == 0 else 0.0), 3.6, 4.9))

        normalized_query = query.strip().lower()
        misfit_mode = seed % 10
        categories: List[str]
        if not normalized_query:
            categories = ["mock-category"]
        elif misfit_mode == 0:
            categories = ["mock-category", "unrelated", "misc"]
        elif misfit_mode in (1, 2):
            categories = [normalized_query, "mock-category", "misc"]
        else:
            categories = [normalized_query, "mock-category"]

        raw_payload = {
            "provider": self.name,
            "q": query,
            "location": location,
            "index": n,
            "seed": seed,
            "requestedPresence": presence or None,
        }

        company = RawCompany(
            source=self.name,
            source_id=source_id,
            name=f"Mock Company {n}",
            categories=categories,
            website=website,
            city=location,
            country="SE",
            rating=rating,
            review_count=review_count,
            raw_payload=raw_payload,
        )
        return ProviderRecord(source=self.name, source_id=source_id, raw_payload=raw_payload, company=company)
