"""Normalized facts shared by scoring, signal detection and need derivation."""

import math
from dataclasses import dataclass
from typing import Optional

from leadpipe.models import PRESENCE_LEVELS, RawCompany


@dataclass(slots=True, frozen=True)
class LeadFacts:
    rating: float
    reviews: int
    has_website: bool
    social_presence: str


def clamp(value: float, low: float = 0, high: float = 100) -> float:
    return max(low, min(high, value))


def round_half_up(value: float) -> int:
    """Round halves up (2.5 -> 3); the built-in round() rounds them to even."""
    return int(math.floor(value + 0.5))


def project_social_presence(website: Optional[str], rating: Optional[float], review_count: Optional[int]) -> str:
    """Estimate social presence from public proof when a provider does not report it."""
    reviews = review_count or 0
    rating = rating or 0
    has_website = bool(website and website.strip())

    points = 0
    if has_website:
        points += 1

    if reviews >= 200:
        points += 3
    elif reviews >= 50:
        points += 2
    elif reviews >= 10:
        points += 1

    if rating >= 4.6:
        points += 2
    elif rating >= 4.2:
        points += 1

    if points >= 5:
        return "high"
    if points >= 3:
        return "medium"
    return "low"


def facts_for(raw: RawCompany) -> LeadFacts:
    presence = raw.social_presence
    if presence not in PRESENCE_LEVELS:
        presence = project_social_presence(raw.website, raw.rating, raw.review_count)
    return LeadFacts(
        rating=raw.rating or 0.0,
        reviews=raw.review_count or 0,
        has_website=raw.has_website,
        social_presence=presence,
    )
