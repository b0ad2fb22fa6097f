"""Rule-based industry classification of raw companies."""

from typing import NamedTuple, Tuple

from leadpipe.models import Classification, RawCompany


class IndustryRule(NamedTuple):
    industry: str
    keywords: Tuple[str, ...]
    confidence: int
    service_type: str
    b2b_b2c: str
    is_good_fit: bool
    reason: str


# Evaluated in order; the first rule with a matching keyword wins.
RULES: Tuple[IndustryRule, ...] = (
    IndustryRule(
        "real_estate",
        ("real estate", "mäklare"),
        85,
        "local_service",
        "both",
        True,
        "Real estate is a core niche: high-ticket, lead-driven, and heavily dependent on trust and content.",
    ),
    IndustryRule(
        "tattoo_studio",
        ("tattoo", "tatuering"),
        80,
        "local_service",
        "b2c",
        True,
        "Tattoo studios win with strong visuals and consistent content that builds desire and trust.",
    ),
    IndustryRule(
        "beauty_clinic",
        ("clinic", "klinik", "skönhet", "beauty"),
        80,
        "local_service",
        "b2c",
        True,
        "Beauty clinics rely on visual proof, education and trust, a natural match for content-driven funnels.",
    ),
    IndustryRule(
        "restaurant",
        ("restaurant", "restaurang", "bistro"),
        55,
        "local_service",
        "b2c",
        False,
        "Restaurants benefit from content, but they are not a primary target niche right now.",
    ),
)

FALLBACK = IndustryRule(
    "other",
    (),
    40,
    "other",
    "unknown",
    False,
    "Category does not match the current core target niches. Still usable for tests and volume, but lower priority.",
)

PRIMARY_INDUSTRIES = tuple(rule.industry for rule in RULES) + (FALLBACK.industry,)


def _match_rule(raw: RawCompany) -> IndustryRule:
    text = " ".join([raw.name or "", *(raw.categories or []), raw.description or ""]).lower()
    for rule in RULES:
        if any(keyword in text for keyword in rule.keywords):
            return rule
    return FALLBACK


def classify_company(raw: RawCompany) -> Classification:
    rule = _match_rule(raw)
    return Classification(
        primary_industry=rule.industry,
        sub_niche=raw.categories[0] if raw.categories else "",
        service_type=rule.service_type,
        b2b_b2c=rule.b2b_b2c,
        is_good_fit=rule.is_good_fit,
        fit_reason=rule.reason,
        confidence=max(0, min(100, rule.confidence)),
        source="rules",
    )
