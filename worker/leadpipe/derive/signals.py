"""Opportunity (work-type) and resistance signal detection.

Work types are monetizable gaps a service provider can close; resistances are
friction or risk that lowers the chance of winning the account. Every rule is
evaluated independently, so any number of signals may fire.
"""

from typing import Iterable, Optional

from leadpipe.derive.facts import LeadFacts
from leadpipe.models import Signal, Signals

WORK_TYPE = "workType"
RESISTANCE = "resistance"

STRENGTH_PRIORITY = {"high": 3, "medium": 2, "low": 1}


def detect_signals(facts: LeadFacts) -> Signals:
    rating = facts.rating or 0
    reviews = facts.reviews or 0
    has_website = bool(facts.has_website)
    presence = facts.social_presence

    signals = Signals()

    if has_website and presence == "high" and reviews >= 150 and rating >= 4.3:
        signals.resistances.append(
            Signal(
                RESISTANCE,
                "mature_hard_target",
                "Strong presence and strong proof, likely already well-served (harder to win)",
                "high",
            )
        )

    if not has_website and reviews < 10:
        signals.resistances.append(
            Signal(
                RESISTANCE,
                "basics_missing",
                "Missing basics (no website, low proof), higher risk to convert",
                "high",
            )
        )
    elif 0 < rating < 3.6 and reviews < 25:
        signals.resistances.append(
            Signal(
                RESISTANCE,
                "reputation_risk",
                "Weak proof signals, may need fundamentals before scaling",
                "medium",
            )
        )

    if rating >= 4.3 and reviews > 50 and not has_website:
        signals.work_types.append(
            Signal(
                WORK_TYPE,
                "conversion_gap_no_website",
                "Strong reputation but no website: major conversion upside",
                "high",
            )
        )

    if reviews > 100 and presence == "low":
        signals.work_types.append(
            Signal(
                WORK_TYPE,
                "content_gap_low_social",
                "High demand but weak social presence: clear content gap",
                "high",
            )
        )

    if rating >= 4.5 and reviews < 20:
        signals.work_types.append(
            Signal(
                WORK_TYPE,
                "underexposed_quality",
                "High quality but low visibility: growth opportunity",
                "medium",
            )
        )

    if not has_website:
        signals.work_types.append(
            Signal(
                WORK_TYPE,
                "trust_gap_no_website",
                "No website: trust and conversion friction",
                "high" if reviews >= 30 or rating >= 4.3 else "medium",
            )
        )

    if 30 <= reviews < 120 and presence in ("low", "medium"):
        signals.work_types.append(
            Signal(
                WORK_TYPE,
                "scaling_ready",
                "Stable base but not scaling: ready for a growth system",
                "medium",
            )
        )

    return signals


def strongest(items: Iterable[Signal]) -> Optional[Signal]:
    """Highest strength wins; the earliest evaluated signal wins a tie."""
    best: Optional[Signal] = None
    for item in items:
        if best is None or STRENGTH_PRIORITY[item.strength] > STRENGTH_PRIORITY[best.strength]:
            best = item
    return best


def primary_work_type(signals: Signals) -> Optional[Signal]:
    return strongest(signals.work_types)


def primary_resistance(signals: Signals) -> Optional[Signal]:
    return strongest(signals.resistances)


def primary_insight(signals: Signals) -> Optional[Signal]:
    """Opportunity first; fall back to the strongest signal of any kind."""
    if signals.work_types:
        return strongest(signals.work_types)
    return strongest(signals.all)
