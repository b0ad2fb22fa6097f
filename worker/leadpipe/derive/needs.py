"""Map signals (and an industry baseline) to weighted capability needs."""

from typing import Dict, Iterable, List, Optional, Tuple

from leadpipe.models import DerivedNeeds, Signal, WeightedNeed

CAPABILITIES = ("ads", "tracking", "funnel", "content", "website", "seo", "crm")

NEED_LABELS = {
    "ads": "Ads",
    "tracking": "Tracking",
    "funnel": "Funnel",
    "content": "Content",
    "website": "Website/Landing page",
    "seo": "SEO",
    "crm": "CRM/Follow-up",
}

_NeedRule = Tuple[str, int, str]

# Signal code -> (capability, weight 1-5, reason). Older codes share the rules
# of the signals that replaced them.
SIGNAL_NEEDS: Dict[str, Tuple[_NeedRule, ...]] = {
    "content_gap_low_social": (
        ("ads", 5, "Untapped attention: ads needed."),
        ("content", 4, "Untapped attention: content needed."),
    ),
    "conversion_gap_no_website": (
        ("funnel", 5, "Conversion gap: funnel needed."),
        ("tracking", 5, "Conversion gap: tracking needed."),
        ("website", 5, "Conversion gap: website/LP needed."),
    ),
    "scaling_ready": (
        ("ads", 4, "Scaling-ready: ads to increase volume."),
        ("tracking", 4, "Scaling-ready: tracking to measure growth."),
        ("crm", 3, "Scaling-ready: follow-up/CRM to capture increased demand."),
    ),
    "underexposed_quality": (
        ("ads", 4, "Underexposed quality: ads to increase visibility."),
        ("content", 4, "Underexposed quality: content to build attention."),
    ),
    "trust_gap_no_website": (
        ("website", 5, "Trust gap: website/landing page needed."),
    ),
    "mature_hard_target": (
        ("ads", 4, "Mature competitor: sharper ads to displace."),
        ("tracking", 4, "Mature competitor: measurement to prove lift."),
        ("funnel", 3, "Mature competitor: conversion system matters more."),
    ),
    "basics_missing": (
        ("website", 5, "Unstable basics: website/foundation needed first."),
        ("crm", 4, "Unstable basics: CRM/ops may be needed before scaling."),
    ),
}
SIGNAL_NEEDS["reputation_risk"] = SIGNAL_NEEDS["basics_missing"]
SIGNAL_NEEDS["unstable_basics_missing"] = SIGNAL_NEEDS["basics_missing"]
SIGNAL_NEEDS["untapped_attention"] = SIGNAL_NEEDS["content_gap_low_social"]
SIGNAL_NEEDS["conversion_gap"] = SIGNAL_NEEDS["conversion_gap_no_website"]
SIGNAL_NEEDS["trust_gap"] = SIGNAL_NEEDS["trust_gap_no_website"]

BASE_NEEDS_BY_INDUSTRY: Dict[str, Tuple[Tuple[str, int], ...]] = {
    "real_estate": (("ads", 5), ("funnel", 5), ("tracking", 4), ("crm", 3), ("website", 2)),
    "tattoo_studio": (("content", 5), ("ads", 4), ("website", 2)),
    "beauty_clinic": (("ads", 5), ("funnel", 4), ("content", 4), ("tracking", 3), ("website", 3), ("crm", 2)),
    "restaurant": (("seo", 5), ("content", 3), ("website", 2)),
    "other": (("ads", 3), ("content", 3), ("website", 2)),
}


class _NeedSet:
    """Ordered capability -> need map where weights only ever go up."""

    def __init__(self) -> None:
        self._needs: Dict[str, WeightedNeed] = {}
        self.reasons: List[str] = []

    def add(self, key: str, weight: int, reason: Optional[str] = None) -> None:
        existing = self._needs.get(key)
        if existing is None or weight > existing.weight:
            self._needs[key] = WeightedNeed(key=key, label=NEED_LABELS[key], weight=weight)
        if reason and reason not in self.reasons:
            self.reasons.append(reason)

    def result(self) -> DerivedNeeds:
        return DerivedNeeds(needs=list(self._needs.values()), reasons=list(self.reasons))


def _add_signal_needs(need_set: _NeedSet, signals: Iterable[Signal]) -> None:
    for signal in signals:
        code = signal.code.strip() if isinstance(signal.code, str) else ""
        for key, weight, reason in SIGNAL_NEEDS.get(code, ()):
            need_set.add(key, weight, reason)


def derive_needs_from_signals(work_types: Iterable[Signal], resistances: Iterable[Signal]) -> DerivedNeeds:
    need_set = _NeedSet()
    _add_signal_needs(need_set, work_types)
    _add_signal_needs(need_set, resistances)
    return need_set.result()


def derive_needs_for_lead(
    primary_industry: str,
    has_website: bool,
    social_presence: Optional[str],
    work_types: Iterable[Signal],
    resistances: Iterable[Signal],
) -> DerivedNeeds:
    """Industry baseline, then fact-driven needs, then signal-driven needs."""
    need_set = _NeedSet()

    base = BASE_NEEDS_BY_INDUSTRY.get(primary_industry, BASE_NEEDS_BY_INDUSTRY["other"])
    for key, weight in base:
        need_set.add(key, weight, f"Baseline ({primary_industry}): {NEED_LABELS[key]}.")

    if not has_website:
        need_set.add("website", 5, "No website: website/LP is required.")
        need_set.add("funnel", 4, "No website: funnel capture is required.")

    if social_presence == "low":
        need_set.add("content", 5, "Low social presence: content engine required.")
        need_set.add("ads", 5, "Low social presence: ads needed to create demand.")

    _add_signal_needs(need_set, work_types)
    _add_signal_needs(need_set, resistances)
    return need_set.result()
