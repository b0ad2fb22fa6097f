"""Capability fit: how much of a lead's weighted needs a caller can cover."""

from typing import Sequence

from leadpipe.derive.facts import clamp, round_half_up
from leadpipe.models import CapabilityProfile, FitResult, WeightedNeed

NEUTRAL_FIT_SCORE = 50

ADS_SPECIALIST_PROFILE = CapabilityProfile(
    line_of_business="ads_specialist",
    capabilities={
        "ads": True,
        "tracking": True,
        "funnel": True,
        "content": False,
        "website": False,
        "seo": False,
        "crm": False,
    },
)


def score_fit(profile: CapabilityProfile, needs: Sequence[WeightedNeed]) -> FitResult:
    if not needs:
        return FitResult(
            fit_score=NEUTRAL_FIT_SCORE,
            reasons=["No clear need signature detected yet: neutral fit."],
        )

    matched = [need for need in needs if profile.capabilities.get(need.key, False)]
    missing = [need for need in needs if not profile.capabilities.get(need.key, False)]

    total_weight = sum(need.weight for need in needs)
    matched_weight = sum(need.weight for need in matched)
    coverage = matched_weight / total_weight if total_weight > 0 else 0.0
    fit_score = int(clamp(round_half_up(coverage * 100)))

    reasons = [
        f"Coverage: {len(matched)}/{len(needs)} needs matched ({matched_weight}/{total_weight} weighted)."
    ]
    if matched:
        reasons.append(f"Matches: {', '.join(need.key for need in matched)}.")
    if missing:
        reasons.append(f"Missing: {', '.join(need.key for need in missing)}.")

    return FitResult(
        fit_score=fit_score,
        matched_needs=[need.key for need in matched],
        missing_needs=[need.key for need in missing],
        reasons=reasons,
    )
