"""Deterministic lead scoring.

* readiness: ability to execute and pay (website, rating, reviews, presence)
* opportunity: upside from the gaps a service provider could close
* risk: difficulty of winning the account, driven by the risk profile

Scores are recomputed on read and never persisted.
"""

from typing import Optional, Tuple

from leadpipe.derive.facts import LeadFacts, clamp, facts_for, round_half_up
from leadpipe.models import Classification, RawCompany, ScoreResult

UNSTABLE_BUSINESS = "unstable_business"
MATURE_COMPETITOR = "mature_competitor"


def readiness_from_facts(facts: LeadFacts) -> int:
    r = 0

    if facts.has_website:
        r += 12

    if facts.rating >= 4.7:
        r += 18
    elif facts.rating >= 4.4:
        r += 14
    elif facts.rating >= 4.0:
        r += 8
    elif facts.rating >= 3.6:
        r += 4

    if facts.reviews >= 250:
        r += 22
    elif facts.reviews >= 100:
        r += 16
    elif facts.reviews >= 25:
        r += 10
    elif facts.reviews >= 10:
        r += 6
    elif facts.reviews >= 3:
        r += 3

    if facts.social_presence == "high":
        r += 10
    elif facts.social_presence == "medium":
        r += 6
    else:
        r += 2

    return int(clamp(round_half_up(r)))


def _proof_points(facts: LeadFacts) -> int:
    if facts.reviews >= 200:
        reviews = 20
    elif facts.reviews >= 100:
        reviews = 14
    elif facts.reviews >= 30:
        reviews = 8
    elif facts.reviews >= 10:
        reviews = 4
    else:
        reviews = 0

    if facts.rating >= 4.6:
        rating = 10
    elif facts.rating >= 4.3:
        rating = 7
    elif facts.rating >= 4.0:
        rating = 4
    else:
        rating = 0

    return reviews + rating


def opportunity_from_facts(facts: LeadFacts) -> int:
    o = 0

    if facts.social_presence == "low":
        o += 26
    elif facts.social_presence == "medium":
        o += 14
    else:
        o += 4

    o += 6 if facts.has_website else 26

    proof = _proof_points(facts)
    # Full proof points only with a website or presence gap.
    if not facts.has_website or facts.social_presence == "low":
        o += proof
    else:
        o += round_half_up(proof * 0.35)

    return int(clamp(round_half_up(o)))


def reputation_opportunity_delta(facts: LeadFacts) -> int:
    """Adjustment from the Google reputation gaps (conversion, maturity, visibility, foundation)."""
    strong = facts.rating >= 4.3 and facts.reviews >= 80
    very_strong = facts.rating >= 4.4 and facts.reviews >= 150
    weak = facts.reviews < 15

    delta = 0
    if strong and not facts.has_website:
        delta += 18
    if very_strong and facts.has_website:
        delta -= 14
    if weak and facts.has_website:
        delta += 10
    if weak and not facts.has_website:
        delta += 12
    return delta


def is_operationally_unstable(facts: LeadFacts) -> bool:
    if not facts.has_website and facts.reviews < 10:
        return True
    if facts.reviews < 3 and facts.rating < 4.0:
        return True
    if 0 < facts.rating < 3.6 and facts.reviews < 25:
        return True
    return False


def is_mature_hard_target(facts: LeadFacts) -> bool:
    return (
        facts.has_website
        and facts.social_presence == "high"
        and facts.reviews >= 150
        and facts.rating >= 4.3
    )


def risk_for(facts: LeadFacts, readiness: int) -> Tuple[int, Optional[str]]:
    if is_operationally_unstable(facts):
        return 85, UNSTABLE_BUSINESS
    if is_mature_hard_target(facts):
        return 75, MATURE_COMPETITOR
    return int(clamp(round_half_up(100 - readiness * 0.7))), None


def score_lead(raw: RawCompany, classification: Classification) -> ScoreResult:
    facts = facts_for(raw)

    readiness = readiness_from_facts(facts)
    opportunity = opportunity_from_facts(facts)
    adjusted_opportunity = int(clamp(opportunity + reputation_opportunity_delta(facts)))
    risk, risk_profile = risk_for(facts, readiness)

    fit_boost = 8 if classification.is_good_fit else 0
    confidence_boost = clamp(round_half_up((classification.confidence or 0) * 0.1), 0, 10)

    # The composite weighs the unadjusted opportunity; deltas only shift the reported axis.
    score = clamp(round_half_up(opportunity * 0.55 + readiness * 0.35 - risk * 0.2 + fit_boost + confidence_boost))

    return ScoreResult(
        score=int(score),
        opportunity=adjusted_opportunity,
        readiness=readiness,
        risk=risk,
        risk_profile=risk_profile,
    )
