from leadpipe.derive.facts import LeadFacts
from leadpipe.derive.signals import (
    detect_signals,
    primary_insight,
    primary_resistance,
    primary_work_type,
    strongest,
)
from leadpipe.models import Signal


def codes(items):
    return [item.code for item in items]


def test_strong_reputation_without_website():
    signals = detect_signals(LeadFacts(rating=4.5, reviews=200, has_website=False, social_presence="medium"))

    assert codes(signals.resistances) == []
    assert codes(signals.work_types) == ["conversion_gap_no_website", "trust_gap_no_website"]
    assert primary_work_type(signals).code == "conversion_gap_no_website"


def test_missing_basics_is_a_high_resistance():
    signals = detect_signals(LeadFacts(rating=3.0, reviews=2, has_website=False, social_presence="low"))

    assert codes(signals.resistances) == ["basics_missing"]
    assert primary_resistance(signals).strength == "high"
    # reputation_risk is only checked when basics are present
    assert "reputation_risk" not in codes(signals.resistances)


def test_reputation_risk_with_website():
    signals = detect_signals(LeadFacts(rating=3.2, reviews=12, has_website=True, social_presence="low"))

    assert codes(signals.resistances) == ["reputation_risk"]


def test_mature_target_and_no_work_types():
    signals = detect_signals(LeadFacts(rating=4.6, reviews=400, has_website=True, social_presence="high"))

    assert codes(signals.resistances) == ["mature_hard_target"]
    assert signals.work_types == []
    assert primary_insight(signals).code == "mature_hard_target"


def test_rules_fire_independently():
    signals = detect_signals(LeadFacts(rating=4.4, reviews=110, has_website=True, social_presence="low"))

    assert codes(signals.work_types) == ["content_gap_low_social", "scaling_ready"]


def test_trust_gap_strength_depends_on_proof():
    weak = detect_signals(LeadFacts(rating=4.0, reviews=12, has_website=False, social_presence="low"))
    strong = detect_signals(LeadFacts(rating=4.0, reviews=40, has_website=False, social_presence="low"))

    assert [s.strength for s in weak.work_types if s.code == "trust_gap_no_website"] == ["medium"]
    assert [s.strength for s in strong.work_types if s.code == "trust_gap_no_website"] == ["high"]


def test_strongest_breaks_ties_by_order():
    first = Signal("workType", "a", "", "high")
    second = Signal("workType", "b", "", "high")

    assert strongest([Signal("workType", "c", "", "low"), first, second]) is first
    assert strongest([]) is None


def test_no_signals_means_no_insight():
    signals = detect_signals(LeadFacts(rating=4.0, reviews=20, has_website=True, social_presence="medium"))

    assert signals.all == []
    assert primary_insight(signals) is None
