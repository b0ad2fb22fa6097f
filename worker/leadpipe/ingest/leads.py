"""Ranked leads for a finished run, recomputed from stored raw rows."""

import logging
from typing import Any, Dict, List, Optional, Sequence

from leadpipe.derive.classification import classify_company
from leadpipe.derive.facts import facts_for
from leadpipe.derive.fit import ADS_SPECIALIST_PROFILE, score_fit
from leadpipe.derive.needs import derive_needs_for_lead
from leadpipe.derive.scoring import score_lead
from leadpipe.derive.signals import detect_signals, primary_insight, primary_resistance, primary_work_type
from leadpipe.etl.transform import to_raw_company
from leadpipe.ingest.upsert import CHUNK_SIZE
from leadpipe.models import CapabilityProfile, Classification, RawCompany, SOCIAL_PRESENCE_FILTERS, Signal

logger = logging.getLogger(__name__)


class RunNotFoundError(LookupError):
    """Raised when leads are requested for a run id that does not exist."""


def _signal_dict(signal: Optional[Signal]) -> Optional[Dict[str, Any]]:
    return signal.to_dict() if signal is not None else None


def _presence_filter(intent: Dict[str, Any]) -> str:
    value = intent.get("socialPresence") if isinstance(intent, dict) else None
    return value if value in SOCIAL_PRESENCE_FILTERS else "any"


def build_lead(
    raw_id: int,
    raw: RawCompany,
    classification: Classification,
    run_id: int,
    profile: CapabilityProfile = ADS_SPECIALIST_PROFILE,
) -> Dict[str, Any]:
    facts = facts_for(raw)
    score = score_lead(raw, classification)
    signals = detect_signals(facts)
    needs = derive_needs_for_lead(
        classification.primary_industry,
        facts.has_website,
        facts.social_presence,
        signals.work_types,
        signals.resistances,
    )
    fit = score_fit(profile, needs.needs)

    return {
        "id": f"{raw.source}:{raw.source_id}",
        "rawId": raw_id,
        "runId": run_id,
        "source": raw.source,
        "sourceId": raw.source_id,
        "name": raw.name,
        "website": raw.website,
        "address": raw.address,
        "city": raw.city,
        "country": raw.country,
        "rating": raw.rating,
        "reviewCount": raw.review_count,
        "socialPresence": facts.social_presence,
        "classification": classification.to_dict(),
        "score": score.to_dict(),
        "workTypeSignals": [signal.to_dict() for signal in signals.work_types],
        "resistanceSignals": [signal.to_dict() for signal in signals.resistances],
        "primaryInsight": _signal_dict(primary_insight(signals)),
        "primaryWorkTypeInsight": _signal_dict(primary_work_type(signals)),
        "primaryResistanceInsight": _signal_dict(primary_resistance(signals)),
        "needs": [need.to_dict() for need in needs.needs],
        "needReasons": list(needs.reasons),
        "fit": fit.to_dict(),
    }


def _load_in_chunks(loader, ids: Sequence[int]):
    for start in range(0, len(ids), CHUNK_SIZE):
        yield loader(ids[start : start + CHUNK_SIZE])


def build_run_leads(store, run_id: int, profile: CapabilityProfile = ADS_SPECIALIST_PROFILE) -> List[Dict[str, Any]]:
    """Leads touched by ``run_id``, filtered by the run's presence filter, best score first."""
    run = store.get_run(run_id)
    if run is None:
        raise RunNotFoundError(f"Run {run_id} not found")

    raw_ids = store.get_raw_ids_for_run(run_id)
    if not raw_ids:
        return []

    rows: List[Dict[str, Any]] = []
    for chunk in _load_in_chunks(store.get_raw_rows, raw_ids):
        rows.extend(chunk)

    classifications: Dict[int, Classification] = {}
    for chunk in _load_in_chunks(store.get_classifications, raw_ids):
        classifications.update(chunk)

    presence_filter = _presence_filter(run.intent)
    leads: List[Dict[str, Any]] = []
    for row in rows:
        raw = to_raw_company(row.get("payload"), source=row.get("source"), source_id=row.get("source_id"))
        classification = classifications.get(row["id"])
        if classification is None:
            logger.debug("No stored classification for raw_id=%s; classifying on read", row["id"])
            classification = classify_company(raw)

        lead = build_lead(row["id"], raw, classification, run_id, profile)
        if presence_filter != "any" and lead["socialPresence"] != presence_filter:
            continue
        leads.append(lead)

    leads.sort(key=lambda lead: lead["score"]["value"], reverse=True)
    return leads
