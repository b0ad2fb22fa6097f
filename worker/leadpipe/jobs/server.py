"""HTTP entrypoint for provider searches and run inspection."""

from __future__ import annotations

import logging
import os
from functools import lru_cache
from typing import Any, Dict, Optional

from flask import Flask, jsonify, request

from leadpipe.core.config import get_settings
from leadpipe.core.db import init_pool
from leadpipe.core.store import PostgresStore
from leadpipe.ingest.leads import RunNotFoundError, build_run_leads
from leadpipe.ingest.orchestrator import RunOrchestrator, reclassify_raw
from leadpipe.ingest.rate_limit import RateLimitedError
from leadpipe.models import IntentError, PROVIDERS, SearchIntent
from leadpipe.providers.gateway import UnknownProviderError

# ---------- Logging ----------
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)s %(name)s - %(message)s",
)
logger = logging.getLogger(__name__)

# ---------- App ----------
app = Flask(__name__)

RUN_STATUSES = ("running", "success", "error")
DEFAULT_RUNS_LIMIT = 25
MAX_RUNS_LIMIT = 100


@lru_cache(maxsize=1)
def get_service() -> RunOrchestrator:
    init_pool()
    return RunOrchestrator(PostgresStore())


def caller_id() -> str:
    forwarded = request.headers.get("X-Forwarded-For", "")
    first = forwarded.split(",")[0].strip()
    if first:
        return first
    real_ip = request.headers.get("X-Real-IP", "").strip()
    if real_ip:
        return real_ip
    return request.remote_addr or "dev"


def _parse_limit(value: Optional[str]) -> int:
    try:
        limit = int(value) if value else DEFAULT_RUNS_LIMIT
    except ValueError:
        return DEFAULT_RUNS_LIMIT
    return max(1, min(MAX_RUNS_LIMIT, limit))


# ---------- Routes ----------


@app.get("/healthz")
def healthcheck() -> Any:
    """Reads settings only; does not touch the database."""
    settings = get_settings()
    return (
        jsonify(
            {
                "status": "ok",
                "worker_port_config": settings.worker_port,
                "rate_limit_backend": settings.rate_limit_backend,
                "revision": os.getenv("K_REVISION", "unknown"),
            }
        ),
        200,
    )


@app.post("/search")
def search() -> Any:
    """
    Run (or serve from cache) a provider search.
    Required JSON fields: provider, query
    Optional: country, city, location, locationText, lat, lng, radius_m,
    limit, page, cursor, nicheHint, socialPresence, requestId
    """
    payload: Dict[str, Any] = request.get_json(silent=True) or {}

    try:
        intent = SearchIntent.from_payload(payload)
        summary = get_service().search(intent, caller=caller_id())
    except (IntentError, UnknownProviderError) as exc:
        return jsonify({"error": str(exc)}), 400
    except RateLimitedError as exc:
        response = jsonify({"error": exc.message, "retryAfterSeconds": exc.retry_after_seconds})
        response.headers["Retry-After"] = str(exc.retry_after_seconds)
        return response, 429
    except Exception as exc:  # noqa: BLE001
        logger.exception("/search failed: %s", exc)
        return jsonify({"error": "Internal error"}), 500

    return jsonify({"ok": summary.status == "success", "runId": summary.run_id, "summary": summary.to_dict()}), 200


@app.post("/classify")
def classify() -> Any:
    """Re-derive the classification of one stored raw record. Required JSON field: rawId"""
    payload: Dict[str, Any] = request.get_json(silent=True) or {}
    raw_id = payload.get("rawId")
    if isinstance(raw_id, bool) or not isinstance(raw_id, int) or raw_id < 1:
        return jsonify({"error": "rawId must be a positive integer"}), 400

    try:
        derived = reclassify_raw(get_service().store, raw_id)
    except Exception as exc:  # noqa: BLE001
        logger.exception("/classify failed for raw_id=%s: %s", raw_id, exc)
        return jsonify({"error": "Internal error"}), 500

    if derived is None:
        return jsonify({"error": "Raw record not found"}), 404
    classification, score = derived
    return jsonify({"rawId": raw_id, "classification": classification.to_dict(), "score": score.to_dict()}), 200


@app.get("/runs")
def list_runs() -> Any:
    provider = (request.args.get("provider") or "").strip()
    status = (request.args.get("status") or "").strip()

    try:
        runs = get_service().store.list_runs(
            provider=provider if provider in PROVIDERS else None,
            status=status if status in RUN_STATUSES else None,
            limit=_parse_limit(request.args.get("limit")),
        )
    except Exception as exc:  # noqa: BLE001
        logger.exception("/runs failed: %s", exc)
        return jsonify({"error": "Internal error"}), 500

    return jsonify({"runs": [run.to_dict() for run in runs]}), 200


@app.get("/runs/<int:run_id>")
def get_run(run_id: int) -> Any:
    try:
        run = get_service().store.get_run(run_id)
    except Exception as exc:  # noqa: BLE001
        logger.exception("/runs/%s failed: %s", run_id, exc)
        return jsonify({"error": "Internal error"}), 500

    if run is None:
        return jsonify({"error": "Run not found"}), 404
    return jsonify(run.to_dict()), 200


@app.get("/runs/<int:run_id>/leads")
def get_run_leads(run_id: int) -> Any:
    try:
        leads = build_run_leads(get_service().store, run_id)
    except RunNotFoundError:
        return jsonify({"error": "Run not found"}), 404
    except Exception as exc:  # noqa: BLE001
        logger.exception("/runs/%s/leads failed: %s", run_id, exc)
        return jsonify({"error": "Internal error"}), 500

    return jsonify({"runId": run_id, "count": len(leads), "leads": leads}), 200


def main() -> None:
    port = get_settings().worker_port
    logger.info("[BOOT] Binding on 0.0.0.0:%d", port)
    app.run(host="0.0.0.0", port=port)


if __name__ == "__main__":
    main()
