"""Replay retryable failed runs from their stored intent."""

import argparse
import logging
import time
from typing import List, Optional

from leadpipe.core.db import init_pool
from leadpipe.core.store import PostgresStore
from leadpipe.ingest.orchestrator import RunOrchestrator
from leadpipe.ingest.retry import is_run_retryable
from leadpipe.models import IntentError, RUN_ERROR, SearchIntent

logger = logging.getLogger(__name__)


def replay_failed_runs(service: RunOrchestrator, *, provider: Optional[str] = None, limit: int = 25,
                       pause_seconds: float = 1.0) -> List[int]:
    """Re-ingest every retryable ERROR run; returns the ids that finished successfully."""
    recovered: List[int] = []
    for run in service.store.list_runs(provider=provider, status=RUN_ERROR, limit=limit):
        if not is_run_retryable(run.error_code, run.error_retryable):
            logger.info("Skipping run %s: code=%s is not retryable", run.id, run.error_code)
            continue

        try:
            intent = SearchIntent.from_payload(run.intent)
        except IntentError as exc:
            logger.warning("Skipping run %s: stored intent is invalid (%s)", run.id, exc)
            continue

        try:
            summary = service.ingest(intent)
        except Exception as exc:  # noqa: BLE001
            logger.exception("Replay of run %s failed: %s", run.id, exc)
            if pause_seconds:
                time.sleep(pause_seconds)
            continue

        logger.info("Replayed run %s => %s", run.id, summary.status)
        if summary.status == "success":
            recovered.append(run.id)
        elif pause_seconds:
            time.sleep(pause_seconds)
    return recovered


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Replay retryable failed provider runs")
    parser.add_argument("--provider", dest="provider", help="Only replay runs for this provider")
    parser.add_argument("--limit", dest="limit", type=int, default=25, help="Maximum runs to inspect")
    return parser


def main(argv: Optional[List[str]] = None) -> None:
    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(name)s - %(message)s")
    args = build_parser().parse_args(argv)

    init_pool()
    recovered = replay_failed_runs(RunOrchestrator(PostgresStore()), provider=args.provider, limit=args.limit)
    logger.info("Recovered %d run(s)", len(recovered))


if __name__ == "__main__":
    main()
