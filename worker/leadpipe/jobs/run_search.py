"""CLI job that runs one provider search through the ingestion pipeline."""

import argparse
import json
import logging
import sys
from typing import Any, Dict, List, Optional

from leadpipe.core.db import init_pool, init_schema
from leadpipe.core.store import PostgresStore
from leadpipe.ingest.orchestrator import RunOrchestrator
from leadpipe.ingest.rate_limit import RateLimitedError
from leadpipe.models import IntentError, PROVIDERS, SOCIAL_PRESENCE_FILTERS, SearchIntent
from leadpipe.providers.gateway import UnknownProviderError

logger = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_INTERNAL = 1
EXIT_ADMISSION = 2
EXIT_RATE_LIMITED = 3


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Run a provider search and persist the results")
    parser.add_argument("--provider", dest="provider", choices=PROVIDERS, help="Provider to query")
    parser.add_argument("--query", dest="query", help="Free-text business query")
    parser.add_argument("--country", dest="country", help="Country code")
    parser.add_argument("--city", dest="city", help="City filter")
    parser.add_argument("--location", dest="location", help="Free-text location")
    parser.add_argument("--lat", dest="lat", type=float, help="Latitude for location bias")
    parser.add_argument("--lng", dest="lng", type=float, help="Longitude for location bias")
    parser.add_argument("--radius-m", dest="radius_m", type=float, help="Bias radius in meters")
    parser.add_argument("--limit", dest="limit", type=int, help="Maximum records to fetch")
    parser.add_argument("--page", dest="page", type=int, help="Result page (1-based)")
    parser.add_argument("--cursor", dest="cursor", help="Provider pagination cursor")
    parser.add_argument("--niche-hint", dest="niche_hint", help="Optional niche hint")
    parser.add_argument(
        "--social-presence",
        dest="social_presence",
        choices=SOCIAL_PRESENCE_FILTERS,
        default="any",
        help="Only keep leads with this projected social presence",
    )
    parser.add_argument("--caller", dest="caller", default="cli", help="Rate-limit identity")
    parser.add_argument("--init-schema", dest="init_schema", action="store_true", help="Apply the DDL first")
    return parser


def payload_from_args(args: argparse.Namespace) -> Dict[str, Any]:
    payload = {
        "provider": args.provider,
        "query": args.query,
        "country": args.country,
        "city": args.city,
        "location": args.location,
        "lat": args.lat,
        "lng": args.lng,
        "radius_m": args.radius_m,
        "limit": args.limit,
        "page": args.page,
        "cursor": args.cursor,
        "nicheHint": args.niche_hint,
        "socialPresence": args.social_presence,
    }
    return {key: value for key, value in payload.items() if value is not None}


def main(argv: Optional[List[str]] = None) -> int:
    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(name)s - %(message)s")
    args = build_parser().parse_args(argv)

    try:
        if args.init_schema:
            init_schema()
            if not args.provider and not args.query:
                return EXIT_OK

        intent = SearchIntent.from_payload(payload_from_args(args))
        init_pool()
        summary = RunOrchestrator(PostgresStore()).search(intent, caller=args.caller)
    except (IntentError, UnknownProviderError) as exc:
        logger.error("Rejected search: %s", exc)
        return EXIT_ADMISSION
    except RateLimitedError as exc:
        logger.error("%s; retry after %ss", exc.message, exc.retry_after_seconds)
        return EXIT_RATE_LIMITED
    except Exception as exc:  # noqa: BLE001
        logger.exception("Search failed: %s", exc)
        return EXIT_INTERNAL

    print(json.dumps(summary.to_dict(), indent=2, ensure_ascii=False))
    return EXIT_OK


if __name__ == "__main__":
    sys.exit(main())
