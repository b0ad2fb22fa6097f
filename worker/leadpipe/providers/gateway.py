"""Resolves provider adapters and gates their output before persistence."""

import dataclasses
import logging
from typing import Dict, Optional

from leadpipe.core.config import get_settings
from leadpipe.models import PROVIDERS, ProviderResult, SearchIntent
from leadpipe.providers.base import ProviderAdapter
from leadpipe.providers.google_places import GooglePlacesAdapter
from leadpipe.providers.mock import MockAdapter
from leadpipe.providers.serpapi import SerpApiAdapter
from leadpipe.providers.validate import assert_provider_result

logger = logging.getLogger(__name__)

MIN_LIMIT = 1
MAX_LIMIT = 200

ADAPTERS: Dict[str, ProviderAdapter] = {
    MockAdapter.name: MockAdapter(),
    GooglePlacesAdapter.name: GooglePlacesAdapter(),
    SerpApiAdapter.name: SerpApiAdapter(),
}


class UnknownProviderError(ValueError):
    """Raised for a provider id with no registered adapter."""


def get_adapter(provider: str) -> ProviderAdapter:
    adapter = ADAPTERS.get(provider)
    if adapter is None or provider not in PROVIDERS:
        raise UnknownProviderError(f"Unknown provider: {provider}")
    return adapter


def clamp_limit(limit: Optional[int]) -> int:
    if limit is None:
        limit = get_settings().default_search_limit
    return max(MIN_LIMIT, min(MAX_LIMIT, int(limit)))


def run_provider_search(intent: SearchIntent) -> ProviderResult:
    """Call the adapter for ``intent.provider`` and validate an ok result.

    Provider-side failures come back as ``ok=False`` results. A result that
    breaks the adapter contract raises ``ProviderContractError``.
    """
    adapter = get_adapter(intent.provider)
    bounded = dataclasses.replace(intent, limit=clamp_limit(intent.limit))

    result = adapter.search(bounded)
    if isinstance(result, ProviderResult) and not result.ok:
        code = result.error.code if result.error else "UNKNOWN"
        logger.warning("Provider %s returned error code=%s", intent.provider, code)
        return result

    return assert_provider_result(intent.provider, result)
