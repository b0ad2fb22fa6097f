"""Retry classification for failed runs."""

import math
from typing import Optional

RETRYABLE_CODES = frozenset({"TIMEOUT", "UPSTREAM", "RATE_LIMITED"})

MIN_RETRY_AFTER_SECONDS = 5
MAX_RETRY_AFTER_SECONDS = 3600
DEFAULT_RETRY_AFTER_SECONDS = {
    "RATE_LIMITED": 60,
    "TIMEOUT": 20,
    "UPSTREAM": 30,
}


def is_run_retryable(code: Optional[str], retryable: Optional[bool] = None) -> bool:
    """Stored error codes come back as plain strings; unknown codes are not retryable."""
    if retryable is True:
        return True
    return code in RETRYABLE_CODES


def compute_retry_after_seconds(code: Optional[str], provider_suggested: Optional[float] = None) -> int:
    if (
        isinstance(provider_suggested, (int, float))
        and not isinstance(provider_suggested, bool)
        and math.isfinite(provider_suggested)
        and provider_suggested > 0
    ):
        bounded = min(max(provider_suggested, MIN_RETRY_AFTER_SECONDS), MAX_RETRY_AFTER_SECONDS)
        return int(math.ceil(bounded))
    return DEFAULT_RETRY_AFTER_SECONDS.get(code or "", 0)
