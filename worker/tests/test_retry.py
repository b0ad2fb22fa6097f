import pytest

from leadpipe.ingest.retry import compute_retry_after_seconds, is_run_retryable


@pytest.mark.parametrize("code", ["TIMEOUT", "UPSTREAM", "RATE_LIMITED"])
def test_transient_codes_are_retryable(code):
    assert is_run_retryable(code) is True


@pytest.mark.parametrize("code", ["AUTH", "BAD_REQUEST", "UNKNOWN", None, "bogus"])
def test_other_codes_are_not_retryable(code):
    assert is_run_retryable(code) is False


def test_explicit_flag_wins():
    assert is_run_retryable("INTERNAL", True) is True
    assert is_run_retryable("INTERNAL", False) is False


def test_defaults_per_code():
    assert compute_retry_after_seconds("RATE_LIMITED") == 60
    assert compute_retry_after_seconds("TIMEOUT") == 20
    assert compute_retry_after_seconds("UPSTREAM") == 30
    assert compute_retry_after_seconds("AUTH") == 0
    assert compute_retry_after_seconds(None) == 0


def test_provider_hint_is_clamped():
    assert compute_retry_after_seconds("RATE_LIMITED", 1) == 5
    assert compute_retry_after_seconds("RATE_LIMITED", 12) == 12
    assert compute_retry_after_seconds("RATE_LIMITED", 99999) == 3600
    assert compute_retry_after_seconds("RATE_LIMITED", 7.2) == 8


def test_unusable_hint_falls_back_to_default():
    assert compute_retry_after_seconds("TIMEOUT", 0) == 20
    assert compute_retry_after_seconds("TIMEOUT", float("nan")) == 20
    assert compute_retry_after_seconds("TIMEOUT", True) == 20
