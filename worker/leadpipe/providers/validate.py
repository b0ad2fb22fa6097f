"""Validation gate between provider adapters and persistence."""

from typing import Any

from leadpipe.models import ProviderRecord, ProviderResult, RawCompany


class ProviderContractError(RuntimeError):
    """Raised when an adapter returns data that breaks the adapter contract."""


def _non_empty_str(value: Any) -> bool:
    return isinstance(value, str) and bool(value.strip())


def assert_provider_result(provider: str, result: Any) -> ProviderResult:
    """Check an ok=True result record by record before anything touches the database."""
    if not isinstance(result, ProviderResult):
        raise ProviderContractError(f"[{provider}] provider returned invalid result: {type(result).__name__}")

    if result.ok is not True:
        message = result.error.message if result.error and _non_empty_str(result.error.message) else "Provider failed"
        raise ProviderContractError(f"[{provider}] {message}")

    if not isinstance(result.records, list):
        raise ProviderContractError(f"[{provider}] ok=true but records is not a list")

    if result.meta is None:
        raise ProviderContractError(f"[{provider}] ok=true but meta missing")

    for index, record in enumerate(result.records):
        _assert_record(provider, record, index)
    return result


def _assert_record(provider: str, record: Any, index: int) -> None:
    if not isinstance(record, ProviderRecord):
        raise ProviderContractError(f"[{provider}] record[{index}] is not a ProviderRecord")

    if not _non_empty_str(record.source) or not _non_empty_str(record.source_id):
        raise ProviderContractError(f"[{provider}] record[{index}] missing source/source_id")

    company = record.company
    if not isinstance(company, RawCompany):
        raise ProviderContractError(f"[{provider}] record[{index}] missing company")

    if not _non_empty_str(company.source) or not _non_empty_str(company.source_id) or not _non_empty_str(company.name):
        raise ProviderContractError(f"[{provider}] record[{index}] company missing source/source_id/name")

    if not isinstance(company.categories, list):
        raise ProviderContractError(f"[{provider}] record[{index}] company.categories must be a list")
