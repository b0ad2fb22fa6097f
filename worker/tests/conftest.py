import sys
from datetime import datetime, timezone
from pathlib import Path

import pytest

# Ensure `leadpipe` is importable when running pytest from the repo or worker directory.
ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from leadpipe.core import config  # noqa: E402
from leadpipe.models import ProviderRun, RUN_RUNNING, RUN_SUCCESS  # noqa: E402


class InMemoryStore:
    """Dict-backed stand-in for PostgresStore with the same conditional semantics."""

    def __init__(self):
        self.runs = {}
        self.raws = {}
        self.raw_keys = {}
        self.links = set()
        self.classifications = {}
        self.calls = []
        self._next_run_id = 1
        self._next_raw_id = 1

    # runs
    def create_run(self, provider, fingerprint, intent):
        self.calls.append("create_run")
        for run in self.runs.values():
            if run.provider == provider and run.fingerprint == fingerprint:
                return run.id, False
        now = datetime.now(timezone.utc)
        run = ProviderRun(
            id=self._next_run_id,
            provider=provider,
            fingerprint=fingerprint,
            status=RUN_RUNNING,
            request_id=intent.request_id,
            intent=intent.to_dict(),
            created_at=now,
            started_at=now,
        )
        self.runs[run.id] = run
        self._next_run_id += 1
        return run.id, True

    def get_run(self, run_id):
        return self.runs.get(run_id)

    def get_run_by_fingerprint(self, provider, fingerprint):
        for run in self.runs.values():
            if run.provider == provider and run.fingerprint == fingerprint:
                return run
        return None

    def list_runs(self, provider=None, status=None, limit=25):
        runs = [
            run
            for run in self.runs.values()
            if (provider is None or run.provider == provider) and (status is None or run.status == status)
        ]
        return sorted(runs, key=lambda run: run.id, reverse=True)[:limit]

    def reset_run(self, run_id, expected_status="error", older_than=None):
        self.calls.append("reset_run")
        run = self.runs.get(run_id)
        if run is None or run.status != expected_status:
            return False
        if older_than is not None:
            stamp = run.created_at if expected_status == RUN_SUCCESS else run.started_at
            if stamp is None or stamp >= older_than:
                return False
        now = datetime.now(timezone.utc)
        run.status = RUN_RUNNING
        run.started_at = now
        run.finished_at = None
        run.fetched_count = run.returned_count = run.inserted_raw = run.skipped_duplicates = 0
        run.next_cursor = None
        run.exhausted = False
        run.error_code = run.error_message = None
        run.error_retryable = False
        if expected_status == RUN_SUCCESS:
            run.created_at = now
        return True

    def finalize_run(self, run_id, *, status, fetched_count, returned_count, inserted_raw, skipped_duplicates,
                     next_cursor=None, exhausted=False, error_code=None, error_message=None, error_retryable=False):
        self.calls.append("finalize_run")
        run = self.runs[run_id]
        if run.status != RUN_RUNNING:
            return False
        run.status = status
        run.fetched_count = fetched_count
        run.returned_count = returned_count
        run.inserted_raw = inserted_raw
        run.skipped_duplicates = skipped_duplicates
        run.next_cursor = next_cursor
        run.exhausted = exhausted
        run.error_code = error_code
        run.error_message = error_message
        run.error_retryable = error_retryable
        run.finished_at = datetime.now(timezone.utc)
        return True

    # links
    def attach_raw_ids_to_run(self, run_id, raw_ids):
        for raw_id in raw_ids:
            self.links.add((run_id, raw_id))

    def get_raw_ids_for_run(self, run_id):
        return sorted(raw_id for linked_run, raw_id in self.links if linked_run == run_id)

    # raws
    def prefetch_raw_ids(self, source, source_ids):
        return {sid: self.raw_keys[(source, sid)] for sid in source_ids if (source, sid) in self.raw_keys}

    def upsert_raw_rows(self, rows):
        result = {}
        for row in rows:
            key = (row["source"], row["source_id"])
            raw_id = self.raw_keys.get(key)
            if raw_id is None:
                raw_id = self._next_raw_id
                self._next_raw_id += 1
                self.raw_keys[key] = raw_id
            self.raws[raw_id] = {
                "id": raw_id,
                "source": row["source"],
                "source_id": row["source_id"],
                "payload": row["payload"],
            }
            result[row["source_id"]] = raw_id
        return result

    def get_raw_by_id(self, raw_id):
        row = self.raws.get(raw_id)
        return dict(row) if row else None

    def get_raw_rows(self, raw_ids):
        return [dict(self.raws[raw_id]) for raw_id in raw_ids if raw_id in self.raws]

    # classifications
    def upsert_classification(self, raw_id, classification):
        self.classifications[raw_id] = classification

    def get_classifications(self, raw_ids):
        return {raw_id: self.classifications[raw_id] for raw_id in raw_ids if raw_id in self.classifications}


@pytest.fixture
def store():
    return InMemoryStore()


@pytest.fixture(autouse=True)
def clear_settings_cache():
    config.get_settings.cache_clear()
    yield
    config.get_settings.cache_clear()
