from datetime import datetime, timezone

import pytest

from leadpipe.core import db, store as store_module
from leadpipe.core.store import PostgresStore
from leadpipe.models import Classification, SearchIntent


class ScriptedCursor:
    def __init__(self, connection):
        self.connection = connection

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        return False

    def execute(self, sql, params=None):
        self.connection.executed.append((" ".join(sql.split()), params))

    def fetchone(self):
        return self.connection.results.pop(0)

    def fetchall(self):
        return self.connection.results.pop(0)


class ScriptedConnection:
    def __init__(self, results=None):
        self.results = list(results or [])
        self.executed = []
        self.commits = 0
        self.cursor_factories = []

    def cursor(self, cursor_factory=None):
        self.cursor_factories.append(cursor_factory)
        return ScriptedCursor(self)

    def commit(self):
        self.commits += 1

    def rollback(self):
        pass


class DummyPool:
    def __init__(self, connection):
        self.connection = connection

    def getconn(self):
        return self.connection

    def putconn(self, conn):
        pass


@pytest.fixture
def connection():
    conn = ScriptedConnection()
    db._connection_pool = DummyPool(conn)
    yield conn
    db._connection_pool = None


def test_create_run_inserts_running_row(connection):
    connection.results = [(11,)]
    intent = SearchIntent(provider="mock", query="tattoo", request_id="req-1")

    run_id, created = PostgresStore().create_run("mock", "abc", intent)

    assert (run_id, created) == (11, True)
    sql, params = connection.executed[0]
    assert sql.startswith("INSERT INTO provider_runs")
    assert "ON CONFLICT (provider, intent_hash) DO NOTHING" in sql
    assert params["intent"].adapted == {"provider": "mock", "query": "tattoo", "requestId": "req-1", "socialPresence": "any"}
    assert connection.commits == 1


def test_create_run_returns_existing_id_on_conflict(connection):
    connection.results = [None, (7,)]
    intent = SearchIntent(provider="mock", query="tattoo")

    run_id, created = PostgresStore().create_run("mock", "abc", intent)

    assert (run_id, created) == (7, False)
    assert connection.executed[1][0].startswith("SELECT id FROM provider_runs")
    assert connection.executed[1][1] == ("mock", "abc")


def test_reset_run_is_conditional_on_status(connection):
    connection.results = [(3,)]

    assert PostgresStore().reset_run(3) is True

    sql, params = connection.executed[0]
    assert "WHERE id = %(run_id)s AND status = %(expected_status)s" in sql
    assert "created_at = NOW()" not in sql
    assert params == {"run_id": 3, "expected_status": "error"}


def test_reset_run_stale_running_uses_started_at(connection):
    connection.results = [None]
    cutoff = datetime(2024, 1, 1, tzinfo=timezone.utc)

    assert PostgresStore().reset_run(3, expected_status="running", older_than=cutoff) is False

    sql, params = connection.executed[0]
    assert "AND started_at < %(older_than)s" in sql
    assert params["older_than"] == cutoff


def test_reset_run_expired_success_restarts_cache_lifetime(connection):
    connection.results = [(3,)]
    cutoff = datetime(2024, 1, 1, tzinfo=timezone.utc)

    PostgresStore().reset_run(3, expected_status="success", older_than=cutoff)

    sql, _ = connection.executed[0]
    assert "created_at = NOW()" in sql
    assert "AND created_at < %(older_than)s" in sql


def test_finalize_run_writes_counts_and_error(connection):
    connection.results = [(5,)]

    recorded = PostgresStore().finalize_run(
        5,
        status="error",
        fetched_count=2,
        returned_count=1,
        inserted_raw=0,
        skipped_duplicates=0,
        error_code="TIMEOUT",
        error_message="slow",
        error_retryable=True,
    )

    sql, params = connection.executed[0]
    assert sql.startswith("UPDATE provider_runs SET status = %(status)s")
    assert params["error_code"] == "TIMEOUT"
    assert sql.endswith("WHERE id = %(run_id)s AND status = 'running' RETURNING id;")
    assert recorded is True
    assert params["error_retryable"] is True
    assert connection.commits == 1


def test_list_runs_builds_filters(connection):
    connection.results = [[]]

    assert PostgresStore().list_runs(provider="mock", status="success", limit=5) == []

    sql, params = connection.executed[0]
    assert "WHERE provider = %s AND status = %s ORDER BY created_at DESC LIMIT %s" in sql
    assert params == ["mock", "success", 5]


def test_get_run_maps_row(connection):
    created = datetime(2024, 5, 1, tzinfo=timezone.utc)
    connection.results = [
        {
            "id": 9,
            "provider": "mock",
            "intent_hash": "abc",
            "status": "success",
            "fetched_count": 3,
            "returned_count": 3,
            "inserted_raw": 2,
            "skipped_duplicates": 1,
            "next_cursor": None,
            "exhausted": True,
            "request_id": "r",
            "intent": {"query": "tattoo"},
            "created_at": created,
            "started_at": created,
            "finished_at": created,
            "error_code": None,
            "error_message": None,
            "error_retryable": False,
        }
    ]

    run = PostgresStore().get_run(9)

    assert run.fingerprint == "abc"
    assert run.inserted_raw == 2
    assert run.to_dict()["createdAt"] == created.isoformat()


def test_upsert_raw_rows_single_statement(monkeypatch, connection):
    captured = {}

    def fake_execute_values(cur, sql, values, template=None, page_size=100, fetch=False):
        captured.update(sql=sql, values=values, template=template, page_size=page_size, fetch=fetch)
        return [(1, "a"), (2, "b")]

    monkeypatch.setattr(store_module.extras, "execute_values", fake_execute_values)

    rows = [
        {"source": "mock", "source_id": "a", "payload": {"name": "A"}},
        {"source": "mock", "source_id": "b", "payload": {"name": "B"}},
    ]
    result = PostgresStore().upsert_raw_rows(rows)

    assert result == {"a": 1, "b": 2}
    assert captured["page_size"] == 2
    assert captured["fetch"] is True
    assert "ON CONFLICT (source, source_id) DO UPDATE" in captured["sql"]
    assert captured["values"][0][2].adapted == {"name": "A"}


def test_prefetch_raw_ids_maps_source_ids(connection):
    connection.results = [[(4, "a"), (5, "c")]]

    assert PostgresStore().prefetch_raw_ids("mock", ["a", "b", "c"]) == {"a": 4, "c": 5}
    assert connection.executed[0][1] == ("mock", ["a", "b", "c"])


def test_prefetch_raw_ids_skips_empty_input(connection):
    assert PostgresStore().prefetch_raw_ids("mock", []) == {}
    assert connection.executed == []


def test_upsert_classification_params(connection):
    classification = Classification(
        primary_industry="tattoo_studio",
        sub_niche="tattoo",
        service_type="tattoo_studio",
        b2b_b2c="b2c",
        is_good_fit=True,
        fit_reason="fit",
        confidence=80,
    )

    PostgresStore().upsert_classification(12, classification)

    sql, params = connection.executed[0]
    assert "ON CONFLICT (raw_id) DO UPDATE" in sql
    assert params["raw_id"] == 12
    assert params["primary_industry"] == "tattoo_studio"
    assert params["source"] == "rules"


def test_finalize_run_loses_to_a_finished_owner(connection):
    connection.results = [None]

    recorded = PostgresStore().finalize_run(
        5, status="success", fetched_count=1, returned_count=1, inserted_raw=1, skipped_duplicates=0
    )

    assert recorded is False
    assert connection.commits == 1
