"""Tests for keyward.storage.postgres — uses mocked psycopg2 connections."""

import json
from contextlib import contextmanager
from unittest.mock import MagicMock

import pytest

from keyward.crypto import decrypt, encrypt
from keyward.errors import ConflictError, NotFoundError, StorageUnavailableError
from keyward.storage import PostgresStorage, QueryOptions
from keyward.storage.postgres import table_name

KEY = b"k" * 32


def _blob(record: dict) -> bytes:
    return encrypt(json.dumps(record), KEY)


def _mock_conn(fetchone_return=None, fetchall_return=None, rowcount=1):
    """Create a mock connection whose cursor works as a context manager."""
    conn = MagicMock()
    cursor = MagicMock()
    conn.cursor.return_value.__enter__.return_value = cursor
    cursor.fetchone.return_value = fetchone_return
    cursor.fetchall.return_value = fetchall_return or []
    cursor.rowcount = rowcount

    @contextmanager
    def factory():
        yield conn

    return factory, conn, cursor


def _store(factory) -> PostgresStorage:
    store = PostgresStorage(KEY, "api-keys", "keyward_", connection_factory=factory)
    store.initialize()
    return store


def _sql_calls(cursor) -> list[str]:
    return [c.args[0] for c in cursor.execute.call_args_list]


class TestTableName:
    def test_dashes_become_underscores(self):
        assert table_name("keyward_", "api-keys") == "keyward_api_keys"

    def test_rejects_injection(self):
        with pytest.raises(ValueError):
            table_name("keyward_", "x; DROP TABLE y")


class TestSetup:
    def test_initialize_creates_table(self):
        factory, _, cursor = _mock_conn()
        _store(factory)
        sql = " ".join(_sql_calls(cursor))
        assert "CREATE TABLE IF NOT EXISTS keyward_api_keys" in sql
        assert "BYTEA" in sql

    def test_initialize_is_idempotent(self):
        factory, _, cursor = _mock_conn()
        store = _store(factory)
        count = cursor.execute.call_count
        store.initialize()
        assert cursor.execute.call_count == count


class TestReads:
    def test_get_decrypts_row(self):
        factory, _, cursor = _mock_conn()
        store = _store(factory)
        cursor.fetchone.return_value = (_blob({"id": "a", "name": "alpha"}),)

        result = store.get("a")
        assert result.success
        assert result.data == {"id": "a", "name": "alpha"}
        assert cursor.execute.call_args.args[1] == ("a",)

    def test_get_missing(self):
        factory, _, cursor = _mock_conn()
        store = _store(factory)
        cursor.fetchone.return_value = None

        result = store.get("ghost")
        assert isinstance(result.error, NotFoundError)

    def test_get_many_pushes_timestamp_sort_to_sql(self):
        factory, _, cursor = _mock_conn()
        store = _store(factory)
        cursor.fetchall.return_value = [("a", _blob({"id": "a"})), ("b", _blob({"id": "b"}))]

        result = store.get_many(QueryOptions(sort_field="createdAt", sort_order="desc", limit=5))
        assert [r["id"] for r in result.data] == ["a", "b"]
        sql = cursor.execute.call_args.args[0]
        assert "ORDER BY created_at DESC" in sql
        assert "LIMIT %s" in sql
        assert cursor.execute.call_args.args[1] == (5,)

    def test_get_many_filter_decrypts_everything(self):
        factory, _, cursor = _mock_conn()
        store = _store(factory)
        cursor.fetchall.return_value = [
            ("a", _blob({"id": "a", "client_id": "acme"})),
            ("b", _blob({"id": "b", "client_id": "other"})),
            ("c", _blob({"id": "c", "client_id": "acme"})),
        ]

        result = store.get_many(QueryOptions(filter={"client_id": "acme"}))
        assert [r["id"] for r in result.data] == ["a", "c"]
        assert "WHERE" not in cursor.execute.call_args.args[0]

    def test_unreadable_rows_are_skipped(self):
        factory, _, cursor = _mock_conn()
        store = _store(factory)
        cursor.fetchall.return_value = [
            ("a", _blob({"id": "a"})),
            ("b", encrypt("{}", b"x" * 32)),
        ]
        result = store.query({})
        assert [r["id"] for r in result.data] == ["a"]

    def test_connection_failure_is_a_failed_result(self):
        @contextmanager
        def broken():
            raise ConnectionError("db down")
            yield  # pragma: no cover

        store = PostgresStorage(KEY, "api-keys", connection_factory=broken)
        result = store.get("a")
        assert not result.success
        assert isinstance(result.error, StorageUnavailableError)
        assert isinstance(result.error.__cause__, ConnectionError)


class TestWrites:
    def test_create_encrypts_blob(self):
        factory, _, cursor = _mock_conn()
        store = _store(factory)
        cursor.fetchone.return_value = ("a",)

        result = store.create("a", {"name": "recognizable"})
        assert result.success
        params = cursor.execute.call_args.args[1]
        assert params[0] == "a"
        assert b"recognizable" not in params[1]
        assert json.loads(decrypt(params[1], KEY)) == {"name": "recognizable", "id": "a"}

    def test_create_conflict(self):
        factory, _, cursor = _mock_conn()
        store = _store(factory)
        cursor.fetchone.return_value = None  # ON CONFLICT DO NOTHING returned no row

        result = store.create("a", {})
        assert isinstance(result.error, ConflictError)

    def test_update_merges_and_rewrites(self):
        factory, _, cursor = _mock_conn()
        store = _store(factory)
        cursor.fetchone.return_value = (_blob({"id": "a", "name": "alpha", "n": 1}),)

        result = store.update("a", {"n": 2})
        assert result.data == {"id": "a", "name": "alpha", "n": 2}
        update_sql, update_params = cursor.execute.call_args.args
        assert update_sql.startswith("UPDATE keyward_api_keys")
        assert json.loads(decrypt(update_params[0], KEY))["n"] == 2

    def test_update_missing(self):
        factory, _, cursor = _mock_conn()
        store = _store(factory)
        cursor.fetchone.return_value = None
        assert isinstance(store.update("ghost", {}).error, NotFoundError)

    def test_delete_missing(self):
        factory, _, cursor = _mock_conn(rowcount=0)
        store = _store(factory)
        assert isinstance(store.delete("ghost").error, NotFoundError)

    def test_delete(self):
        factory, _, cursor = _mock_conn(rowcount=1)
        store = _store(factory)
        assert store.delete("a").success
        assert cursor.execute.call_args.args == (
            "DELETE FROM keyward_api_keys WHERE id = %s",
            ("a",),
        )
