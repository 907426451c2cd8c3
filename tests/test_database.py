"""
tests/test_database.py
----------------------
Unit tests for engine/database.py with the driver connection mocked out.
Run with: python -m pytest tests/
"""
from __future__ import annotations

from unittest.mock import MagicMock, call

import pytest

from engine.database import SqlClient, open_client, test_connection as check_connection
from engine.dialects import PostgresDialect
from engine.errors import ConnectionFailure, DatabaseError


@pytest.fixture
def conn() -> MagicMock:
    return MagicMock(name="connection")


@pytest.fixture
def cursor(conn) -> MagicMock:
    return conn.cursor.return_value


@pytest.fixture
def patched_connect(monkeypatch, conn) -> MagicMock:
    connect = MagicMock(return_value=conn)
    monkeypatch.setattr(
        PostgresDialect, "connect",
        lambda self, descriptor, connect_timeout, command_timeout, autocommit=False:
            connect(descriptor, autocommit=autocommit),
    )
    return connect


def client_for(descriptor, **kwargs) -> SqlClient:
    kwargs.setdefault("max_retries", 1)
    kwargs.setdefault("retry_delay", 0.0)
    return SqlClient(descriptor, **kwargs)


class TestConnect:
    def test_connects_with_autocommit_flag(self, pg_target, patched_connect) -> None:
        with client_for(pg_target, autocommit=True) as client:
            assert client.is_connected
        patched_connect.assert_called_once_with(pg_target, autocommit=True)
        assert not client.is_connected

    def test_retries_then_succeeds(self, pg_target, patched_connect, conn) -> None:
        patched_connect.side_effect = [Exception("refused"), Exception("refused"), conn]
        client = client_for(pg_target, max_retries=3)
        client.connect()
        assert client.is_connected
        assert patched_connect.call_count == 3

    def test_gives_up(self, pg_target, patched_connect) -> None:
        patched_connect.side_effect = Exception("password authentication failed")
        with pytest.raises(ConnectionFailure, match="after 2 attempts: password authentication failed"):
            client_for(pg_target, max_retries=2).connect()

    def test_missing_driver_not_retried(self, pg_target, patched_connect) -> None:
        patched_connect.side_effect = ImportError("No module named 'psycopg2'")
        with pytest.raises(ImportError):
            client_for(pg_target, max_retries=3).connect()
        assert patched_connect.call_count == 1

    def test_statement_before_connect(self, pg_target) -> None:
        with pytest.raises(ConnectionFailure):
            client_for(pg_target).execute("SELECT 1")


class TestStatements:
    def test_execute_without_params(self, pg_target, patched_connect, cursor) -> None:
        cursor.rowcount = 7
        with client_for(pg_target) as client:
            assert client.execute("DELETE FROM t") == 7
        cursor.execute.assert_called_once_with("DELETE FROM t")
        cursor.close.assert_called_once()

    def test_query_with_params(self, pg_target, patched_connect, cursor) -> None:
        cursor.fetchall.return_value = [(1, "a"), (2, "b")]
        with client_for(pg_target) as client:
            rows = client.query("SELECT * FROM t WHERE x = %(x)s", {"x": 1})
        assert rows == [(1, "a"), (2, "b")]
        cursor.execute.assert_called_once_with("SELECT * FROM t WHERE x = %(x)s", {"x": 1})

    def test_scalar(self, pg_target, patched_connect, cursor) -> None:
        cursor.fetchall.side_effect = [[(42,)], []]
        with client_for(pg_target) as client:
            assert client.scalar("SELECT 42") == 42
            assert client.scalar("SELECT 1 WHERE false") is None

    def test_driver_error_wrapped_with_code(self, pg_target, patched_connect, cursor) -> None:
        error = Exception('relation "t" does not exist')
        error.pgcode = "42P01"
        cursor.execute.side_effect = error
        with client_for(pg_target) as client:
            with pytest.raises(DatabaseError) as info:
                client.execute("SELECT * FROM t")
        assert info.value.code == "42P01"
        assert "does not exist" in str(info.value)
        assert info.value.__cause__ is error

    def test_stream_batches(self, pg_target, patched_connect, cursor) -> None:
        cursor.description = [("id",), ("name",)]
        cursor.fetchmany.side_effect = [[(1, "a"), (2, "b")], [(3, "c")], []]
        with client_for(pg_target) as client:
            columns, batches = client.stream_batches("SELECT * FROM t", 2)
            assert columns == ["id", "name"]
            assert list(batches) == [[(1, "a"), (2, "b")], [(3, "c")]]
        assert cursor.arraysize == 2
        cursor.fetchmany.assert_has_calls([call(2), call(2), call(2)])
        cursor.close.assert_called()

    def test_commit_and_rollback(self, pg_target, patched_connect, conn) -> None:
        with client_for(pg_target) as client:
            client.commit()
            client.rollback()
        conn.commit.assert_called_once()
        conn.rollback.assert_called_once()

    def test_commit_failure_wrapped(self, pg_target, patched_connect, conn) -> None:
        conn.commit.side_effect = Exception("serialization failure")
        with client_for(pg_target) as client:
            with pytest.raises(DatabaseError, match="serialization failure"):
                client.commit()


class TestContextManager:
    def test_exception_rolls_back(self, pg_target, patched_connect, conn) -> None:
        with pytest.raises(RuntimeError):
            with client_for(pg_target):
                raise RuntimeError("boom")
        conn.rollback.assert_called_once()
        conn.close.assert_called_once()

    def test_autocommit_client_does_not_roll_back(self, pg_target, patched_connect, conn) -> None:
        with pytest.raises(RuntimeError):
            with client_for(pg_target, autocommit=True):
                raise RuntimeError("boom")
        conn.rollback.assert_not_called()

    def test_open_client_factory(self, pg_target) -> None:
        client = open_client(pg_target, autocommit=True)
        assert isinstance(client, SqlClient)
        assert client.descriptor is pg_target
        assert not client.is_connected


class TestConnectionCheck:
    def test_success(self, pg_target, patched_connect, cursor) -> None:
        cursor.fetchall.return_value = [(1,)]
        assert check_connection(pg_target) is True
        cursor.execute.assert_called_once_with("SELECT 1")

    def test_failure(self, pg_target, patched_connect) -> None:
        patched_connect.side_effect = Exception("timeout expired")
        assert check_connection(pg_target) is False

    def test_invalid_descriptor(self, pg_target) -> None:
        from dataclasses import replace

        assert check_connection(replace(pg_target, host="")) is False
