"""
tests/test_data_copy.py
-----------------------
Unit tests for engine/data_copy.py using the in-memory FakeDatabase.
Run with: python -m pytest tests/
"""
from __future__ import annotations

import pytest

from conftest import FakeDatabase, FakeTable
from engine.data_copy import CopyState, DataCopier
from engine.errors import BatchInsertFailure, DatabaseError, InvalidIdentifier
from models.connection import DatabaseKind


def orders_table(n: int) -> FakeTable:
    return FakeTable(
        schema="dbo",
        name="Orders",
        columns=[
            ("OrderId", "int", "NO", None, 10, 0, None),
            ("Note", "nvarchar", "YES", 100, None, None, None),
        ],
        rows=[(i, f"note {i}") for i in range(1, n + 1)],
    )


@pytest.fixture
def source_db() -> FakeDatabase:
    return FakeDatabase(DatabaseKind.SQLSERVER, [orders_table(1050)])


@pytest.fixture
def pg_db() -> FakeDatabase:
    return FakeDatabase(DatabaseKind.POSTGRESQL)


@pytest.fixture
def ora_db() -> FakeDatabase:
    return FakeDatabase(DatabaseKind.ORACLE)


def make_copier(source_db, target_db, **kwargs) -> DataCopier:
    return DataCopier(source_db.client(autocommit=True), target_db.client(), **kwargs)


# ---------------------------------------------------------------------------
# Happy path
# ---------------------------------------------------------------------------

class TestCopyTable:
    def test_1050_rows_in_two_batches(self, source_db, pg_db) -> None:
        result = make_copier(source_db, pg_db, batch_size=1000).copy_table("dbo", "Orders", "public")
        assert result.state is CopyState.COMMITTED
        assert result.committed
        assert result.rows_copied == 1050
        assert result.batches == 2
        assert pg_db.commits == 1
        assert pg_db.rollbacks == 0
        assert len(pg_db.inserts()) == 2

    def test_truncates_before_inserting(self, source_db, pg_db) -> None:
        make_copier(source_db, pg_db).copy_table("dbo", "Orders", "public")
        assert pg_db.executed[0] == 'TRUNCATE TABLE "public"."orders" CASCADE'

    def test_insert_text(self, pg_db) -> None:
        source = FakeDatabase(DatabaseKind.SQLSERVER, [orders_table(2)])
        make_copier(source, pg_db).copy_table("dbo", "Orders", "public")
        assert pg_db.inserts() == [
            'INSERT INTO "public"."orders" ("orderid", "note") VALUES '
            "(1, 'note 1'),\n(2, 'note 2')"
        ]

    def test_tsql_target_caps_batch(self, source_db) -> None:
        target = FakeDatabase(DatabaseKind.SQLSERVER)
        copier = make_copier(source_db, target, batch_size=5000)
        assert copier.batch_size == 1000
        assert copier.copy_table("dbo", "Orders", "dbo").batches == 2

    def test_oracle_target_one_row_per_statement(self, ora_db) -> None:
        source = FakeDatabase(DatabaseKind.SQLSERVER, [orders_table(3)])
        result = make_copier(source, ora_db).copy_table("dbo", "Orders", "MIGRATOR")
        assert result.batches == 1
        assert result.rows_copied == 3
        assert ora_db.inserts() == [
            f"INSERT INTO ORDERS (ORDERID, NOTE) VALUES ({i}, 'note {i}')" for i in (1, 2, 3)
        ]
        assert ora_db.executed[-1] == "COMMIT"
        assert ora_db.commits == 0

    def test_oracle_target_keeps_batch_size(self, source_db, ora_db) -> None:
        seen: list[int] = []
        copier = make_copier(source_db, ora_db, batch_size=1000, progress_cb=seen.append)
        assert copier.batch_size == 1000
        result = copier.copy_table("dbo", "Orders", "MIGRATOR")
        assert result.batches == 2
        assert result.rows_copied == 1050
        assert len(ora_db.inserts()) == 1050
        assert (seen[0], seen[-1]) == (50, 100)

    def test_empty_table(self, pg_db) -> None:
        source = FakeDatabase(DatabaseKind.SQLSERVER, [orders_table(0)])
        result = make_copier(source, pg_db).copy_table("dbo", "Orders", "public")
        assert (result.rows_copied, result.batches, result.state) == (0, 0, CopyState.COMMITTED)
        assert pg_db.inserts() == []

    def test_progress_reaches_100(self, source_db, pg_db) -> None:
        seen: list[int] = []
        make_copier(source_db, pg_db, batch_size=500, progress_cb=seen.append).copy_table(
            "dbo", "Orders", "public"
        )
        assert seen[-1] == 100
        assert seen == sorted(seen)
        assert seen[0] == 33


# ---------------------------------------------------------------------------
# Failures
# ---------------------------------------------------------------------------

class TestCopyFailures:
    def test_insert_failure_rolls_back(self, source_db, pg_db) -> None:
        pg_db.fail_on["INSERT"] = DatabaseError("disk full")
        with pytest.raises(BatchInsertFailure, match="Error during batch insert for dbo.Orders: disk full"):
            make_copier(source_db, pg_db).copy_table("dbo", "Orders", "public")
        assert pg_db.rollbacks == 1
        assert pg_db.commits == 0

    def test_truncate_failure_is_ignored(self, source_db, pg_db) -> None:
        pg_db.fail_on["TRUNCATE"] = DatabaseError("relation does not exist")
        result = make_copier(source_db, pg_db).copy_table("dbo", "Orders", "public")
        assert result.committed
        assert pg_db.rollbacks == 1
        assert pg_db.commits == 1

    def test_read_failure_on_open(self, source_db, pg_db) -> None:
        source_db.fail_queries["SELECT * FROM"] = DatabaseError("permission denied")
        with pytest.raises(BatchInsertFailure, match="Error reading dbo.Orders"):
            make_copier(source_db, pg_db).copy_table("dbo", "Orders", "public")
        assert pg_db.rollbacks == 1

    def test_read_failure_mid_stream(self, source_db, pg_db) -> None:
        source = source_db.client(autocommit=True)

        def broken_stream(sql, batch_size):
            def batches():
                yield [[1, "a"]]
                raise DatabaseError("connection reset")
            return ["OrderId", "Note"], batches()

        source.stream_batches = broken_stream
        copier = DataCopier(source, pg_db.client())
        with pytest.raises(BatchInsertFailure, match="connection reset"):
            copier.copy_table("dbo", "Orders", "public")
        assert len(pg_db.inserts()) == 1
        assert pg_db.rollbacks == 1
        assert pg_db.commits == 0

    def test_invalid_source_column(self, pg_db) -> None:
        table = FakeTable("dbo", "Orders", columns=[("bad col", "int", "YES", None, None, None, None)],
                          rows=[(1,)])
        source = FakeDatabase(DatabaseKind.SQLSERVER, [table])
        with pytest.raises(InvalidIdentifier):
            make_copier(source, pg_db).copy_table("dbo", "Orders", "public")
        assert pg_db.rollbacks == 1

    def test_invalid_table_name(self, source_db, pg_db) -> None:
        with pytest.raises(InvalidIdentifier):
            make_copier(source_db, pg_db).copy_table("dbo", "Orders;--", "public")
        assert pg_db.executed == []

    def test_commit_failure_reported_as_rolled_back(self, ora_db) -> None:
        source = FakeDatabase(DatabaseKind.SQLSERVER, [orders_table(2)])
        ora_db.fail_on["COMMIT"] = DatabaseError("ORA-02091: transaction rolled back")
        result = make_copier(source, ora_db).copy_table("dbo", "Orders", "MIGRATOR")
        assert result.state is CopyState.ROLLED_BACK
        assert not result.committed
        assert result.rows_copied == 2
