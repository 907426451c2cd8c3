"""
tests/conftest.py
-----------------
In-memory stand-ins for :class:`engine.database.SqlClient`.

A ``FakeDatabase`` holds a few tables (catalog rows plus data rows) and
answers the dialect's own catalog queries; ``FakeClient`` exposes the
``SqlClient`` surface on top of it and records every statement.
Run with: python -m pytest tests/
"""
from __future__ import annotations

import re
import threading
from dataclasses import dataclass, field
from typing import Any

import pytest

from config import AppConfig, DatabaseConfig, MigrationConfig
from engine.dialects import get_dialect
from engine.errors import DatabaseError
from models.connection import ConnectionDescriptor, DatabaseKind
from models.schema import TableRef


@dataclass
class FakeTable:
    schema: str
    name: str
    # (name, type, nullable, max_length, precision, scale, default)
    columns: list[tuple] = field(default_factory=list)
    # (constraint name, constraint type, column)
    constraints: list[tuple] = field(default_factory=list)
    rows: list[tuple] = field(default_factory=list)

    @property
    def column_names(self) -> list[str]:
        return [c[0] for c in self.columns]


class FakeDatabase:
    """Shared state behind every client opened on one endpoint."""

    def __init__(self, kind: DatabaseKind, tables: list[FakeTable] | None = None) -> None:
        self.kind = kind
        self.dialect = get_dialect(kind)
        self.tables: list[FakeTable] = list(tables or [])
        self.database_present = False
        self.executed: list[str] = []
        self.queries: list[tuple[str, Any]] = []
        self.commits = 0
        self.rollbacks = 0
        self.opened: list[bool] = []  # autocommit flag of each client
        self.fail_on: dict[str, Exception] = {}
        self.fail_queries: dict[str, Exception] = {}
        self._lock = threading.Lock()

    def client(self, descriptor: ConnectionDescriptor | None = None, autocommit: bool = False) -> "FakeClient":
        with self._lock:
            self.opened.append(autocommit)
        return FakeClient(self, autocommit)

    def find(self, name: str) -> FakeTable | None:
        for table in self.tables:
            if table.name.lower() == str(name).lower():
                return table
        return None

    def find_in_sql(self, sql: str) -> FakeTable | None:
        for table in self.tables:
            if re.search(rf"\b{re.escape(table.name)}\b", sql, re.IGNORECASE):
                return table
        return None

    def record(self, sql: str) -> None:
        with self._lock:
            self.executed.append(sql)

    def inserts(self) -> list[str]:
        return [s for s in self.executed if s.startswith("INSERT")]


class FakeClient:
    def __init__(self, db: FakeDatabase, autocommit: bool = False) -> None:
        self._db = db
        self.autocommit = autocommit
        self.closed = False

    @property
    def dialect(self):
        return self._db.dialect

    def __enter__(self) -> "FakeClient":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> bool:
        self.closed = True
        return False

    def _maybe_fail(self, sql: str, table: dict[str, Exception]) -> None:
        for fragment, exc in table.items():
            if fragment in sql:
                raise exc

    def execute(self, sql: str, params=None) -> int:
        self._maybe_fail(sql, self._db.fail_on)
        self._db.record(sql)
        return 1

    def query(self, sql: str, params=None) -> list[tuple]:
        with self._db._lock:
            self._db.queries.append((sql, params))
        self._maybe_fail(sql, self._db.fail_queries)
        d = self.dialect
        params = params or {}
        if sql == d.columns_query:
            table = self._db.find(params.get("table", ""))
            return list(table.columns) if table else []
        if sql == d.constraints_query:
            table = self._db.find(params.get("table", ""))
            return list(table.constraints) if table else []
        if sql == d.table_exists_query:
            return [(1 if self._db.find(params.get("table", "")) else 0,)]
        if sql == d.list_tables_query:
            return [(t.schema, t.name) for t in self._db.tables]
        if sql == d.database_exists_query:
            return [(1 if self._db.database_present else 0,)]
        if sql == d.ping_sql:
            return [(1,)]
        if sql.startswith("SELECT COUNT(*) FROM"):
            table = self._db.find_in_sql(sql)
            return [(len(table.rows) if table else 0,)]
        return []

    def scalar(self, sql: str, params=None) -> Any:
        rows = self.query(sql, params)
        return rows[0][0] if rows else None

    def stream_batches(self, sql: str, batch_size: int):
        self._maybe_fail(sql, self._db.fail_queries)
        table = self._db.find_in_sql(sql)
        rows = list(table.rows) if table else []
        columns = table.column_names if table else []

        def batches():
            for start in range(0, len(rows), batch_size):
                yield [list(r) for r in rows[start:start + batch_size]]

        return columns, batches()

    def commit(self) -> None:
        with self._db._lock:
            self._db.commits += 1

    def rollback(self) -> None:
        with self._db._lock:
            self._db.rollbacks += 1


def make_factory(*databases: tuple[ConnectionDescriptor, FakeDatabase]):
    """Client factory routing by host, so system-database descriptors resolve too."""
    by_host = {descriptor.host: db for descriptor, db in databases}

    def factory(descriptor: ConnectionDescriptor, autocommit: bool = False) -> FakeClient:
        return by_host[descriptor.host].client(descriptor, autocommit=autocommit)

    return factory


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------

@pytest.fixture
def tsql_source() -> ConnectionDescriptor:
    return ConnectionDescriptor(DatabaseKind.SQLSERVER, "src-host", 1433, "Sales", "sa", "secret")


@pytest.fixture
def pg_target() -> ConnectionDescriptor:
    return ConnectionDescriptor(DatabaseKind.POSTGRESQL, "tgt-host", 5432, "sales", "postgres", "secret")


@pytest.fixture
def oracle_target() -> ConnectionDescriptor:
    return ConnectionDescriptor(DatabaseKind.ORACLE, "ora-host", 1521, "XEPDB1", "migrator", "secret")


@pytest.fixture
def customers_table() -> FakeTable:
    return FakeTable(
        schema="dbo",
        name="Customers",
        columns=[
            ("ID", "int", "NO", None, 10, 0, None),
            ("NAME", "varchar", "YES", 50, None, None, None),
            ("CREATED", "datetime", "YES", None, None, None, "(getdate())"),
        ],
        constraints=[("PK_Customers", "PRIMARY KEY", "ID")],
        rows=[(i, f"name {i}", None) for i in range(1, 4)],
    )


@pytest.fixture
def app_config() -> AppConfig:
    return AppConfig(
        db=DatabaseConfig(connect_timeout=1, command_timeout=5, max_retries=1, retry_delay=0.0),
        migration=MigrationConfig(batch_size=1000, prefetch_batches=2, existence_check_concurrency=4),
    )


def selected(*refs: TableRef) -> list[TableRef]:
    for ref in refs:
        ref.selected = True
    return list(refs)
