"""
tests/test_orchestrator.py
--------------------------
Unit tests for engine/orchestrator.py, wired to FakeDatabase endpoints.
Run with: python -m pytest tests/
"""
from __future__ import annotations

import pytest

from config import AppConfig, MigrationConfig
from conftest import FakeDatabase, FakeTable, make_factory, selected
from engine.errors import BatchInsertFailure, DatabaseError, MissingTablesFailure, ValidationFailure
from engine.orchestrator import MigrationOrchestrator, Phase
from models.connection import ConnectionDescriptor, DatabaseKind
from models.schema import MigrationMode, TableRef


@pytest.fixture
def source_db(customers_table) -> FakeDatabase:
    return FakeDatabase(DatabaseKind.SQLSERVER, [customers_table])


@pytest.fixture
def target_db() -> FakeDatabase:
    return FakeDatabase(DatabaseKind.POSTGRESQL)


@pytest.fixture
def orchestrator(tsql_source, pg_target, source_db, target_db, app_config) -> MigrationOrchestrator:
    factory = make_factory((tsql_source, source_db), (pg_target, target_db))
    return MigrationOrchestrator(tsql_source, pg_target, client_factory=factory, config=app_config)


def customers() -> list[TableRef]:
    return selected(TableRef("dbo", "Customers", row_count=3))


# ---------------------------------------------------------------------------
# Target schema resolution
# ---------------------------------------------------------------------------

class TestTargetSchema:
    def test_cross_engine_uses_target_default(self, orchestrator) -> None:
        assert orchestrator.target_schema_for("dbo") == "public"

    def test_same_engine_keeps_source_schema(self, tsql_source, app_config) -> None:
        other = ConnectionDescriptor(DatabaseKind.SQLSERVER, "tgt-host", 1433, "Copy", "sa", "x")
        orch = MigrationOrchestrator(tsql_source, other, config=app_config)
        assert orch.target_schema_for("sales") == "sales"

    def test_oracle_target_uses_connected_user(self, tsql_source, oracle_target, app_config) -> None:
        orch = MigrationOrchestrator(tsql_source, oracle_target, config=app_config)
        assert orch.target_schema_for("dbo") == "MIGRATOR"

    def test_invalid_descriptor_rejected(self, tsql_source, app_config) -> None:
        bad = ConnectionDescriptor(DatabaseKind.POSTGRESQL, "", 5432, "db", "u")
        with pytest.raises(ValidationFailure):
            MigrationOrchestrator(tsql_source, bad, config=app_config)


# ---------------------------------------------------------------------------
# SchemaAndData / SchemaOnly
# ---------------------------------------------------------------------------

class TestSchemaAndData:
    def test_full_run(self, orchestrator, target_db) -> None:
        result = orchestrator.run(customers(), MigrationMode.SCHEMA_AND_DATA)
        assert result.success, result.message
        assert result.tables_migrated == 1
        statements = target_db.executed
        assert statements[0] == 'CREATE DATABASE "sales"'
        assert statements[1].startswith('CREATE TABLE "public"."customers" (')
        assert statements[2] == (
            'ALTER TABLE "public"."customers" ADD CONSTRAINT "pk_customers" PRIMARY KEY ("id")'
        )
        assert statements[3] == 'TRUNCATE TABLE "public"."customers" CASCADE'
        assert len(target_db.inserts()) == 1
        assert target_db.commits == 1

    def test_mode_accepts_tag(self, orchestrator) -> None:
        assert orchestrator.run(customers(), "schema-and-data").success

    def test_existing_database_not_recreated(self, orchestrator, target_db) -> None:
        target_db.database_present = True
        orchestrator.run(customers(), MigrationMode.SCHEMA_AND_DATA)
        assert not any(s.startswith("CREATE DATABASE") for s in target_db.executed)

    def test_provisioning_can_be_disabled(self, tsql_source, pg_target, source_db, target_db) -> None:
        config = AppConfig(migration=MigrationConfig(create_target_database=False))
        factory = make_factory((tsql_source, source_db), (pg_target, target_db))
        orch = MigrationOrchestrator(tsql_source, pg_target, client_factory=factory, config=config)
        assert orch.run(customers(), MigrationMode.SCHEMA_AND_DATA).success
        assert target_db.executed[0].startswith("CREATE TABLE")

    def test_existing_table_skips_create(self, orchestrator, target_db) -> None:
        target_db.tables.append(FakeTable("public", "customers"))
        target_db.database_present = True
        result = orchestrator.run(customers(), MigrationMode.SCHEMA_AND_DATA)
        assert result.success
        assert not any(s.startswith("CREATE TABLE") for s in target_db.executed)
        assert any("ADD CONSTRAINT" in s for s in target_db.executed)

    def test_schema_only_copies_no_rows(self, orchestrator, target_db) -> None:
        result = orchestrator.run(customers(), MigrationMode.SCHEMA_ONLY)
        assert result.success
        assert any(s.startswith("CREATE TABLE") for s in target_db.executed)
        assert target_db.inserts() == []
        assert not any(s.startswith("TRUNCATE") for s in target_db.executed)

    def test_constraint_failure_does_not_stop_run(self, orchestrator, target_db) -> None:
        target_db.fail_on["ADD CONSTRAINT"] = DatabaseError("could not create unique index")
        result = orchestrator.run(customers(), MigrationMode.SCHEMA_AND_DATA)
        assert result.success
        assert len(result.constraint_failures) == 1
        assert "PK_Customers" in result.constraint_failures[0]
        assert len(target_db.inserts()) == 1

    def test_batch_failure_fails_run(self, orchestrator, target_db) -> None:
        target_db.fail_on["INSERT"] = DatabaseError("value too long")
        result = orchestrator.run(customers(), MigrationMode.SCHEMA_AND_DATA)
        assert not result.success
        assert isinstance(result.failure, BatchInsertFailure)
        assert "value too long" in result.message
        assert result.tables_migrated == 0

    def test_unselected_tables_ignored(self, orchestrator, target_db) -> None:
        tables = customers() + [TableRef("dbo", "Other")]
        result = orchestrator.run(tables, MigrationMode.SCHEMA_AND_DATA)
        assert result.tables_migrated == 1

    def test_nothing_selected(self, orchestrator, target_db) -> None:
        result = orchestrator.run([TableRef("dbo", "Customers")], MigrationMode.SCHEMA_AND_DATA)
        assert not result.success
        assert isinstance(result.failure, ValidationFailure)
        assert target_db.executed == []

    def test_progress_events(self, tsql_source, pg_target, source_db, target_db, app_config) -> None:
        events = []
        factory = make_factory((tsql_source, source_db), (pg_target, target_db))
        orch = MigrationOrchestrator(
            tsql_source, pg_target, client_factory=factory, config=app_config,
            progress_cb=events.append,
        )
        orch.run(customers(), MigrationMode.SCHEMA_AND_DATA)
        assert events[0].phase is Phase.SCHEMA
        assert events[-1].phase is Phase.DONE
        assert events[-1].overall_percent == 100
        assert all(0 <= e.table_percent <= 100 for e in events)


class TestOracleTarget:
    def test_create_and_copy(self, tsql_source, oracle_target, source_db, app_config) -> None:
        ora_db = FakeDatabase(DatabaseKind.ORACLE)
        ora_db.database_present = True
        factory = make_factory((tsql_source, source_db), (oracle_target, ora_db))
        orch = MigrationOrchestrator(tsql_source, oracle_target, client_factory=factory, config=app_config)
        result = orch.run(customers(), MigrationMode.SCHEMA_AND_DATA)
        assert result.success, result.message
        create = next(s for s in ora_db.executed if s.startswith("CREATE TABLE"))
        assert create == (
            "CREATE TABLE CUSTOMERS (\n"
            "    ID NUMBER(10) NOT NULL,\n"
            "    NAME VARCHAR2(50),\n"
            "    CREATED TIMESTAMP(6)\n"
            ")"
        )
        assert len(ora_db.inserts()) == 3
        assert ora_db.executed[-1] == "COMMIT"
        assert result.generated_password is None

    def test_generated_user_password_reported(self, tsql_source, source_db, app_config) -> None:
        ora_db = FakeDatabase(DatabaseKind.ORACLE)
        target = ConnectionDescriptor(DatabaseKind.ORACLE, "ora-host", 1521, "APP", "migrator", "ab")
        factory = make_factory((tsql_source, source_db), (target, ora_db))
        orch = MigrationOrchestrator(tsql_source, target, client_factory=factory, config=app_config)
        result = orch.run(customers(), MigrationMode.SCHEMA_ONLY)
        assert result.success, result.message
        assert ora_db.executed[0].startswith("CREATE USER APP IDENTIFIED BY")
        assert len(result.generated_password) == 16
        assert f'"{result.generated_password}"' in ora_db.executed[0]
        assert f"Generated target password: {result.generated_password}" in str(result)


# ---------------------------------------------------------------------------
# DataOnly
# ---------------------------------------------------------------------------

class TestDataOnly:
    def test_missing_tables_abort_before_copy(self, tsql_source, pg_target, app_config) -> None:
        names = [f"T{i}" for i in range(10)]
        source_db = FakeDatabase(DatabaseKind.SQLSERVER, [FakeTable("dbo", n, rows=[(1,)]) for n in names])
        present = [n for n in names if n not in ("T2", "T5", "T8")]
        target_db = FakeDatabase(DatabaseKind.POSTGRESQL, [FakeTable("public", n.lower()) for n in present])
        factory = make_factory((tsql_source, source_db), (pg_target, target_db))
        orch = MigrationOrchestrator(tsql_source, pg_target, client_factory=factory, config=app_config)

        result = orch.run(selected(*[TableRef("dbo", n) for n in names]), MigrationMode.DATA_ONLY)

        assert not result.success
        assert isinstance(result.failure, MissingTablesFailure)
        assert result.failure.missing == ["dbo.T2", "dbo.T5", "dbo.T8"]
        for name in ("dbo.T2", "dbo.T5", "dbo.T8"):
            assert name in result.message
        assert "3 table(s) missing" in result.message
        assert target_db.executed == []
        assert result.tables_migrated == 0

    def test_existing_tables_copied_without_ddl(self, orchestrator, target_db) -> None:
        target_db.tables.append(FakeTable("public", "customers"))
        result = orchestrator.run(customers(), MigrationMode.DATA_ONLY)
        assert result.success
        assert not any(s.startswith(("CREATE", "ALTER")) for s in target_db.executed)
        assert len(target_db.inserts()) == 1


# ---------------------------------------------------------------------------
# Preview / drop
# ---------------------------------------------------------------------------

class TestPreviewAndDrop:
    def test_preview_executes_nothing(self, orchestrator, target_db) -> None:
        statements = orchestrator.preview_ddl(TableRef("dbo", "Customers"))
        assert len(statements) == 2
        assert statements[0].startswith('CREATE TABLE "public"."customers"')
        assert "PRIMARY KEY" in statements[1]
        assert target_db.executed == []

    def test_drop_table(self, orchestrator, target_db) -> None:
        assert orchestrator.drop_table(TableRef("dbo", "Customers")) is True
        assert target_db.executed == ['DROP TABLE "public"."customers"']

    def test_drop_failure_returns_false(self, orchestrator, target_db) -> None:
        target_db.fail_on["DROP TABLE"] = DatabaseError("does not exist")
        assert orchestrator.drop_table(TableRef("dbo", "Customers")) is False
