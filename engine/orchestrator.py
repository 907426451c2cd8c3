"""
engine/orchestrator.py
----------------------
Runs a migration: introspect → DDL → constraints → data copy, table by
table, under one of three modes.

Design Decisions:
    * Plain class with injected dependencies: two descriptors, a client
      factory, the config, a logger and a progress callback. Tests swap
      the client factory for an in-memory fake.
    * Every database call sequence opens its own short-lived client; no
      connection outlives the table it was opened for.
    * Tables run sequentially. The only fan-out is the DataOnly existence
      pre-flight, bounded by ``existence_check_concurrency``.
    * The first table failure stops the run; the returned
      :class:`RunResult` carries the original error text.
"""
from __future__ import annotations

import logging
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, Iterable

from config import CONFIG, AppConfig
from engine import introspector
from engine.data_copy import DataCopier
from engine.database import SqlClient, open_client
from engine.ddl import build_add_constraint, build_create_table, build_drop_table
from engine.dialects import get_dialect
from engine.errors import (
    ConstraintCreationFailure,
    MigrationError,
    MissingTablesFailure,
    ValidationFailure,
)
from engine.provisioning import ensure_database
from logger import LoggerLike, resolve_logger, table_logger
from models.connection import ConnectionDescriptor
from models.schema import MigrationMode, TableRef

ClientFactory = Callable[..., SqlClient]


class Phase(str, Enum):
    SCHEMA = "schema"
    DATA = "data"
    DONE = "done"


@dataclass(frozen=True)
class ProgressEvent:
    """One progress notification for the caller's UI / CLI."""
    table: str
    table_percent: int
    overall_percent: int
    phase: Phase


ProgressCallback = Callable[[ProgressEvent], None]


@dataclass
class RunResult:
    """Terminal outcome of :meth:`MigrationOrchestrator.run`."""
    success: bool
    tables_migrated: int = 0
    failure: MigrationError | None = None
    constraint_failures: list[str] = field(default_factory=list)
    uncommitted_tables: list[str] = field(default_factory=list)
    generated_password: str | None = None  # Oracle user created without a usable password

    @property
    def message(self) -> str:
        if self.success:
            return f"Migration completed: {self.tables_migrated} table(s)"
        return str(self.failure)

    def __str__(self) -> str:
        status = "OK" if self.success else "FAILED"
        parts = [f"[{status}] {self.message}"]
        if self.constraint_failures:
            parts.append(f"  Constraint failures: {'; '.join(self.constraint_failures)}")
        if self.uncommitted_tables:
            parts.append(f"  Not committed: {', '.join(self.uncommitted_tables)}")
        if self.generated_password:
            parts.append(f"  Generated target password: {self.generated_password}")
        return "\n".join(parts)


class MigrationOrchestrator:
    """
    Migrate selected tables from *source* to *target*.

    Args:
        source:         Source endpoint.
        target:         Target endpoint.
        client_factory: ``factory(descriptor, autocommit=False) -> SqlClient``.
        config:         Application config (batch size, concurrency, …).
        logger:         Diagnostics sink; defaults to this module's logger.
        progress_cb:    Receives a :class:`ProgressEvent` after each step.

    Example::

        orch = MigrationOrchestrator(src, tgt)
        result = orch.run(tables, MigrationMode.SCHEMA_AND_DATA)
        print(result)
    """

    def __init__(
        self,
        source: ConnectionDescriptor,
        target: ConnectionDescriptor,
        client_factory: ClientFactory = open_client,
        config: AppConfig = CONFIG,
        logger: logging.Logger | None = None,
        progress_cb: ProgressCallback | None = None,
        batch_size: int | None = None,
    ) -> None:
        self._source = source.validate()
        self._target = target.validate()
        self._source_dialect = get_dialect(source.kind)
        self._target_dialect = get_dialect(target.kind)
        self._client_factory = client_factory
        self._config = config
        self._log = resolve_logger(logger, __name__)
        self._progress_cb = progress_cb or self._default_progress
        self._batch_size = batch_size or config.migration.batch_size

    def _default_progress(self, event: ProgressEvent) -> None:
        self._log.debug(
            "%s [%s] %d%% (overall %d%%)",
            event.table, event.phase.value, event.table_percent, event.overall_percent,
        )

    def _emit(self, table: str, table_percent: int, index: int, total: int, phase: Phase) -> None:
        overall = int((index + table_percent / 100) * 100 / total) if total else 100
        self._progress_cb(ProgressEvent(table, table_percent, min(100, overall), phase))

    def _open(self, descriptor: ConnectionDescriptor, autocommit: bool = False) -> SqlClient:
        return self._client_factory(descriptor, autocommit=autocommit)

    # ------------------------------------------------------------------
    # Naming
    # ------------------------------------------------------------------

    def target_schema_for(self, source_schema: str) -> str:
        """
        Schema the table lands in on the target.

        Same-engine runs keep the source schema; cross-engine runs use the
        target's default schema (``dbo`` / ``public`` / connected user).
        """
        if self._source_dialect.kind == self._target_dialect.kind:
            return source_schema
        return self._target_dialect.default_schema(self._target)

    # ------------------------------------------------------------------
    # Public entry points
    # ------------------------------------------------------------------

    def run(self, tables: Iterable[TableRef], mode: MigrationMode | str) -> RunResult:
        """
        Migrate every selected table in *tables*.

        Returns:
            :class:`RunResult`. Failures are reported in the result, never
            raised; the first failing table stops the run.
        """
        mode = MigrationMode.parse(mode)
        selected = [t for t in tables if t.selected]
        result = RunResult(success=False)
        try:
            if not selected:
                raise ValidationFailure("No tables selected for migration")
            self._log.info(
                "Starting %s migration of %d table(s): %s → %s",
                mode.value, len(selected),
                self._source.describe(), self._target.describe(),
            )

            if mode is MigrationMode.DATA_ONLY:
                self._check_targets_exist(selected)
            elif self._config.migration.create_target_database:
                provisioned = ensure_database(
                    self._target, self._client_factory, self._config, self._log
                )
                if provisioned.created and provisioned.password_generated:
                    result.generated_password = provisioned.password

            for index, ref in enumerate(selected):
                self._migrate_table(ref, mode, index, len(selected), result)
                result.tables_migrated += 1
        except MigrationError as exc:
            self._log.error("Migration failed: %s", exc)
            result.failure = exc
            return result

        result.success = True
        self._log.info("Migration finished: %d table(s)", result.tables_migrated)
        return result

    def preview_ddl(self, ref: TableRef) -> list[str]:
        """CREATE TABLE plus constraint statements for *ref*, without executing them."""
        target_schema = self.target_schema_for(ref.schema)
        with self._open(self._source, autocommit=True) as source:
            columns = introspector.get_columns(source, ref.schema, ref.name, self._log)
            constraints = introspector.get_constraints(source, ref.schema, ref.name, self._log)
        statements = [build_create_table(self._target_dialect, target_schema, ref.name, columns)]
        for constraint in constraints:
            ddl = build_add_constraint(self._target_dialect, target_schema, ref.name, constraint)
            if ddl:
                statements.append(ddl)
        return statements

    def drop_table(self, ref: TableRef) -> bool:
        """Drop *ref*'s counterpart on the target; ``False`` (logged) on failure."""
        target_schema = self.target_schema_for(ref.schema)
        try:
            sql = build_drop_table(self._target_dialect, target_schema, ref.name)
            with self._open(self._target, autocommit=True) as target:
                target.execute(sql)
        except MigrationError as exc:
            self._log.error("Could not drop %s: %s", ref.name, exc)
            return False
        self._log.info("Dropped %s.%s on target", target_schema, ref.name)
        return True

    # ------------------------------------------------------------------
    # Steps
    # ------------------------------------------------------------------

    def _check_targets_exist(self, selected: list[TableRef]) -> None:
        """DataOnly pre-flight: every selected table must already exist on the target."""
        workers = max(1, self._config.migration.existence_check_concurrency)

        def exists(ref: TableRef) -> bool:
            with self._open(self._target, autocommit=True) as client:
                return introspector.table_exists(
                    client, self.target_schema_for(ref.schema), ref.name, self._log
                )

        with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="exists") as pool:
            found = list(pool.map(exists, selected))

        missing = [ref.qualified_name for ref, ok in zip(selected, found) if not ok]
        if missing:
            raise MissingTablesFailure(missing)
        self._log.info("Pre-flight OK: all %d table(s) exist on target", len(selected))

    def _migrate_table(
        self, ref: TableRef, mode: MigrationMode, index: int, total: int, result: RunResult
    ) -> None:
        target_schema = self.target_schema_for(ref.schema)
        self._log.info("[%d/%d] %s → %s.%s", index + 1, total, ref, target_schema, ref.name)
        table_log = table_logger(self._log, ref.qualified_name)

        if mode.copies_schema:
            self._emit(ref.name, 0, index, total, Phase.SCHEMA)
            self._create_schema(ref, target_schema, result, table_log)
            if not mode.copies_data:
                self._emit(ref.name, 100, index, total, Phase.DONE)
                return

        self._emit(ref.name, 0, index, total, Phase.DATA)
        with self._open(self._source, autocommit=True) as source, self._open(self._target) as target:
            copier = DataCopier(
                source,
                target,
                batch_size=self._batch_size,
                prefetch_batches=self._config.migration.prefetch_batches,
                logger=table_log,
                progress_cb=lambda pct: self._emit(ref.name, pct, index, total, Phase.DATA),
            )
            copied = copier.copy_table(ref.schema, ref.name, target_schema)
        if not copied.committed:
            table_log.error("Rows copied but the transaction was not committed")
            result.uncommitted_tables.append(ref.qualified_name)
        self._emit(ref.name, 100, index, total, Phase.DONE)

    def _create_schema(
        self, ref: TableRef, target_schema: str, result: RunResult, table_log: LoggerLike
    ) -> None:
        """Create the table when absent, then attempt each constraint."""
        target_dialect = self._target_dialect
        with self._open(self._target, autocommit=True) as target:
            exists = introspector.table_exists(target, target_schema, ref.name, table_log)

        with self._open(self._source, autocommit=True) as source:
            columns = [] if exists else introspector.get_columns(
                source, ref.schema, ref.name, table_log
            )
            constraints = introspector.get_constraints(source, ref.schema, ref.name, table_log)

        with self._open(self._target, autocommit=True) as target:
            if exists:
                table_log.info("%s already exists on target, skipping CREATE TABLE", ref.name)
            else:
                ddl = build_create_table(target_dialect, target_schema, ref.name, columns)
                table_log.debug("DDL:\n%s", ddl)
                target.execute(ddl)
                table_log.info("Created %s.%s", target_schema, ref.name)

            for constraint in constraints:
                try:
                    ddl = build_add_constraint(target_dialect, target_schema, ref.name, constraint)
                    if not ddl:
                        continue
                    target.execute(ddl)
                    table_log.info("Constraint %s (%s) created", constraint.name, constraint.kind.value)
                except MigrationError as exc:
                    failure = ConstraintCreationFailure(
                        f"{ref.name}.{constraint.name}: {exc}"
                    )
                    table_log.warning("Constraint failed (ignored): %s", failure)
                    result.constraint_failures.append(str(failure))
