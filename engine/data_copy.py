"""
engine/data_copy.py
-------------------
Batched row transfer from one source table to one target table.

Per table the copy is a small state machine ending in COMMITTED or
ROLLED_BACK:

    truncate (best-effort) → begin → stream batches → insert → commit
                                              ↘ failure → rollback → raise

Design Decisions:
    * The engine is a plain class with injected dependencies (two open
      clients, batch size, logger, progress callback). No global state.
    * A reader thread pulls ``fetchmany`` batches from the source cursor
      into a bounded queue while the calling thread renders and inserts
      them, so at most ``prefetch + 1`` batches are resident at a time.
    * Each batch is rendered to one SQL string by the target dialect and
      then run through the quote-aware splitter; multi-row engines yield
      one statement, single-row engines yield one per row.
    * Finalize errors (commit / rollback failing) are logged, never raised.
"""
from __future__ import annotations

import logging
import math
import queue
import threading
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Iterator

from config import CONFIG
from engine.errors import BatchInsertFailure, MigrationError
from engine.identifiers import validate_identifier
from engine.introspector import row_count
from engine.sql_values import render_row, split_statements
from logger import resolve_logger

CopyProgressCallback = Callable[[int], None]  # percent of batches done


class CopyState(str, Enum):
    COMMITTED = "committed"
    ROLLED_BACK = "rolled_back"


@dataclass
class CopyResult:
    """Outcome of copying one table."""
    table: str
    rows_copied: int
    batches: int
    state: CopyState

    @property
    def committed(self) -> bool:
        return self.state is CopyState.COMMITTED


class _EndOfData:
    pass


_END = _EndOfData()


@dataclass
class _ReadFailure:
    exc: BaseException


class DataCopier:
    """
    Copy rows between two open clients.

    Args:
        source:           Open client on the source database (autocommit).
        target:           Open client on the target database (transactional).
        batch_size:       Rows per batch; capped by the target's per-INSERT limit.
        prefetch_batches: Batches the reader may buffer ahead of the writer.
        logger:           Diagnostics sink; defaults to this module's logger.
        progress_cb:      Called with the percentage of batches done.

    Example::

        with open_client(src, autocommit=True) as s, open_client(tgt) as t:
            result = DataCopier(s, t).copy_table("dbo", "Orders", "public")
    """

    def __init__(
        self,
        source,
        target,
        batch_size: int | None = None,
        prefetch_batches: int | None = None,
        logger: logging.Logger | None = None,
        progress_cb: CopyProgressCallback | None = None,
    ) -> None:
        self._source = source
        self._target = target
        requested = batch_size or CONFIG.migration.batch_size
        self._batch_size = target.dialect.effective_batch_size(requested)
        self._prefetch = max(1, prefetch_batches or CONFIG.migration.prefetch_batches)
        self._log = resolve_logger(logger, __name__)
        self._progress_cb = progress_cb or (lambda percent: None)

    @property
    def batch_size(self) -> int:
        return self._batch_size

    # ------------------------------------------------------------------
    # Public entry point
    # ------------------------------------------------------------------

    def copy_table(self, source_schema: str, table: str, target_schema: str) -> CopyResult:
        """
        Truncate the target table and copy every source row into it.

        Returns:
            :class:`CopyResult` with the row and batch counts.

        Raises:
            BatchInsertFailure: When reading or inserting a batch fails; the
                target transaction has been rolled back.
        """
        for name in (source_schema, table, target_schema):
            validate_identifier(name)

        src, tgt = self._source.dialect, self._target.dialect
        source_ref = src.table_ref(source_schema, table, fold_case=False)
        target_ref = tgt.table_ref(target_schema, table)
        label = f"{source_schema}.{table}"

        self._truncate(target_ref)

        total_rows = row_count(self._source, source_schema, table, logger=self._log)
        total_batches = math.ceil(total_rows / self._batch_size) if total_rows else 0
        self._log.info(
            "Copying %s → %s (%d rows, %d batches of %d)",
            label, target_ref, total_rows, total_batches, self._batch_size,
        )

        try:
            columns, batches = self._source.stream_batches(
                src.select_all_sql(source_ref), self._batch_size
            )
        except MigrationError as exc:
            self._finalize(commit=False)
            raise BatchInsertFailure(f"Error reading {label}: {exc}") from exc
        try:
            target_columns = [tgt.quote(validate_identifier(c)) for c in columns]
        except MigrationError:
            batches.close()
            self._finalize(commit=False)
            raise

        rows_copied = 0
        done = 0
        buffer: queue.Queue = queue.Queue(maxsize=self._prefetch)
        stop = threading.Event()
        reader = threading.Thread(
            target=self._read_ahead,
            args=(batches, buffer, stop),
            name=f"reader-{table}",
            daemon=True,
        )
        reader.start()
        try:
            while True:
                item = buffer.get()
                if item is _END:
                    break
                if isinstance(item, _ReadFailure):
                    raise item.exc
                self._insert_batch(target_ref, target_columns, item)
                rows_copied += len(item)
                done += 1
                self._progress_cb(min(100, done * 100 // max(total_batches, done)))
        except Exception as exc:
            stop.set()
            self._log.error("Batch %d of %s failed: %s", done + 1, label, exc)
            self._finalize(commit=False)
            raise BatchInsertFailure(
                f"Error during batch insert for {label}: {exc}"
            ) from exc
        finally:
            stop.set()
            reader.join()

        self._progress_cb(100)
        state = CopyState.COMMITTED if self._finalize(commit=True) else CopyState.ROLLED_BACK
        self._log.info("%s: %d rows in %d batches, %s", label, rows_copied, done, state.value)
        return CopyResult(table=table, rows_copied=rows_copied, batches=done, state=state)

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _truncate(self, target_ref: str) -> None:
        try:
            self._target.execute(self._target.dialect.truncate_sql(target_ref))
            self._log.debug("Truncated %s", target_ref)
        except MigrationError as exc:
            # Expected for brand-new or FK-referenced tables.
            self._log.warning("Could not truncate %s (ignored): %s", target_ref, exc)
            self._finalize(commit=False)

    def _insert_batch(self, target_ref: str, columns: list[str], rows: list) -> None:
        dialect = self._target.dialect
        rendered = [render_row(row, dialect) for row in rows]
        sql = dialect.build_insert_batch(target_ref, columns, rendered)
        for statement in split_statements(sql):
            self._target.execute(statement)

    @staticmethod
    def _read_ahead(
        batches: Iterator[list[Any]], buffer: queue.Queue, stop: threading.Event
    ) -> None:
        def put(item) -> bool:
            while not stop.is_set():
                try:
                    buffer.put(item, timeout=0.1)
                    return True
                except queue.Full:
                    continue
            return False

        try:
            for rows in batches:
                if not put(rows):
                    return
            put(_END)
        except Exception as exc:
            put(_ReadFailure(exc))
        finally:
            close = getattr(batches, "close", None)
            if close is not None:
                close()

    def _finalize(self, commit: bool) -> bool:
        """Commit or roll back the target transaction; log, never raise."""
        dialect = self._target.dialect
        action = "COMMIT" if commit else "ROLLBACK"
        try:
            if not dialect.uses_driver_transaction:
                self._target.execute(action)
            elif commit:
                self._target.commit()
            else:
                self._target.rollback()
            self._log.debug("%s executed", action)
            return True
        except MigrationError as exc:
            self._log.error("Error finalizing transaction (%s): %s", action, exc)
            return False
