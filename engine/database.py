"""
engine/database.py
------------------
Driver-agnostic SQL client used by every engine component.

Design Decisions:
    * ``SqlClient`` is a context manager so callers can use it with
      ``with`` statements and be guaranteed the connection is closed on exit.
      Connections are short-lived: one client per call sequence, never
      shared across tables.
    * The actual driver (pymssql / psycopg2 / oracledb) is chosen and
      imported by the dialect; this module only speaks DB-API 2.0.
    * Retry logic covers transient connection errors with linear back-off
      (``max_retries`` / ``retry_delay``).
    * Every driver exception is re-raised as :class:`DatabaseError` carrying
      the driver's message and, when available, its structured error code.
    * Statement values are always passed as named parameters; only
      identifiers already quoted by the dialect are interpolated.
"""
from __future__ import annotations

import logging
import time
from typing import Any, Iterator, Mapping, Sequence

from config import CONFIG
from engine.dialects import Dialect, get_dialect
from engine.errors import ConnectionFailure, DatabaseError
from logger import resolve_logger
from models.connection import ConnectionDescriptor

Row = Sequence[Any]


class SqlClient:
    """
    One DB-API connection to one endpoint.

    Example::

        with SqlClient(descriptor) as client:
            n = client.scalar("SELECT COUNT(*) FROM [dbo].[Orders]")

        with SqlClient(descriptor) as client:
            columns, batches = client.stream_batches("SELECT * FROM t", 1000)
            for rows in batches:
                ...
    """

    def __init__(
        self,
        descriptor: ConnectionDescriptor,
        autocommit: bool = False,
        command_timeout: int | None = None,
        connect_timeout: int | None = None,
        max_retries: int | None = None,
        retry_delay: float | None = None,
        logger: logging.Logger | None = None,
    ) -> None:
        self._descriptor = descriptor
        self._dialect = get_dialect(descriptor.kind)
        self._autocommit = autocommit
        self._command_timeout = command_timeout or CONFIG.db.command_timeout
        self._connect_timeout = connect_timeout or CONFIG.db.connect_timeout
        self._max_retries = max(1, max_retries or CONFIG.db.max_retries)
        self._retry_delay = CONFIG.db.retry_delay if retry_delay is None else retry_delay
        self._log = resolve_logger(logger, __name__)
        self._conn: Any = None

    # ------------------------------------------------------------------
    # Properties
    # ------------------------------------------------------------------

    @property
    def dialect(self) -> Dialect:
        return self._dialect

    @property
    def descriptor(self) -> ConnectionDescriptor:
        return self._descriptor

    @property
    def is_connected(self) -> bool:
        return self._conn is not None

    # ------------------------------------------------------------------
    # Context manager
    # ------------------------------------------------------------------

    def __enter__(self) -> "SqlClient":
        self.connect()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> bool:
        if exc_type is not None and not self._autocommit:
            self._log.debug("Exception inside SqlClient context: %s", exc_val)
            self._safe_rollback()
        self.close()
        return False  # Never suppress exceptions

    # ------------------------------------------------------------------
    # Connection lifecycle
    # ------------------------------------------------------------------

    def connect(self) -> None:
        """
        Open the connection, retrying with linear back-off.

        Raises:
            ConnectionFailure: If every attempt failed; carries the last
                driver message.
        """
        last_exc: BaseException | None = None
        for attempt in range(1, self._max_retries + 1):
            try:
                self._log.debug(
                    "Connecting to %s (attempt %d/%d)",
                    self._descriptor.describe(), attempt, self._max_retries,
                )
                self._conn = self._dialect.connect(
                    self._descriptor,
                    connect_timeout=self._connect_timeout,
                    command_timeout=self._command_timeout,
                    autocommit=self._autocommit,
                )
                return
            except ImportError:
                raise
            except Exception as exc:
                last_exc = exc
                self._log.warning("Connection attempt %d failed: %s", attempt, exc)
                if attempt < self._max_retries:
                    time.sleep(self._retry_delay * attempt)
        raise ConnectionFailure(
            f"Could not connect to {self._descriptor.describe()} "
            f"after {self._max_retries} attempts: {last_exc}",
            code=self._dialect.error_code(last_exc) if last_exc else None,
        ) from last_exc

    def close(self) -> None:
        """Close the connection, logging any cleanup errors."""
        if self._conn is None:
            return
        try:
            self._conn.close()
        except Exception as exc:
            self._log.debug("Error while closing connection: %s", exc)
        self._conn = None

    def _ensure_connected(self) -> Any:
        if self._conn is None:
            raise ConnectionFailure("Connection is not open. Call connect() first.")
        return self._conn

    def _wrap(self, exc: Exception, sql: str) -> DatabaseError:
        self._log.debug("SQL error: %s | SQL: %.500s", exc, sql)
        return DatabaseError(str(exc), code=self._dialect.error_code(exc))

    def _safe_rollback(self) -> None:
        try:
            if self._conn is not None:
                self._conn.rollback()
        except Exception as exc:
            self._log.warning("Rollback failed: %s", exc)

    # ------------------------------------------------------------------
    # Statements
    # ------------------------------------------------------------------

    def execute(self, sql: str, params: Mapping[str, Any] | None = None) -> int:
        """
        Execute one statement and return the driver's row count.

        Raises:
            DatabaseError: On any driver error.
        """
        conn = self._ensure_connected()
        cursor = conn.cursor()
        try:
            if params is None:
                cursor.execute(sql)
            else:
                cursor.execute(sql, params)
            return cursor.rowcount
        except Exception as exc:
            raise self._wrap(exc, sql) from exc
        finally:
            cursor.close()

    def query(self, sql: str, params: Mapping[str, Any] | None = None) -> list[Row]:
        """Execute a query and return every row."""
        conn = self._ensure_connected()
        cursor = conn.cursor()
        try:
            if params is None:
                cursor.execute(sql)
            else:
                cursor.execute(sql, params)
            return list(cursor.fetchall() or [])
        except Exception as exc:
            raise self._wrap(exc, sql) from exc
        finally:
            cursor.close()

    def scalar(self, sql: str, params: Mapping[str, Any] | None = None) -> Any:
        """First column of the first row, or ``None`` for an empty result."""
        rows = self.query(sql, params)
        if not rows:
            return None
        return rows[0][0]

    def stream_batches(
        self, sql: str, batch_size: int
    ) -> tuple[list[str], Iterator[list[Row]]]:
        """
        Run *sql* and stream its result set in ``fetchmany`` batches.

        Returns:
            ``(column_names, batches)``. The iterator closes its cursor when
            exhausted or garbage-collected.
        """
        conn = self._ensure_connected()
        cursor = conn.cursor()
        try:
            cursor.arraysize = batch_size
            cursor.execute(sql)
            columns = [d[0] for d in (cursor.description or [])]
        except Exception as exc:
            cursor.close()
            raise self._wrap(exc, sql) from exc

        def _batches() -> Iterator[list[Row]]:
            try:
                while True:
                    try:
                        rows = cursor.fetchmany(batch_size)
                    except Exception as exc:
                        raise self._wrap(exc, sql) from exc
                    if not rows:
                        return
                    yield list(rows)
            finally:
                cursor.close()

        return columns, _batches()

    def commit(self) -> None:
        conn = self._ensure_connected()
        try:
            conn.commit()
        except Exception as exc:
            raise self._wrap(exc, "COMMIT") from exc

    def rollback(self) -> None:
        conn = self._ensure_connected()
        try:
            conn.rollback()
        except Exception as exc:
            raise self._wrap(exc, "ROLLBACK") from exc


def open_client(
    descriptor: ConnectionDescriptor,
    autocommit: bool = False,
    logger: logging.Logger | None = None,
) -> SqlClient:
    """Default client factory used by the orchestrator and provisioning."""
    return SqlClient(descriptor, autocommit=autocommit, logger=logger)


def test_connection(
    descriptor: ConnectionDescriptor, logger: logging.Logger | None = None
) -> bool:
    """
    Open and close a connection to *descriptor*.

    Returns:
        ``True`` on success; ``False`` otherwise (the reason is logged).
    """
    logger = resolve_logger(logger, __name__)
    try:
        descriptor.validate()
        with SqlClient(descriptor, autocommit=True, max_retries=1, logger=logger) as client:
            client.scalar(client.dialect.ping_sql)
        logger.info("Connection OK: %s", descriptor.describe())
        return True
    except Exception as exc:
        logger.error("Connection failed for %s: %s", descriptor.describe(), exc)
        return False


test_connection.__test__ = False  # not a pytest test
