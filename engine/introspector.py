"""
engine/introspector.py
----------------------
System-catalog queries: columns, PK / UNIQUE constraints, table existence,
table listing and row counts.

Every function takes an open :class:`engine.database.SqlClient` (or
anything with the same ``query`` / ``scalar`` / ``dialect`` surface) and
reads the dialect's parameterized catalog queries from it.

Design Decisions:
    * ``get_columns`` and ``get_constraints`` re-raise catalog failures as
      :class:`IntrospectionError`; DDL cannot be produced without them.
    * ``table_exists`` and ``row_count`` are best-effort: failures are
      logged and reported as "absent" / 0.
    * Source objects are addressed with their catalog spelling; no case
      folding is applied on the read side.
"""
from __future__ import annotations

import logging
from typing import Any

from engine.errors import IntrospectionError, MigrationError
from logger import resolve_logger
from models.schema import ColumnDef, ConstraintDef, ConstraintKind, TableRef

_TRUE_FLAGS = frozenset({"YES", "Y", "1", "TRUE"})


def _as_int(value: Any) -> int | None:
    if value is None:
        return None
    return int(value)


def _as_default(value: Any) -> str | None:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


# ---------------------------------------------------------------------------
# Columns & constraints
# ---------------------------------------------------------------------------

def get_columns(
    client, schema: str, table: str, logger: logging.Logger | None = None
) -> list[ColumnDef]:
    """
    Read the column definitions of *schema.table*, in ordinal order.

    Raises:
        IntrospectionError: If the catalog query fails.
    """
    logger = resolve_logger(logger, __name__)
    dialect = client.dialect
    try:
        rows = client.query(dialect.columns_query, {"schema": schema, "table": table})
    except MigrationError as exc:
        raise IntrospectionError(
            f"Could not read columns of {schema}.{table}: {exc}"
        ) from exc

    columns = [
        ColumnDef(
            name=str(row[0]),
            data_type=str(row[1]),
            is_nullable=str(row[2]).strip().upper() in _TRUE_FLAGS,
            max_length=_as_int(row[3]),
            precision=_as_int(row[4]),
            scale=_as_int(row[5]),
            default=_as_default(row[6]),
            source_kind=dialect.kind,
        )
        for row in rows
    ]
    logger.debug("Found %d columns for %s.%s", len(columns), schema, table)
    return columns


def get_constraints(
    client, schema: str, table: str, logger: logging.Logger | None = None
) -> list[ConstraintDef]:
    """
    Read PRIMARY KEY and UNIQUE constraints of *schema.table*.

    Rows are grouped by constraint name; column order within a constraint
    follows the catalog's key position. Constraints that end up with no
    columns are dropped.

    Raises:
        IntrospectionError: If the catalog query fails.
    """
    logger = resolve_logger(logger, __name__)
    try:
        rows = client.query(
            client.dialect.constraints_query, {"schema": schema, "table": table}
        )
    except MigrationError as exc:
        raise IntrospectionError(
            f"Could not read constraints of {schema}.{table}: {exc}"
        ) from exc

    kinds: dict[str, ConstraintKind] = {}
    members: dict[str, list[str]] = {}
    for name, kind, column in rows:
        name = str(name)
        if name not in kinds:
            try:
                kinds[name] = ConstraintKind.parse(str(kind))
            except ValueError:
                logger.debug("Skipping constraint %s of type %s", name, kind)
                continue
            members[name] = []
        if column is not None:
            members[name].append(str(column))

    constraints = [
        ConstraintDef(name=name, kind=kinds[name], columns=tuple(cols))
        for name, cols in members.items()
        if cols
    ]
    logger.debug("Found %d constraints for %s.%s", len(constraints), schema, table)
    return constraints


# ---------------------------------------------------------------------------
# Existence, listing, counts
# ---------------------------------------------------------------------------

def table_exists(
    client, schema: str, table: str, logger: logging.Logger | None = None
) -> bool:
    """
    Check whether *table* exists on the client's (target) connection.

    For Oracle only the table name is matched: migrated objects live in the
    connected user's namespace whatever *schema* says. Query failures are
    logged and reported as ``False``.
    """
    logger = resolve_logger(logger, __name__)
    dialect = client.dialect
    try:
        count = client.scalar(
            dialect.table_exists_query, dialect.table_lookup_params(schema, table)
        )
    except MigrationError as exc:
        logger.warning("Error checking whether %s.%s exists: %s", schema, table, exc)
        return False
    return bool(count) and int(count) > 0


def row_count(
    client, schema: str, table: str, logger: logging.Logger | None = None
) -> int:
    """``SELECT COUNT(*)`` of a source table; 0 when the count fails."""
    logger = resolve_logger(logger, __name__)
    dialect = client.dialect
    sql = dialect.row_count_sql(dialect.table_ref(schema, table, fold_case=False))
    try:
        return int(client.scalar(sql) or 0)
    except MigrationError as exc:
        logger.warning("Could not count rows of %s.%s: %s", schema, table, exc)
        return 0


def list_tables(
    client, with_row_counts: bool = True, logger: logging.Logger | None = None
) -> list[TableRef]:
    """
    List user tables (system schemas excluded), optionally with row counts.

    Use an autocommit client: on PostgreSQL a failed count would otherwise
    abort the surrounding transaction and zero every later count.

    Raises:
        IntrospectionError: If the listing query itself fails.
    """
    logger = resolve_logger(logger, __name__)
    try:
        rows = client.query(client.dialect.list_tables_query)
    except MigrationError as exc:
        raise IntrospectionError(f"Could not list tables: {exc}") from exc

    tables = [TableRef(schema=str(row[0] or ""), name=str(row[1])) for row in rows]
    logger.info("Retrieved %d tables", len(tables))
    if with_row_counts:
        for ref in tables:
            ref.row_count = row_count(client, ref.schema, ref.name, logger=logger)
    return tables
