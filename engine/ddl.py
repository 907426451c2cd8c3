"""
engine/ddl.py
-------------
Builds CREATE TABLE, ALTER TABLE … ADD CONSTRAINT and DROP TABLE text for
a target engine from introspected source definitions.

Design Decisions:
    * Every identifier is validated before it is quoted; a name outside
      ``[A-Za-z0-9_]`` aborts DDL generation with ``InvalidIdentifier``.
    * Column types come from :func:`engine.type_mapper.map_type`; all other
      engine differences (NULL clause, DEFAULT position, statement
      terminator, generator-default stripping) are dialect traits.
    * Constraint names are case-folded and then shortened with a stable
      hash suffix, so re-runs always produce the same names.
"""
from __future__ import annotations

import re

from engine.dialects import Dialect
from engine.identifiers import shorten_identifier, validate_identifier
from engine.type_mapper import map_type
from models.schema import ColumnDef, ConstraintDef, ConstraintKind

# Generator calls with no equivalent built-in on engines that strip them.
NON_PORTABLE_DEFAULT_FUNCTIONS: tuple[str, ...] = (
    "getdate",
    "getutcdate",
    "newid",
    "newsequentialid",
    "sysdatetime",
    "sysutcdatetime",
    "now",
    "nextval",
    "gen_random_uuid",
    "uuid_generate_v4",
)

_NON_PORTABLE_DEFAULT = re.compile(
    r"(?<!\w)(?:" + "|".join(map(re.escape, NON_PORTABLE_DEFAULT_FUNCTIONS)) + r")\s*\(",
    re.IGNORECASE,
)

_INDENT = "    "


def is_non_portable_default(expression: str) -> bool:
    """True when *expression* calls one of the known generator functions."""
    return bool(_NON_PORTABLE_DEFAULT.search(expression or ""))


def _default_clause(column: ColumnDef, target: Dialect) -> str:
    default = (column.default or "").strip()
    if not default:
        return ""
    if target.strips_generator_defaults and is_non_portable_default(default):
        return ""
    return f" DEFAULT {default}"


def _null_clause(column: ColumnDef, target: Dialect) -> str:
    if not column.is_nullable:
        return " NOT NULL"
    return " NULL" if target.explicit_null_clause else ""


def build_column_clause(column: ColumnDef, target: Dialect) -> str:
    """
    ``<quoted name> <mapped type>`` followed by the nullability and default
    clauses in the order the target grammar expects.
    """
    validate_identifier(column.name)
    mapped = map_type(
        column.source_kind,
        target.kind,
        column.data_type,
        column.max_length,
        column.precision,
        column.scale,
    )
    nullability = _null_clause(column, target)
    default = _default_clause(column, target)
    tail = default + nullability if target.default_before_nullability else nullability + default
    return f"{target.quote(column.name)} {mapped}{tail}"


def build_create_table(
    target: Dialect, schema: str, table: str, columns: list[ColumnDef]
) -> str:
    """
    Render ``CREATE TABLE`` for *table* on the *target* engine.

    Example (SQL Server source, Oracle target)::

        CREATE TABLE CUSTOMERS (
            ID NUMBER(10) NOT NULL,
            NAME VARCHAR2(50),
            CREATED TIMESTAMP(6)
        )
    """
    validate_identifier(schema)
    validate_identifier(table)
    clauses = [build_column_clause(column, target) for column in columns]
    body = ",\n".join(_INDENT + clause for clause in clauses)
    return (
        f"CREATE TABLE {target.table_ref(schema, table)} (\n"
        f"{body}\n"
        f"){target.statement_terminator}"
    )


def constraint_name(target: Dialect, table: str, constraint: ConstraintDef) -> str:
    """Folded, length-limited name for *constraint* on the target engine."""
    prefix = "PK" if constraint.kind is ConstraintKind.PRIMARY_KEY else "UQ"
    name = constraint.name or f"{prefix}_{table}"
    validate_identifier(name)
    return shorten_identifier(target.fold_case(name), target.max_identifier_length)


def build_add_constraint(
    target: Dialect, schema: str, table: str, constraint: ConstraintDef
) -> str:
    """
    Render ``ALTER TABLE … ADD CONSTRAINT`` for a PK / UNIQUE constraint.

    Returns:
        The statement, or ``""`` when the constraint has no columns.
    """
    if constraint.is_empty:
        return ""
    validate_identifier(schema)
    validate_identifier(table)
    for column in constraint.columns:
        validate_identifier(column)
    name = constraint_name(target, table, constraint)
    columns = ", ".join(target.quote(column) for column in constraint.columns)
    return (
        f"ALTER TABLE {target.table_ref(schema, table)} "
        f"ADD CONSTRAINT {target.quote(name)} {constraint.kind.value} ({columns})"
    )


def build_drop_table(target: Dialect, schema: str, table: str) -> str:
    validate_identifier(schema)
    validate_identifier(table)
    return target.drop_table_sql(target.table_ref(schema, table))
