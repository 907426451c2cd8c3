"""
engine/sql_values.py
--------------------
Literal rendering for generated INSERT statements and the quote-aware
statement splitter.

Design Decision:
    Python-type dispatch lives here; every engine-specific spelling
    (byte literals, timestamp literals, boolean form) is delegated to the
    dialect, so this module stays free of engine branches.
"""
from __future__ import annotations

import datetime as _dt
import uuid
from decimal import Decimal
from typing import Any, Iterable

from engine.dialects import Dialect


def render_literal(value: Any, dialect: Dialect) -> str:
    """
    Render one Python value as a SQL literal for *dialect*.

    Examples::

        render_literal(None, pg)                  → NULL
        render_literal("O'Hara", pg)              → 'O''Hara'
        render_literal(True, tsql)                → 1
        render_literal(b"\\x01\\xff", oracle)     → hextoraw('01FF')
        render_literal(Decimal("1.50"), oracle)   → 1.50
    """
    if value is None:
        return "NULL"
    # bool before int: bool is an int subclass
    if isinstance(value, bool):
        return dialect.render_bool(value)
    if isinstance(value, int):
        return str(value)
    if isinstance(value, Decimal):
        return format(value, "f")
    if isinstance(value, float):
        return repr(value)
    if isinstance(value, str):
        return dialect.render_string(value)
    if isinstance(value, (bytes, bytearray, memoryview)):
        return dialect.render_binary(bytes(value))
    # datetime before date: datetime is a date subclass
    if isinstance(value, _dt.datetime):
        return dialect.render_datetime(value)
    if isinstance(value, _dt.date):
        return dialect.render_date(value)
    if isinstance(value, _dt.time):
        return dialect.render_time(value)
    if isinstance(value, uuid.UUID):
        return dialect.render_uuid(value)
    return dialect.render_string(str(value))


def render_row(row: Iterable[Any], dialect: Dialect) -> list[str]:
    return [render_literal(value, dialect) for value in row]


def split_statements(sql: str) -> list[str]:
    """
    Split *sql* on semicolons that are outside quoted text.

    Single-quoted literals (with ``''`` escapes) and double-quoted
    identifiers (with ``""`` escapes) are copied through untouched.
    Statements are stripped; empty ones are dropped.

    Example::

        split_statements("INSERT INTO t VALUES ('a;b'); INSERT INTO t VALUES ('c')")
        → ["INSERT INTO t VALUES ('a;b')", "INSERT INTO t VALUES ('c')"]
    """
    statements: list[str] = []
    current: list[str] = []
    in_single = False
    in_double = False
    i = 0
    n = len(sql or "")

    while i < n:
        ch = sql[i]
        if ch == "'" and not in_double:
            if in_single and i + 1 < n and sql[i + 1] == "'":
                current.append("''")
                i += 2
                continue
            in_single = not in_single
        elif ch == '"' and not in_single:
            if in_double and i + 1 < n and sql[i + 1] == '"':
                current.append('""')
                i += 2
                continue
            in_double = not in_double
        elif ch == ";" and not in_single and not in_double:
            statement = "".join(current).strip()
            if statement:
                statements.append(statement)
            current = []
            i += 1
            continue
        current.append(ch)
        i += 1

    tail = "".join(current).strip()
    if tail:
        statements.append(tail)
    return statements
