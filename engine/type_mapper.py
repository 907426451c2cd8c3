"""
engine/type_mapper.py
---------------------
Column type translation between SQL Server, PostgreSQL and Oracle.

Three tiers, tried in order:
    1. Same engine on both sides: the dialect's passthrough rule, which
       keeps sizes and clamps them to the engine's limits.
    2. An explicit table for each ordered pair of distinct engines.
    3. A conservative fallback (large text) for anything not in the table.

Design Decision:
    The tables are data, not if/else trees: each entry maps a normalized
    source type name to a small rule function of
    ``(max_length, precision, scale)``. ``map_type`` never raises.
"""
from __future__ import annotations

import re
from dataclasses import dataclass
from types import MappingProxyType
from typing import Callable, Mapping

from engine.dialects import get_dialect
from models.connection import DatabaseKind

Rule = Callable[[int | None, int | None, int | None], str]

MAX_LENGTH = -1  # catalog marker for VARCHAR(MAX) / unbounded

FALLBACK_TYPES: Mapping[DatabaseKind, str] = MappingProxyType({
    DatabaseKind.SQLSERVER: "varchar(max)",
    DatabaseKind.POSTGRESQL: "text",
    DatabaseKind.ORACLE: "VARCHAR2(4000)",
})


# ---------------------------------------------------------------------------
# Rule builders
# ---------------------------------------------------------------------------

def _fixed(target: str) -> Rule:
    return lambda length, precision, scale: target


def _sized(
    template: str,
    fallback: str,
    clamp: int | None = None,
    unbounded: str | None = None,
) -> Rule:
    """``template.format(n)`` for a positive length, *unbounded* for MAX, else *fallback*."""
    def rule(length, precision, scale):
        if length == MAX_LENGTH and unbounded is not None:
            return unbounded
        if length is not None and length > 0:
            return template.format(min(length, clamp) if clamp else length)
        return fallback
    return rule


def _decimal(template: str, fallback: str) -> Rule:
    def rule(length, precision, scale):
        if precision is not None:
            return template.format(precision, scale or 0)
        return fallback
    return rule


# ---------------------------------------------------------------------------
# Cross-engine tables
# ---------------------------------------------------------------------------

_SS = DatabaseKind.SQLSERVER
_PG = DatabaseKind.POSTGRESQL
_ORA = DatabaseKind.ORACLE

_TSQL_TO_POSTGRES: dict[str, Rule] = {
    "int": _fixed("integer"),
    "bigint": _fixed("bigint"),
    "smallint": _fixed("smallint"),
    "tinyint": _fixed("smallint"),
    "decimal": _decimal("numeric({},{})", "numeric"),
    "numeric": _decimal("numeric({},{})", "numeric"),
    "money": _fixed("numeric(19,4)"),
    "smallmoney": _fixed("numeric(10,4)"),
    "float": _fixed("double precision"),
    "real": _fixed("real"),
    "varchar": _sized("varchar({})", "text", unbounded="text"),
    "nvarchar": _sized("varchar({})", "text", unbounded="text"),
    "char": _sized("char({})", "char(1)"),
    "nchar": _sized("char({})", "char(1)"),
    "text": _fixed("text"),
    "ntext": _fixed("text"),
    "datetime": _fixed("timestamp"),
    "datetime2": _fixed("timestamp"),
    "smalldatetime": _fixed("timestamp"),
    "datetimeoffset": _fixed("timestamptz"),
    "date": _fixed("date"),
    "time": _fixed("time"),
    "bit": _fixed("boolean"),
    "binary": _fixed("bytea"),
    "varbinary": _fixed("bytea"),
    "image": _fixed("bytea"),
    "uniqueidentifier": _fixed("uuid"),
    "xml": _fixed("xml"),
}

_TSQL_TO_ORACLE: dict[str, Rule] = {
    "int": _fixed("NUMBER(10)"),
    "bigint": _fixed("NUMBER(19)"),
    "smallint": _fixed("NUMBER(5)"),
    "tinyint": _fixed("NUMBER(3)"),
    "decimal": _decimal("NUMBER({},{})", "NUMBER"),
    "numeric": _decimal("NUMBER({},{})", "NUMBER"),
    "money": _fixed("NUMBER(19,4)"),
    "smallmoney": _fixed("NUMBER(10,4)"),
    "float": _fixed("BINARY_DOUBLE"),
    "real": _fixed("BINARY_FLOAT"),
    "varchar": _sized("VARCHAR2({})", "VARCHAR2(4000)", clamp=4000, unbounded="CLOB"),
    "nvarchar": _sized("NVARCHAR2({})", "NVARCHAR2(2000)", clamp=2000, unbounded="NCLOB"),
    "char": _sized("CHAR({})", "CHAR(1)", clamp=2000),
    "nchar": _sized("NCHAR({})", "NCHAR(1)", clamp=1000),
    "text": _fixed("CLOB"),
    "ntext": _fixed("NCLOB"),
    "datetime": _fixed("TIMESTAMP(6)"),
    "datetime2": _fixed("TIMESTAMP(6)"),
    "smalldatetime": _fixed("TIMESTAMP(0)"),
    "datetimeoffset": _fixed("TIMESTAMP WITH TIME ZONE"),
    "date": _fixed("DATE"),
    "time": _fixed("TIMESTAMP(0)"),
    "bit": _fixed("NUMBER(1)"),
    "binary": _sized("RAW({})", "RAW(2000)", clamp=2000),
    "varbinary": _sized("RAW({})", "RAW(2000)", clamp=2000, unbounded="BLOB"),
    "image": _fixed("BLOB"),
    "uniqueidentifier": _fixed("RAW(16)"),
    "xml": _fixed("CLOB"),
}

_POSTGRES_TO_TSQL: dict[str, Rule] = {
    "integer": _fixed("int"),
    "bigint": _fixed("bigint"),
    "smallint": _fixed("smallint"),
    "numeric": _decimal("decimal({},{})", "decimal(18,2)"),
    "double precision": _fixed("float"),
    "real": _fixed("real"),
    "varchar": _sized("varchar({})", "varchar(max)", unbounded="varchar(max)"),
    "text": _fixed("varchar(max)"),
    "char": _sized("char({})", "char(10)"),
    "boolean": _fixed("bit"),
    "bytea": _fixed("varbinary(max)"),
    "uuid": _fixed("uniqueidentifier"),
    "timestamp": _fixed("datetime2"),
    "timestamptz": _fixed("datetimeoffset"),
    "date": _fixed("date"),
    "time": _fixed("time"),
    "json": _fixed("nvarchar(max)"),
    "jsonb": _fixed("nvarchar(max)"),
    "xml": _fixed("xml"),
}

_POSTGRES_TO_ORACLE: dict[str, Rule] = {
    "integer": _fixed("NUMBER(10)"),
    "bigint": _fixed("NUMBER(19)"),
    "smallint": _fixed("NUMBER(5)"),
    "numeric": _decimal("NUMBER({},{})", "NUMBER"),
    "double precision": _fixed("BINARY_DOUBLE"),
    "real": _fixed("BINARY_FLOAT"),
    "varchar": _sized("VARCHAR2({})", "VARCHAR2(4000)", clamp=4000, unbounded="CLOB"),
    "text": _fixed("CLOB"),
    "char": _sized("CHAR({})", "CHAR(10)", clamp=2000),
    "boolean": _fixed("NUMBER(1)"),
    "bytea": _fixed("BLOB"),
    "uuid": _fixed("RAW(16)"),
    "timestamp": _fixed("TIMESTAMP"),
    "timestamptz": _fixed("TIMESTAMP WITH TIME ZONE"),
    "date": _fixed("DATE"),
    "time": _fixed("TIMESTAMP"),
    "json": _fixed("CLOB"),
    "jsonb": _fixed("CLOB"),
    "xml": _fixed("CLOB"),
}

_ORACLE_TO_TSQL: dict[str, Rule] = {
    "number": _decimal("decimal({},{})", "decimal(18,2)"),
    "integer": _fixed("int"),
    "float": _fixed("float"),
    "binary_float": _fixed("real"),
    "binary_double": _fixed("float"),
    "varchar2": _sized("varchar({})", "varchar(max)"),
    "nvarchar2": _sized("nvarchar({})", "nvarchar(max)"),
    "char": _sized("char({})", "char(10)"),
    "nchar": _sized("nchar({})", "nchar(10)"),
    "clob": _fixed("varchar(max)"),
    "nclob": _fixed("nvarchar(max)"),
    "long": _fixed("varchar(max)"),
    "blob": _fixed("varbinary(max)"),
    "raw": _fixed("varbinary(max)"),
    "long raw": _fixed("varbinary(max)"),
    "date": _fixed("datetime2"),
    "timestamp": _fixed("datetime2"),
    "timestamp with time zone": _fixed("datetimeoffset"),
    "timestamp with local time zone": _fixed("datetime2"),
}

_ORACLE_TO_POSTGRES: dict[str, Rule] = {
    "number": _decimal("numeric({},{})", "numeric"),
    "integer": _fixed("integer"),
    "float": _fixed("double precision"),
    "binary_float": _fixed("real"),
    "binary_double": _fixed("double precision"),
    "varchar2": _sized("varchar({})", "text"),
    "nvarchar2": _sized("varchar({})", "text"),
    "char": _sized("char({})", "char(10)"),
    "nchar": _sized("char({})", "char(10)"),
    "clob": _fixed("text"),
    "nclob": _fixed("text"),
    "long": _fixed("text"),
    "blob": _fixed("bytea"),
    "raw": _fixed("bytea"),
    "long raw": _fixed("bytea"),
    "date": _fixed("timestamp"),
    "timestamp": _fixed("timestamp"),
    "timestamp with time zone": _fixed("timestamptz"),
    "timestamp with local time zone": _fixed("timestamptz"),
    "xmltype": _fixed("xml"),
}

CROSS_TABLES: Mapping[tuple[DatabaseKind, DatabaseKind], Mapping[str, Rule]] = MappingProxyType({
    (_SS, _PG): MappingProxyType(_TSQL_TO_POSTGRES),
    (_SS, _ORA): MappingProxyType(_TSQL_TO_ORACLE),
    (_PG, _SS): MappingProxyType(_POSTGRES_TO_TSQL),
    (_PG, _ORA): MappingProxyType(_POSTGRES_TO_ORACLE),
    (_ORA, _SS): MappingProxyType(_ORACLE_TO_TSQL),
    (_ORA, _PG): MappingProxyType(_ORACLE_TO_POSTGRES),
})


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------

def map_type(
    source_kind: DatabaseKind,
    target_kind: DatabaseKind,
    raw_type: str,
    max_length: int | None = None,
    precision: int | None = None,
    scale: int | None = None,
) -> str:
    """
    Translate a source column type into the target engine's type.

    Args:
        source_kind: Engine the column was read from.
        target_kind: Engine the column will be created in.
        raw_type:    Catalog type name (``"nvarchar"``, ``"character varying"`` …).
        max_length:  Character / byte length; ``-1`` means unbounded (MAX).
        precision:   Numeric precision, when the catalog reports one.
        scale:       Numeric scale, when the catalog reports one.

    Returns:
        A rendered target type such as ``"VARCHAR2(50)"``. Never raises:
        unknown source types get the target's fallback type.

    Examples::

        map_type(SQLSERVER, ORACLE, "int")                 → "NUMBER(10)"
        map_type(SQLSERVER, ORACLE, "varchar", 50)         → "VARCHAR2(50)"
        map_type(SQLSERVER, POSTGRESQL, "nvarchar", -1)    → "text"
        map_type(ORACLE, ORACLE, "varchar2", 9000)         → "VARCHAR2(4000)"
    """
    source = get_dialect(source_kind)
    target = get_dialect(target_kind)
    base = source.normalize_type_name(raw_type)

    if source.kind == target.kind:
        return target.passthrough_type(base, max_length, precision, scale)

    rule = CROSS_TABLES.get((source.kind, target.kind), {}).get(base)
    if rule is None:
        return FALLBACK_TYPES[target.kind]
    return rule(max_length, precision, scale)


# ---------------------------------------------------------------------------
# Parsing rendered types back
# ---------------------------------------------------------------------------

_TYPE_SPEC = re.compile(r"^\s*(?P<base>[^()]+?)\s*(?:\((?P<args>[^)]*)\))?\s*$")
_PRECISION_TYPES = frozenset({"decimal", "numeric", "number", "float"})


@dataclass(frozen=True)
class TypeSpec:
    """A rendered type split into base name and size arguments."""
    base: str
    max_length: int | None = None
    precision: int | None = None
    scale: int | None = None


def parse_type_spec(rendered: str) -> TypeSpec:
    """
    Split a rendered type back into its base name and arguments.

    Examples::

        parse_type_spec("NUMBER(10,2)")    → TypeSpec("number", None, 10, 2)
        parse_type_spec("varchar(max)")    → TypeSpec("varchar", -1)
        parse_type_spec("VARCHAR2(50)")    → TypeSpec("varchar2", 50)
        parse_type_spec("text")            → TypeSpec("text")
    """
    match = _TYPE_SPEC.match(rendered or "")
    if match is None:
        return TypeSpec(base=(rendered or "").strip().lower())
    base = match.group("base").lower()
    raw_args = match.group("args")
    if not raw_args:
        return TypeSpec(base=base)

    args = [a.strip().lower() for a in raw_args.split(",")]
    if base in _PRECISION_TYPES:
        precision = int(args[0])
        scale = int(args[1]) if len(args) > 1 else None
        return TypeSpec(base=base, precision=precision, scale=scale)
    length = MAX_LENGTH if args[0] == "max" else int(args[0])
    return TypeSpec(base=base, max_length=length)
