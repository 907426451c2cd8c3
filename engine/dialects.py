"""
engine/dialects.py
------------------
Per-engine rules for SQL Server (T-SQL), PostgreSQL and Oracle.

Each engine is one :class:`Dialect` subclass. A dialect knows:
    * identifier quoting, case convention, reserved words, max length
    * default schema and system database
    * parameterized catalog queries (columns, constraints, existence, listing)
    * statement templates (truncate, drop, create database / user)
    * transaction and INSERT traits
    * literal rendering for binary, temporal and UUID values
    * same-engine type passthrough with length clamps
    * connection string and driver connection

Design Decisions:
    * Callers never branch on :class:`DatabaseKind`; they ask
      :func:`get_dialect` once and call methods on the result.
    * Dialect instances hold no mutable state and live in a read-only
      registry, so they can be shared across the pre-flight worker threads.
    * Drivers are imported inside ``connect`` so that only the driver for
      an engine actually in use needs to be installed.
"""
from __future__ import annotations

import datetime as _dt
import re
import uuid
from types import MappingProxyType
from typing import Any, Mapping

from engine.errors import UnsupportedDialect
from engine.identifiers import quote_identifier
from models.connection import ConnectionDescriptor, DatabaseKind

_TYPE_ARGS = re.compile(r"\(\s*\d+\s*(?:,\s*\d+\s*)?\)")


def _positive(value: int | None) -> bool:
    return value is not None and value > 0


class Dialect:
    """Base class; subclasses override the class attributes and hooks below."""

    kind: DatabaseKind
    quote_open: str = '"'
    quote_close: str = '"'
    bare_upper_identifiers: bool = False
    reserved_words: frozenset[str] = frozenset()
    max_identifier_length: int = 128
    statement_terminator: str = ";"
    explicit_null_clause: bool = True
    default_before_nullability: bool = False
    strips_generator_defaults: bool = False
    uses_driver_transaction: bool = True
    multi_row_insert: bool = True
    max_rows_per_statement: int | None = None
    unicode_prefix: str = ""
    type_aliases: Mapping[str, str] = MappingProxyType({})
    already_exists_codes: frozenset[str] = frozenset()
    ping_sql: str = "SELECT 1"
    provisions_user: bool = False

    # Catalog queries; parameters are named ``schema`` / ``table`` / ``name``.
    columns_query: str = ""
    constraints_query: str = ""
    table_exists_query: str = ""
    list_tables_query: str = ""
    database_exists_query: str = ""

    def __repr__(self) -> str:
        return f"<{type(self).__name__}>"

    # ------------------------------------------------------------------
    # Identifiers
    # ------------------------------------------------------------------

    def fold_case(self, name: str) -> str:
        return name

    def quote(self, name: str, fold_case: bool = True) -> str:
        return quote_identifier(name, self, fold_case=fold_case)

    def default_schema(self, descriptor: ConnectionDescriptor) -> str:
        raise NotImplementedError

    def table_ref(self, schema: str, table: str, fold_case: bool = True) -> str:
        return f"{self.quote(schema, fold_case)}.{self.quote(table, fold_case)}"

    def table_lookup_params(self, schema: str, table: str) -> dict[str, str]:
        """Parameters for :attr:`table_exists_query` on a *target* table."""
        return {"schema": self.fold_case(schema), "table": self.fold_case(table)}

    # ------------------------------------------------------------------
    # Statement templates
    # ------------------------------------------------------------------

    def truncate_sql(self, table_ref: str) -> str:
        return f"TRUNCATE TABLE {table_ref}"

    def drop_table_sql(self, table_ref: str) -> str:
        return f"DROP TABLE {table_ref}"

    def row_count_sql(self, table_ref: str) -> str:
        return f"SELECT COUNT(*) FROM {table_ref}"

    def select_all_sql(self, table_ref: str) -> str:
        return f"SELECT * FROM {table_ref}"

    def create_database_statements(self, name: str, password: str = "") -> list[str]:
        return [f"CREATE DATABASE {self.quote(name, fold_case=False)}"]

    def system_database(self, oracle_service: str) -> str:
        raise NotImplementedError

    def effective_batch_size(self, requested: int) -> int:
        """Rows per batch; only multi-row INSERTs are bound by a per-statement cap."""
        if not self.multi_row_insert or self.max_rows_per_statement is None:
            return max(1, requested)
        return max(1, min(requested, self.max_rows_per_statement))

    def build_insert_batch(
        self, table_ref: str, columns: list[str], rows: list[list[str]]
    ) -> str:
        """
        Render one batch of already-formatted literal rows as SQL text.

        Multi-row dialects produce a single ``INSERT … VALUES (…),(…)``;
        the others produce one ``INSERT`` per row joined with ``"; "``.
        Callers always run the result through
        :func:`engine.sql_values.split_statements`.
        """
        column_list = ", ".join(columns)
        head = f"INSERT INTO {table_ref} ({column_list}) VALUES "
        if not self.multi_row_insert:
            return "; ".join(head + f"({', '.join(row)})" for row in rows) + ";"
        values = ",\n".join(f"({', '.join(row)})" for row in rows)
        return head + values + ";"

    # ------------------------------------------------------------------
    # Literals
    # ------------------------------------------------------------------

    def render_string(self, value: str) -> str:
        return f"{self.unicode_prefix}'{value.replace(chr(39), chr(39) * 2)}'"

    def render_bool(self, value: bool) -> str:
        return "1" if value else "0"

    def render_binary(self, value: bytes) -> str:
        raise NotImplementedError

    def render_datetime(self, value: _dt.datetime) -> str:
        return f"'{value.strftime('%Y-%m-%d %H:%M:%S')}.{value.microsecond // 1000:03d}'"

    def render_date(self, value: _dt.date) -> str:
        return f"'{value.isoformat()}'"

    def render_time(self, value: _dt.time) -> str:
        return f"'{value.strftime('%H:%M:%S')}'"

    def render_uuid(self, value: uuid.UUID) -> str:
        return f"'{value}'"

    # ------------------------------------------------------------------
    # Types
    # ------------------------------------------------------------------

    def normalize_type_name(self, raw_type: str) -> str:
        name = (raw_type or "").strip().lower()
        return self.type_aliases.get(name, name)

    def passthrough_type(
        self,
        base: str,
        max_length: int | None,
        precision: int | None,
        scale: int | None,
    ) -> str:
        """Render *base* for a same-engine migration, clamping sizes."""
        return base

    # ------------------------------------------------------------------
    # Connections
    # ------------------------------------------------------------------

    def connection_string(self, descriptor: ConnectionDescriptor) -> str:
        raise NotImplementedError

    def connect(
        self,
        descriptor: ConnectionDescriptor,
        connect_timeout: int,
        command_timeout: int,
        autocommit: bool = False,
    ) -> Any:
        """Open a DB-API connection with the engine's driver."""
        raise NotImplementedError

    def error_code(self, exc: BaseException) -> str | None:
        """Structured driver error code of *exc*, if the driver exposes one."""
        return None


# ---------------------------------------------------------------------------
# SQL Server
# ---------------------------------------------------------------------------

class TSqlDialect(Dialect):
    kind = DatabaseKind.SQLSERVER
    quote_open = "["
    quote_close = "]"
    max_identifier_length = 128
    max_rows_per_statement = 1000  # table value constructor limit
    unicode_prefix = "N"
    already_exists_codes = frozenset({"1801", "2714"})

    columns_query = """
        SELECT COLUMN_NAME, DATA_TYPE, IS_NULLABLE, CHARACTER_MAXIMUM_LENGTH,
               NUMERIC_PRECISION, NUMERIC_SCALE, COLUMN_DEFAULT
        FROM INFORMATION_SCHEMA.COLUMNS
        WHERE TABLE_SCHEMA = %(schema)s AND TABLE_NAME = %(table)s
        ORDER BY ORDINAL_POSITION"""
    constraints_query = """
        SELECT tc.CONSTRAINT_NAME, tc.CONSTRAINT_TYPE, kcu.COLUMN_NAME
        FROM INFORMATION_SCHEMA.TABLE_CONSTRAINTS tc
        JOIN INFORMATION_SCHEMA.KEY_COLUMN_USAGE kcu
          ON tc.CONSTRAINT_NAME = kcu.CONSTRAINT_NAME
         AND tc.TABLE_SCHEMA = kcu.TABLE_SCHEMA
         AND tc.TABLE_NAME = kcu.TABLE_NAME
        WHERE tc.TABLE_SCHEMA = %(schema)s AND tc.TABLE_NAME = %(table)s
          AND tc.CONSTRAINT_TYPE IN ('PRIMARY KEY', 'UNIQUE')
        ORDER BY tc.CONSTRAINT_NAME, kcu.ORDINAL_POSITION"""
    table_exists_query = """
        SELECT COUNT(*) FROM INFORMATION_SCHEMA.TABLES
        WHERE TABLE_SCHEMA = %(schema)s AND TABLE_NAME = %(table)s"""
    list_tables_query = """
        SELECT TABLE_SCHEMA, TABLE_NAME
        FROM INFORMATION_SCHEMA.TABLES
        WHERE TABLE_TYPE = 'BASE TABLE'
        ORDER BY TABLE_SCHEMA, TABLE_NAME"""
    database_exists_query = "SELECT COUNT(*) FROM sys.databases WHERE name = %(name)s"

    def default_schema(self, descriptor: ConnectionDescriptor) -> str:
        return "dbo"

    def system_database(self, oracle_service: str) -> str:
        return "master"

    def render_binary(self, value: bytes) -> str:
        return "0x" + bytes(value).hex().upper()

    def render_datetime(self, value: _dt.datetime) -> str:
        # ISO 8601 with "T" is read the same way under every SET LANGUAGE.
        return f"'{value.strftime('%Y-%m-%dT%H:%M:%S')}.{value.microsecond // 1000:03d}'"

    def passthrough_type(self, base, max_length, precision, scale) -> str:
        if base in ("varchar", "nvarchar", "varbinary"):
            return f"{base}({max_length})" if _positive(max_length) else f"{base}(max)"
        if base in ("char", "nchar", "binary"):
            return f"{base}({max_length})" if _positive(max_length) else f"{base}(1)"
        if base in ("decimal", "numeric"):
            if precision is not None:
                return f"{base}({precision},{scale or 0})"
            return f"{base}(18,0)"
        if base == "float":
            return f"float({precision})" if precision is not None else "float"
        return base

    def connection_string(self, descriptor: ConnectionDescriptor) -> str:
        auth = (
            f"User Id={descriptor.username};Password={descriptor.password};"
            if descriptor.username
            else "Integrated Security=true;"
        )
        return (
            f"Server={descriptor.host},{descriptor.port};Database={descriptor.database};"
            f"{auth}TrustServerCertificate=True;"
        )

    def connect(self, descriptor, connect_timeout, command_timeout, autocommit=False):
        import pymssql

        return pymssql.connect(
            server=descriptor.host,
            port=str(descriptor.port),
            user=descriptor.username or None,
            password=descriptor.password or None,
            database=descriptor.database,
            login_timeout=connect_timeout,
            timeout=command_timeout,
            autocommit=autocommit,
        )

    def error_code(self, exc: BaseException) -> str | None:
        # pymssql: args == (number, b"message")
        args = getattr(exc, "args", ())
        if args and isinstance(args[0], int):
            return str(args[0])
        return None


# ---------------------------------------------------------------------------
# PostgreSQL
# ---------------------------------------------------------------------------

class PostgresDialect(Dialect):
    kind = DatabaseKind.POSTGRESQL
    max_identifier_length = 63
    already_exists_codes = frozenset({"42P06", "42P04", "42710", "42P07"})
    type_aliases = MappingProxyType({
        "character varying": "varchar",
        "character": "char",
        "bpchar": "char",
        "timestamp without time zone": "timestamp",
        "timestamp with time zone": "timestamptz",
        "time without time zone": "time",
        "time with time zone": "timetz",
        "int": "integer",
        "int4": "integer",
        "int8": "bigint",
        "int2": "smallint",
        "float8": "double precision",
        "float4": "real",
        "bool": "boolean",
        "decimal": "numeric",
    })

    columns_query = """
        SELECT column_name, data_type, is_nullable, character_maximum_length,
               numeric_precision, numeric_scale, column_default
        FROM information_schema.columns
        WHERE table_schema = %(schema)s AND table_name = %(table)s
        ORDER BY ordinal_position"""
    constraints_query = """
        SELECT tc.constraint_name, tc.constraint_type, kcu.column_name
        FROM information_schema.table_constraints tc
        JOIN information_schema.key_column_usage kcu
          ON tc.constraint_name = kcu.constraint_name
         AND tc.table_schema = kcu.table_schema
         AND tc.table_name = kcu.table_name
        WHERE tc.table_schema = %(schema)s AND tc.table_name = %(table)s
          AND tc.constraint_type IN ('PRIMARY KEY', 'UNIQUE')
        ORDER BY tc.constraint_name, kcu.ordinal_position"""
    table_exists_query = """
        SELECT COUNT(*) FROM information_schema.tables
        WHERE table_schema = %(schema)s AND table_name = %(table)s"""
    list_tables_query = """
        SELECT schemaname, tablename
        FROM pg_tables
        WHERE schemaname NOT IN ('pg_catalog', 'information_schema')
        ORDER BY schemaname, tablename"""
    database_exists_query = "SELECT COUNT(*) FROM pg_database WHERE datname = %(name)s"

    def fold_case(self, name: str) -> str:
        return name.lower()

    def default_schema(self, descriptor: ConnectionDescriptor) -> str:
        return "public"

    def system_database(self, oracle_service: str) -> str:
        return "postgres"

    def truncate_sql(self, table_ref: str) -> str:
        return f"TRUNCATE TABLE {table_ref} CASCADE"

    def render_bool(self, value: bool) -> str:
        # integer literals have no assignment cast to boolean
        return "TRUE" if value else "FALSE"

    def render_binary(self, value: bytes) -> str:
        return f"'\\x{bytes(value).hex()}'"

    def passthrough_type(self, base, max_length, precision, scale) -> str:
        if base == "varchar":
            return f"varchar({max_length})" if _positive(max_length) else "text"
        if base == "char":
            return f"char({max_length})" if _positive(max_length) else "char(1)"
        if base == "numeric":
            return f"numeric({precision},{scale or 0})" if precision is not None else "numeric"
        return base

    def connection_string(self, descriptor: ConnectionDescriptor) -> str:
        return (
            f"Host={descriptor.host};Port={descriptor.port};Database={descriptor.database};"
            f"Username={descriptor.username};Password={descriptor.password};"
        )

    def connect(self, descriptor, connect_timeout, command_timeout, autocommit=False):
        import psycopg2

        conn = psycopg2.connect(
            host=descriptor.host,
            port=descriptor.port,
            dbname=descriptor.database,
            user=descriptor.username,
            password=descriptor.password,
            connect_timeout=connect_timeout,
            options=f"-c statement_timeout={int(command_timeout * 1000)}",
        )
        conn.autocommit = autocommit
        return conn

    def error_code(self, exc: BaseException) -> str | None:
        return getattr(exc, "pgcode", None)


# ---------------------------------------------------------------------------
# Oracle
# ---------------------------------------------------------------------------

# V$RESERVED_WORDS entries flagged RESERVED = 'Y'.
ORACLE_RESERVED_WORDS: frozenset[str] = frozenset({
    "ACCESS", "ADD", "ALL", "ALTER", "AND", "ANY", "AS", "ASC", "AUDIT",
    "BETWEEN", "BY", "CHAR", "CHECK", "CLUSTER", "COLUMN", "COMMENT",
    "COMPRESS", "CONNECT", "CREATE", "CURRENT", "DATE", "DECIMAL", "DEFAULT",
    "DELETE", "DESC", "DISTINCT", "DROP", "ELSE", "EXCLUSIVE", "EXISTS",
    "FILE", "FLOAT", "FOR", "FROM", "GRANT", "GROUP", "HAVING", "IDENTIFIED",
    "IMMEDIATE", "IN", "INCREMENT", "INDEX", "INITIAL", "INSERT", "INTEGER",
    "INTERSECT", "INTO", "IS", "LEVEL", "LIKE", "LOCK", "LONG", "MAXEXTENTS",
    "MINUS", "MLSLABEL", "MODE", "MODIFY", "NOAUDIT", "NOCOMPRESS", "NOT",
    "NOWAIT", "NULL", "NUMBER", "OF", "OFFLINE", "ON", "ONLINE", "OPTION",
    "OR", "ORDER", "PCTFREE", "PRIOR", "PUBLIC", "RAW", "RENAME", "RESOURCE",
    "REVOKE", "ROW", "ROWID", "ROWNUM", "ROWS", "SELECT", "SESSION", "SET",
    "SHARE", "SIZE", "SMALLINT", "START", "SUCCESSFUL", "SYNONYM", "SYSDATE",
    "TABLE", "THEN", "TO", "TRIGGER", "UID", "UNION", "UNIQUE", "UPDATE",
    "USER", "VALIDATE", "VALUES", "VARCHAR", "VARCHAR2", "VIEW", "WHENEVER",
    "WHERE", "WITH",
})

_ORACLE_CLAMPS: Mapping[str, tuple[int, int]] = MappingProxyType({
    # base: (max length, size used when the source has none)
    "varchar2": (4000, 4000),
    "nvarchar2": (2000, 2000),
    "char": (2000, 1),
    "nchar": (1000, 1),
    "raw": (2000, 2000),
})


def _oracle_lob_handler(cursor, metadata):
    """Fetch CLOB / NCLOB / BLOB inline as str / bytes instead of LOB locators."""
    import oracledb

    if metadata.type_code is oracledb.DB_TYPE_CLOB:
        return cursor.var(oracledb.DB_TYPE_LONG, arraysize=cursor.arraysize)
    if metadata.type_code is oracledb.DB_TYPE_NCLOB:
        return cursor.var(oracledb.DB_TYPE_LONG_NVARCHAR, arraysize=cursor.arraysize)
    if metadata.type_code is oracledb.DB_TYPE_BLOB:
        return cursor.var(oracledb.DB_TYPE_LONG_RAW, arraysize=cursor.arraysize)
    return None


class OracleDialect(Dialect):
    kind = DatabaseKind.ORACLE
    bare_upper_identifiers = True
    reserved_words = ORACLE_RESERVED_WORDS
    max_identifier_length = 30
    statement_terminator = ""
    explicit_null_clause = False
    default_before_nullability = True
    strips_generator_defaults = True
    uses_driver_transaction = False
    multi_row_insert = False
    already_exists_codes = frozenset({"1920", "1501", "955"})
    ping_sql = "SELECT 1 FROM DUAL"
    provisions_user = True

    columns_query = """
        SELECT column_name, data_type, nullable,
               CASE WHEN char_length > 0 THEN char_length ELSE data_length END,
               data_precision, data_scale, data_default
        FROM all_tab_columns
        WHERE owner = UPPER(:schema) AND table_name = UPPER(:table)
        ORDER BY column_id"""
    constraints_query = """
        SELECT c.constraint_name, c.constraint_type, cc.column_name
        FROM all_constraints c
        JOIN all_cons_columns cc
          ON c.owner = cc.owner
         AND c.constraint_name = cc.constraint_name
         AND c.table_name = cc.table_name
        WHERE c.owner = UPPER(:schema) AND c.table_name = UPPER(:table)
          AND c.constraint_type IN ('P', 'U')
        ORDER BY c.constraint_name, cc.position"""
    # Schema-independent: migrated objects always land in the connected
    # user's namespace, whatever the source schema was called.
    table_exists_query = "SELECT COUNT(*) FROM all_tables WHERE table_name = :table"
    list_tables_query = """
        SELECT owner, table_name
        FROM all_tables
        WHERE owner NOT IN ('SYS', 'SYSTEM', 'XDB', 'APEX_030200')
        ORDER BY owner, table_name"""
    database_exists_query = "SELECT COUNT(*) FROM all_users WHERE username = UPPER(:name)"

    def fold_case(self, name: str) -> str:
        return name.upper()

    def default_schema(self, descriptor: ConnectionDescriptor) -> str:
        return descriptor.username.upper()

    def system_database(self, oracle_service: str) -> str:
        return oracle_service

    def table_ref(self, schema: str, table: str, fold_case: bool = True) -> str:
        if fold_case:
            return self.quote(table)
        # Source reads address the owner explicitly.
        return f"{self.quote(schema, fold_case)}.{self.quote(table, fold_case)}"

    def table_lookup_params(self, schema: str, table: str) -> dict[str, str]:
        return {"table": self.fold_case(table)}

    def create_database_statements(self, name: str, password: str = "") -> list[str]:
        # Oracle "databases" are users; the password arrives already prepared.
        user = self.quote(name)
        return [
            f'CREATE USER {user} IDENTIFIED BY "{password}"',
            f"GRANT CREATE SESSION, CREATE TABLE, CREATE SEQUENCE, CREATE PROCEDURE TO {user}",
        ]

    def render_binary(self, value: bytes) -> str:
        return f"hextoraw('{bytes(value).hex().upper()}')"

    def render_datetime(self, value: _dt.datetime) -> str:
        return f"TO_DATE('{value.strftime('%Y-%m-%d %H:%M:%S')}','YYYY-MM-DD HH24:MI:SS')"

    def render_date(self, value: _dt.date) -> str:
        return f"TO_DATE('{value.isoformat()}','YYYY-MM-DD')"

    def render_time(self, value: _dt.time) -> str:
        return f"TO_DATE('1970-01-01 {value.strftime('%H:%M:%S')}','YYYY-MM-DD HH24:MI:SS')"

    def render_uuid(self, value: uuid.UUID) -> str:
        return f"hextoraw('{value.hex.upper()}')"

    def normalize_type_name(self, raw_type: str) -> str:
        # TIMESTAMP(6), TIMESTAMP(6) WITH TIME ZONE, INTERVAL DAY(2) TO SECOND(6)
        return _TYPE_ARGS.sub("", super().normalize_type_name(raw_type))

    def passthrough_type(self, base, max_length, precision, scale) -> str:
        clamp = _ORACLE_CLAMPS.get(base)
        if clamp is not None:
            limit, fallback = clamp
            size = min(max_length, limit) if _positive(max_length) else fallback
            return f"{base.upper()}({size})"
        if base == "number":
            return f"NUMBER({precision},{scale or 0})" if precision is not None else "NUMBER"
        return base.upper()

    def connection_string(self, descriptor: ConnectionDescriptor) -> str:
        return (
            "Data Source=(DESCRIPTION=(ADDRESS=(PROTOCOL=TCP)"
            f"(HOST={descriptor.host})(PORT={descriptor.port}))"
            f"(CONNECT_DATA=(SERVICE_NAME={descriptor.database})));"
            f"User Id={descriptor.username};Password={descriptor.password};"
        )

    def connect(self, descriptor, connect_timeout, command_timeout, autocommit=False):
        import oracledb

        conn = oracledb.connect(
            user=descriptor.username,
            password=descriptor.password,
            host=descriptor.host,
            port=descriptor.port,
            service_name=descriptor.database,
            tcp_connect_timeout=connect_timeout,
        )
        conn.call_timeout = int(command_timeout * 1000)
        conn.outputtypehandler = _oracle_lob_handler
        conn.autocommit = autocommit
        return conn

    def error_code(self, exc: BaseException) -> str | None:
        # oracledb wraps an _Error object carrying ``code`` (e.g. 1920 for ORA-01920).
        args = getattr(exc, "args", ())
        code = getattr(args[0], "code", None) if args else None
        return str(code) if code is not None else None


# ---------------------------------------------------------------------------
# Registry
# ---------------------------------------------------------------------------

_REGISTRY: Mapping[DatabaseKind, Dialect] = MappingProxyType({
    DatabaseKind.SQLSERVER: TSqlDialect(),
    DatabaseKind.POSTGRESQL: PostgresDialect(),
    DatabaseKind.ORACLE: OracleDialect(),
})


def get_dialect(kind: "DatabaseKind | str") -> Dialect:
    """
    Look up the dialect for an engine kind (or kind tag).

    Raises:
        UnsupportedDialect: When *kind* is not one of the supported engines.
    """
    resolved = DatabaseKind.parse(kind)
    dialect = _REGISTRY.get(resolved)
    if dialect is None:
        raise UnsupportedDialect(f"No dialect registered for '{kind}'")
    return dialect


def all_dialects() -> tuple[Dialect, ...]:
    return tuple(_REGISTRY.values())
