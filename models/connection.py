"""
models/connection.py
--------------------
Connection endpoint types.

Design Decision:
    ``ConnectionDescriptor`` is a frozen dataclass so a validated endpoint
    can be handed to worker threads (existence pre-flight) without any
    risk of shared mutation. The password is kept out of ``repr`` so that
    descriptors can be logged freely.
"""
from __future__ import annotations

from dataclasses import dataclass, field, replace
from enum import Enum

from engine.errors import UnsupportedDialect, ValidationFailure


class DatabaseKind(str, Enum):
    """The three supported engines. Values match the persisted profile tags."""
    SQLSERVER = "SqlServer"
    POSTGRESQL = "PostgreSQL"
    ORACLE = "Oracle"

    @classmethod
    def parse(cls, value: "str | DatabaseKind") -> "DatabaseKind":
        """
        Resolve a database-kind tag, case-insensitively.

        Accepts the canonical tags plus a few common aliases
        (``mssql``, ``postgres``, ``pg`` …).

        Raises:
            UnsupportedDialect: For anything that is not one of the three engines.
        """
        if isinstance(value, DatabaseKind):
            return value
        key = str(value or "").strip().lower()
        kind = _KIND_ALIASES.get(key)
        if kind is None:
            raise UnsupportedDialect(f"Database type '{value}' is not supported")
        return kind


_KIND_ALIASES: dict[str, DatabaseKind] = {
    "sqlserver": DatabaseKind.SQLSERVER,
    "mssql": DatabaseKind.SQLSERVER,
    "tsql": DatabaseKind.SQLSERVER,
    "postgresql": DatabaseKind.POSTGRESQL,
    "postgres": DatabaseKind.POSTGRESQL,
    "pg": DatabaseKind.POSTGRESQL,
    "oracle": DatabaseKind.ORACLE,
}

DEFAULT_PORTS: dict[DatabaseKind, int] = {
    DatabaseKind.SQLSERVER: 1433,
    DatabaseKind.POSTGRESQL: 5432,
    DatabaseKind.ORACLE: 1521,
}


@dataclass(frozen=True)
class ConnectionDescriptor:
    """
    One database endpoint.

    Attributes:
        kind:     Engine kind.
        host:     Server host name or address.
        port:     TCP port.
        database: Database name (SQL Server / PostgreSQL) or service name (Oracle).
        username: Login; may be empty for SQL Server integrated security.
        password: Secret; never included in ``repr``.
    """
    kind: DatabaseKind
    host: str
    port: int
    database: str
    username: str = ""
    password: str = field(default="", repr=False)

    def validate(self) -> "ConnectionDescriptor":
        """
        Check required fields before any connection attempt.

        Returns:
            ``self`` so the call can be chained.

        Raises:
            ValidationFailure: When a required field is missing or malformed.
        """
        problems: list[str] = []
        if not (self.host or "").strip():
            problems.append("server is required")
        if not isinstance(self.port, int) or self.port <= 0:
            problems.append(f"port must be a positive integer (got {self.port!r})")
        if not (self.database or "").strip():
            problems.append("database is required")
        if self.kind != DatabaseKind.SQLSERVER and not (self.username or "").strip():
            # Only SQL Server can fall back to integrated security.
            problems.append("username is required")
        if problems:
            raise ValidationFailure(
                f"Invalid {self.kind.value} connection: " + "; ".join(problems)
            )
        return self

    def connection_string(self) -> str:
        """ADO-style connection string in the engine's own format."""
        from engine.dialects import get_dialect  # engine.dialects imports this module

        return get_dialect(self.kind).connection_string(self)

    def with_database(self, database: str) -> "ConnectionDescriptor":
        """Return a copy pointing at another database / service on the same server."""
        return replace(self, database=database)

    def describe(self) -> str:
        """Human-readable endpoint for logs (never includes the password)."""
        user = self.username or "<integrated>"
        return f"{self.kind.value} {user}@{self.host}:{self.port}/{self.database}"
