"""
engine/errors.py
----------------
Error kinds raised by the migration engine.

Every exception the engine raises derives from :class:`MigrationError`, so
callers can catch one type at the run boundary while still branching on the
specific kind. Messages always carry the originating driver text.
"""
from __future__ import annotations


class MigrationError(Exception):
    """Base class for all engine failures."""


class DatabaseError(MigrationError):
    """A driver-level error surfaced by :class:`engine.database.SqlClient`.

    ``code`` carries the structured driver error code when one is
    available (SQLSTATE, SQL Server error number, ORA number).
    """

    def __init__(self, message: str, code: str | int | None = None) -> None:
        super().__init__(message)
        self.code = code


class ConnectionFailure(DatabaseError):
    """Opening or authenticating a connection failed."""


class IntrospectionError(MigrationError):
    """A system-catalog query failed; DDL cannot be produced for the table."""


class ConstraintCreationFailure(MigrationError):
    """A single PRIMARY KEY / UNIQUE constraint could not be created."""


class BatchInsertFailure(MigrationError):
    """A data-copy batch failed; the table's transaction was rolled back."""


class AlreadyExistsFailure(MigrationError):
    """The target database or user already exists (treated as success)."""


class ValidationFailure(MigrationError):
    """Input was rejected before any SQL was issued."""


class InvalidIdentifier(ValidationFailure):
    """An identifier contains characters outside ``[A-Za-z0-9_]`` or is blank."""


class UnsupportedDialect(ValidationFailure):
    """The configured database kind is not one of the supported engines."""


class MissingTablesFailure(ValidationFailure):
    """DataOnly pre-flight found selected tables absent from the target."""

    def __init__(self, missing: list[str]) -> None:
        self.missing = list(missing)
        shown = ", ".join(self.missing[:5])
        extra = len(self.missing) - 5
        suffix = f" and {extra} more" if extra > 0 else ""
        super().__init__(
            f"{len(self.missing)} table(s) missing in target database: {shown}{suffix}. "
            "DataOnly mode requires every selected table to exist already."
        )
