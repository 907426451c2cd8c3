"""
models/schema.py
----------------
Typed records exchanged between the introspector, DDL synthesizer, data
copy engine and orchestrator.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum

from engine.errors import ValidationFailure
from models.connection import DatabaseKind


class MigrationMode(str, Enum):
    """What the orchestrator does for every selected table."""
    SCHEMA_AND_DATA = "SchemaAndData"
    SCHEMA_ONLY = "SchemaOnly"
    DATA_ONLY = "DataOnly"

    @classmethod
    def parse(cls, value: "str | MigrationMode") -> "MigrationMode":
        """Accept ``SchemaOnly``, ``schema-only``, ``schema_only`` …"""
        if isinstance(value, MigrationMode):
            return value
        key = str(value).replace("-", "").replace("_", "").lower()
        for mode in cls:
            if mode.value.lower() == key:
                return mode
        raise ValidationFailure(f"Unknown migration mode '{value}'")

    @property
    def copies_schema(self) -> bool:
        return self is not MigrationMode.DATA_ONLY

    @property
    def copies_data(self) -> bool:
        return self is not MigrationMode.SCHEMA_ONLY


class ConstraintKind(str, Enum):
    PRIMARY_KEY = "PRIMARY KEY"
    UNIQUE = "UNIQUE"

    @classmethod
    def parse(cls, value: str) -> "ConstraintKind":
        key = (value or "").strip().upper()
        if key in ("P", "PRIMARY KEY", "PRIMARY_KEY"):
            return cls.PRIMARY_KEY
        if key in ("U", "UNIQUE"):
            return cls.UNIQUE
        raise ValueError(f"Unsupported constraint type '{value}'")


@dataclass
class TableRef:
    """
    A table discovered for migration.

    ``selected`` is flipped by the caller (CLI / UI) before the run starts;
    ``row_count`` is best-effort and 0 when counting failed.
    """
    schema: str
    name: str
    row_count: int = 0
    selected: bool = False

    @property
    def qualified_name(self) -> str:
        return f"{self.schema}.{self.name}" if self.schema else self.name

    def __str__(self) -> str:
        return self.qualified_name


@dataclass(frozen=True)
class ColumnDef:
    """One column as read from the source catalog.

    ``max_length`` is ``-1`` for unbounded (``MAX``) character/binary types.
    """
    name: str
    data_type: str
    is_nullable: bool
    source_kind: DatabaseKind
    max_length: int | None = None
    precision: int | None = None
    scale: int | None = None
    default: str | None = None

    @property
    def is_max_length(self) -> bool:
        return self.max_length == -1


@dataclass(frozen=True)
class ConstraintDef:
    """A PRIMARY KEY or UNIQUE constraint with its ordered column list."""
    name: str
    kind: ConstraintKind
    columns: tuple[str, ...] = field(default_factory=tuple)

    @property
    def is_empty(self) -> bool:
        return len(self.columns) == 0
