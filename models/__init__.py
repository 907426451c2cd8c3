"""models/__init__.py"""
from models.connection import DEFAULT_PORTS, ConnectionDescriptor, DatabaseKind
from models.profile import ConnectionProfile, load_profile, save_profile
from models.schema import (
    ColumnDef,
    ConstraintDef,
    ConstraintKind,
    MigrationMode,
    TableRef,
)

__all__ = [
    "DEFAULT_PORTS",
    "ConnectionDescriptor",
    "DatabaseKind",
    "ConnectionProfile",
    "load_profile",
    "save_profile",
    "ColumnDef",
    "ConstraintDef",
    "ConstraintKind",
    "MigrationMode",
    "TableRef",
]
