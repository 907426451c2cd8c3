"""
models/profile.py
-----------------
Persisted connection profile: one source and one target endpoint, saved as
JSON next to the application.

On-disk shape::

    {
        "name": "nightly",
        "timestamp": "2024-05-01T10:00:00",
        "source": {"databaseType": "SqlServer", "server": "…", "port": 1433,
                   "database": "…", "username": "…", "password": "…"},
        "target": {…}
    }

Design Decisions:
    * Keys are matched case-insensitively on load, so hand-edited files
      using ``Server`` or ``DatabaseType`` still load.
    * Saves are atomic (write to ``.tmp`` then rename).
    * The database type is resolved on load; an unknown engine raises
      ``UnsupportedDialect`` there rather than at connection time.
"""
from __future__ import annotations

import json
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Any

from engine.errors import ValidationFailure
from models.connection import DEFAULT_PORTS, ConnectionDescriptor, DatabaseKind


def _lookup(raw: dict, key: str, default: Any = None) -> Any:
    """Case-insensitive ``dict.get``."""
    wanted = key.lower()
    for k, v in raw.items():
        if str(k).lower() == wanted:
            return v
    return default


def endpoint_to_dict(descriptor: ConnectionDescriptor) -> dict[str, Any]:
    return {
        "databaseType": descriptor.kind.value,
        "server": descriptor.host,
        "port": descriptor.port,
        "database": descriptor.database,
        "username": descriptor.username,
        "password": descriptor.password,
    }


def endpoint_from_dict(raw: dict) -> ConnectionDescriptor:
    """
    Build a descriptor from one ``source`` / ``target`` section.

    A missing or empty port falls back to the engine's default port.

    Raises:
        UnsupportedDialect: For an unknown ``databaseType``.
        ValidationFailure:  When the port is not a number.
    """
    if not isinstance(raw, dict):
        raise ValidationFailure("Connection section must be a JSON object")
    kind = DatabaseKind.parse(_lookup(raw, "databaseType", ""))
    port_value = _lookup(raw, "port")
    if port_value in (None, ""):
        port = DEFAULT_PORTS[kind]
    else:
        try:
            port = int(port_value)
        except (TypeError, ValueError) as exc:
            raise ValidationFailure(f"Invalid port '{port_value}'") from exc
    return ConnectionDescriptor(
        kind=kind,
        host=str(_lookup(raw, "server", "") or ""),
        port=port,
        database=str(_lookup(raw, "database", "") or ""),
        username=str(_lookup(raw, "username", "") or ""),
        password=str(_lookup(raw, "password", "") or ""),
    )


@dataclass
class ConnectionProfile:
    """A named source / target pair."""
    source: ConnectionDescriptor
    target: ConnectionDescriptor
    name: str = "default"
    timestamp: str = ""

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "timestamp": self.timestamp,
            "source": endpoint_to_dict(self.source),
            "target": endpoint_to_dict(self.target),
        }

    @classmethod
    def from_dict(cls, raw: dict) -> "ConnectionProfile":
        if not isinstance(raw, dict):
            raise ValidationFailure("Profile must be a JSON object")
        source = _lookup(raw, "source")
        target = _lookup(raw, "target")
        if source is None or target is None:
            raise ValidationFailure("Profile needs both 'source' and 'target' sections")
        return cls(
            source=endpoint_from_dict(source),
            target=endpoint_from_dict(target),
            name=str(_lookup(raw, "name", "default") or "default"),
            timestamp=str(_lookup(raw, "timestamp", "") or ""),
        )


def load_profile(path: Path) -> ConnectionProfile:
    """
    Load a profile from *path*.

    Raises:
        ValidationFailure: If the file is missing or is not valid JSON.
    """
    if not path.exists():
        raise ValidationFailure(f"Connection profile '{path}' not found")
    try:
        raw = json.loads(path.read_text(encoding="utf-8"))
    except json.JSONDecodeError as exc:
        raise ValidationFailure(f"Invalid JSON in profile '{path}': {exc}") from exc
    return ConnectionProfile.from_dict(raw)


def save_profile(path: Path, profile: ConnectionProfile) -> ConnectionProfile:
    """Stamp *profile* with the current time and write it atomically."""
    profile.timestamp = datetime.now().isoformat(timespec="seconds")
    tmp = path.with_suffix(".tmp")
    tmp.write_text(json.dumps(profile.to_dict(), indent=4), encoding="utf-8")
    tmp.replace(path)
    return profile
