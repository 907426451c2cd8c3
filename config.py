"""
config.py
---------
Centralised configuration management for the cross-database migrator.

Loads settings from environment variables (with .env file support via
python-dotenv). Provides typed settings as frozen dataclasses so
configuration is immutable at runtime.

Design Decision:
    Using a dataclass with class-level defaults means the tool works
    "out of the box" without any .env file, while still allowing
    environment-based overrides for production deployments.
"""
from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path

from dotenv import load_dotenv

_env_path = Path(__file__).parent / ".env"
if _env_path.exists():
    load_dotenv(dotenv_path=_env_path)


# Error-message fragments that mean "the database / user is already there".
# Consulted only when the driver exposes no structured error code.
DEFAULT_ALREADY_EXISTS_SIGNATURES: tuple[str, ...] = (
    "already exists",
    "esiste già",
    "42p06",
    "ora-01501",
    "ora-01920",
    "already exists as another object type",
)


def _env_bool(name: str, default: str) -> bool:
    return os.getenv(name, default).strip().lower() in ("1", "true", "yes", "on")


def _env_list(name: str, default: tuple[str, ...]) -> tuple[str, ...]:
    raw = os.getenv(name)
    if raw is None:
        return default
    return tuple(part.strip().lower() for part in raw.split(",") if part.strip())


@dataclass(frozen=True)
class DatabaseConfig:
    """Driver-level connection settings shared by every endpoint."""
    connect_timeout: int = field(
        default_factory=lambda: int(os.getenv("DB_CONNECT_TIMEOUT", "15"))
    )
    command_timeout: int = field(
        default_factory=lambda: int(os.getenv("DB_COMMAND_TIMEOUT", "300"))
    )
    max_retries: int = field(
        default_factory=lambda: int(os.getenv("DB_MAX_RETRIES", "3"))
    )
    retry_delay: float = field(
        default_factory=lambda: float(os.getenv("DB_RETRY_DELAY", "1.0"))
    )
    oracle_system_service: str = field(
        default_factory=lambda: os.getenv("ORACLE_SYSTEM_SERVICE", "XE")
    )
    # Credentials are NOT stored here; they come from the connection
    # profile or the command line.


@dataclass(frozen=True)
class MigrationConfig:
    """Migration engine settings."""
    batch_size: int = field(
        default_factory=lambda: int(os.getenv("MIGRATION_BATCH_SIZE", "1000"))
    )
    prefetch_batches: int = field(
        default_factory=lambda: int(os.getenv("MIGRATION_PREFETCH_BATCHES", "2"))
    )
    existence_check_concurrency: int = field(
        default_factory=lambda: int(os.getenv("MIGRATION_EXISTENCE_CONCURRENCY", "10"))
    )
    create_target_database: bool = field(
        default_factory=lambda: _env_bool("MIGRATION_CREATE_TARGET_DATABASE", "true")
    )
    already_exists_signatures: tuple[str, ...] = field(
        default_factory=lambda: _env_list(
            "ALREADY_EXISTS_SIGNATURES", DEFAULT_ALREADY_EXISTS_SIGNATURES
        )
    )
    profile_file: Path = field(
        default_factory=lambda: Path(os.getenv("PROFILE_FILE", "connection_profile.json"))
    )
    log_level: str = field(
        default_factory=lambda: os.getenv("LOG_LEVEL", "INFO").upper()
    )
    log_file: str | None = field(
        default_factory=lambda: os.getenv("LOG_FILE")  # None → log to stderr only
    )


@dataclass(frozen=True)
class AppConfig:
    """Root application configuration."""
    db: DatabaseConfig = field(default_factory=DatabaseConfig)
    migration: MigrationConfig = field(default_factory=MigrationConfig)
    app_name: str = "Cross-Database Migrator"
    app_version: str = "1.0.0"


def load_config() -> AppConfig:
    """
    Build and return the application configuration.

    Returns:
        AppConfig: Fully populated (and frozen) configuration object.

    Example::

        cfg = load_config()
        print(cfg.db.command_timeout)     # 300
        print(cfg.migration.batch_size)   # 1000
    """
    return AppConfig()


# Module-level singleton used throughout the application
CONFIG: AppConfig = load_config()


def get_log_level() -> int:
    """Convert string log level from config to logging module constant."""
    level = getattr(logging, CONFIG.migration.log_level, None)
    if not isinstance(level, int):
        return logging.INFO
    return level
