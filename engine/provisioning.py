"""
engine/provisioning.py
----------------------
Target database provisioning: existence check and idempotent creation.

SQL Server and PostgreSQL get ``CREATE DATABASE``. Oracle has no
per-application database; there the target "database" is a user (schema),
created with ``CREATE USER … IDENTIFIED BY`` plus the grants a migration
needs.

Design Decisions:
    * Both operations connect to the engine's system database (``master``,
      ``postgres``, or the configured Oracle service) with an autocommit
      client, since CREATE DATABASE cannot run inside a transaction.
    * "Already exists" is success. It is recognized first by the driver's
      structured error code and only then by the configurable message
      allow-list (``ALREADY_EXISTS_SIGNATURES``), which covers drivers that
      expose no code.
"""
from __future__ import annotations

import logging
import secrets
import string
from dataclasses import dataclass
from typing import Callable

from config import CONFIG, AppConfig
from engine.database import SqlClient, open_client
from engine.dialects import Dialect, get_dialect
from engine.errors import AlreadyExistsFailure, DatabaseError, MigrationError, ValidationFailure
from engine.identifiers import validate_identifier
from logger import resolve_logger
from models.connection import ConnectionDescriptor

ClientFactory = Callable[..., SqlClient]

MIN_ORACLE_PASSWORD_LENGTH = 4
GENERATED_PASSWORD_LENGTH = 16
_PASSWORD_SPECIALS = "!@#$%"


@dataclass
class ProvisionResult:
    """What ``create_database`` / ``ensure_database`` did."""
    name: str
    created: bool = False
    already_existed: bool = False
    password: str | None = None  # set only when a user was provisioned
    password_generated: bool = False


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def generate_password(length: int = GENERATED_PASSWORD_LENGTH) -> str:
    """Random password with at least one upper, lower, digit and special character."""
    rng = secrets.SystemRandom()
    alphabet = string.ascii_letters + string.digits + _PASSWORD_SPECIALS
    chars = [
        secrets.choice(string.ascii_uppercase),
        secrets.choice(string.ascii_lowercase),
        secrets.choice(string.digits),
        secrets.choice(_PASSWORD_SPECIALS),
    ]
    chars += [secrets.choice(alphabet) for _ in range(max(0, length - len(chars)))]
    rng.shuffle(chars)
    return "".join(chars)


def needs_generated_password(password: str) -> bool:
    return not password or not password.strip() or len(password) < MIN_ORACLE_PASSWORD_LENGTH


def prepare_user_password(password: str, logger: logging.Logger | None = None) -> str:
    """
    Password to embed in ``IDENTIFIED BY "…"``.

    Empty or too-short passwords are replaced by :func:`generate_password`;
    single quotes are doubled.

    Raises:
        ValidationFailure: If the password contains a double quote, which
            cannot appear inside a quoted Oracle password.
    """
    logger = resolve_logger(logger, __name__)
    if needs_generated_password(password):
        logger.info("Password empty or shorter than %d characters; generating one",
                    MIN_ORACLE_PASSWORD_LENGTH)
        return generate_password()
    if '"' in password:
        raise ValidationFailure("Password must not contain a double quote")
    return password.replace("'", "''")


def is_already_exists_error(
    exc: BaseException, dialect: Dialect, signatures: tuple[str, ...] | None = None
) -> bool:
    """
    True when *exc* means the database / user is already there.

    Structured driver codes are checked first; the lowercase message
    allow-list is the fallback.
    """
    code = getattr(exc, "code", None)
    if code is None:
        code = dialect.error_code(exc)
    if code is not None and str(code).upper() in {c.upper() for c in dialect.already_exists_codes}:
        return True
    message = str(exc).lower()
    allow_list = CONFIG.migration.already_exists_signatures if signatures is None else signatures
    return any(signature in message for signature in allow_list)


def _system_descriptor(descriptor: ConnectionDescriptor, config: AppConfig) -> ConnectionDescriptor:
    dialect = get_dialect(descriptor.kind)
    return descriptor.with_database(dialect.system_database(config.db.oracle_system_service))


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------

def database_exists(
    descriptor: ConnectionDescriptor,
    client_factory: ClientFactory = open_client,
    config: AppConfig = CONFIG,
    logger: logging.Logger | None = None,
) -> bool:
    """
    Check, from the system database, whether ``descriptor.database`` exists.

    Failures (including connection failures) are logged and reported as
    ``False``.
    """
    logger = resolve_logger(logger, __name__)
    dialect = get_dialect(descriptor.kind)
    try:
        with client_factory(_system_descriptor(descriptor, config), autocommit=True) as client:
            count = client.scalar(dialect.database_exists_query, {"name": descriptor.database})
    except MigrationError as exc:
        logger.warning("Could not check whether %s exists: %s", descriptor.database, exc)
        return False
    return bool(count) and int(count) > 0


def create_database(
    descriptor: ConnectionDescriptor,
    client_factory: ClientFactory = open_client,
    config: AppConfig = CONFIG,
    logger: logging.Logger | None = None,
) -> ProvisionResult:
    """
    Create ``descriptor.database`` (or, for Oracle, the user of that name).

    Returns:
        :class:`ProvisionResult`; ``already_existed`` is set when the engine
        reported the object as existing.

    Raises:
        ValidationFailure: For an invalid database name.
        DatabaseError / ConnectionFailure: For any other engine error.
    """
    logger = resolve_logger(logger, __name__)
    dialect = get_dialect(descriptor.kind)
    name = validate_identifier(descriptor.database)
    password = prepare_user_password(descriptor.password, logger) if dialect.provisions_user else ""
    result = ProvisionResult(
        name=name,
        password=password or None,
        password_generated=dialect.provisions_user and needs_generated_password(descriptor.password),
    )

    try:
        with client_factory(_system_descriptor(descriptor, config), autocommit=True) as client:
            statements = dialect.create_database_statements(name, password)
            # Only the first statement can hit "already exists"; grants follow it.
            try:
                client.execute(statements[0])
            except DatabaseError as exc:
                if not is_already_exists_error(
                    exc, dialect, config.migration.already_exists_signatures
                ):
                    raise
                raise AlreadyExistsFailure(str(exc)) from exc
            for statement in statements[1:]:
                client.execute(statement)
    except AlreadyExistsFailure as exc:
        logger.info("%s already exists, skipping creation (%s)", name, exc)
        result.already_existed = True
        return result

    logger.info("Created %s on %s", name, descriptor.host)
    if result.password_generated:
        logger.warning("Generated password for user %s: %s", name, result.password)
    result.created = True
    return result


def ensure_database(
    descriptor: ConnectionDescriptor,
    client_factory: ClientFactory = open_client,
    config: AppConfig = CONFIG,
    logger: logging.Logger | None = None,
) -> ProvisionResult:
    """Create the target database / user unless it already exists."""
    logger = resolve_logger(logger, __name__)
    if database_exists(descriptor, client_factory, config, logger):
        logger.info("Target %s already exists", descriptor.database)
        return ProvisionResult(name=descriptor.database, already_existed=True)
    return create_database(descriptor, client_factory, config, logger)
