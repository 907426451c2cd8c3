"""
logger.py
---------
Logging for the migrator: one configured hierarchy plus the helpers the
engine uses to take a caller-supplied logger.

Design Decisions:
    * Handlers live on the "dbmigrator" logger only. Modules take a child
      via ``get_logger(__name__)`` and never add handlers of their own.
    * Engine classes and functions accept an optional ``logging.Logger``;
      :func:`resolve_logger` returns it or the module's own logger, so the
      CLI, tests or an embedding UI decide where diagnostics go.
    * :func:`table_logger` wraps a logger so every line written while one
      table migrates starts with that table's name.
    * Console level follows LOG_LEVEL and the CLI ``-v`` flag. The optional
      LOG_FILE handler always records DEBUG.
"""
from __future__ import annotations

import logging
import sys
from pathlib import Path
from typing import Any, MutableMapping, Union

from config import CONFIG, get_log_level

ROOT_LOGGER_NAME = "dbmigrator"
_CONSOLE_HANDLER = "dbmigrator-console"
_FILE_HANDLER = "dbmigrator-file"
_CONSOLE_FORMAT = "%(asctime)s [%(levelname)-8s] %(name)s: %(message)s"
_FILE_FORMAT = "%(asctime)s [%(levelname)s] %(name)s (%(filename)s:%(lineno)d): %(message)s"
_DATE_FORMAT = "%Y-%m-%dT%H:%M:%S"

LoggerLike = Union[logging.Logger, logging.LoggerAdapter]


def _named_handler(root: logging.Logger, name: str) -> logging.Handler | None:
    return next((h for h in root.handlers if h.get_name() == name), None)


def _sync_root_level(root: logging.Logger, console_level: int) -> None:
    # The file handler records DEBUG, so the root must let DEBUG through.
    has_file = _named_handler(root, _FILE_HANDLER) is not None
    root.setLevel(logging.DEBUG if has_file else console_level)


def configure_logging(level: int | None = None, log_file: str | None = None) -> logging.Logger:
    """
    Attach the console (and optional file) handler to the root logger.

    Safe to call repeatedly: a handler that is already attached is reused,
    only its level is updated.
    """
    root = logging.getLogger(ROOT_LOGGER_NAME)
    level = get_log_level() if level is None else level

    console = _named_handler(root, _CONSOLE_HANDLER)
    if console is None:
        console = logging.StreamHandler(sys.stderr)
        console.set_name(_CONSOLE_HANDLER)
        console.setFormatter(logging.Formatter(fmt=_CONSOLE_FORMAT, datefmt=_DATE_FORMAT))
        root.addHandler(console)
    console.setLevel(level)

    log_file = CONFIG.migration.log_file if log_file is None else log_file
    if log_file and _named_handler(root, _FILE_HANDLER) is None:
        log_path = Path(log_file)
        try:
            log_path.parent.mkdir(parents=True, exist_ok=True)
            file_handler = logging.FileHandler(log_path, encoding="utf-8")
        except OSError as exc:
            root.warning("Could not create log file '%s': %s", log_path, exc)
        else:
            file_handler.set_name(_FILE_HANDLER)
            file_handler.setLevel(logging.DEBUG)
            file_handler.setFormatter(logging.Formatter(fmt=_FILE_FORMAT, datefmt=_DATE_FORMAT))
            root.addHandler(file_handler)
    _sync_root_level(root, level)
    return root


configure_logging()


def get_logger(name: str) -> logging.Logger:
    """
    Return a child logger scoped to the given name.

    Example::

        log = get_logger(__name__)
        log.info("Copying %s", table)
    """
    return logging.getLogger(f"{ROOT_LOGGER_NAME}.{name}")


def resolve_logger(logger: LoggerLike | None, name: str) -> LoggerLike:
    """The injected *logger* when given, else the child logger for *name*."""
    return logger if logger is not None else get_logger(name)


class TableLogAdapter(logging.LoggerAdapter):
    """Prefixes every message with ``[<table>]``."""

    def process(self, msg: Any, kwargs: MutableMapping[str, Any]) -> tuple[Any, MutableMapping[str, Any]]:
        return f"[{self.extra['table']}] {msg}", kwargs


def table_logger(logger: LoggerLike, table: str) -> TableLogAdapter:
    return TableLogAdapter(logger, {"table": table})


def set_verbosity(level: int) -> None:
    """Adjust the root logger and its console handler at runtime (CLI -v)."""
    root = logging.getLogger(ROOT_LOGGER_NAME)
    _sync_root_level(root, level)
    console = _named_handler(root, _CONSOLE_HANDLER)
    if console is not None:
        console.setLevel(level)
