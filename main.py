"""
main.py
-------
Command-line entry point for the cross-engine migrator.

All subcommands read the source / target endpoints from a connection
profile (``PROFILE_FILE``, overridable with ``--profile``).

Usage::

    crossdb-migrate test
    crossdb-migrate tables
    crossdb-migrate ddl --tables dbo.Customers
    crossdb-migrate migrate --mode SchemaAndData --all
    crossdb-migrate drop --tables dbo.Customers
"""
from __future__ import annotations

import argparse
import logging
import sys
from pathlib import Path

from config import CONFIG
from engine import introspector
from engine.database import open_client, test_connection
from engine.errors import MigrationError
from engine.orchestrator import MigrationOrchestrator, ProgressEvent
from logger import get_logger, set_verbosity
from models.profile import ConnectionProfile, load_profile
from models.schema import MigrationMode, TableRef

log = get_logger(__name__)


def _print_progress(event: ProgressEvent) -> None:
    print(
        f"\r{event.table:<40} {event.phase.value:<8} "
        f"{event.table_percent:>3}%  overall {event.overall_percent:>3}%",
        end="" if event.overall_percent < 100 else "\n",
        flush=True,
    )


def _select_tables(profile: ConnectionProfile, args: argparse.Namespace) -> list[TableRef]:
    """Source tables marked ``selected`` according to ``--tables`` / ``--all``."""
    with open_client(profile.source, autocommit=True) as client:
        tables = introspector.list_tables(client, with_row_counts=False)

    if getattr(args, "all", False):
        for table in tables:
            table.selected = True
        return tables

    wanted = {name.lower() for name in (args.tables or [])}
    for table in tables:
        table.selected = (
            table.qualified_name.lower() in wanted or table.name.lower() in wanted
        )
    unknown = wanted - {t.qualified_name.lower() for t in tables} - {t.name.lower() for t in tables}
    if unknown:
        log.warning("Unknown table(s) ignored: %s", ", ".join(sorted(unknown)))
    return tables


# ---------------------------------------------------------------------------
# Subcommands
# ---------------------------------------------------------------------------

def cmd_test(profile: ConnectionProfile, args: argparse.Namespace) -> int:
    ok = True
    for label, descriptor in (("source", profile.source), ("target", profile.target)):
        passed = test_connection(descriptor)
        print(f"{label:<7} {descriptor.describe():<60} {'OK' if passed else 'FAILED'}")
        ok = ok and passed
    return 0 if ok else 1


def cmd_tables(profile: ConnectionProfile, args: argparse.Namespace) -> int:
    with open_client(profile.source, autocommit=True) as client:
        tables = introspector.list_tables(client, with_row_counts=True)
    for table in tables:
        print(f"{table.qualified_name:<60} {table.row_count:>12,}")
    print(f"{len(tables)} table(s)")
    return 0


def cmd_ddl(profile: ConnectionProfile, args: argparse.Namespace) -> int:
    orchestrator = MigrationOrchestrator(profile.source, profile.target)
    for table in _select_tables(profile, args):
        if not table.selected:
            continue
        print(f"-- {table.qualified_name}")
        for statement in orchestrator.preview_ddl(table):
            print(statement)
            print()
    return 0


def cmd_migrate(profile: ConnectionProfile, args: argparse.Namespace) -> int:
    orchestrator = MigrationOrchestrator(
        profile.source,
        profile.target,
        progress_cb=None if args.quiet else _print_progress,
        batch_size=args.batch_size,
    )
    result = orchestrator.run(_select_tables(profile, args), args.mode)
    print(result)
    return 0 if result.success else 1


def cmd_drop(profile: ConnectionProfile, args: argparse.Namespace) -> int:
    orchestrator = MigrationOrchestrator(profile.source, profile.target)
    failed = 0
    for table in _select_tables(profile, args):
        if table.selected and not orchestrator.drop_table(table):
            failed += 1
    return 0 if failed == 0 else 1


# ---------------------------------------------------------------------------
# Parser
# ---------------------------------------------------------------------------

def _add_table_selection(parser: argparse.ArgumentParser) -> None:
    group = parser.add_mutually_exclusive_group(required=True)
    group.add_argument("--tables", nargs="+", metavar="TABLE",
                       help="Tables to process, as schema.table or bare table name")
    group.add_argument("--all", action="store_true", help="Process every source table")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="crossdb-migrate",
        description="Migrate tables between SQL Server, PostgreSQL and Oracle",
    )
    parser.add_argument("--profile", type=Path, default=CONFIG.migration.profile_file,
                        help=f"Connection profile JSON (default: {CONFIG.migration.profile_file})")
    parser.add_argument("-v", "--verbose", action="count", default=0,
                        help="Increase log verbosity (-v info, -vv debug)")
    sub = parser.add_subparsers(dest="command", required=True)

    p_test = sub.add_parser("test", help="Test the source and target connections")
    p_test.set_defaults(func=cmd_test)

    p_tables = sub.add_parser("tables", help="List source tables with row counts")
    p_tables.set_defaults(func=cmd_tables)

    p_ddl = sub.add_parser("ddl", help="Print the target DDL without executing it")
    _add_table_selection(p_ddl)
    p_ddl.set_defaults(func=cmd_ddl)

    p_migrate = sub.add_parser("migrate", help="Run a migration")
    _add_table_selection(p_migrate)
    p_migrate.add_argument("--mode", default=MigrationMode.SCHEMA_AND_DATA.value,
                           choices=[m.value for m in MigrationMode],
                           help="What to copy (default: SchemaAndData)")
    p_migrate.add_argument("--batch-size", type=int, default=None,
                           help=f"Rows per batch (default: {CONFIG.migration.batch_size})")
    p_migrate.add_argument("-q", "--quiet", action="store_true", help="No progress line")
    p_migrate.set_defaults(func=cmd_migrate)

    p_drop = sub.add_parser("drop", help="Drop tables on the target")
    _add_table_selection(p_drop)
    p_drop.set_defaults(func=cmd_drop)

    return parser


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    if args.verbose:
        set_verbosity(logging.DEBUG if args.verbose > 1 else logging.INFO)

    try:
        profile = load_profile(args.profile)
        return args.func(profile, args)
    except MigrationError as exc:
        log.error("%s", exc)
        print(f"Error: {exc}", file=sys.stderr)
        return 2


if __name__ == "__main__":
    sys.exit(main())
