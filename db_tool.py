#!/usr/bin/env python3
"""Operator commands for backing up and maintaining the shared store."""
from __future__ import annotations

import argparse
import json
import logging
import sys
from pathlib import Path
from typing import Any, Callable, Dict, Optional, Sequence

from backup import BackupStatus
from backup.schedule import format_timestamp
from coordinator import StoreCoordinator, build_coordinator
from core.db import StoreError
from core.logging_utils import configure_logging
from core.paths import resolve_working_dir
from core.settings import load_settings
from core.versioning import UNKNOWN_VERSION, parse_version
from db_maint import normalize_check_options

LOGGER = logging.getLogger("storekeeper.db_tool")

EXIT_OK = 0
EXIT_FAILED = 1
EXIT_USAGE = 2


def _emit(summary: Dict[str, Any]) -> None:
    print(json.dumps(summary, indent=2))


def cmd_backup(services: StoreCoordinator, _args: argparse.Namespace) -> int:
    outcome = services.backups.backup_database()
    _emit(
        {
            "status": outcome.status.value,
            "artifact": outcome.artifact,
            "degraded": outcome.degraded,
            "stage": outcome.stage.value,
        }
    )
    return EXIT_FAILED if outcome.status is BackupStatus.FAILED else EXIT_OK


def cmd_backup_status(services: StoreCoordinator, _args: argparse.Namespace) -> int:
    schedule = services.backups.schedule
    start = schedule.last_start()
    end = schedule.last_end()
    _emit(
        {
            "in_progress": services.backups.is_backup_in_progress(),
            "last_start": format_timestamp(start) if start else None,
            "last_end": format_timestamp(end) if end else None,
        }
    )
    return EXIT_OK


def cmd_check_tables(services: StoreCoordinator, args: argparse.Namespace) -> int:
    options = args.options if args.options is not None else services.check_options
    try:
        normalize_check_options(options)
    except ValueError as exc:
        LOGGER.error("%s", exc)
        return EXIT_USAGE
    ok = services.auditor.check_tables(repair=bool(args.repair), options=options)
    _emit({"ok": ok, "repair": bool(args.repair), "options": options})
    return EXIT_OK if ok else EXIT_FAILED


def cmd_repair_tables(services: StoreCoordinator, args: argparse.Namespace) -> int:
    ok = services.auditor.repair_tables(list(args.tables))
    _emit({"ok": ok, "tables": list(args.tables)})
    return EXIT_OK if ok else EXIT_FAILED


def cmd_list_tables(services: StoreCoordinator, args: argparse.Namespace) -> int:
    tables = services.auditor.list_tables(args.engine or None)
    _emit({"tables": tables, "count": len(tables)})
    return EXIT_OK


def cmd_version(services: StoreCoordinator, args: argparse.Namespace) -> int:
    current = services.version_probe.version()
    summary: Dict[str, Any] = {"version": current.raw, "known": current.known}
    if not current.known:
        _emit(summary)
        return EXIT_FAILED
    summary["parsed"] = list(current.as_tuple())
    if args.compare:
        wanted = parse_version(args.compare)
        if not wanted.known:
            LOGGER.error("--compare needs a version such as 5.0.22, got %r", args.compare)
            return EXIT_USAGE
        result = services.version_probe.compare(*(max(part, 0) for part in wanted.as_tuple()))
        if result == UNKNOWN_VERSION:
            return EXIT_FAILED
        summary["compare"] = args.compare
        summary["result"] = (result > 0) - (result < 0)
    _emit(summary)
    return EXIT_OK


def cmd_clients(services: StoreCoordinator, _args: argparse.Namespace) -> int:
    _emit({"store": services.store.params.name, "clients": services.auditor.count_clients()})
    return EXIT_OK


def cmd_lock_schema(services: StoreCoordinator, _args: argparse.Namespace) -> int:
    lock = services.schema_lock()
    acquired = lock.acquire()
    try:
        _emit({"acquired": acquired})
    finally:
        lock.release()
    return EXIT_OK if acquired else EXIT_FAILED


_COMMANDS: Dict[str, Callable[[StoreCoordinator, argparse.Namespace], int]] = {
    "backup": cmd_backup,
    "backup-status": cmd_backup_status,
    "check-tables": cmd_check_tables,
    "repair-tables": cmd_repair_tables,
    "list-tables": cmd_list_tables,
    "version": cmd_version,
    "clients": cmd_clients,
    "lock-schema": cmd_lock_schema,
}


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Back up and maintain the shared store")
    parser.add_argument("--working-dir", dest="working_dir", default=None, help="Directory holding settings.json")
    parser.add_argument("--log", dest="log_json", action="store_true", help="Also write JSON logs to the logs directory")
    parser.add_argument("--debug", action="store_true", help="Enable debug logging")
    sub = parser.add_subparsers(dest="command", required=True)

    sub.add_parser("backup", help="Back up the store now")
    sub.add_parser("backup-status", help="Report the last backup run and whether one looks in progress")

    check = sub.add_parser("check-tables", help="Run CHECK TABLE over the storage-engine tables")
    check.add_argument("--repair", action="store_true", help="Repair tables that are not OK")
    check.add_argument("--options", default=None, help="CHECK TABLE options (default from settings.json)")

    repair = sub.add_parser("repair-tables", help="Run REPAIR TABLE; only while no clients are connected")
    repair.add_argument("tables", nargs="+", help="Tables to repair, as schema.table")

    listing = sub.add_parser("list-tables", help="List base tables of the store")
    listing.add_argument("--engine", action="append", default=None, help="Restrict to a storage engine (repeatable)")

    version = sub.add_parser("version", help="Show the database server version")
    version.add_argument("--compare", default=None, help="Compare against X.Y.Z")

    sub.add_parser("clients", help="Estimate the number of client programs using the store")
    sub.add_parser("lock-schema", help="Acquire and release the schema upgrade lock")
    return parser


def main(argv: Optional[Sequence[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    working_dir = Path(args.working_dir).expanduser() if args.working_dir else resolve_working_dir()
    log_cfg = load_settings(working_dir).get("logging") or {}
    configure_logging(
        working_dir,
        level="DEBUG" if args.debug else str(log_cfg.get("level") or "INFO"),
        json_file=bool(args.log_json or log_cfg.get("json")),
    )

    services = build_coordinator(working_dir)
    try:
        return _COMMANDS[args.command](services, args)
    except StoreError as exc:
        LOGGER.error("%s failed: %s", args.command, exc)
        return EXIT_FAILED
    finally:
        services.close()


if __name__ == "__main__":  # pragma: no cover
    sys.exit(main())
