"""Wire the store, settings and maintenance services together."""
from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Optional

from sqlalchemy.engine import Engine

from backup import BackupService
from core.db import DatabaseParams, DEFAULT_CONNECT_TIMEOUT_S, Store
from core.paths import resolve_working_dir
from core.schema_lock import SchemaLock
from core.settings import SettingsStore
from core.versioning import VersionProbe
from db_maint import DEFAULT_CHECK_ENGINES, DEFAULT_CHECK_OPTIONS, TableAuditor

LOGGER = logging.getLogger("storekeeper.coordinator")

SCHEMA_VERSION_SETTING = "DBSchemaVer"
VERSION_OVERRIDE_SETTING = "DBMSVersionOverride"


def _section(payload: Dict[str, Any], name: str) -> Dict[str, Any]:
    value = payload.get(name)
    return value if isinstance(value, dict) else {}


@dataclass(slots=True)
class StoreCoordinator:
    """One process-wide set of collaborators bound to a single store."""

    working_dir: Path
    settings: SettingsStore
    store: Store
    version_probe: VersionProbe
    auditor: TableAuditor
    backups: BackupService
    check_options: str = DEFAULT_CHECK_OPTIONS

    def schema_lock(self) -> SchemaLock:
        return SchemaLock(self.store)

    def close(self) -> None:
        self.store.dispose()


def build_coordinator(
    working_dir: Optional[Path] = None,
    *,
    hostname: Optional[str] = None,
    engine: Optional[Engine] = None,
    platform_name: Optional[str] = None,
) -> StoreCoordinator:
    """Build the collaborators described by ``settings.json`` in ``working_dir``."""

    working_dir = Path(working_dir) if working_dir is not None else resolve_working_dir()
    settings = SettingsStore(working_dir, hostname=hostname)
    payload = settings.load()

    database = _section(payload, "database")
    try:
        timeout = int(database.get("connect_timeout_s") or DEFAULT_CONNECT_TIMEOUT_S)
    except (TypeError, ValueError):
        timeout = DEFAULT_CONNECT_TIMEOUT_S
    params = DatabaseParams.from_settings(payload)
    store = Store(
        params,
        schema_version=settings.get_setting(SCHEMA_VERSION_SETTING),
        engine=engine,
        connect_timeout_s=timeout,
    )
    LOGGER.debug("Using store %r", params)

    maintenance = _section(payload, "maintenance")
    engines = [str(item) for item in maintenance.get("check_engines") or DEFAULT_CHECK_ENGINES]
    auditor = TableAuditor(store, check_engines=engines)
    probe = VersionProbe(store, override=lambda: settings.get_setting(VERSION_OVERRIDE_SETTING))
    backups = BackupService(store, settings, auditor=auditor, platform_name=platform_name)
    return StoreCoordinator(
        working_dir=working_dir,
        settings=settings,
        store=store,
        version_probe=probe,
        auditor=auditor,
        backups=backups,
        check_options=str(maintenance.get("check_options") or DEFAULT_CHECK_OPTIONS),
    )


__all__ = ["StoreCoordinator", "build_coordinator"]
