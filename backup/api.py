"""Public API for database backup operations."""
from __future__ import annotations

import os
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional

from core.db import Store
from core.paths import StorageDirectories, get_backup_directory, get_share_dir
from core.settings import SettingsStore
from db_maint import TableAuditor

from .create import (
    DUMP_EXTENSION,
    backup_prefix,
    create_backup_filename,
    run_backup_script,
    run_internal_backup,
)
from .errors import BackupError
from .logs import BackupLogger
from .schedule import BackupSchedule
from .types import AttemptResult, BackupOutcome, BackupStage, BackupStatus, BackupTarget

DISABLE_SETTING = "DisableAutomaticBackup"
SCRIPT_SETTING = "DatabaseBackupScript"
SCRIPT_ARGS_SETTING = "BackupDBScriptArgs"
SCHEMA_VERSION_SETTING = "DBSchemaVer"

_DEFAULT_SCRIPT_NAME = "storekeeper_backup.pl"
_DEFAULT_COMPRESSORS = ["/bin/gzip", "/usr/bin/gzip"]


def _backup_section(payload: Mapping[str, Any]) -> Dict[str, Any]:
    raw = payload.get("backup")
    return dict(raw) if isinstance(raw, Mapping) else {}


class BackupService:
    """Back up the shared store, preferring the operator's backup script.

    Running a backup locks tables while they are dumped, which can stall
    clients that are writing to the store at the time.
    """

    def __init__(
        self,
        store: Store,
        settings: SettingsStore,
        *,
        auditor: Optional[TableAuditor] = None,
        schedule: Optional[BackupSchedule] = None,
        logger: Optional[BackupLogger] = None,
        platform_name: Optional[str] = None,
    ) -> None:
        self._store = store
        self._settings = settings
        self._auditor = auditor or TableAuditor(store)
        self._schedule = schedule or BackupSchedule(settings, store)
        self._logger = logger or BackupLogger(
            settings.working_dir,
            store=store.params.name,
            host=settings.hostname,
        )
        self._platform = platform_name or os.name

    # ------------------------------------------------------------------
    @property
    def schedule(self) -> BackupSchedule:
        return self._schedule

    def schema_version(self) -> str:
        return self._store.schema_version or self._settings.get_setting(SCHEMA_VERSION_SETTING)

    def backup_script(self, payload: Optional[Mapping[str, Any]] = None) -> Optional[Path]:
        """Return the configured backup script, or ``None`` when it does not exist."""

        payload = payload if payload is not None else self._settings.load()
        name = str(_backup_section(payload).get("script_name") or _DEFAULT_SCRIPT_NAME)
        default = get_share_dir() / name
        configured = self._settings.get_setting(SCRIPT_SETTING, str(default))
        script = Path(configured or default)
        if not script.is_file():
            self._logger.info("script_missing", script=str(script))
            return None
        return script

    def backup_target(self, payload: Optional[Mapping[str, Any]] = None) -> BackupTarget:
        payload = payload if payload is not None else self._settings.load()
        directory = get_backup_directory(StorageDirectories.from_settings(payload))
        prefix = backup_prefix(self._store.params, self.schema_version())
        return BackupTarget(directory=directory, filename=create_backup_filename(prefix, DUMP_EXTENSION))

    # ------------------------------------------------------------------
    def _short_circuit(self) -> Optional[BackupStatus]:
        if self._platform == "nt":
            self._logger.warning("backup_disabled", reason="platform", platform=self._platform)
            return BackupStatus.DISABLED
        if self._settings.get_num_setting(DISABLE_SETTING, 0):
            self._logger.warning("backup_disabled", reason="setting")
            return BackupStatus.DISABLED
        if self._auditor.is_empty_store():
            self._logger.info("backup_skipped", reason="empty_store")
            return BackupStatus.EMPTY_STORE
        return None

    def backup_database(self) -> BackupOutcome:
        """Back up the store and report the outcome and artifact path."""

        skipped = self._short_circuit()
        if skipped is not None:
            return BackupOutcome(status=skipped, stage=BackupStage.START)

        self._schedule.record_start()
        stage = BackupStage.START
        result = AttemptResult.failed()
        try:
            payload = self._settings.load()
            section = _backup_section(payload)
            target = self.backup_target(payload)
            script = self.backup_script(payload)
            self._logger.event(
                event="backup_start",
                phase=BackupStage.START,
                ok=True,
                directory=str(target.directory),
            )

            if script is not None:
                stage = BackupStage.SCRIPT_ATTEMPT
                result = run_backup_script(
                    script,
                    self._store.params,
                    self.schema_version(),
                    target,
                    logger=self._logger,
                    script_args=self._settings.get_setting(SCRIPT_ARGS_SETTING),
                )
                if not result.ok:
                    self._logger.warning("script_fallback", reason="script_failed")

            if not result.ok:
                stage = BackupStage.INTERNAL_ATTEMPT
                compressors: List[str] = section.get("compressors") or _DEFAULT_COMPRESSORS
                result = run_internal_backup(
                    self._store.params,
                    target,
                    logger=self._logger,
                    program=str(section.get("dump_command") or "mysqldump"),
                    compressors=[str(item) for item in compressors],
                )
        except BackupError as exc:
            self._logger.error("backup_error", error=str(exc))
            result = AttemptResult.failed()
        finally:
            self._schedule.record_end()
            self._schedule.record_housekeeping()

        status = BackupStatus.COMPLETED if result.ok else BackupStatus.FAILED
        outcome = BackupOutcome(status=status, artifact=result.artifact, degraded=result.degraded, stage=stage)
        self._logger.outcome(outcome)
        return outcome

    def is_backup_in_progress(self) -> bool:
        return self._schedule.is_backup_in_progress()


__all__ = [
    "BackupError",
    "BackupOutcome",
    "BackupService",
    "BackupStatus",
]
