"""JSONL journal of backup runs, one line per step of a run."""
from __future__ import annotations

import json
import logging
from datetime import datetime, timezone
from pathlib import Path
from threading import Lock
from typing import Any, Dict, Union

from core.paths import get_logs_dir

from .types import BackupOutcome, BackupStage

LOGGER = logging.getLogger("storekeeper.backup")

JOURNAL_NAME = "backup.jsonl"


def _stage_name(stage: Union[BackupStage, str]) -> str:
    return stage.value if isinstance(stage, BackupStage) else str(stage)


class BackupLogger:
    """Append backup events for one store to ``logs/backup.jsonl``.

    Every entry carries the store name and host it was written for, the stage
    of the run (``start``, ``script_attempt``, ``internal_attempt``) and an
    ``ok`` flag; failures are mirrored to the ``storekeeper.backup`` logger at
    error level.
    """

    def __init__(self, working_dir: Path, *, store: str = "", host: str = "") -> None:
        self._log_path = get_logs_dir(Path(working_dir)) / JOURNAL_NAME
        self._log_path.parent.mkdir(parents=True, exist_ok=True)
        self._context = {key: value for key, value in (("store", store), ("host", host)) if value}
        self._lock = Lock()

    @property
    def log_path(self) -> Path:
        return self._log_path

    def _append(self, entry: Dict[str, Any], *, level: int) -> None:
        record = {"ts": datetime.now(timezone.utc).isoformat(), **self._context, **entry}
        line = json.dumps(record, sort_keys=True, default=str)
        with self._lock:
            try:
                with self._log_path.open("a", encoding="utf-8") as handle:
                    handle.write(line + "\n")
            except OSError as exc:
                LOGGER.warning("Unable to append to %s: %s", self._log_path, exc)
        LOGGER.log(level, "%s", line)

    def event(self, *, event: str, phase: Union[BackupStage, str], ok: bool, **extra: Any) -> None:
        entry = {"event": event, "phase": _stage_name(phase), "ok": bool(ok), **extra}
        self._append(entry, level=logging.INFO if ok else logging.ERROR)

    def outcome(self, result: BackupOutcome) -> None:
        """Close the run with its final status, artifact and deciding stage."""

        self.event(
            event="backup_complete",
            phase=result.stage,
            ok=result.ok,
            status=result.status.value,
            artifact=result.artifact,
            degraded=result.degraded,
        )

    def info(self, event: str, **extra: Any) -> None:
        self._append({"event": event, **extra, "ok": True}, level=logging.INFO)

    def warning(self, event: str, **extra: Any) -> None:
        self._append({"event": event, **extra, "ok": False}, level=logging.WARNING)

    def error(self, event: str, **extra: Any) -> None:
        self._append({"event": event, **extra, "ok": False}, level=logging.ERROR)


__all__ = ["BackupLogger", "JOURNAL_NAME"]
