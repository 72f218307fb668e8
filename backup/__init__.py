"""Backup orchestration for the shared store."""
from __future__ import annotations

from .api import BackupService
from .errors import BackupError
from .schedule import BackupSchedule
from .types import BackupOutcome, BackupStage, BackupStatus

__all__ = [
    "BackupError",
    "BackupOutcome",
    "BackupSchedule",
    "BackupService",
    "BackupStage",
    "BackupStatus",
]
