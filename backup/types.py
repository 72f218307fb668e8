"""Common types shared across backup modules."""
from __future__ import annotations

import enum
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

# Artifact path reported when the backup itself failed.
FAILED_ARTIFACT = "__FAILED__"


class BackupStatus(str, enum.Enum):
    COMPLETED = "completed"
    FAILED = "failed"
    DISABLED = "disabled"
    EMPTY_STORE = "empty_store"


class BackupStage(str, enum.Enum):
    """States walked by a single backup request."""

    START = "start"
    SCRIPT_ATTEMPT = "script_attempt"
    INTERNAL_ATTEMPT = "internal_attempt"
    DONE = "done"


@dataclass(slots=True)
class BackupOutcome:
    status: BackupStatus
    artifact: str = ""
    degraded: bool = False
    stage: BackupStage = BackupStage.DONE

    @property
    def ok(self) -> bool:
        return self.status is BackupStatus.COMPLETED

    @property
    def artifact_path(self) -> Optional[Path]:
        if not self.artifact or self.artifact == FAILED_ARTIFACT:
            return None
        return Path(self.artifact)


@dataclass(slots=True)
class AttemptResult:
    """Result of one script or internal backup attempt."""

    ok: bool
    artifact: str = ""
    degraded: bool = False

    @classmethod
    def failed(cls) -> "AttemptResult":
        return cls(ok=False, artifact=FAILED_ARTIFACT)


@dataclass(slots=True)
class BackupTarget:
    """Where a backup should be written and under which name."""

    directory: Path
    filename: str

    @property
    def path(self) -> Path:
        return self.directory / self.filename


__all__ = [
    "AttemptResult",
    "BackupOutcome",
    "BackupStage",
    "BackupStatus",
    "BackupTarget",
    "FAILED_ARTIFACT",
]
