"""Error hierarchy for backup operations."""
from __future__ import annotations

from typing import Optional


class BackupError(RuntimeError):
    """Base exception for backup related failures."""


class CredentialStagingError(BackupError):
    """Raised when a temporary credential file cannot be created or secured."""


class ExternalProcessError(BackupError):
    """Raised when a helper program exits with a non-zero status."""

    def __init__(self, program: str, status: int, message: Optional[str] = None) -> None:
        super().__init__(message or f"{program} exited with status {status}")
        self.program = program
        self.status = status


__all__ = ["BackupError", "CredentialStagingError", "ExternalProcessError"]
