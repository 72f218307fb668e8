"""Short-lived credential files handed to external backup programs.

Secrets are written to a uniquely named temporary file that only its owner
can read, and programs receive the file path instead of the secret. The file
is removed as soon as the program exits. If this process is killed between
staging and release the file stays behind in the temporary directory until
the system cleans it up; that residual exposure is accepted.
"""
from __future__ import annotations

import contextlib
import logging
import os
import stat
import tempfile
from pathlib import Path
from typing import Iterator, Optional

from .errors import CredentialStagingError

LOGGER = logging.getLogger("storekeeper.backup.credentials")

_PREFIX = "storekeeper_db_backup_conf_"


def stage_credentials(content: str, *, directory: Optional[Path] = None) -> Path:
    """Write ``content`` to a new owner-read-only file and return its path."""

    try:
        fd, name = tempfile.mkstemp(prefix=_PREFIX, dir=str(directory) if directory else None)
    except OSError as exc:
        raise CredentialStagingError(f"unable to create temporary configuration file: {exc}") from exc
    path = Path(name)
    try:
        # Restrict before writing; the open descriptor can still write.
        os.fchmod(fd, stat.S_IRUSR)
        with os.fdopen(fd, "w", encoding="utf-8") as handle:
            fd = -1
            handle.write(content)
    except OSError as exc:
        if fd >= 0:
            os.close(fd)
        release_credentials(path)
        raise CredentialStagingError(f"unable to write temporary configuration file {path}: {exc}") from exc
    LOGGER.debug("Staged credentials in %s", path)
    return path


def release_credentials(path: Optional[Path]) -> None:
    """Delete a staged file. Missing files are ignored; other errors are logged."""

    if path is None:
        return
    try:
        Path(path).unlink()
    except FileNotFoundError:
        return
    except OSError as exc:
        LOGGER.warning("Unable to remove temporary configuration file %s: %s", path, exc)


@contextlib.contextmanager
def staged_credentials(content: str, *, directory: Optional[Path] = None) -> Iterator[Path]:
    """Stage ``content`` for the duration of the ``with`` block."""

    path = stage_credentials(content, directory=directory)
    try:
        yield path
    finally:
        release_credentials(path)


__all__ = ["release_credentials", "stage_credentials", "staged_credentials"]
