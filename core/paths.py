from __future__ import annotations

import logging
import os
import shutil
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional

__all__ = [
    "BACKUP_PURPOSE",
    "FALLBACK_BACKUP_DIR",
    "StorageDirectories",
    "get_backup_directory",
    "get_default_settings_paths",
    "get_logs_dir",
    "get_share_dir",
    "resolve_working_dir",
]

LOGGER = logging.getLogger("storekeeper.paths")

_PROJECT_ROOT = Path(__file__).resolve().parent.parent
_DEFAULT_SHARE_DIR = Path("/usr/share/storekeeper")

BACKUP_PURPOSE = "DB Backups"
FALLBACK_BACKUP_DIR = Path("/tmp")


def _expand_path(value: str) -> Path:
    expanded = os.path.expandvars(os.path.expanduser(value))
    return Path(expanded).resolve()


def _ensure_writable_dir(path: Path) -> bool:
    try:
        path.mkdir(parents=True, exist_ok=True)
    except OSError:
        return False
    test_file = path / f".write_test_{os.getpid()}"
    try:
        with open(test_file, "w", encoding="utf-8") as handle:
            handle.write("ok")
        test_file.unlink(missing_ok=True)
        return True
    except OSError:
        try:
            if test_file.exists():
                test_file.unlink()
        except OSError:  # pragma: no cover - cleanup only
            pass
        return False


def resolve_working_dir() -> Path:
    """Resolve the storekeeper working directory, creating it if required."""

    env_home = os.environ.get("STOREKEEPER_HOME")
    if env_home:
        candidate = _expand_path(env_home)
        if _ensure_writable_dir(candidate):
            return candidate
        LOGGER.warning("STOREKEEPER_HOME %s is not writable; using the default location", candidate)

    fallback = Path.home() / ".storekeeper"
    fallback.mkdir(parents=True, exist_ok=True)
    return fallback


def get_logs_dir(working_dir: Path) -> Path:
    return working_dir / "logs"


def get_share_dir() -> Path:
    """Directory holding shared helper scripts such as the backup script."""

    env_share = os.environ.get("STOREKEEPER_SHARE")
    if env_share:
        return _expand_path(env_share)
    return _DEFAULT_SHARE_DIR


def get_default_settings_paths(working_dir: Path) -> list[Path]:
    """Return the search order for settings.json files."""

    return [working_dir / "settings.json", _PROJECT_ROOT / "settings.json"]


@dataclass(slots=True)
class StorageDirectories:
    """Candidate directories grouped by logical purpose.

    ``groups`` maps a purpose label (``"DB Backups"``) to the directories an
    operator configured for it. Purposes without their own entry fall back to
    the ``"Default"`` group.
    """

    groups: Dict[str, List[str]] = field(default_factory=dict)

    @classmethod
    def from_settings(cls, settings: Mapping[str, Any]) -> "StorageDirectories":
        section = settings.get("storage") if isinstance(settings, Mapping) else None
        groups: Dict[str, List[str]] = {}
        if isinstance(section, Mapping):
            for label, entries in section.items():
                if isinstance(entries, (list, tuple)):
                    groups[str(label)] = [str(item) for item in entries if str(item).strip()]
        return cls(groups=groups)

    def dir_list(self, purpose: str) -> List[str]:
        dirs = self.groups.get(purpose)
        if dirs:
            return list(dirs)
        return list(self.groups.get("Default", []))

    def most_free(self, purpose: str) -> Optional[str]:
        best: Optional[str] = None
        best_free = -1
        for candidate in self.dir_list(purpose):
            try:
                free = shutil.disk_usage(candidate).free
            except OSError:
                continue
            if free > best_free:
                best, best_free = candidate, free
        if best is None:
            dirs = self.dir_list(purpose)
            return dirs[0] if dirs else None
        return best


def get_backup_directory(directories: StorageDirectories) -> Path:
    """Pick the directory a database backup should be written to.

    Uses the most-free directory configured for ``"DB Backups"``; when none is
    configured or the selected one does not exist, ``/tmp`` is used instead.
    """

    dirs = directories.dir_list(BACKUP_PURPOSE)
    directory: Optional[Path] = None
    if dirs:
        chosen = directories.most_free(BACKUP_PURPOSE)
        if chosen and Path(chosen).is_dir():
            directory = Path(chosen)
        else:
            LOGGER.info("Backup directory %s does not exist, using %s", chosen, FALLBACK_BACKUP_DIR)
    if directory is None:
        directory = FALLBACK_BACKUP_DIR
    return directory
