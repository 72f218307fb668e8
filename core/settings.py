from __future__ import annotations

import json
import logging
import socket
import time
from pathlib import Path
from threading import Lock
from typing import Any, Dict, Optional

from .paths import get_default_settings_paths, get_logs_dir

__all__ = [
    "DEFAULT_SETTINGS",
    "SETTINGS_VERSION",
    "SettingsStore",
    "load_settings",
    "merge_defaults",
    "save_settings",
]

LOGGER = logging.getLogger("storekeeper.settings")

SETTINGS_VERSION = 1


DEFAULT_SETTINGS: Dict[str, Any] = {
    "version": SETTINGS_VERSION,
    "database": {
        "host": "localhost",
        "port": 3306,
        "user": "storekeeper",
        "password": "",
        "name": "storekeeper",
        "connect_timeout_s": 10,
    },
    "storage": {
        "Default": [],
        "DB Backups": [],
    },
    "backup": {
        "script_name": "storekeeper_backup.pl",
        "dump_command": "mysqldump",
        "compressors": ["/bin/gzip", "/usr/bin/gzip"],
    },
    "maintenance": {
        "check_engines": ["MyISAM"],
        "check_options": "QUICK",
    },
    "api": {
        "host": "127.0.0.1",
        "port": 8757,
        "api_key": None,
        "cors_origins": ["http://localhost", "http://127.0.0.1"],
        "lan_only": True,
    },
    "logging": {
        "level": "INFO",
        "json": False,
    },
    "store": {
        "global": {},
        "hosts": {},
    },
}

_KNOWN_SECTIONS = set(DEFAULT_SETTINGS) | {"working_dir"}


def merge_defaults(data: Dict[str, Any]) -> Dict[str, Any]:
    def _merge(default: Dict[str, Any], payload: Dict[str, Any]) -> Dict[str, Any]:
        result: Dict[str, Any] = {}
        for key, value in default.items():
            if isinstance(value, dict):
                current = payload.get(key)
                if isinstance(current, dict):
                    result[key] = _merge(value, current)
                else:
                    result[key] = _merge(value, {})
            elif isinstance(value, list):
                current = payload.get(key)
                result[key] = list(current) if isinstance(current, list) else list(value)
            else:
                result[key] = payload.get(key, value)
        for key, value in payload.items():
            if key not in result:
                result[key] = value
        return result

    return _merge(DEFAULT_SETTINGS, data or {})


def _apply_migrations(settings: Dict[str, Any]) -> Dict[str, Any]:
    version = settings.get("version")
    try:
        version_int = int(version)
    except (TypeError, ValueError):
        version_int = 0
    if version_int < SETTINGS_VERSION:
        settings["version"] = SETTINGS_VERSION
    return settings


def _log_unknown_keys(settings: Dict[str, Any], working_dir: Path) -> None:
    unknown = sorted(key for key in settings if key not in _KNOWN_SECTIONS)
    if not unknown:
        return
    logs_dir = get_logs_dir(working_dir)
    logs_dir.mkdir(parents=True, exist_ok=True)
    payload = {
        "ts": time.time(),
        "unknown": unknown,
    }
    target = logs_dir / "settings_unknown.json"
    try:
        with open(target, "w", encoding="utf-8") as handle:
            json.dump(payload, handle, ensure_ascii=False, indent=2)
    except OSError:
        return


def load_settings(working_dir: Path) -> Dict[str, Any]:
    data: Dict[str, Any] = {}
    for candidate in get_default_settings_paths(working_dir):
        try:
            with open(candidate, "r", encoding="utf-8") as handle:
                loaded = json.load(handle)
        except FileNotFoundError:
            continue
        except json.JSONDecodeError:
            LOGGER.warning("Ignoring unreadable settings file %s", candidate)
            continue
        except OSError:
            continue
        if isinstance(loaded, dict):
            data = loaded
            break
    merged = merge_defaults(data)
    merged = _apply_migrations(merged)
    merged.setdefault("working_dir", str(working_dir))
    _log_unknown_keys(merged, working_dir)
    return merged


def save_settings(settings: Dict[str, Any], working_dir: Path) -> None:
    merged = merge_defaults(dict(settings))
    merged = _apply_migrations(merged)
    merged.setdefault("working_dir", str(working_dir))
    path = working_dir / "settings.json"
    path.parent.mkdir(parents=True, exist_ok=True)
    with open(path, "w", encoding="utf-8") as handle:
        json.dump(merged, handle, ensure_ascii=False, indent=2)


class SettingsStore:
    """Key/value settings persisted in the ``store`` section of settings.json.

    Keys saved with a ``host`` are scoped to that host; lookups with a host
    fall back to the global value when the host has none.
    """

    def __init__(self, working_dir: Path, *, hostname: Optional[str] = None) -> None:
        self._working_dir = Path(working_dir)
        self._hostname = hostname or socket.gethostname()
        self._lock = Lock()

    @property
    def hostname(self) -> str:
        return self._hostname

    @property
    def working_dir(self) -> Path:
        return self._working_dir

    def load(self) -> Dict[str, Any]:
        return load_settings(self._working_dir)

    def _lookup(self, settings: Dict[str, Any], key: str, host: Optional[str]) -> Any:
        section = settings.get("store") if isinstance(settings.get("store"), dict) else {}
        if host:
            hosts = section.get("hosts") if isinstance(section.get("hosts"), dict) else {}
            scoped = hosts.get(host) if isinstance(hosts.get(host), dict) else {}
            if key in scoped:
                return scoped[key]
        values = section.get("global") if isinstance(section.get("global"), dict) else {}
        return values.get(key)

    def get_setting(self, key: str, default: str = "", *, host: Optional[str] = None) -> str:
        value = self._lookup(self.load(), key, host or self._hostname)
        if value is None:
            return default
        return str(value)

    def get_num_setting(self, key: str, default: int = 0, *, host: Optional[str] = None) -> int:
        value = self._lookup(self.load(), key, host or self._hostname)
        if value is None or value == "":
            return default
        try:
            return int(value)
        except (TypeError, ValueError):
            LOGGER.warning("Setting %s=%r is not an integer; using %s", key, value, default)
            return default

    def save_setting(self, key: str, value: Any, *, host: Optional[str] = None) -> None:
        with self._lock:
            settings = self.load()
            section = settings.setdefault("store", {"global": {}, "hosts": {}})
            if host:
                hosts = section.setdefault("hosts", {})
                hosts.setdefault(host, {})[key] = value
            else:
                section.setdefault("global", {})[key] = value
            save_settings(settings, self._working_dir)

    def save_setting_on_host(self, key: str, value: Any) -> None:
        self.save_setting(key, value, host=self._hostname)
