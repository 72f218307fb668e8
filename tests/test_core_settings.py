"""Tests for core.settings helpers."""

from __future__ import annotations

import json
from pathlib import Path

from core.settings import SettingsStore, load_settings, merge_defaults, save_settings


def test_merge_defaults_fills_every_section() -> None:
    merged = merge_defaults({"database": {"host": "db.example"}})

    assert merged["database"]["host"] == "db.example"
    assert merged["database"]["port"] == 3306
    assert merged["storage"]["DB Backups"] == []
    assert merged["backup"]["compressors"] == ["/bin/gzip", "/usr/bin/gzip"]
    assert merged["maintenance"]["check_engines"] == ["MyISAM"]
    assert merged["api"]["host"] == "127.0.0.1"
    assert merged["store"] == {"global": {}, "hosts": {}}


def test_unknown_keys_are_kept_and_reported(tmp_path: Path) -> None:
    (tmp_path / "settings.json").write_text(json.dumps({"version": 0, "legacy": True}), encoding="utf-8")

    loaded = load_settings(tmp_path)

    assert loaded["legacy"] is True
    assert loaded["version"] == 1
    report = json.loads((tmp_path / "logs" / "settings_unknown.json").read_text(encoding="utf-8"))
    assert report["unknown"] == ["legacy"]


def test_unreadable_settings_fall_back_to_defaults(tmp_path: Path) -> None:
    (tmp_path / "settings.json").write_text("{not json", encoding="utf-8")
    assert load_settings(tmp_path)["database"]["name"] == "storekeeper"


def test_save_settings_writes_merged_payload(tmp_path: Path) -> None:
    save_settings({"database": {"name": "store_main"}}, tmp_path)
    saved = json.loads((tmp_path / "settings.json").read_text(encoding="utf-8"))
    assert saved["database"]["name"] == "store_main"
    assert saved["database"]["user"] == "storekeeper"


def test_host_settings_fall_back_to_global(tmp_path: Path) -> None:
    store = SettingsStore(tmp_path, hostname="backend1")
    store.save_setting("BackupDBScriptArgs", "--verbose")
    store.save_setting_on_host("BackupDBScriptArgs", "--quiet")

    assert store.get_setting("BackupDBScriptArgs") == "--quiet"
    assert store.get_setting("BackupDBScriptArgs", host="backend2") == "--verbose"
    assert SettingsStore(tmp_path, hostname="backend2").get_setting("BackupDBScriptArgs") == "--verbose"
    assert store.get_setting("Missing", "fallback") == "fallback"


def test_numeric_settings(tmp_path: Path) -> None:
    store = SettingsStore(tmp_path, hostname="backend1")
    store.save_setting("DisableAutomaticBackup", "1")
    store.save_setting("Broken", "yes")

    assert store.get_num_setting("DisableAutomaticBackup") == 1
    assert store.get_num_setting("Broken", 7) == 7
    assert store.get_num_setting("Missing") == 0
