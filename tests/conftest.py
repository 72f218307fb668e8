"""Shared stubs for the storekeeper test suite."""
from __future__ import annotations

from typing import Any, Dict, List, Optional, Tuple

import pytest

from core.db import ConnectionUnavailable, DatabaseParams
from core.settings import load_settings, save_settings


class FakeConnection:
    def __init__(self, store: "FakeStore") -> None:
        self.store = store
        self.closed = False

    def close(self) -> None:
        self.closed = True
        self.store.closed_connections += 1

    def __enter__(self) -> "FakeConnection":
        return self

    def __exit__(self, *exc: Any) -> None:
        self.close()


class FakeStore:
    """In-memory stand-in for ``core.db.Store``.

    Responses are matched by SQL fragment in registration order; the first
    match wins. Unmatched queries return no rows.
    """

    def __init__(self, *, name: str = "store_main", schema_version: str = "1372", connected: bool = True) -> None:
        self.params = DatabaseParams(host="db.example", port=3306, user="keeper", password="s3cret", name=name)
        self.schema_version = schema_version
        self.connected = connected
        self.statements: List[str] = []
        self.bound: List[Dict[str, Any]] = []
        self.closed_connections = 0
        self.disposed = False
        self._responses: List[Tuple[str, List[Dict[str, Any]], Optional[BaseException]]] = []

    def on(self, fragment: str, rows: Optional[List[Dict[str, Any]]] = None, *, error: Optional[BaseException] = None) -> None:
        self._responses.append((fragment, list(rows or []), error))

    def reset_responses(self) -> None:
        self._responses.clear()

    def is_connected(self) -> bool:
        return self.connected

    def connect(self) -> FakeConnection:
        if not self.connected:
            raise ConnectionUnavailable("unable to connect to db.example:3306: refused")
        return FakeConnection(self)

    def fetch_all(self, sql: str, params: Optional[Dict[str, Any]] = None, *, connection: Any = None) -> List[Dict[str, Any]]:
        self.statements.append(sql)
        self.bound.append(dict(params or {}))
        if not self.connected:
            raise ConnectionUnavailable("unable to connect to db.example:3306: refused")
        for fragment, rows, error in self._responses:
            if fragment in sql:
                if error is not None:
                    raise error
                return [dict(row) for row in rows]
        return []

    def execute(self, sql: str, params: Optional[Dict[str, Any]] = None, *, connection: Any = None) -> None:
        self.fetch_all(sql, params, connection=connection)

    def dispose(self) -> None:
        self.disposed = True


class StubLogger:
    """Records ``BackupLogger`` calls without touching the filesystem."""

    def __init__(self) -> None:
        self.records: List[Dict[str, Any]] = []

    def event(self, *, event: str, phase: str, ok: bool, **extra: Any) -> None:
        self.records.append({"event": event, "phase": phase, "ok": ok, **extra})

    def outcome(self, result: Any) -> None:
        self.event(event="backup_complete", phase=result.stage, ok=result.ok, status=result.status.value)

    def info(self, event: str, **extra: Any) -> None:
        self.records.append({"event": event, "ok": True, **extra})

    def warning(self, event: str, **extra: Any) -> None:
        self.records.append({"event": event, "ok": False, **extra})

    def error(self, event: str, **extra: Any) -> None:
        self.records.append({"event": event, "ok": False, **extra})

    def events(self) -> List[str]:
        return [record["event"] for record in self.records]


def update_settings(working_dir, **sections: Any) -> None:
    current = load_settings(working_dir)
    current.update(sections)
    save_settings(current, working_dir)


def table_rows(*rows: Tuple[str, str, str]) -> List[Dict[str, Any]]:
    return [{"Table": table, "Op": "check", "Msg_type": kind, "Msg_text": text} for table, kind, text in rows]


@pytest.fixture
def fake_store() -> FakeStore:
    return FakeStore()


@pytest.fixture
def stub_logger() -> StubLogger:
    return StubLogger()


@pytest.fixture
def working_dir(tmp_path, monkeypatch):
    home = tmp_path / "home"
    home.mkdir()
    monkeypatch.setenv("STOREKEEPER_HOME", str(home))
    monkeypatch.setenv("STOREKEEPER_SHARE", str(tmp_path / "share"))
    return home
