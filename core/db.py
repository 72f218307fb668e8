from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Mapping, Optional

from sqlalchemy import create_engine, text
from sqlalchemy.engine import Connection, Engine, RowMapping, URL
from sqlalchemy.exc import DBAPIError, SQLAlchemyError

__all__ = [
    "ConnectionUnavailable",
    "DatabaseParams",
    "QueryFailed",
    "Store",
    "StoreError",
    "describe_error",
]

LOGGER = logging.getLogger("storekeeper.db")

DEFAULT_CONNECT_TIMEOUT_S = 10


class StoreError(RuntimeError):
    """Base exception for shared store failures."""


class ConnectionUnavailable(StoreError):
    """Raised when the store cannot be reached."""


class QueryFailed(StoreError):
    """Raised when a statement fails to execute."""

    def __init__(self, message: str, *, statement: str = "") -> None:
        super().__init__(message)
        self.statement = statement


def describe_error(exc: BaseException) -> str:
    """Return the driver diagnostic for ``exc`` without the statement text."""

    if isinstance(exc, DBAPIError) and exc.orig is not None:
        return str(exc.orig)
    if isinstance(exc, SQLAlchemyError):
        return exc.__class__.__name__
    return str(exc)


@dataclass(slots=True)
class DatabaseParams:
    host: str = "localhost"
    port: int = 3306
    user: str = ""
    password: str = ""
    name: str = ""

    @classmethod
    def from_settings(cls, settings: Mapping[str, Any]) -> "DatabaseParams":
        section = settings.get("database") if isinstance(settings.get("database"), Mapping) else {}
        try:
            port = int(section.get("port") or 0)
        except (TypeError, ValueError):
            port = 0
        return cls(
            host=str(section.get("host") or "localhost"),
            port=port,
            user=str(section.get("user") or ""),
            password=str(section.get("password") or ""),
            name=str(section.get("name") or ""),
        )

    def url(self) -> URL:
        return URL.create(
            "mysql+pymysql",
            username=self.user or None,
            password=self.password or None,
            host=self.host or None,
            port=self.port if self.port > 0 else None,
            database=self.name or None,
        )

    def __repr__(self) -> str:
        return (
            f"DatabaseParams(host={self.host!r}, port={self.port!r}, "
            f"user={self.user!r}, password='***', name={self.name!r})"
        )


class Store:
    """Blocking access to the shared relational store.

    Statements run on ``AUTOCOMMIT`` connections because table maintenance
    statements (``CHECK TABLE``, ``LOCK TABLE`` ...) commit implicitly on the
    server anyway.
    """

    def __init__(
        self,
        params: DatabaseParams,
        *,
        schema_version: str = "",
        engine: Optional[Engine] = None,
        connect_timeout_s: int = DEFAULT_CONNECT_TIMEOUT_S,
    ) -> None:
        self._params = params
        self._schema_version = schema_version
        self._engine = engine or create_engine(
            params.url(),
            pool_pre_ping=True,
            isolation_level="AUTOCOMMIT",
            connect_args={"connect_timeout": int(connect_timeout_s)},
        )

    @property
    def params(self) -> DatabaseParams:
        return self._params

    @property
    def schema_version(self) -> str:
        return self._schema_version

    @property
    def engine(self) -> Engine:
        return self._engine

    def connect(self) -> Connection:
        try:
            return self._engine.connect()
        except SQLAlchemyError as exc:
            raise ConnectionUnavailable(
                f"unable to connect to {self._params.host}:{self._params.port}: {describe_error(exc)}"
            ) from exc

    def is_connected(self) -> bool:
        try:
            with self.connect() as conn:
                conn.execute(text("SELECT 1"))
        except (StoreError, SQLAlchemyError) as exc:
            LOGGER.debug("Store not reachable: %s", exc)
            return False
        return True

    def fetch_all(
        self,
        sql: str,
        params: Optional[Dict[str, Any]] = None,
        *,
        connection: Optional[Connection] = None,
    ) -> List[RowMapping]:
        """Execute ``sql`` and return every row as a mapping keyed by column."""

        if connection is not None:
            return self._fetch(connection, sql, params)
        with self.connect() as conn:
            return self._fetch(conn, sql, params)

    def execute(
        self,
        sql: str,
        params: Optional[Dict[str, Any]] = None,
        *,
        connection: Optional[Connection] = None,
    ) -> None:
        if connection is not None:
            self._run(connection, sql, params)
            return
        with self.connect() as conn:
            self._run(conn, sql, params)

    def dispose(self) -> None:
        self._engine.dispose()

    # ------------------------------------------------------------------
    @staticmethod
    def _run(conn: Connection, sql: str, params: Optional[Dict[str, Any]]):
        try:
            return conn.execute(text(sql), params or {})
        except SQLAlchemyError as exc:
            raise QueryFailed(describe_error(exc), statement=sql) from exc

    def _fetch(self, conn: Connection, sql: str, params: Optional[Dict[str, Any]]) -> List[RowMapping]:
        result = self._run(conn, sql, params)
        try:
            return list(result.mappings())
        except SQLAlchemyError as exc:
            raise QueryFailed(describe_error(exc), statement=sql) from exc
