"""Store-wide lock serialising schema upgrades between client processes."""
from __future__ import annotations

import contextlib
import logging
from typing import Optional

from sqlalchemy.engine import Connection

from .db import Store, StoreError

__all__ = ["SCHEMA_LOCK_TABLE", "SchemaLock"]

LOGGER = logging.getLogger("storekeeper.schema_lock")

SCHEMA_LOCK_TABLE = "schemalock"


class SchemaLock(contextlib.AbstractContextManager):
    """Exclusive ``LOCK TABLE`` on the marker table.

    The lock belongs to one live connection: it is released when that
    connection closes and it does not block other connections opened by the
    same process.
    """

    def __init__(self, store: Store, connection: Optional[Connection] = None) -> None:
        self._store = store
        self._connection = connection
        self._owns_connection = connection is None
        self._held = False

    @property
    def held(self) -> bool:
        return self._held

    def acquire(self) -> bool:
        if self._connection is None:
            try:
                self._connection = self._store.connect()
            except StoreError as exc:
                LOGGER.error("Unable to acquire the schema upgrade lock: %s", exc)
                return False
        try:
            self._store.execute(
                f"CREATE TABLE IF NOT EXISTS {SCHEMA_LOCK_TABLE} ( schemalock int(1))",
                connection=self._connection,
            )
        except StoreError as exc:
            LOGGER.error("Unable to create %s table: %s", SCHEMA_LOCK_TABLE, exc)
            self._close_owned_connection()
            return False
        try:
            self._store.execute(f"LOCK TABLE {SCHEMA_LOCK_TABLE} WRITE", connection=self._connection)
        except StoreError as exc:
            LOGGER.error("Unable to acquire the schema upgrade lock: %s", exc)
            self._close_owned_connection()
            return False
        self._held = True
        LOGGER.debug("Schema upgrade lock acquired")
        return True

    def release(self) -> None:
        if self._connection is None:
            return
        try:
            self._store.execute("UNLOCK TABLES", connection=self._connection)
        except StoreError as exc:
            LOGGER.error("Unable to release the schema upgrade lock: %s", exc)
        self._held = False
        self._close_owned_connection()

    def _close_owned_connection(self) -> None:
        if self._owns_connection and self._connection is not None:
            self._connection.close()
            self._connection = None

    def __enter__(self) -> "SchemaLock":
        if not self.acquire():
            self.release()
            raise StoreError("schema upgrade lock is not available")
        return self

    def __exit__(self, exc_type, exc, tb) -> bool:
        self.release()
        return False
