"""Table maintenance utilities for the shared store."""

from __future__ import annotations

import enum
import logging
from dataclasses import dataclass
from typing import Any, Iterable, List, Mapping, Optional, Sequence

from core.db import ConnectionUnavailable, Store, StoreError
from core.schema_lock import SCHEMA_LOCK_TABLE


LOGGER = logging.getLogger("storekeeper.dbmaint")


DEFAULT_CHECK_ENGINES = ("MyISAM",)
DEFAULT_CHECK_OPTIONS = "QUICK"

_LIST_TABLES_SQL = (
    "SELECT CONCAT('`', INFORMATION_SCHEMA.TABLES.TABLE_SCHEMA, "
    "'`.`', INFORMATION_SCHEMA.TABLES.TABLE_NAME, '`') AS `TABLE_NAME` "
    "FROM INFORMATION_SCHEMA.TABLES "
    "WHERE INFORMATION_SCHEMA.TABLES.TABLE_SCHEMA = DATABASE() "
    "AND INFORMATION_SCHEMA.TABLES.TABLE_TYPE = 'BASE TABLE'"
)

_ALLOWED_CHECK_OPTIONS = {"FOR UPGRADE", "QUICK", "FAST", "MEDIUM", "EXTENDED", "CHANGED"}


class MessageType(str, enum.Enum):
    STATUS = "status"
    ERROR = "error"
    OTHER = "other"

    @classmethod
    def decode(cls, value: Any) -> "MessageType":
        text = str(value or "").strip().lower()
        if text == "status":
            return cls.STATUS
        if text == "error":
            return cls.ERROR
        return cls.OTHER


@dataclass(frozen=True, slots=True)
class TableStatusRow:
    """One row of a ``CHECK TABLE``/``REPAIR TABLE`` result set."""

    table: str
    msg_type: MessageType
    text: str
    raw_type: str = ""

    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> "TableStatusRow":
        raw_type = str(row.get("Msg_type") or "")
        return cls(
            table=str(row.get("Table") or ""),
            msg_type=MessageType.decode(raw_type),
            text=str(row.get("Msg_text") or ""),
            raw_type=raw_type,
        )

    @property
    def is_ok_status(self) -> bool:
        return self.msg_type is MessageType.STATUS and self.text.strip().lower() == "ok"


def reduce_table_status(rows: Iterable[TableStatusRow]) -> List[str]:
    """Return the tables whose check/repair result is not OK.

    Rows for one table are expected to be contiguous. Within a table, a
    ``status`` row reading ``OK`` marks it good again even after an earlier
    error, so the last status or error row decides.
    """

    bad: List[str] = []
    current: Optional[str] = None
    ok = True
    for row in rows:
        if row.table != current:
            if current is not None and not ok:
                bad.append(current)
            current = row.table
            ok = True
        if row.is_ok_status:
            ok = True
        elif row.msg_type in (MessageType.ERROR, MessageType.STATUS):
            ok = False
    if current is not None and not ok:
        bad.append(current)
    return bad


def normalize_check_options(options: str) -> str:
    text = " ".join((options or "").upper().split())
    if not text:
        return ""
    if text == "FOR UPGRADE":
        return text
    words = text.split(" ")
    for word in words:
        if word not in _ALLOWED_CHECK_OPTIONS:
            raise ValueError(f"unsupported CHECK TABLE option: {word}")
    return text


def _quote_tables(tables: Sequence[str]) -> str:
    quoted = []
    for name in tables:
        name = name.strip()
        if not name:
            continue
        if name.startswith("`"):
            quoted.append(name)
        else:
            quoted.append(".".join(f"`{part.replace('`', '``')}`" for part in name.split(".")))
    return ", ".join(quoted)


class TableAuditor:
    """List, check and repair tables in the active store.

    Check and repair must not run concurrently against the same tables; the
    caller is responsible for making sure only one maintenance process runs
    them at a time.
    """

    def __init__(
        self,
        store: Store,
        *,
        check_engines: Sequence[str] = DEFAULT_CHECK_ENGINES,
    ) -> None:
        self._store = store
        self._check_engines = tuple(check_engines) or DEFAULT_CHECK_ENGINES

    def list_tables(self, engines: Optional[Iterable[str]] = None) -> List[str]:
        """Return `` `schema`.`table` `` names, optionally limited to ``engines``."""

        sql = _LIST_TABLES_SQL
        params = {}
        engine_list = [str(engine) for engine in (engines or []) if str(engine).strip()]
        if engine_list:
            placeholders = ", ".join(f":engine{index}" for index in range(len(engine_list)))
            sql += f" AND INFORMATION_SCHEMA.TABLES.ENGINE IN ({placeholders})"
            params = {f"engine{index}": engine for index, engine in enumerate(engine_list)}
        try:
            rows = self._store.fetch_all(sql, params)
        except StoreError as exc:
            LOGGER.error("Unable to list tables: %s", exc)
            return []
        return [str(next(iter(row.values()))) for row in rows]

    def is_empty_store(self) -> bool:
        """True for a freshly created store: no tables or only the schema lock."""

        tables = self.list_tables()
        if not tables:
            return True
        return len(tables) == 1 and tables[0].endswith(f".`{SCHEMA_LOCK_TABLE}`")

    def check_tables(self, repair: bool = False, options: str = DEFAULT_CHECK_OPTIONS) -> bool:
        """Check the storage-engine tables, optionally repairing bad ones.

        Returns ``False`` when any table is not OK, or, with ``repair``, when
        the bad tables could not be repaired.
        """

        bad = self.find_bad_tables(options)
        if bad is None:
            return False
        if not bad:
            return True
        if repair:
            return self.repair_tables(bad)
        return False

    def find_bad_tables(self, options: str = DEFAULT_CHECK_OPTIONS) -> Optional[List[str]]:
        """Run ``CHECK TABLE`` and return the tables that are not OK.

        ``None`` means the check itself could not run.
        """

        if not self._store.is_connected():
            LOGGER.error("Unable to check tables: store is not reachable")
            return None
        tables = self.list_tables(self._check_engines)
        if not tables:
            return []
        try:
            normalized = normalize_check_options(options)
        except ValueError as exc:
            LOGGER.error("Unable to check tables: %s", exc)
            return None

        LOGGER.info("Checking database tables.")
        sql = f"CHECK TABLE {_quote_tables(tables)} {normalized}".rstrip()
        try:
            rows = self._store.fetch_all(sql)
        except StoreError as exc:
            LOGGER.error("Checking tables failed: %s", exc)
            return None

        bad = reduce_table_status(TableStatusRow.from_row(row) for row in rows)
        if bad:
            LOGGER.warning("Found crashed database table(s): %s", ", ".join(bad))
        return bad

    def repair_tables(self, tables: Sequence[str]) -> bool:
        """Run ``REPAIR TABLE`` over ``tables``; ``True`` when all end up OK.

        Only safe while no clients are using the store. After a server crash
        the table that was being processed must be repaired before anything
        else touches it.
        """

        table_list = _quote_tables(tables)
        if not table_list:
            return True
        if not self._store.is_connected():
            LOGGER.error("Unable to repair tables: store is not reachable")
            return False
        LOGGER.info("Repairing database tables: %s", table_list)
        try:
            rows = self._store.fetch_all(f"REPAIR TABLE {table_list}")
        except StoreError as exc:
            LOGGER.error("Repairing tables failed: %s", exc)
            return False
        bad = reduce_table_status(TableStatusRow.from_row(row) for row in rows)
        if bad:
            LOGGER.error("Unable to repair crashed table(s): %s", ", ".join(bad))
            return False
        return True

    def count_clients(self) -> int:
        """Estimate how many client programs are using the store.

        Each program holds about four connections, rounded up so a program
        that is still starting is counted.
        """

        try:
            rows = self._store.fetch_all("SHOW PROCESSLIST")
        except ConnectionUnavailable as exc:
            LOGGER.debug("Not connected to the store: %s", exc)
            return 0
        except StoreError as exc:
            LOGGER.error("Unable to list store connections: %s", exc)
            return 0
        name = self._store.params.name
        connections = sum(1 for row in rows if str(row.get("db") or "") == name)
        count = (connections + 3) // 4
        LOGGER.debug("Found %s client program(s) using %s", count, name)
        return count


__all__ = [
    "DEFAULT_CHECK_ENGINES",
    "DEFAULT_CHECK_OPTIONS",
    "MessageType",
    "TableAuditor",
    "TableStatusRow",
    "normalize_check_options",
    "reduce_table_status",
]
