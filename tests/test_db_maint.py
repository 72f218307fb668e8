"""Tests for db_maint table listing, checking and repairing."""

from __future__ import annotations

import pytest

from conftest import table_rows
from core.db import QueryFailed
from db_maint import (
    MessageType,
    TableAuditor,
    TableStatusRow,
    normalize_check_options,
    reduce_table_status,
)


def _rows(*rows):
    return [TableStatusRow.from_row(row) for row in table_rows(*rows)]


def test_single_ok_row_is_good() -> None:
    assert reduce_table_status(_rows(("t1", "status", "OK"))) == []


def test_final_ok_status_reverses_earlier_error() -> None:
    assert reduce_table_status(_rows(("t1", "error", "corrupt"), ("t1", "status", "OK"))) == []


def test_error_after_ok_status_marks_table_bad() -> None:
    assert reduce_table_status(_rows(("t1", "status", "OK"), ("t1", "error", "x"))) == ["t1"]


def test_verdicts_are_per_table() -> None:
    rows = _rows(("t1", "error", "x"), ("t2", "status", "OK"))
    assert reduce_table_status(rows) == ["t1"]


def test_single_trailing_error_row_is_bad() -> None:
    assert reduce_table_status(_rows(("t1", "error", "Table is marked as crashed"))) == ["t1"]


def test_non_ok_status_and_other_rows() -> None:
    rows = _rows(
        ("t1", "info", "Found 12 rows"),
        ("t1", "status", "Table is already up to date"),
        ("t2", "warning", "1 client is using or hasn't closed the table properly"),
        ("t2", "status", "ok"),
        ("t3", "note", "The storage engine for the table doesn't support check"),
    )
    assert reduce_table_status(rows) == ["t1"]


def test_message_type_decoding() -> None:
    assert MessageType.decode("Status") is MessageType.STATUS
    assert MessageType.decode("ERROR") is MessageType.ERROR
    assert MessageType.decode("warning") is MessageType.OTHER
    assert MessageType.decode(None) is MessageType.OTHER


def test_empty_result_has_no_bad_tables() -> None:
    assert reduce_table_status([]) == []


@pytest.mark.parametrize(
    "tables, expected",
    [
        ([], True),
        (["`store_main`.`schemalock`"], True),
        (["`store_main`.`settings`"], False),
        (["`store_main`.`schemalock`", "`store_main`.`settings`"], False),
    ],
)
def test_is_empty_store(fake_store, tables, expected) -> None:
    fake_store.on("INFORMATION_SCHEMA.TABLES", [{"TABLE_NAME": name} for name in tables])
    assert TableAuditor(fake_store).is_empty_store() is expected


def test_list_tables_binds_engine_filter(fake_store) -> None:
    fake_store.on("INFORMATION_SCHEMA.TABLES", [{"TABLE_NAME": "`store_main`.`recorded`"}])
    auditor = TableAuditor(fake_store)

    assert auditor.list_tables(["MyISAM", "Aria"]) == ["`store_main`.`recorded`"]
    assert "ENGINE IN (:engine0, :engine1)" in fake_store.statements[-1]
    assert fake_store.bound[-1] == {"engine0": "MyISAM", "engine1": "Aria"}
    assert "MyISAM" not in fake_store.statements[-1]


def test_list_tables_returns_empty_when_unreachable(fake_store) -> None:
    fake_store.connected = False
    assert TableAuditor(fake_store).list_tables() == []


def test_check_tables_without_tables_succeeds(fake_store) -> None:
    assert TableAuditor(fake_store).check_tables() is True
    assert not any(sql.startswith("CHECK TABLE") for sql in fake_store.statements)


def test_check_tables_reports_bad_tables_without_repair(fake_store) -> None:
    fake_store.on("INFORMATION_SCHEMA.TABLES", [{"TABLE_NAME": "`store_main`.`a`"}, {"TABLE_NAME": "`store_main`.`b`"}])
    fake_store.on("CHECK TABLE", table_rows(("store_main.a", "status", "OK"), ("store_main.b", "error", "crashed")))
    auditor = TableAuditor(fake_store)

    assert auditor.check_tables() is False
    check_sql = [sql for sql in fake_store.statements if sql.startswith("CHECK TABLE")]
    assert check_sql == ["CHECK TABLE `store_main`.`a`, `store_main`.`b` QUICK"]
    assert not any(sql.startswith("REPAIR TABLE") for sql in fake_store.statements)


def test_check_tables_repairs_only_bad_tables(fake_store) -> None:
    fake_store.on("INFORMATION_SCHEMA.TABLES", [{"TABLE_NAME": "`store_main`.`a`"}, {"TABLE_NAME": "`store_main`.`b`"}])
    fake_store.on("CHECK TABLE", table_rows(("store_main.a", "status", "OK"), ("store_main.b", "error", "crashed")))
    fake_store.on("REPAIR TABLE", table_rows(("store_main.b", "error", "retrying"), ("store_main.b", "status", "OK")))
    auditor = TableAuditor(fake_store)

    assert auditor.check_tables(repair=True) is True
    assert "REPAIR TABLE `store_main`.`b`" in fake_store.statements


def test_check_tables_fails_when_repair_fails(fake_store) -> None:
    fake_store.on("INFORMATION_SCHEMA.TABLES", [{"TABLE_NAME": "`store_main`.`b`"}])
    fake_store.on("CHECK TABLE", table_rows(("store_main.b", "error", "crashed")))
    fake_store.on("REPAIR TABLE", table_rows(("store_main.b", "status", "Operation failed")))

    assert TableAuditor(fake_store).check_tables(repair=True) is False


def test_check_tables_query_failure_returns_false(fake_store) -> None:
    fake_store.on("INFORMATION_SCHEMA.TABLES", [{"TABLE_NAME": "`store_main`.`a`"}])
    fake_store.on("CHECK TABLE", error=QueryFailed("Lost connection"))

    assert TableAuditor(fake_store).check_tables() is False


def test_check_tables_rejects_unknown_options(fake_store) -> None:
    fake_store.on("INFORMATION_SCHEMA.TABLES", [{"TABLE_NAME": "`store_main`.`a`"}])
    assert TableAuditor(fake_store).check_tables(options="QUICK; DROP TABLE a") is False
    assert not any(sql.startswith("CHECK TABLE") for sql in fake_store.statements)


def test_check_tables_unreachable_store(fake_store) -> None:
    fake_store.connected = False
    assert TableAuditor(fake_store).check_tables() is False


def test_check_uses_configured_engines(fake_store) -> None:
    TableAuditor(fake_store, check_engines=["Aria"]).check_tables()
    assert fake_store.bound[0] == {"engine0": "Aria"}


def test_normalize_check_options() -> None:
    assert normalize_check_options(" quick  extended ") == "QUICK EXTENDED"
    assert normalize_check_options("for upgrade") == "FOR UPGRADE"
    assert normalize_check_options("") == ""
    with pytest.raises(ValueError):
        normalize_check_options("QUICK --")


def test_repair_tables_quotes_plain_names(fake_store) -> None:
    fake_store.on("REPAIR TABLE", table_rows(("store_main.a", "status", "OK")))
    assert TableAuditor(fake_store).repair_tables(["store_main.a"]) is True
    assert fake_store.statements[-1] == "REPAIR TABLE `store_main`.`a`"


def test_repair_tables_with_nothing_to_do(fake_store) -> None:
    assert TableAuditor(fake_store).repair_tables([]) is True
    assert fake_store.statements == []


@pytest.mark.parametrize("connections, expected", [(0, 0), (1, 1), (4, 1), (5, 2), (8, 2), (9, 3)])
def test_count_clients_rounds_up_per_four_connections(fake_store, connections, expected) -> None:
    rows = [{"Id": index, "db": "store_main"} for index in range(connections)]
    rows.append({"Id": 99, "db": "other"})
    rows.append({"Id": 100, "db": None})
    fake_store.on("SHOW PROCESSLIST", rows)
    assert TableAuditor(fake_store).count_clients() == expected


def test_count_clients_unreachable_store(fake_store) -> None:
    fake_store.connected = False
    assert TableAuditor(fake_store).count_clients() == 0
