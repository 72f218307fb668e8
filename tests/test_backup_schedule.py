from datetime import datetime, timedelta, timezone

import pytest

from backup.schedule import (
    LAST_RUN_END_KEY,
    LAST_RUN_START_KEY,
    BackupSchedule,
    format_timestamp,
    parse_timestamp,
)
from core.db import QueryFailed
from core.settings import SettingsStore

NOW = datetime(2024, 3, 9, 2, 30, 0)


def _schedule(tmp_path, *, start=None, end=None, store=None):
    settings = SettingsStore(tmp_path, hostname="backend1")
    if start is not None:
        settings.save_setting_on_host(LAST_RUN_START_KEY, format_timestamp(start))
    if end is not None:
        settings.save_setting_on_host(LAST_RUN_END_KEY, format_timestamp(end))
    return BackupSchedule(settings, store, clock=lambda: NOW)


def test_no_start_time_is_not_in_progress(tmp_path) -> None:
    assert _schedule(tmp_path).is_backup_in_progress() is False


@pytest.mark.parametrize(
    "start, end, expected",
    [
        (NOW - timedelta(minutes=5), None, True),
        (NOW - timedelta(minutes=20), None, False),
        (NOW - timedelta(minutes=5), NOW - timedelta(minutes=6), True),
        (NOW - timedelta(minutes=5), NOW - timedelta(minutes=4), False),
        (NOW - timedelta(minutes=30), NOW - timedelta(minutes=40), False),
        (NOW - timedelta(minutes=10), None, False),
    ],
)
def test_in_progress_heuristic(tmp_path, start, end, expected) -> None:
    assert _schedule(tmp_path, start=start, end=end).is_backup_in_progress() is expected


def test_record_start_and_end_are_host_scoped(tmp_path) -> None:
    schedule = _schedule(tmp_path)
    schedule.record_start()
    schedule.record_end()

    other_host = SettingsStore(tmp_path, hostname="backend2")
    assert other_host.get_setting(LAST_RUN_START_KEY) == ""
    assert schedule.last_start() == NOW
    assert schedule.last_end() == NOW


def test_timestamps_round_trip_in_space_separated_form() -> None:
    assert format_timestamp(NOW) == "2024-03-09 02:30:00"
    assert parse_timestamp("2024-03-09 02:30:00") == NOW
    assert parse_timestamp("") is None
    assert parse_timestamp("yesterday") is None


def test_offset_timestamps_become_naive_local_time() -> None:
    parsed = parse_timestamp("2024-03-09 02:25:00+00:00")

    assert parsed is not None
    assert parsed.tzinfo is None
    assert parsed == datetime(2024, 3, 9, 2, 25, tzinfo=timezone.utc).astimezone().replace(tzinfo=None)


def test_offset_start_time_does_not_break_the_heuristic(tmp_path) -> None:
    settings = SettingsStore(tmp_path, hostname="backend1")
    settings.save_setting_on_host(LAST_RUN_START_KEY, "2024-03-09 02:25:00+00:00")
    settings.save_setting_on_host(LAST_RUN_END_KEY, "2024-03-09T02:26:00+00:00")
    schedule = BackupSchedule(settings, clock=lambda: NOW)

    assert schedule.is_backup_in_progress() is False


def test_housekeeping_row_is_deleted_then_inserted(tmp_path, fake_store) -> None:
    schedule = _schedule(tmp_path, store=fake_store)
    assert schedule.record_housekeeping() is True
    assert fake_store.statements == [
        "DELETE FROM housekeeping WHERE tag = :tag",
        "INSERT INTO housekeeping(tag, lastrun) VALUES(:tag, NOW())",
    ]
    assert fake_store.bound == [{"tag": "BackupDB"}, {"tag": "BackupDB"}]
    assert fake_store.closed_connections == 1


def test_housekeeping_failure_is_reported(tmp_path, fake_store) -> None:
    fake_store.on("INSERT INTO housekeeping", error=QueryFailed("Table doesn't exist"))
    assert _schedule(tmp_path, store=fake_store).record_housekeeping() is False


def test_housekeeping_skipped_when_unreachable(tmp_path, fake_store) -> None:
    fake_store.connected = False
    assert _schedule(tmp_path, store=fake_store).record_housekeeping() is False
    assert fake_store.statements == []
