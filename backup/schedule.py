"""Backup run bookkeeping: start/end timestamps and housekeeping rows."""
from __future__ import annotations

import logging
from datetime import datetime, timedelta
from typing import Callable, Optional

from core.db import Store, StoreError
from core.settings import SettingsStore

LOGGER = logging.getLogger("storekeeper.backup.schedule")

LAST_RUN_START_KEY = "BackupDBLastRunStart"
LAST_RUN_END_KEY = "BackupDBLastRunEnd"
HOUSEKEEPING_TAG = "BackupDB"

# A backup without an end time older than this is assumed to have died.
IN_PROGRESS_THRESHOLD = timedelta(minutes=10)

_TIMESTAMP_FORMAT = "%Y-%m-%d %H:%M:%S"


def format_timestamp(value: datetime) -> str:
    return value.strftime(_TIMESTAMP_FORMAT)


def parse_timestamp(value: str) -> Optional[datetime]:
    text = (value or "").strip()
    if not text:
        return None
    try:
        parsed = datetime.fromisoformat(text.replace(" ", "T"))
    except ValueError:
        LOGGER.warning("Ignoring malformed backup timestamp %r", text)
        return None
    if parsed.tzinfo is not None:
        # Stored values are naive local time; offsets written by other tools are converted.
        parsed = parsed.astimezone().replace(tzinfo=None)
    return parsed


class BackupSchedule:
    """Record and interpret the timestamps of the most recent backup run."""

    def __init__(
        self,
        settings: SettingsStore,
        store: Optional[Store] = None,
        *,
        clock: Callable[[], datetime] = datetime.now,
    ) -> None:
        self._settings = settings
        self._store = store
        self._clock = clock

    def record_start(self) -> datetime:
        now = self._clock()
        self._settings.save_setting_on_host(LAST_RUN_START_KEY, format_timestamp(now))
        return now

    def record_end(self) -> datetime:
        now = self._clock()
        self._settings.save_setting_on_host(LAST_RUN_END_KEY, format_timestamp(now))
        return now

    def last_start(self) -> Optional[datetime]:
        return parse_timestamp(self._settings.get_setting(LAST_RUN_START_KEY))

    def last_end(self) -> Optional[datetime]:
        return parse_timestamp(self._settings.get_setting(LAST_RUN_END_KEY))

    def record_housekeeping(self, tag: str = HOUSEKEEPING_TAG) -> bool:
        """Replace the ``housekeeping`` row for ``tag`` with one stamped now.

        The old row is deleted and a new one inserted rather than updated, so
        a run that crashed half-way never leaves a partially updated row.
        """

        if self._store is None:
            return False
        try:
            with self._store.connect() as conn:
                self._store.execute("DELETE FROM housekeeping WHERE tag = :tag", {"tag": tag}, connection=conn)
                self._store.execute(
                    "INSERT INTO housekeeping(tag, lastrun) VALUES(:tag, NOW())",
                    {"tag": tag},
                    connection=conn,
                )
        except StoreError as exc:
            LOGGER.error("Unable to record housekeeping run for %s: %s", tag, exc)
            return False
        return True

    def is_backup_in_progress(self) -> bool:
        start = self.last_start()
        if start is None:
            LOGGER.debug("No backup start time found, backup is not in progress")
            return False

        elapsed = self._clock() - start
        end = self.last_end()
        if end is None:
            if elapsed < IN_PROGRESS_THRESHOLD:
                LOGGER.debug(
                    "Backup started at %s (%ss ago) with no end time, assuming it is still running",
                    format_timestamp(start),
                    int(elapsed.total_seconds()),
                )
                return True
            LOGGER.debug(
                "Backup started at %s (%ss ago) but never recorded an end time, assuming it is not running",
                format_timestamp(start),
                int(elapsed.total_seconds()),
            )
            return False

        if end >= start:
            LOGGER.debug("Backup ended at %s after starting at %s", format_timestamp(end), format_timestamp(start))
            return False
        if elapsed < IN_PROGRESS_THRESHOLD:
            LOGGER.debug("Backup started at %s and is still running", format_timestamp(start))
            return True
        LOGGER.debug(
            "Backup started at %s (%ss ago) and has not ended, assuming it is not running",
            format_timestamp(start),
            int(elapsed.total_seconds()),
        )
        return False


__all__ = [
    "BackupSchedule",
    "HOUSEKEEPING_TAG",
    "IN_PROGRESS_THRESHOLD",
    "LAST_RUN_END_KEY",
    "LAST_RUN_START_KEY",
    "format_timestamp",
    "parse_timestamp",
]
