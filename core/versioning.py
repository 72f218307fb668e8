"""Helpers for probing and comparing the database server version."""
from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from typing import Callable, Optional, Tuple

from .db import Store, StoreError

__all__ = ["DBMSVersion", "UNKNOWN_VERSION", "VersionProbe", "parse_version"]

LOGGER = logging.getLogger("storekeeper.versioning")

# Returned by ``VersionProbe.compare`` when the server version is unknown.
UNKNOWN_VERSION = -(2**31)

_DIGITS = re.compile(r"(\d+)")


@dataclass(frozen=True, slots=True)
class DBMSVersion:
    """Server version string and its parsed components.

    Components are ``-1`` when the string did not provide them.
    """

    raw: str = ""
    major: int = -1
    minor: int = -1
    point: int = -1

    @property
    def known(self) -> bool:
        return self.major > -1

    def as_tuple(self) -> Tuple[int, int, int]:
        return (self.major, self.minor, self.point)


def parse_version(raw: str) -> DBMSVersion:
    """Split ``raw`` into at most three groups of consecutive digits.

    ``"5.0.22"`` gives ``(5, 0, 22)``, ``"10.3"`` gives ``(10, 3, -1)`` and
    ``"10.3-something-4"`` gives ``(10, 3, 4)``.
    """

    version = [-1, -1, -1]
    for index, match in enumerate(_DIGITS.finditer(raw or "")):
        if index >= 3:
            break
        try:
            version[index] = int(match.group(1), 10)
        except ValueError:
            version[index] = -1
    return DBMSVersion(raw=raw or "", major=version[0], minor=version[1], point=version[2])


class VersionProbe:
    """Query, cache and compare the version reported by the store.

    The version string is fetched on first use and kept for the life of the
    probe. A failed query caches an empty string, so the next call queries
    again. ``reprobe()`` drops the cached value explicitly.
    """

    def __init__(self, store: Store, *, override: Optional[Callable[[], str]] = None) -> None:
        self._store = store
        self._override = override
        self._version = DBMSVersion()
        self._parsed = False

    def _query(self) -> str:
        if self._override is not None:
            forced = (self._override() or "").strip()
            if forced:
                LOGGER.info("Using DBMS version override %r", forced)
                return forced
        try:
            rows = self._store.fetch_all("SELECT VERSION()")
        except StoreError as exc:
            LOGGER.error("Unable to determine the database server version: %s", exc)
            return ""
        if not rows:
            LOGGER.error("Unable to determine the database server version: empty result")
            return ""
        value = next(iter(rows[0].values()), None)
        return "" if value is None else str(value)

    def get_version(self) -> str:
        if not self._version.raw:
            self._version = DBMSVersion(raw=self._query())
            self._parsed = False
        return self._version.raw

    def version(self) -> DBMSVersion:
        """Return the parsed version, probing the store when necessary."""

        if not self._parsed or not self._version.known:
            raw = self.get_version()
            if not raw:
                self._version = DBMSVersion()
                self._parsed = False
                return self._version
            self._version = parse_version(raw)
            self._parsed = True
        return self._version

    def compare(self, major: int, minor: int = 0, point: int = 0) -> int:
        """Compare the server version against ``major.minor.point``.

        Returns a negative number, zero or a positive number, or
        ``UNKNOWN_VERSION`` when the version cannot be determined. A component
        the server did not report is skipped when compared against zero.
        """

        current = self.version()
        if not current.known:
            return UNKNOWN_VERSION
        result = 0
        for have, want in zip(current.as_tuple(), (major, minor, point)):
            if have > -1 or want != 0:
                result = have - want
            if result:
                break
        return result

    def reprobe(self) -> DBMSVersion:
        self._version = DBMSVersion()
        self._parsed = False
        return self.version()
