"""Clock sources and timestamp arithmetic.

All persisted timestamps are UTC, second precision, formatted
``YYYY-MM-DD HH:MM:SS`` so that string order equals time order.
"""

from __future__ import annotations

import logging
import time
import warnings
from datetime import datetime, timedelta, timezone, tzinfo
from typing import Protocol

from .errors import ClockSkewWarning

logger = logging.getLogger("punchclock.clock")

TS_FORMAT = "%Y-%m-%d %H:%M:%S"


class Clock(Protocol):
    def now(self) -> datetime: ...

    def monotonic(self) -> float: ...

    def local(self, dt: datetime) -> datetime: ...


class SystemClock:
    """Real wall clock. Local time follows the process timezone."""

    def now(self) -> datetime:
        return datetime.now(timezone.utc).replace(microsecond=0)

    def monotonic(self) -> float:
        return time.monotonic()

    def local(self, dt: datetime) -> datetime:
        return dt.astimezone()


class ManualClock:
    """Deterministic clock; wall and monotonic readings advance together."""

    def __init__(self, start: datetime | None = None, tz: tzinfo | None = None):
        self._now = (start or datetime(2026, 1, 5, 9, 0, 0, tzinfo=timezone.utc)).astimezone(timezone.utc)
        self._mono = 1000.0
        self._tz = tz or timezone.utc

    def now(self) -> datetime:
        return self._now.replace(microsecond=0)

    def monotonic(self) -> float:
        return self._mono

    def local(self, dt: datetime) -> datetime:
        return dt.astimezone(self._tz)

    def advance(self, seconds: float) -> None:
        self._now += timedelta(seconds=seconds)
        self._mono += seconds

    def set(self, dt: datetime) -> None:
        """Jump the wall clock (e.g. a user clock change). Monotonic time is untouched."""
        self._now = dt.astimezone(timezone.utc)


def to_utc(dt: datetime) -> datetime:
    """Aware UTC datetime; naive input is taken as UTC."""
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def format_ts(dt: datetime) -> str:
    return to_utc(dt).strftime(TS_FORMAT)


def parse_ts(value: str) -> datetime:
    """Parse a stored timestamp (naive text is UTC). Accepts ISO 'T' separators too."""
    return to_utc(datetime.fromisoformat(value.strip().replace("Z", "+00:00")))


def round_to_second(dt: datetime) -> datetime:
    """Nearest whole second; stored timestamps carry no fractions."""
    return (dt + timedelta(microseconds=500_000)).replace(microsecond=0)


def _clamped_seconds(start: datetime, end: datetime, what: str) -> int:
    seconds = round((end - start).total_seconds())
    if seconds < 0:
        logger.warning(f"Clock skew: {what} of {seconds}s clamped to 0 (start={format_ts(start)}, end={format_ts(end)})")
        warnings.warn(f"negative {what} ({seconds}s) clamped to zero", ClockSkewWarning, stacklevel=3)
        return 0
    return seconds


def elapsed_seconds(start: datetime, now: datetime) -> int:
    """Whole seconds since start, never negative."""
    return _clamped_seconds(start, now, "elapsed")


def duration_seconds(start: datetime, end: datetime) -> int:
    """Entry duration rounded to the nearest second, never negative."""
    return _clamped_seconds(start, end, "duration")
