"""Time utilities with timezone-aware defaults."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone


def utc_now() -> datetime:
    """Return current UTC time with tzinfo."""

    return datetime.now(timezone.utc)


def start_of_day(moment: datetime) -> datetime:
    return moment.replace(hour=0, minute=0, second=0, microsecond=0)


def start_of_week(moment: datetime) -> datetime:
    """Midnight six days before ``moment``, so the week includes today."""

    return start_of_day(moment) - timedelta(days=6)


def elapsed_ms(started: float, finished: float) -> int:
    return max(0, round((finished - started) * 1000))


__all__ = ["elapsed_ms", "start_of_day", "start_of_week", "utc_now"]
