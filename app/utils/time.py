from __future__ import annotations

from datetime import date, datetime, time, timedelta, timezone
from typing import Any


def parse_timestamp(value: Any) -> datetime | None:
    if value is None:
        return None
    if isinstance(value, datetime):
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc)
    if isinstance(value, (int, float)):
        timestamp = float(value)
        if timestamp > 1_000_000_000_000:
            timestamp = timestamp / 1000.0
        return datetime.fromtimestamp(timestamp, tz=timezone.utc)
    if isinstance(value, str):
        cleaned = value.replace("Z", "+00:00")
        try:
            parsed = datetime.fromisoformat(cleaned)
        except ValueError:
            return None
        if parsed.tzinfo is None:
            return parsed.replace(tzinfo=timezone.utc)
        return parsed.astimezone(timezone.utc)
    return None


def utc_now() -> datetime:
    return datetime.now(tz=timezone.utc)


def utc_today() -> date:
    return utc_now().date()


def start_of_day(day: date) -> datetime:
    return datetime.combine(day, time.min, tzinfo=timezone.utc)


def end_of_day(day: date) -> datetime:
    return datetime.combine(day, time.max, tzinfo=timezone.utc)


def start_of_week(day: date) -> datetime:
    # Weeks start on Sunday.
    offset = (day.weekday() + 1) % 7
    return start_of_day(day - timedelta(days=offset))


def minutes_between(start: Any, end: Any) -> int | None:
    """Whole minutes elapsed from ``start`` to ``end``, floored.

    Naive values are read as UTC, which is how SQLite hands back
    timezone-aware columns.
    """
    start_at = parse_timestamp(start)
    end_at = parse_timestamp(end)
    if start_at is None or end_at is None:
        return None
    return max(0, int((end_at - start_at).total_seconds() // 60))
