"""Organization clock.

All day bucketing runs against one fixed UTC offset (no DST). A work day is the
half-open window ``[start_of_day, end_of_day)`` expressed as UTC instants.
"""

from __future__ import annotations

import math
from datetime import date, datetime, time, timedelta, timezone

from timeclock.settings import get_settings

DAY_MINUTES = 24 * 60


def org_timezone() -> timezone:
    offset_minutes = int(get_settings().org_utc_offset_minutes)
    return timezone(timedelta(minutes=offset_minutes))


def now_utc() -> datetime:
    return datetime.now(timezone.utc)


def normalize_ts(ts: datetime | None) -> datetime:
    if ts is None:
        return now_utc()
    if ts.tzinfo is None:
        return ts.replace(tzinfo=timezone.utc)
    return ts.astimezone(timezone.utc)


def ensure_utc(ts: datetime | None) -> datetime | None:
    # SQLite hands back naive datetimes; everything stored is UTC.
    if ts is None:
        return None
    return normalize_ts(ts)


def local_day(instant: datetime) -> date:
    return normalize_ts(instant).astimezone(org_timezone()).date()


def day_bounds_utc(day: date) -> tuple[datetime, datetime]:
    start_local = datetime.combine(day, time.min, tzinfo=org_timezone())
    start_utc = start_local.astimezone(timezone.utc)
    return start_utc, start_utc + timedelta(days=1)


def start_of_day(instant: datetime) -> datetime:
    return day_bounds_utc(local_day(instant))[0]


def end_of_day(instant: datetime) -> datetime:
    return day_bounds_utc(local_day(instant))[1]


def minutes_between(start: datetime, end: datetime) -> int:
    seconds = (normalize_ts(end) - normalize_ts(start)).total_seconds()
    # Half-up rounding so 30 seconds counts as a full minute.
    return int(math.floor(seconds / 60 + 0.5))


def minutes_since_day_start(instant: datetime, day: date | None = None) -> int:
    target_day = day if day is not None else local_day(instant)
    day_start, _ = day_bounds_utc(target_day)
    return minutes_between(day_start, instant)


def format_minutes(minutes: int | None) -> str | None:
    if minutes is None:
        return None
    normalized = minutes % DAY_MINUTES
    return f"{normalized // 60:02d}:{normalized % 60:02d}"
