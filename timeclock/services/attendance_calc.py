from __future__ import annotations

from collections.abc import Iterable, Sequence
from dataclasses import dataclass
from datetime import datetime
from typing import Any

from timeclock.models import AttendanceStatus, PunchType
from timeclock.services.clock import minutes_between, normalize_ts

BREAK_TOGGLE_TYPES = frozenset({PunchType.BREAK_OUT, PunchType.BREAK_IN})


@dataclass(frozen=True)
class BreakStats:
    break_count: int
    break_minutes: int


@dataclass(frozen=True)
class DayComputation:
    status: AttendanceStatus
    actual_in_at: datetime | None
    actual_out_at: datetime | None
    worked_minutes: int | None
    break_count: int
    break_minutes: int
    late_minutes: int
    undertime_minutes: int
    overtime_minutes_raw: int


def _ordered(punches: Iterable[Any]) -> list[Any]:
    return sorted(punches, key=lambda punch: normalize_ts(punch.punched_at))


def compute_break_stats(punches: Iterable[Any]) -> BreakStats:
    # BREAK_OUT and BREAK_IN toggle; every second break punch closes a pair.
    break_count = 0
    break_minutes = 0
    open_break_at: datetime | None = None
    for punch in _ordered(punches):
        if punch.punch_type not in BREAK_TOGGLE_TYPES:
            continue
        if open_break_at is None:
            open_break_at = normalize_ts(punch.punched_at)
            continue
        break_count += 1
        break_minutes += max(0, minutes_between(open_break_at, punch.punched_at))
        open_break_at = None
    return BreakStats(break_count=break_count, break_minutes=break_minutes)


def resolve_in_out(punches: Sequence[Any]) -> tuple[datetime | None, datetime | None]:
    ordered = _ordered(punches)
    if not ordered:
        return None, None

    actual_in_at = next(
        (normalize_ts(punch.punched_at) for punch in ordered if punch.punch_type == PunchType.TIME_IN),
        normalize_ts(ordered[0].punched_at),
    )
    actual_out_at = next(
        (normalize_ts(punch.punched_at) for punch in reversed(ordered) if punch.punch_type == PunchType.TIME_OUT),
        None,
    )
    return actual_in_at, actual_out_at


def calculate_day_attendance(
    *,
    punches: Sequence[Any],
    day_start: datetime,
    scheduled_start_minutes: int | None,
    scheduled_end_minutes: int | None,
) -> DayComputation:
    actual_in_at, actual_out_at = resolve_in_out(punches)
    breaks = compute_break_stats(punches)

    actual_in_minutes = minutes_between(day_start, actual_in_at) if actual_in_at else None
    actual_out_minutes = minutes_between(day_start, actual_out_at) if actual_out_at else None

    worked_minutes = None
    if actual_in_at is not None and actual_out_at is not None:
        worked_minutes = max(0, minutes_between(actual_in_at, actual_out_at))

    late_minutes = 0
    if scheduled_start_minutes is not None and actual_in_minutes is not None:
        late_minutes = max(0, actual_in_minutes - scheduled_start_minutes)

    undertime_minutes = 0
    overtime_minutes_raw = 0
    if scheduled_end_minutes is not None and actual_out_minutes is not None:
        undertime_minutes = max(0, scheduled_end_minutes - actual_out_minutes)
        overtime_minutes_raw = max(0, actual_out_minutes - scheduled_end_minutes)

    if actual_in_at is None and actual_out_at is None:
        status = AttendanceStatus.ABSENT
    elif late_minutes > 0:
        status = AttendanceStatus.LATE
    else:
        status = AttendanceStatus.PRESENT

    return DayComputation(
        status=status,
        actual_in_at=actual_in_at,
        actual_out_at=actual_out_at,
        worked_minutes=worked_minutes,
        break_count=breaks.break_count,
        break_minutes=breaks.break_minutes,
        late_minutes=late_minutes,
        undertime_minutes=undertime_minutes,
        overtime_minutes_raw=overtime_minutes_raw,
    )
