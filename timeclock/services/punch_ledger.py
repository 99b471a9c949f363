"""Punch ledger: validation and append of clock events.

Check order for a punch request:

1. transport gate (client IP allow-list, KIOSK and WEB_SELF only)
2. credentials (handled by the caller before the ledger is reached)
3. target date parsing
4. TIME_IN scheduling gates, self-service sources only:
   wrong_date, no_shift_today, too_early, too_late
5. already_clocked_out
6. invalid_sequence

Steps 4-6 and the append run under the per-(employee, day) lock. Every
rejection raises ``PunchRejected`` and leaves the ledger untouched.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date, datetime

from sqlalchemy.orm import Session

from timeclock.errors import PunchRejected
from timeclock.models import AttendanceRecord, PunchEvent, PunchSource, PunchType
from timeclock.security import is_ip_allowed
from timeclock.services.attendance import load_day_punches, recompute_with_retry
from timeclock.services.clock import (
    DAY_MINUTES,
    day_bounds_utc,
    ensure_utc,
    local_day,
    minutes_between,
    normalize_ts,
)
from timeclock.services.punch_locks import employee_day_lock
from timeclock.services.schedule_resolver import ExpectedShift, resolve_expected_shift
from timeclock.settings import get_allowed_punch_ips, get_allowed_self_punch_ips

logger = logging.getLogger("timeclock.punch")

NEXT_ALLOWED: dict[PunchType | None, PunchType] = {
    None: PunchType.TIME_IN,
    PunchType.TIME_IN: PunchType.BREAK_IN,
    PunchType.BREAK_IN: PunchType.BREAK_OUT,
    PunchType.BREAK_OUT: PunchType.TIME_OUT,
}

SELF_SERVICE_SOURCES = frozenset({PunchSource.KIOSK, PunchSource.WEB_SELF})


@dataclass(frozen=True)
class PunchCommand:
    employee_id: int
    punch_type: PunchType
    source: PunchSource
    target_date: date | None = None
    punched_at: datetime | None = None
    client_ip: str | None = None
    note: str | None = None


@dataclass(frozen=True)
class PunchResult:
    punch: PunchEvent
    attendance: AttendanceRecord | None


def parse_punch_type(raw: str | None) -> PunchType:
    value = (raw or "").strip().upper()
    try:
        return PunchType(value)
    except ValueError as exc:
        raise PunchRejected("invalid_punch_type", "Invalid punch_type.") from exc


def parse_target_date(raw: str | None) -> date | None:
    if raw is None or not raw.strip():
        return None
    try:
        return date.fromisoformat(raw.strip())
    except ValueError as exc:
        raise PunchRejected("invalid_date", "Invalid date.") from exc


def ensure_transport_allowed(client_ip: str | None, source: PunchSource) -> None:
    if source == PunchSource.KIOSK:
        allow_list = get_allowed_punch_ips()
    elif source == PunchSource.WEB_SELF:
        allow_list = get_allowed_self_punch_ips()
    else:
        return
    if not is_ip_allowed(client_ip, allow_list):
        raise PunchRejected("ip_not_allowed", "Punching not allowed from this device.")


def time_in_window(expected: ExpectedShift) -> tuple[int | None, int | None]:
    start = expected.scheduled_start_minutes
    end = expected.scheduled_end_minutes
    # Overnight shifts: measure the end on the following day so late-evening starts stay clockable.
    if start is not None and end is not None and expected.spans_midnight and end <= start:
        end += DAY_MINUTES
    return start, end


def check_time_in_gates(*, now: datetime, work_date: date, today: date, expected: ExpectedShift) -> None:
    if work_date != today:
        raise PunchRejected("wrong_date", "Clock in is only allowed on today's scheduled shift date.")

    start, end = time_in_window(expected)
    if start is None:
        raise PunchRejected("no_shift_today", "No scheduled shift for today.")

    day_start, _ = day_bounds_utc(work_date)
    minutes_since_start = minutes_between(day_start, now)
    if minutes_since_start < start:
        raise PunchRejected("too_early", "Too early to clock in. Wait for your scheduled start time.")
    if end is not None and minutes_since_start > end:
        raise PunchRejected("too_late", "Cannot clock in after your scheduled end time.")


def check_sequence(last_type: PunchType | None, punch_type: PunchType) -> None:
    if last_type == PunchType.TIME_OUT:
        raise PunchRejected("already_clocked_out", "Already clocked out today.")
    expected_next = NEXT_ALLOWED[last_type]
    if punch_type != expected_next:
        label = expected_next.value.replace("_", " ").lower()
        raise PunchRejected("invalid_sequence", f"Next allowed punch is {label}.")


def _validate_locked(
    db: Session,
    *,
    command: PunchCommand,
    work_date: date,
    punched_at: datetime,
    now: datetime,
) -> None:
    punches = load_day_punches(db, employee_id=command.employee_id, work_date=work_date)
    last_punch = punches[-1] if punches else None

    if command.punch_type == PunchType.TIME_IN and command.source in SELF_SERVICE_SOURCES:
        expected = resolve_expected_shift(db, employee_id=command.employee_id, day=work_date)
        check_time_in_gates(now=now, work_date=work_date, today=local_day(now), expected=expected)

    check_sequence(last_punch.punch_type if last_punch else None, command.punch_type)

    if last_punch is not None and punched_at < ensure_utc(last_punch.punched_at):
        raise PunchRejected("invalid_sequence", "Punch time precedes the last recorded punch.")


def append_punch(db: Session, command: PunchCommand, *, now: datetime | None = None) -> PunchResult:
    """Validate and append one punch, then refresh the day's attendance record.

    The punch is committed before the recompute. A recompute that keeps failing
    does not undo it; the day stays pending for the background sweep.
    """
    now_utc = normalize_ts(now)
    if command.source == PunchSource.MANUAL:
        punched_at = normalize_ts(command.punched_at or now_utc)
        work_date = local_day(punched_at)
    else:
        punched_at = now_utc
        work_date = command.target_date or local_day(now_utc)
        if command.punch_type != PunchType.TIME_IN and work_date != local_day(now_utc):
            raise _rejected(command, PunchRejected("wrong_date", "Punches are only accepted for today."))

    with employee_day_lock(db, employee_id=command.employee_id, work_date=work_date):
        try:
            _validate_locked(db, command=command, work_date=work_date, punched_at=punched_at, now=now_utc)
        except PunchRejected as exc:
            db.rollback()
            raise _rejected(command, exc) from None

        punch = PunchEvent(
            employee_id=command.employee_id,
            punched_at=punched_at,
            work_date=work_date,
            punch_type=command.punch_type,
            source=command.source,
            client_ip=command.client_ip,
            note=command.note,
        )
        db.add(punch)
        try:
            db.commit()
        except Exception:
            db.rollback()
            raise
        db.refresh(punch)

    logger.info(
        "punch_recorded",
        extra={
            "punch_id": punch.id,
            "employee_id": punch.employee_id,
            "punch_type": punch.punch_type.value,
            "source": punch.source.value,
            "work_date": work_date.isoformat(),
        },
    )
    attendance = recompute_with_retry(db, employee_id=command.employee_id, work_date=work_date)
    return PunchResult(punch=punch, attendance=attendance)


def _rejected(command: PunchCommand, exc: PunchRejected) -> PunchRejected:
    logger.info(
        "punch_rejected",
        extra={
            "reason": exc.reason,
            "employee_id": command.employee_id,
            "punch_type": command.punch_type.value,
            "source": command.source.value,
        },
    )
    return exc
