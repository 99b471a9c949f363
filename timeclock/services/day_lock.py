from __future__ import annotations

import logging
from datetime import date, datetime, timedelta

from sqlalchemy import select
from sqlalchemy.orm import Session

from timeclock.models import AttendanceRecord, AttendanceStatus, PunchEvent
from timeclock.services.attendance import recompute_attendance_for_date
from timeclock.services.clock import day_bounds_utc, local_day, normalize_ts
from timeclock.settings import get_settings

logger = logging.getLogger("timeclock.day_lock")


def lock_day(db: Session, *, work_date: date, now: datetime | None = None) -> int:
    """Freeze every unlocked record of ``work_date``. Days with no time-out become INCOMPLETE."""
    locked_at = normalize_ts(now)
    records = db.scalars(
        select(AttendanceRecord)
        .where(
            AttendanceRecord.work_date == work_date,
            AttendanceRecord.is_locked.is_(False),
        )
        .with_for_update()
        .execution_options(populate_existing=True)
    ).all()

    incomplete = 0
    for record in records:
        if record.actual_out_at is None:
            record.status = AttendanceStatus.INCOMPLETE
            incomplete += 1
        record.is_locked = True
        record.locked_at = locked_at
    db.commit()

    logger.info(
        "day_locked",
        extra={"work_date": work_date.isoformat(), "locked": len(records), "incomplete": incomplete},
    )
    return len(records)


def lock_date_range(
    db: Session,
    *,
    start_date: date,
    end_date: date,
    now: datetime | None = None,
) -> dict[str, int]:
    per_day: dict[str, int] = {}
    current = start_date
    while current <= end_date:
        per_day[current.isoformat()] = lock_day(db, work_date=current, now=now)
        current += timedelta(days=1)
    return per_day


def is_day_fully_locked(db: Session, *, work_date: date) -> bool:
    """True once the day has records and none of them is still open."""
    any_record = db.scalar(select(AttendanceRecord.id).where(AttendanceRecord.work_date == work_date).limit(1))
    if any_record is None:
        return False
    open_record = db.scalar(
        select(AttendanceRecord.id)
        .where(
            AttendanceRecord.work_date == work_date,
            AttendanceRecord.is_locked.is_(False),
        )
        .limit(1)
    )
    return open_record is None


def _days_to_lock(db: Session, *, last_day: date) -> list[date]:
    catchup_days = max(1, int(get_settings().lock_catchup_days))
    window = {last_day - timedelta(days=offset) for offset in range(catchup_days)}
    # Older stragglers: open records and punches never folded into a record.
    window.update(
        db.scalars(
            select(AttendanceRecord.work_date)
            .where(AttendanceRecord.work_date <= last_day, AttendanceRecord.is_locked.is_(False))
            .distinct()
        ).all()
    )
    window.update(
        db.scalars(
            select(PunchEvent.work_date)
            .where(PunchEvent.work_date <= last_day, PunchEvent.aggregated_at.is_(None))
            .distinct()
        ).all()
    )
    return sorted(day for day in window if not is_day_fully_locked(db, work_date=day))


def auto_lock_elapsed_days(db: Session, *, now: datetime | None = None) -> int:
    """Lock every elapsed org day up to yesterday once yesterday's grace period has passed.

    Records are materialized first so employees who never punched get a locked day too.
    Days that are already fully locked are skipped without a recompute.
    """
    now_utc = normalize_ts(now)
    grace = timedelta(minutes=max(0, int(get_settings().lock_grace_minutes)))
    previous_day = local_day(now_utc) - timedelta(days=1)
    _, previous_day_end = day_bounds_utc(previous_day)
    if now_utc < previous_day_end + grace:
        return 0

    locked = 0
    for work_date in _days_to_lock(db, last_day=previous_day):
        recompute_attendance_for_date(db, work_date=work_date)
        locked += lock_day(db, work_date=work_date, now=now_utc)
    return locked
