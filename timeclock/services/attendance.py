from __future__ import annotations

import logging
from datetime import date, datetime

from sqlalchemy import select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from timeclock.errors import ApiError
from timeclock.models import AttendanceRecord, AttendanceStatus, Employee, PunchEvent
from timeclock.schemas import AttendanceRecordRead, DayStatusResponse, PunchRead
from timeclock.services.attendance_calc import calculate_day_attendance, compute_break_stats
from timeclock.services.clock import day_bounds_utc, ensure_utc, normalize_ts
from timeclock.services.punch_locks import employee_day_lock
from timeclock.services.schedule_resolver import resolve_expected_shift
from timeclock.settings import get_settings

logger = logging.getLogger("timeclock.attendance")


def load_day_punches(db: Session, *, employee_id: int, work_date: date) -> list[PunchEvent]:
    return list(
        db.scalars(
            select(PunchEvent)
            .where(
                PunchEvent.employee_id == employee_id,
                PunchEvent.work_date == work_date,
            )
            .order_by(PunchEvent.punched_at.asc(), PunchEvent.id.asc())
        ).all()
    )


def get_attendance_record(
    db: Session,
    *,
    employee_id: int,
    work_date: date,
    for_update: bool = False,
) -> AttendanceRecord | None:
    stmt = select(AttendanceRecord).where(
        AttendanceRecord.employee_id == employee_id,
        AttendanceRecord.work_date == work_date,
    )
    if for_update:
        stmt = stmt.with_for_update().execution_options(populate_existing=True)
    return db.scalar(stmt)


def _mark_punches_aggregated(db: Session, *, employee_id: int, work_date: date, now: datetime) -> None:
    db.execute(
        update(PunchEvent)
        .where(
            PunchEvent.employee_id == employee_id,
            PunchEvent.work_date == work_date,
            PunchEvent.aggregated_at.is_(None),
        )
        .values(aggregated_at=now)
    )


def _keep_locked(db: Session, record: AttendanceRecord, *, now: datetime) -> AttendanceRecord:
    _mark_punches_aggregated(db, employee_id=record.employee_id, work_date=record.work_date, now=now)
    db.commit()
    db.refresh(record)
    logger.info(
        "attendance_recompute_skipped_locked",
        extra={"employee_id": record.employee_id, "work_date": record.work_date.isoformat()},
    )
    return record


def recompute_attendance_day(
    db: Session,
    *,
    employee_id: int,
    work_date: date,
    now: datetime | None = None,
) -> AttendanceRecord:
    """Rebuild the day's record from its punches. Idempotent; a locked record is left as is.

    Runs under the employee-day lock. The write to an existing record only lands
    while the row is still unlocked, so a lock committed mid-recompute wins.
    """
    now_utc = normalize_ts(now)
    with employee_day_lock(db, employee_id=employee_id, work_date=work_date):
        record = get_attendance_record(db, employee_id=employee_id, work_date=work_date, for_update=True)
        if record is not None and record.is_locked:
            return _keep_locked(db, record, now=now_utc)

        punches = load_day_punches(db, employee_id=employee_id, work_date=work_date)
        expected = resolve_expected_shift(db, employee_id=employee_id, day=work_date)
        day_start, _ = day_bounds_utc(work_date)
        computation = calculate_day_attendance(
            punches=punches,
            day_start=day_start,
            scheduled_start_minutes=expected.scheduled_start_minutes,
            scheduled_end_minutes=expected.scheduled_end_minutes,
        )
        values = {
            "status": computation.status,
            "expected_shift_id": expected.shift_id,
            "schedule_source": expected.source,
            "scheduled_start_minutes": expected.scheduled_start_minutes,
            "scheduled_end_minutes": expected.scheduled_end_minutes,
            "actual_in_at": computation.actual_in_at,
            "actual_out_at": computation.actual_out_at,
            "worked_minutes": computation.worked_minutes,
            "break_count": computation.break_count,
            "break_minutes": computation.break_minutes,
            "late_minutes": computation.late_minutes,
            "undertime_minutes": computation.undertime_minutes,
            "overtime_minutes_raw": computation.overtime_minutes_raw,
            "computed_at": now_utc,
        }

        if record is None:
            record = AttendanceRecord(employee_id=employee_id, work_date=work_date, **values)
            db.add(record)
        else:
            result = db.execute(
                update(AttendanceRecord)
                .where(AttendanceRecord.id == record.id, AttendanceRecord.is_locked.is_(False))
                .values(**values)
                .execution_options(synchronize_session=False)
            )
            if result.rowcount == 0:
                return _keep_locked(db, record, now=now_utc)

        _mark_punches_aggregated(db, employee_id=employee_id, work_date=work_date, now=now_utc)
        db.commit()
        db.refresh(record)

    logger.info(
        "attendance_recomputed",
        extra={
            "employee_id": employee_id,
            "work_date": work_date.isoformat(),
            "status": record.status.value,
            "punch_count": len(punches),
        },
    )
    return record


def recompute_with_retry(
    db: Session,
    *,
    employee_id: int,
    work_date: date,
    max_attempts: int | None = None,
) -> AttendanceRecord | None:
    """Recompute with bounded retries. Returns None when every attempt failed.

    The punches stay un-aggregated in that case, so the background sweep picks
    the day up again.
    """
    attempts = max(1, int(max_attempts or get_settings().recompute_max_attempts))
    for attempt in range(1, attempts + 1):
        try:
            return recompute_attendance_day(db, employee_id=employee_id, work_date=work_date)
        except SQLAlchemyError:
            db.rollback()
            logger.warning(
                "attendance_recompute_attempt_failed",
                exc_info=True,
                extra={
                    "employee_id": employee_id,
                    "work_date": work_date.isoformat(),
                    "attempt": attempt,
                    "max_attempts": attempts,
                },
            )
    logger.error(
        "attendance_recompute_failed",
        extra={"employee_id": employee_id, "work_date": work_date.isoformat(), "attempts": attempts},
    )
    return None


def force_recompute_day(db: Session, *, employee_id: int, work_date: date) -> AttendanceRecord:
    if db.get(Employee, employee_id) is None:
        raise ApiError(status_code=404, code="EMPLOYEE_NOT_FOUND", message="Employee not found.")
    existing = get_attendance_record(db, employee_id=employee_id, work_date=work_date)
    if existing is not None and existing.is_locked:
        raise ApiError(status_code=409, code="ATTENDANCE_LOCKED", message="Attendance day is locked.")
    return recompute_attendance_day(db, employee_id=employee_id, work_date=work_date)


def recompute_attendance_for_date(db: Session, *, work_date: date) -> tuple[int, int]:
    """Recompute every active employee plus anyone who punched that day. Returns (recomputed, skipped_locked)."""
    active_ids = set(db.scalars(select(Employee.id).where(Employee.is_active.is_(True))).all())
    punched_ids = set(db.scalars(select(PunchEvent.employee_id).where(PunchEvent.work_date == work_date)).all())
    locked_ids = set(
        db.scalars(
            select(AttendanceRecord.employee_id).where(
                AttendanceRecord.work_date == work_date,
                AttendanceRecord.is_locked.is_(True),
            )
        ).all()
    )

    recomputed = 0
    for employee_id in sorted(active_ids | punched_ids):
        if employee_id in locked_ids:
            continue
        if recompute_with_retry(db, employee_id=employee_id, work_date=work_date) is not None:
            recomputed += 1

    skipped = len(locked_ids & (active_ids | punched_ids))
    logger.info(
        "attendance_recompute_all_done",
        extra={"work_date": work_date.isoformat(), "recomputed": recomputed, "skipped_locked": skipped},
    )
    return recomputed, skipped


def recompute_pending_days(db: Session, *, limit: int = 200) -> int:
    pending = db.execute(
        select(PunchEvent.employee_id, PunchEvent.work_date)
        .where(PunchEvent.aggregated_at.is_(None))
        .group_by(PunchEvent.employee_id, PunchEvent.work_date)
        .order_by(PunchEvent.work_date)
        .limit(limit)
    ).all()

    recovered = 0
    for employee_id, work_date in pending:
        if recompute_with_retry(db, employee_id=employee_id, work_date=work_date) is not None:
            recovered += 1
    if pending:
        logger.info("attendance_pending_recomputed", extra={"pending": len(pending), "recovered": recovered})
    return recovered


def list_attendance(
    db: Session,
    *,
    start_date: date,
    end_date: date,
    employee_id: int | None = None,
    status: AttendanceStatus | None = None,
) -> list[AttendanceRecord]:
    if end_date < start_date:
        raise ApiError(status_code=422, code="INVALID_DATE_RANGE", message="end_date must be on or after start_date.")
    stmt = select(AttendanceRecord).where(
        AttendanceRecord.work_date >= start_date,
        AttendanceRecord.work_date <= end_date,
    )
    if employee_id is not None:
        stmt = stmt.where(AttendanceRecord.employee_id == employee_id)
    if status is not None:
        stmt = stmt.where(AttendanceRecord.status == status)
    return list(db.scalars(stmt.order_by(AttendanceRecord.work_date, AttendanceRecord.employee_id)).all())


def to_punch_read(punch: PunchEvent) -> PunchRead:
    return PunchRead(
        id=punch.id,
        employee_id=punch.employee_id,
        punched_at=ensure_utc(punch.punched_at),
        work_date=punch.work_date,
        punch_type=punch.punch_type,
        source=punch.source,
        client_ip=punch.client_ip,
    )


def to_attendance_read(record: AttendanceRecord) -> AttendanceRecordRead:
    read = AttendanceRecordRead.model_validate(record)
    return read.model_copy(
        update={
            "actual_in_at": ensure_utc(record.actual_in_at),
            "actual_out_at": ensure_utc(record.actual_out_at),
            "locked_at": ensure_utc(record.locked_at),
        }
    )


def get_day_status(db: Session, *, employee_id: int, work_date: date) -> DayStatusResponse:
    expected = resolve_expected_shift(db, employee_id=employee_id, day=work_date)
    punches = load_day_punches(db, employee_id=employee_id, work_date=work_date)
    breaks = compute_break_stats(punches)
    record = get_attendance_record(db, employee_id=employee_id, work_date=work_date)
    punch_reads = [to_punch_read(punch) for punch in punches]
    return DayStatusResponse(
        employee_id=employee_id,
        work_date=work_date,
        expected=expected.to_read(),
        punches=punch_reads,
        last_punch=punch_reads[-1] if punch_reads else None,
        break_count=breaks.break_count,
        break_minutes=breaks.break_minutes,
        attendance=to_attendance_read(record) if record is not None else None,
    )
