from __future__ import annotations

import logging
from dataclasses import dataclass

from sqlalchemy import or_, select
from sqlalchemy.orm import Session

from timeclock.errors import ApiError
from timeclock.models import WEEKDAY_SHIFT_COLUMNS, ShiftOverride, ShiftTemplate, WeeklyPattern
from timeclock.schemas import ShiftTemplateCreate, ShiftTemplateUpdate
from timeclock.services.clock import DAY_MINUTES

logger = logging.getLogger("timeclock.shift_catalog")


@dataclass(frozen=True)
class ShiftDurations:
    total_minutes: int
    break_minutes: int
    paid_hours: float


def parse_hhmm(value: str | None) -> int | None:
    """Return minute-of-day for ``HH:MM``; blank input means "not set"."""
    if value is None or not value.strip():
        return None
    try:
        hour_str, minute_str = value.strip().split(":")
        hour = int(hour_str)
        minute = int(minute_str)
        if hour < 0 or hour > 23 or minute < 0 or minute > 59:
            raise ValueError
    except ValueError as exc:
        raise ApiError(status_code=422, code="INVALID_TIME", message="Invalid time format. Use HH:MM.") from exc
    return hour * 60 + minute


def compute_break_and_paid(
    *,
    start_minute: int,
    end_minute: int,
    spans_midnight: bool,
    break_start_minute: int | None,
    break_end_minute: int | None,
) -> ShiftDurations:
    if spans_midnight and end_minute <= start_minute:
        total_minutes = end_minute + DAY_MINUTES - start_minute
    else:
        total_minutes = end_minute - start_minute
    total_minutes = max(0, total_minutes)

    break_minutes = 0
    if break_start_minute is not None and break_end_minute is not None:
        break_end = break_end_minute
        if spans_midnight and break_end_minute <= break_start_minute:
            break_end += DAY_MINUTES
        break_minutes = max(0, min(total_minutes, break_end - break_start_minute))

    paid_hours = round((total_minutes - break_minutes) / 60, 2) if total_minutes > 0 else 0.0
    return ShiftDurations(total_minutes=total_minutes, break_minutes=break_minutes, paid_hours=paid_hours)


def _validate_window(*, start_minute: int | None, end_minute: int | None, spans_midnight: bool) -> tuple[int, int]:
    if start_minute is None or end_minute is None:
        raise ApiError(status_code=422, code="INVALID_TIME", message="start_time and end_time must be HH:MM.")
    if not spans_midnight and end_minute <= start_minute:
        raise ApiError(
            status_code=422,
            code="INVALID_SHIFT_WINDOW",
            message="end_time must be after start_time unless spans_midnight is true.",
        )
    return start_minute, end_minute


def _validate_break(break_start: int | None, break_end: int | None) -> None:
    if (break_start is None) != (break_end is None):
        raise ApiError(
            status_code=422,
            code="INVALID_TIME",
            message="break_start_time and break_end_time must be set together.",
        )


def _ensure_code_available(db: Session, code: str, *, exclude_id: int | None = None) -> None:
    stmt = select(ShiftTemplate.id).where(ShiftTemplate.code == code)
    if exclude_id is not None:
        stmt = stmt.where(ShiftTemplate.id != exclude_id)
    if db.scalar(stmt) is not None:
        raise ApiError(status_code=409, code="SHIFT_CODE_EXISTS", message="Shift code already exists.")


def _apply_durations(shift: ShiftTemplate) -> None:
    durations = compute_break_and_paid(
        start_minute=shift.start_minute,
        end_minute=shift.end_minute,
        spans_midnight=shift.spans_midnight,
        break_start_minute=shift.break_start_minute,
        break_end_minute=shift.break_end_minute,
    )
    shift.unpaid_break_minutes = durations.break_minutes
    shift.paid_hours_per_day = durations.paid_hours


def get_shift(db: Session, shift_id: int) -> ShiftTemplate:
    shift = db.get(ShiftTemplate, shift_id)
    if shift is None:
        raise ApiError(status_code=404, code="SHIFT_NOT_FOUND", message="Shift not found.")
    return shift


def list_shifts(db: Session) -> list[ShiftTemplate]:
    return list(db.scalars(select(ShiftTemplate).order_by(ShiftTemplate.start_minute, ShiftTemplate.code)).all())


def create_shift(db: Session, *, payload: ShiftTemplateCreate) -> ShiftTemplate:
    code = payload.code.strip()
    name = payload.name.strip()
    if not code or not name:
        raise ApiError(status_code=422, code="VALIDATION_ERROR", message="code and name are required.")

    start_minute, end_minute = _validate_window(
        start_minute=parse_hhmm(payload.start_time),
        end_minute=parse_hhmm(payload.end_time),
        spans_midnight=payload.spans_midnight,
    )
    break_start = parse_hhmm(payload.break_start_time)
    break_end = parse_hhmm(payload.break_end_time)
    _validate_break(break_start, break_end)
    _ensure_code_available(db, code)

    shift = ShiftTemplate(
        code=code,
        name=name,
        start_minute=start_minute,
        end_minute=end_minute,
        spans_midnight=payload.spans_midnight,
        break_start_minute=break_start,
        break_end_minute=break_end,
        notes=payload.notes,
    )
    _apply_durations(shift)
    db.add(shift)
    db.commit()
    db.refresh(shift)
    logger.info("shift_created", extra={"shift_id": shift.id, "shift_code": shift.code})
    return shift


def update_shift(db: Session, *, shift_id: int, payload: ShiftTemplateUpdate) -> ShiftTemplate:
    shift = get_shift(db, shift_id)
    provided = payload.model_fields_set

    code = payload.code.strip() if payload.code and payload.code.strip() else shift.code
    name = payload.name.strip() if payload.name and payload.name.strip() else shift.name
    spans_midnight = payload.spans_midnight if payload.spans_midnight is not None else shift.spans_midnight
    start_minute = parse_hhmm(payload.start_time) if payload.start_time else shift.start_minute
    end_minute = parse_hhmm(payload.end_time) if payload.end_time else shift.end_minute
    break_start = parse_hhmm(payload.break_start_time) if "break_start_time" in provided else shift.break_start_minute
    break_end = parse_hhmm(payload.break_end_time) if "break_end_time" in provided else shift.break_end_minute

    start_minute, end_minute = _validate_window(
        start_minute=start_minute,
        end_minute=end_minute,
        spans_midnight=spans_midnight,
    )
    _validate_break(break_start, break_end)
    if code != shift.code:
        _ensure_code_available(db, code, exclude_id=shift.id)

    shift.code = code
    shift.name = name
    shift.start_minute = start_minute
    shift.end_minute = end_minute
    shift.spans_midnight = spans_midnight
    shift.break_start_minute = break_start
    shift.break_end_minute = break_end
    if "notes" in provided:
        shift.notes = payload.notes
    _apply_durations(shift)
    db.commit()
    db.refresh(shift)
    logger.info("shift_updated", extra={"shift_id": shift.id, "shift_code": shift.code})
    return shift


def delete_shift(db: Session, shift_id: int) -> None:
    shift = get_shift(db, shift_id)
    pattern_slots = [getattr(WeeklyPattern, column) == shift.id for column in WEEKDAY_SHIFT_COLUMNS]
    in_pattern = db.scalar(select(WeeklyPattern.id).where(or_(*pattern_slots)).limit(1))
    in_override = db.scalar(select(ShiftOverride.id).where(ShiftOverride.shift_id == shift.id).limit(1))
    if in_pattern is not None or in_override is not None:
        raise ApiError(
            status_code=409,
            code="SHIFT_IN_USE",
            message="Shift is referenced by a weekly pattern or override.",
        )
    db.delete(shift)
    db.commit()
    logger.info("shift_deleted", extra={"shift_id": shift_id})
