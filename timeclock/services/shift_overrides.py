from __future__ import annotations

import logging
from datetime import date, timedelta

from sqlalchemy import select
from sqlalchemy.orm import Session

from timeclock.errors import ApiError
from timeclock.models import Employee, ShiftOverride, ShiftTemplate
from timeclock.schemas import ShiftOverrideUpsert
from timeclock.services.clock import local_day, now_utc

logger = logging.getLogger("timeclock.shift_overrides")

DEFAULT_LIST_WINDOW_DAYS = 30


def upsert_override(db: Session, *, payload: ShiftOverrideUpsert, created_by: str) -> ShiftOverride:
    if db.get(Employee, payload.employee_id) is None:
        raise ApiError(status_code=404, code="EMPLOYEE_NOT_FOUND", message="Employee not found.")
    if payload.shift_id is not None and db.get(ShiftTemplate, payload.shift_id) is None:
        raise ApiError(status_code=404, code="SHIFT_NOT_FOUND", message="Shift not found.")

    override = db.scalar(
        select(ShiftOverride).where(
            ShiftOverride.employee_id == payload.employee_id,
            ShiftOverride.work_date == payload.work_date,
        )
    )
    if override is None:
        override = ShiftOverride(employee_id=payload.employee_id, work_date=payload.work_date)
        db.add(override)

    override.shift_id = payload.shift_id
    override.source = (payload.source or "MANUAL").strip().upper() or "MANUAL"
    override.note = payload.note
    override.created_by = created_by
    db.commit()
    db.refresh(override)
    logger.info(
        "shift_override_upserted",
        extra={
            "employee_id": override.employee_id,
            "work_date": override.work_date.isoformat(),
            "shift_id": override.shift_id,
        },
    )
    return override


def list_overrides(
    db: Session,
    *,
    start_date: date | None = None,
    end_date: date | None = None,
    employee_id: int | None = None,
) -> list[ShiftOverride]:
    range_start = start_date or local_day(now_utc())
    range_end = end_date or (range_start + timedelta(days=DEFAULT_LIST_WINDOW_DAYS))
    if range_end < range_start:
        raise ApiError(status_code=422, code="INVALID_DATE_RANGE", message="end_date must be on or after start_date.")

    stmt = select(ShiftOverride).where(
        ShiftOverride.work_date >= range_start,
        ShiftOverride.work_date <= range_end,
    )
    if employee_id is not None:
        stmt = stmt.where(ShiftOverride.employee_id == employee_id)
    return list(db.scalars(stmt.order_by(ShiftOverride.work_date, ShiftOverride.employee_id)).all())


def delete_override(db: Session, override_id: int) -> ShiftOverride:
    override = db.get(ShiftOverride, override_id)
    if override is None:
        raise ApiError(status_code=404, code="OVERRIDE_NOT_FOUND", message="Override not found.")
    db.delete(override)
    db.commit()
    logger.info("shift_override_deleted", extra={"override_id": override_id})
    return override
