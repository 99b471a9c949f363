from __future__ import annotations

import logging
from datetime import date

from sqlalchemy import delete, func, select
from sqlalchemy.orm import Session, selectinload

from timeclock.errors import ApiError
from timeclock.models import WEEKDAY_SHIFT_COLUMNS, Employee, PatternAssignment, ShiftTemplate, WeeklyPattern
from timeclock.schemas import PatternAssignmentCreate, PatternAssignmentRead, WeeklyPatternUpsert

logger = logging.getLogger("timeclock.weekly_patterns")


def _ensure_shifts_exist(db: Session, payload: WeeklyPatternUpsert) -> None:
    shift_ids = {getattr(payload, column) for column in WEEKDAY_SHIFT_COLUMNS} - {None}
    if not shift_ids:
        return
    found = db.scalar(select(func.count(ShiftTemplate.id)).where(ShiftTemplate.id.in_(shift_ids)))
    if found != len(shift_ids):
        raise ApiError(status_code=404, code="SHIFT_NOT_FOUND", message="One or more shifts not found.")


def _ensure_code_available(db: Session, code: str, *, exclude_id: int | None = None) -> None:
    stmt = select(WeeklyPattern.id).where(WeeklyPattern.code == code)
    if exclude_id is not None:
        stmt = stmt.where(WeeklyPattern.id != exclude_id)
    if db.scalar(stmt) is not None:
        raise ApiError(status_code=409, code="PATTERN_CODE_EXISTS", message="Pattern code already exists.")


def get_pattern(db: Session, pattern_id: int) -> WeeklyPattern:
    pattern = db.get(WeeklyPattern, pattern_id)
    if pattern is None:
        raise ApiError(status_code=404, code="PATTERN_NOT_FOUND", message="Pattern not found.")
    return pattern


def list_patterns(db: Session) -> list[WeeklyPattern]:
    return list(db.scalars(select(WeeklyPattern).order_by(WeeklyPattern.name)).all())


def create_pattern(db: Session, *, payload: WeeklyPatternUpsert) -> WeeklyPattern:
    code = payload.code.strip()
    _ensure_code_available(db, code)
    _ensure_shifts_exist(db, payload)
    pattern = WeeklyPattern(code=code, name=payload.name.strip())
    for column in WEEKDAY_SHIFT_COLUMNS:
        setattr(pattern, column, getattr(payload, column))
    db.add(pattern)
    db.commit()
    db.refresh(pattern)
    logger.info("pattern_created", extra={"pattern_id": pattern.id, "pattern_code": pattern.code})
    return pattern


def update_pattern(db: Session, *, pattern_id: int, payload: WeeklyPatternUpsert) -> WeeklyPattern:
    pattern = get_pattern(db, pattern_id)
    code = payload.code.strip()
    if code != pattern.code:
        _ensure_code_available(db, code, exclude_id=pattern.id)
    _ensure_shifts_exist(db, payload)
    pattern.code = code
    pattern.name = payload.name.strip()
    for column in WEEKDAY_SHIFT_COLUMNS:
        setattr(pattern, column, getattr(payload, column))
    db.commit()
    db.refresh(pattern)
    logger.info("pattern_updated", extra={"pattern_id": pattern.id, "pattern_code": pattern.code})
    return pattern


def delete_pattern(db: Session, pattern_id: int) -> None:
    pattern = get_pattern(db, pattern_id)
    in_use = db.scalar(select(PatternAssignment.id).where(PatternAssignment.pattern_id == pattern.id).limit(1))
    if in_use is not None:
        raise ApiError(
            status_code=409,
            code="PATTERN_IN_USE",
            message="Pattern is assigned to one or more employees.",
        )
    db.delete(pattern)
    db.commit()
    logger.info("pattern_deleted", extra={"pattern_id": pattern_id})


def assign_pattern(db: Session, *, payload: PatternAssignmentCreate) -> PatternAssignment:
    """Assign a pattern from ``effective_date`` on. A same-day assignment is replaced."""
    if db.get(Employee, payload.employee_id) is None:
        raise ApiError(status_code=404, code="EMPLOYEE_NOT_FOUND", message="Employee not found.")
    get_pattern(db, payload.pattern_id)

    db.execute(
        delete(PatternAssignment).where(
            PatternAssignment.employee_id == payload.employee_id,
            PatternAssignment.effective_date == payload.effective_date,
        )
    )
    assignment = PatternAssignment(
        employee_id=payload.employee_id,
        pattern_id=payload.pattern_id,
        effective_date=payload.effective_date,
        reason=payload.reason,
    )
    db.add(assignment)
    db.commit()
    db.refresh(assignment)
    logger.info(
        "pattern_assigned",
        extra={
            "employee_id": assignment.employee_id,
            "pattern_id": assignment.pattern_id,
            "effective_date": assignment.effective_date.isoformat(),
        },
    )
    return assignment


def current_assignment(db: Session, *, employee_id: int, day: date) -> PatternAssignment | None:
    return db.scalar(
        select(PatternAssignment)
        .where(
            PatternAssignment.employee_id == employee_id,
            PatternAssignment.effective_date <= day,
        )
        .order_by(PatternAssignment.effective_date.desc(), PatternAssignment.id.desc())
        .limit(1)
    )


def list_assignments(db: Session, *, employee_id: int | None = None) -> list[PatternAssignmentRead]:
    stmt = (
        select(PatternAssignment)
        .options(selectinload(PatternAssignment.pattern))
        .order_by(PatternAssignment.employee_id, PatternAssignment.effective_date.desc())
    )
    if employee_id is not None:
        stmt = stmt.where(PatternAssignment.employee_id == employee_id)

    rows: list[PatternAssignmentRead] = []
    seen_employees: set[int] = set()
    for assignment in db.scalars(stmt).all():
        is_latest = assignment.employee_id not in seen_employees
        seen_employees.add(assignment.employee_id)
        rows.append(
            PatternAssignmentRead(
                id=assignment.id,
                employee_id=assignment.employee_id,
                pattern_id=assignment.pattern_id,
                pattern_code=assignment.pattern.code if assignment.pattern else None,
                pattern_name=assignment.pattern.name if assignment.pattern else None,
                effective_date=assignment.effective_date,
                reason=assignment.reason,
                is_latest=is_latest,
            )
        )
    return rows


def delete_assignment(db: Session, assignment_id: int) -> None:
    assignment = db.get(PatternAssignment, assignment_id)
    if assignment is None:
        raise ApiError(status_code=404, code="ASSIGNMENT_NOT_FOUND", message="Assignment not found.")
    db.delete(assignment)
    db.commit()
    logger.info("pattern_assignment_deleted", extra={"assignment_id": assignment_id})
