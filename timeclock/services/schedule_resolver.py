"""Expected-shift resolution.

Precedence is an ordered tuple of strategies; the first one that returns a
decision wins. An override with no shift is a decision (explicit day off) and
stops the chain. A pattern slot left empty is not: it falls through to NONE.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date
from typing import Any, Callable, Protocol

from sqlalchemy import select
from sqlalchemy.orm import Session

from timeclock.models import WEEKDAY_SHIFT_COLUMNS, Employee, ScheduleSource, ShiftOverride, ShiftTemplate
from timeclock.schemas import DailyScheduleEntry, DailyScheduleResponse, ExpectedShiftRead
from timeclock.services.weekly_patterns import current_assignment


@dataclass(frozen=True)
class ExpectedShift:
    shift: Any | None
    source: ScheduleSource
    scheduled_start_minutes: int | None
    scheduled_end_minutes: int | None

    @classmethod
    def from_shift(cls, shift: Any | None, source: ScheduleSource) -> ExpectedShift:
        if shift is None:
            return cls(shift=None, source=source, scheduled_start_minutes=None, scheduled_end_minutes=None)
        return cls(
            shift=shift,
            source=source,
            scheduled_start_minutes=shift.start_minute,
            scheduled_end_minutes=shift.end_minute,
        )

    @property
    def shift_id(self) -> int | None:
        return getattr(self.shift, "id", None)

    @property
    def shift_name(self) -> str | None:
        return getattr(self.shift, "name", None)

    @property
    def spans_midnight(self) -> bool:
        return bool(getattr(self.shift, "spans_midnight", False))

    def to_read(self) -> ExpectedShiftRead:
        return ExpectedShiftRead(
            start=self.scheduled_start_minutes,
            end=self.scheduled_end_minutes,
            shift_id=self.shift_id,
            shift_name=self.shift_name,
            source=self.source,
        )


NO_SHIFT = ExpectedShift(shift=None, source=ScheduleSource.NONE, scheduled_start_minutes=None, scheduled_end_minutes=None)


class ScheduleLookup(Protocol):
    def override_for(self, employee_id: int, day: date) -> Any | None:
        """Override row for the day (with a ``shift`` attribute), or None."""

    def pattern_for(self, employee_id: int, day: date) -> Any | None:
        """Pattern in effect on the day (greatest effective_date <= day), or None."""

    def shift_by_id(self, shift_id: int) -> Any | None: ...


class SqlScheduleLookup:
    def __init__(self, db: Session):
        self.db = db

    def override_for(self, employee_id: int, day: date) -> ShiftOverride | None:
        return self.db.scalar(
            select(ShiftOverride).where(
                ShiftOverride.employee_id == employee_id,
                ShiftOverride.work_date == day,
            )
        )

    def pattern_for(self, employee_id: int, day: date) -> Any | None:
        assignment = current_assignment(self.db, employee_id=employee_id, day=day)
        if assignment is None:
            return None
        return assignment.pattern

    def shift_by_id(self, shift_id: int) -> ShiftTemplate | None:
        return self.db.get(ShiftTemplate, shift_id)


ResolutionStrategy = Callable[[ScheduleLookup, int, date], ExpectedShift | None]


def _from_override(lookup: ScheduleLookup, employee_id: int, day: date) -> ExpectedShift | None:
    override = lookup.override_for(employee_id, day)
    if override is None:
        return None
    return ExpectedShift.from_shift(getattr(override, "shift", None), ScheduleSource.OVERRIDE)


def _from_pattern(lookup: ScheduleLookup, employee_id: int, day: date) -> ExpectedShift | None:
    pattern = lookup.pattern_for(employee_id, day)
    if pattern is None:
        return None
    shift_id = getattr(pattern, WEEKDAY_SHIFT_COLUMNS[day.weekday()], None)
    if shift_id is None:
        return None
    shift = lookup.shift_by_id(shift_id)
    if shift is None:
        return None
    return ExpectedShift.from_shift(shift, ScheduleSource.PATTERN)


RESOLUTION_ORDER: tuple[tuple[ScheduleSource, ResolutionStrategy], ...] = (
    (ScheduleSource.OVERRIDE, _from_override),
    (ScheduleSource.PATTERN, _from_pattern),
)


def resolve_with_lookup(lookup: ScheduleLookup, employee_id: int, day: date) -> ExpectedShift:
    for _source, strategy in RESOLUTION_ORDER:
        decided = strategy(lookup, employee_id, day)
        if decided is not None:
            return decided
    return NO_SHIFT


def resolve_expected_shift(db: Session, *, employee_id: int, day: date) -> ExpectedShift:
    return resolve_with_lookup(SqlScheduleLookup(db), employee_id, day)


def build_daily_schedule(db: Session, *, day: date) -> DailyScheduleResponse:
    lookup = SqlScheduleLookup(db)
    employees = db.scalars(
        select(Employee).where(Employee.is_active.is_(True)).order_by(Employee.employee_code)
    ).all()
    entries = [
        DailyScheduleEntry(
            employee_id=employee.id,
            employee_code=employee.employee_code,
            full_name=employee.full_name,
            department_name=employee.department_name,
            expected=resolve_with_lookup(lookup, employee.id, day).to_read(),
        )
        for employee in employees
    ]
    return DailyScheduleResponse(work_date=day, entries=entries)
