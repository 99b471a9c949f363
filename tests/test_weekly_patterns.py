from __future__ import annotations

import unittest
from datetime import date

from sqlalchemy import create_engine, select
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from timeclock.db import Base
from timeclock.errors import ApiError
from timeclock.models import (
    WEEKDAY_SHIFT_COLUMNS,
    Employee,
    PatternAssignment,
    ScheduleSource,
    ShiftTemplate,
    WeeklyPattern,
)
from timeclock.schemas import PatternAssignmentCreate
from timeclock.services.schedule_resolver import resolve_expected_shift
from timeclock.services.weekly_patterns import assign_pattern, current_assignment


def _make_session():  # type: ignore[no-untyped-def]
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)
    return sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)()


class PatternAssignmentTests(unittest.TestCase):
    def setUp(self) -> None:
        self.db = _make_session()
        self.employee = Employee(employee_code="E001", full_name="Test Employee")
        day_shift = ShiftTemplate(code="DAY", name="Day", start_minute=540, end_minute=1080)
        late_shift = ShiftTemplate(code="LATE", name="Late", start_minute=780, end_minute=1320)
        self.db.add_all([self.employee, day_shift, late_shift])
        self.db.flush()
        self.pattern_a = WeeklyPattern(code="A", name="Days", **dict.fromkeys(WEEKDAY_SHIFT_COLUMNS, day_shift.id))
        self.pattern_b = WeeklyPattern(code="B", name="Lates", **dict.fromkeys(WEEKDAY_SHIFT_COLUMNS, late_shift.id))
        self.db.add_all([self.pattern_a, self.pattern_b])
        self.db.commit()

        self._assign(self.pattern_a, date(2024, 1, 1))
        self._assign(self.pattern_b, date(2024, 2, 10))

    def tearDown(self) -> None:
        self.db.close()

    def _assign(self, pattern: WeeklyPattern, effective_date: date) -> PatternAssignment:
        payload = PatternAssignmentCreate(
            employee_id=self.employee.id,
            pattern_id=pattern.id,
            effective_date=effective_date,
            reason="rotation",
        )
        return assign_pattern(self.db, payload=payload)

    def _current(self, day: date) -> PatternAssignment | None:
        return current_assignment(self.db, employee_id=self.employee.id, day=day)

    def test_assignment_in_effect_is_latest_on_or_before_day(self) -> None:
        self.assertEqual(self._current(date(2024, 2, 9)).pattern_id, self.pattern_a.id)
        self.assertEqual(self._current(date(2024, 2, 10)).pattern_id, self.pattern_b.id)
        self.assertEqual(self._current(date(2024, 3, 1)).pattern_id, self.pattern_b.id)
        self.assertEqual(self._current(date(2024, 1, 1)).pattern_id, self.pattern_a.id)

    def test_day_before_first_assignment_has_none(self) -> None:
        self.assertIsNone(self._current(date(2023, 12, 31)))
        expected = resolve_expected_shift(self.db, employee_id=self.employee.id, day=date(2023, 12, 31))
        self.assertEqual(expected.source, ScheduleSource.NONE)

    def test_resolver_follows_assignment_boundary(self) -> None:
        before = resolve_expected_shift(self.db, employee_id=self.employee.id, day=date(2024, 2, 9))
        on_boundary = resolve_expected_shift(self.db, employee_id=self.employee.id, day=date(2024, 2, 10))

        self.assertEqual(before.source, ScheduleSource.PATTERN)
        self.assertEqual(before.scheduled_start_minutes, 540)
        self.assertEqual(on_boundary.source, ScheduleSource.PATTERN)
        self.assertEqual(on_boundary.scheduled_start_minutes, 780)

    def test_same_day_assignment_replaces_previous(self) -> None:
        replacement = self._assign(self.pattern_a, date(2024, 2, 10))

        rows = self.db.scalars(
            select(PatternAssignment).where(PatternAssignment.effective_date == date(2024, 2, 10))
        ).all()
        self.assertEqual([row.id for row in rows], [replacement.id])
        self.assertEqual(self._current(date(2024, 2, 10)).pattern_id, self.pattern_a.id)
        expected = resolve_expected_shift(self.db, employee_id=self.employee.id, day=date(2024, 2, 10))
        self.assertEqual(expected.scheduled_start_minutes, 540)

    def test_unknown_pattern_is_rejected(self) -> None:
        payload = PatternAssignmentCreate(employee_id=self.employee.id, pattern_id=999, effective_date=date(2024, 3, 1))
        with self.assertRaises(ApiError) as ctx:
            assign_pattern(self.db, payload=payload)
        self.assertEqual(ctx.exception.code, "PATTERN_NOT_FOUND")


if __name__ == "__main__":
    unittest.main()
