from __future__ import annotations

import unittest
from datetime import date
from types import SimpleNamespace

from timeclock.models import ScheduleSource
from timeclock.services.schedule_resolver import NO_SHIFT, resolve_with_lookup

DAY_SHIFT = SimpleNamespace(id=1, name="Day", start_minute=540, end_minute=1080, spans_midnight=False)
LATE_SHIFT = SimpleNamespace(id=2, name="Late", start_minute=780, end_minute=1320, spans_midnight=False)


class _FakeLookup:
    def __init__(self, *, overrides=None, pattern=None):  # type: ignore[no-untyped-def]
        self.overrides = overrides or {}
        self.pattern = pattern
        self.shifts = {DAY_SHIFT.id: DAY_SHIFT, LATE_SHIFT.id: LATE_SHIFT}

    def override_for(self, employee_id, day):  # type: ignore[no-untyped-def]
        return self.overrides.get((employee_id, day))

    def pattern_for(self, _employee_id, _day):  # type: ignore[no-untyped-def]
        return self.pattern

    def shift_by_id(self, shift_id):  # type: ignore[no-untyped-def]
        return self.shifts.get(shift_id)


def _weekday_pattern(shift_id: int | None) -> SimpleNamespace:
    return SimpleNamespace(
        mon_shift_id=shift_id,
        tue_shift_id=shift_id,
        wed_shift_id=shift_id,
        thu_shift_id=shift_id,
        fri_shift_id=shift_id,
        sat_shift_id=None,
        sun_shift_id=None,
    )


class ScheduleResolverTests(unittest.TestCase):
    def test_pattern_applies_on_weekday(self) -> None:
        lookup = _FakeLookup(pattern=_weekday_pattern(DAY_SHIFT.id))

        expected = resolve_with_lookup(lookup, 1, date(2024, 2, 9))

        self.assertEqual(expected.source, ScheduleSource.PATTERN)
        self.assertEqual((expected.scheduled_start_minutes, expected.scheduled_end_minutes), (540, 1080))
        self.assertEqual(expected.shift_id, DAY_SHIFT.id)

    def test_override_wins_over_pattern(self) -> None:
        lookup = _FakeLookup(
            overrides={(1, date(2024, 2, 9)): SimpleNamespace(shift=LATE_SHIFT)},
            pattern=_weekday_pattern(DAY_SHIFT.id),
        )

        expected = resolve_with_lookup(lookup, 1, date(2024, 2, 9))

        self.assertEqual(expected.source, ScheduleSource.OVERRIDE)
        self.assertEqual(expected.scheduled_start_minutes, 780)
        self.assertEqual(expected.shift_name, "Late")

    def test_override_without_shift_is_day_off(self) -> None:
        lookup = _FakeLookup(
            overrides={(1, date(2024, 2, 9)): SimpleNamespace(shift=None)},
            pattern=_weekday_pattern(DAY_SHIFT.id),
        )

        expected = resolve_with_lookup(lookup, 1, date(2024, 2, 9))

        self.assertEqual(expected.source, ScheduleSource.OVERRIDE)
        self.assertIsNone(expected.scheduled_start_minutes)
        self.assertIsNone(expected.shift_id)

    def test_override_only_affects_its_own_day(self) -> None:
        lookup = _FakeLookup(
            overrides={(1, date(2024, 2, 10)): SimpleNamespace(shift=LATE_SHIFT)},
            pattern=_weekday_pattern(DAY_SHIFT.id),
        )

        friday = resolve_with_lookup(lookup, 1, date(2024, 2, 9))
        saturday = resolve_with_lookup(lookup, 1, date(2024, 2, 10))

        self.assertEqual(friday.source, ScheduleSource.PATTERN)
        self.assertEqual(saturday.source, ScheduleSource.OVERRIDE)
        self.assertEqual(saturday.scheduled_start_minutes, 780)

    def test_empty_pattern_slot_resolves_to_none(self) -> None:
        lookup = _FakeLookup(pattern=_weekday_pattern(DAY_SHIFT.id))

        expected = resolve_with_lookup(lookup, 1, date(2024, 2, 11))

        self.assertEqual(expected, NO_SHIFT)
        self.assertEqual(expected.to_read().source, ScheduleSource.NONE)

    def test_no_assignment_resolves_to_none(self) -> None:
        expected = resolve_with_lookup(_FakeLookup(), 1, date(2024, 2, 9))
        self.assertIs(expected, NO_SHIFT)


if __name__ == "__main__":
    unittest.main()
