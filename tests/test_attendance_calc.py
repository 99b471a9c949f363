from __future__ import annotations

import unittest
from datetime import datetime, timedelta, timezone
from types import SimpleNamespace

from timeclock.models import AttendanceStatus, PunchType
from timeclock.services.attendance_calc import calculate_day_attendance, compute_break_stats, resolve_in_out

# 2024-02-09 00:00 at UTC+08:00.
DAY_START = datetime(2024, 2, 8, 16, 0, tzinfo=timezone.utc)


def _punch(punch_type: PunchType, minute_of_day: int) -> SimpleNamespace:
    return SimpleNamespace(punch_type=punch_type, punched_at=DAY_START + timedelta(minutes=minute_of_day))


class AttendanceCalcTests(unittest.TestCase):
    def test_full_day_with_one_break(self) -> None:
        punches = [
            _punch(PunchType.TIME_IN, 540),
            _punch(PunchType.BREAK_IN, 720),
            _punch(PunchType.BREAK_OUT, 735),
            _punch(PunchType.TIME_OUT, 1020),
        ]

        result = calculate_day_attendance(
            punches=punches,
            day_start=DAY_START,
            scheduled_start_minutes=540,
            scheduled_end_minutes=1080,
        )

        self.assertEqual(result.status, AttendanceStatus.PRESENT)
        self.assertEqual(result.break_count, 1)
        self.assertEqual(result.break_minutes, 15)
        self.assertEqual(result.worked_minutes, 480)
        self.assertEqual(result.late_minutes, 0)
        self.assertEqual(result.undertime_minutes, 60)
        self.assertEqual(result.overtime_minutes_raw, 0)

    def test_late_arrival_is_clamped_to_zero_when_early(self) -> None:
        late = calculate_day_attendance(
            punches=[_punch(PunchType.TIME_IN, 600)],
            day_start=DAY_START,
            scheduled_start_minutes=540,
            scheduled_end_minutes=1080,
        )
        early = calculate_day_attendance(
            punches=[_punch(PunchType.TIME_IN, 530)],
            day_start=DAY_START,
            scheduled_start_minutes=540,
            scheduled_end_minutes=1080,
        )

        self.assertEqual(late.late_minutes, 60)
        self.assertEqual(late.status, AttendanceStatus.LATE)
        self.assertEqual(early.late_minutes, 0)
        self.assertEqual(early.status, AttendanceStatus.PRESENT)
        self.assertIsNone(early.worked_minutes)

    def test_overtime_after_scheduled_end(self) -> None:
        result = calculate_day_attendance(
            punches=[_punch(PunchType.TIME_IN, 540), _punch(PunchType.TIME_OUT, 1110)],
            day_start=DAY_START,
            scheduled_start_minutes=540,
            scheduled_end_minutes=1080,
        )
        self.assertEqual(result.overtime_minutes_raw, 30)
        self.assertEqual(result.undertime_minutes, 0)

    def test_no_punches_is_absent(self) -> None:
        result = calculate_day_attendance(
            punches=[],
            day_start=DAY_START,
            scheduled_start_minutes=540,
            scheduled_end_minutes=1080,
        )
        self.assertEqual(result.status, AttendanceStatus.ABSENT)
        self.assertIsNone(result.actual_in_at)
        self.assertIsNone(result.actual_out_at)
        self.assertEqual(result.late_minutes, 0)

    def test_without_schedule_no_lateness_is_reported(self) -> None:
        result = calculate_day_attendance(
            punches=[_punch(PunchType.TIME_IN, 700), _punch(PunchType.TIME_OUT, 900)],
            day_start=DAY_START,
            scheduled_start_minutes=None,
            scheduled_end_minutes=None,
        )
        self.assertEqual(result.status, AttendanceStatus.PRESENT)
        self.assertEqual(result.worked_minutes, 200)
        self.assertEqual(result.late_minutes, 0)

    def test_break_pairing_toggles_regardless_of_label_order(self) -> None:
        result = calculate_day_attendance(
            punches=[
                _punch(PunchType.TIME_IN, 0),
                _punch(PunchType.BREAK_OUT, 120),
                _punch(PunchType.BREAK_IN, 135),
                _punch(PunchType.TIME_OUT, 480),
            ],
            day_start=DAY_START,
            scheduled_start_minutes=None,
            scheduled_end_minutes=None,
        )
        self.assertEqual((result.break_count, result.break_minutes, result.worked_minutes), (1, 15, 480))

    def test_unclosed_break_is_not_counted(self) -> None:
        stats = compute_break_stats(
            [
                _punch(PunchType.TIME_IN, 540),
                _punch(PunchType.BREAK_IN, 700),
                _punch(PunchType.BREAK_OUT, 730),
                _punch(PunchType.BREAK_IN, 800),
            ]
        )
        self.assertEqual(stats.break_count, 1)
        self.assertEqual(stats.break_minutes, 30)

    def test_in_out_uses_first_time_in_and_last_time_out(self) -> None:
        punches = [
            _punch(PunchType.TIME_OUT, 1000),
            _punch(PunchType.TIME_IN, 560),
            _punch(PunchType.BREAK_IN, 700),
        ]
        actual_in, actual_out = resolve_in_out(punches)
        self.assertEqual(actual_in, DAY_START + timedelta(minutes=560))
        self.assertEqual(actual_out, DAY_START + timedelta(minutes=1000))

    def test_in_falls_back_to_earliest_punch(self) -> None:
        actual_in, actual_out = resolve_in_out([_punch(PunchType.BREAK_IN, 700)])
        self.assertEqual(actual_in, DAY_START + timedelta(minutes=700))
        self.assertIsNone(actual_out)


if __name__ == "__main__":
    unittest.main()
