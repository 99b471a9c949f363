from __future__ import annotations

import unittest
from types import SimpleNamespace

from timeclock.errors import ApiError
from timeclock.models import ShiftTemplate
from timeclock.schemas import ShiftTemplateCreate, ShiftTemplateUpdate
from timeclock.services.shift_catalog import (
    compute_break_and_paid,
    create_shift,
    delete_shift,
    parse_hhmm,
    update_shift,
)


class _DummyDB:
    def __init__(
        self,
        *,
        existing_code_id: int | None = None,
        references: list[int | None] | None = None,
        shift: ShiftTemplate | None = None,
    ):
        self.existing_code_id = existing_code_id
        self.shift = shift
        self.references = list(references or [])
        self.added: list[object] = []
        self.deleted: list[object] = []
        self.commits = 0

    def scalar(self, _statement):  # type: ignore[no-untyped-def]
        if self.references:
            return self.references.pop(0)
        return self.existing_code_id

    def get(self, _model, pk):  # type: ignore[no-untyped-def]
        if self.shift is not None:
            return self.shift
        return SimpleNamespace(id=pk)

    def add(self, obj: object) -> None:
        self.added.append(obj)

    def delete(self, obj: object) -> None:
        self.deleted.append(obj)

    def commit(self) -> None:
        self.commits += 1

    def refresh(self, obj: object) -> None:
        if getattr(obj, "id", None) is None:
            obj.id = 1  # type: ignore[attr-defined]


class ShiftCatalogTests(unittest.TestCase):
    def test_parse_hhmm(self) -> None:
        self.assertEqual(parse_hhmm("09:00"), 540)
        self.assertEqual(parse_hhmm("7:05"), 425)
        self.assertIsNone(parse_hhmm("  "))
        with self.assertRaises(ApiError) as ctx:
            parse_hhmm("24:00")
        self.assertEqual(ctx.exception.code, "INVALID_TIME")

    def test_compute_break_and_paid_day_shift(self) -> None:
        durations = compute_break_and_paid(
            start_minute=540,
            end_minute=1080,
            spans_midnight=False,
            break_start_minute=720,
            break_end_minute=780,
        )
        self.assertEqual(durations.total_minutes, 540)
        self.assertEqual(durations.break_minutes, 60)
        self.assertEqual(durations.paid_hours, 8.0)

    def test_compute_break_and_paid_overnight_shift(self) -> None:
        durations = compute_break_and_paid(
            start_minute=1320,
            end_minute=360,
            spans_midnight=True,
            break_start_minute=1410,
            break_end_minute=0,
        )
        self.assertEqual(durations.total_minutes, 480)
        self.assertEqual(durations.break_minutes, 30)
        self.assertEqual(durations.paid_hours, 7.5)

    def test_create_shift_rejects_inverted_window(self) -> None:
        db = _DummyDB()
        payload = ShiftTemplateCreate(code="DAY", name="Day", start_time="18:00", end_time="09:00")

        with self.assertRaises(ApiError) as ctx:
            create_shift(db, payload=payload)  # type: ignore[arg-type]

        self.assertEqual(ctx.exception.code, "INVALID_SHIFT_WINDOW")
        self.assertEqual(db.added, [])

    def test_create_shift_rejects_duplicate_code(self) -> None:
        db = _DummyDB(existing_code_id=7)
        payload = ShiftTemplateCreate(code="DAY", name="Day", start_time="09:00", end_time="18:00")

        with self.assertRaises(ApiError) as ctx:
            create_shift(db, payload=payload)  # type: ignore[arg-type]

        self.assertEqual(ctx.exception.status_code, 409)
        self.assertEqual(ctx.exception.code, "SHIFT_CODE_EXISTS")

    def test_create_shift_stores_minutes_and_paid_hours(self) -> None:
        db = _DummyDB()
        payload = ShiftTemplateCreate(
            code=" DAY ",
            name="Day",
            start_time="09:00",
            end_time="18:00",
            break_start_time="12:00",
            break_end_time="13:00",
        )

        shift = create_shift(db, payload=payload)  # type: ignore[arg-type]

        self.assertEqual(shift.code, "DAY")
        self.assertEqual((shift.start_minute, shift.end_minute), (540, 1080))
        self.assertEqual(shift.unpaid_break_minutes, 60)
        self.assertEqual(shift.paid_hours_per_day, 8.0)
        self.assertEqual(db.commits, 1)

    def test_create_shift_rejects_half_break_window(self) -> None:
        for break_fields in ({"break_start_time": "12:00"}, {"break_end_time": "13:00"}):
            db = _DummyDB()
            payload = ShiftTemplateCreate(code="DAY", name="Day", start_time="09:00", end_time="18:00", **break_fields)

            with self.assertRaises(ApiError) as ctx:
                create_shift(db, payload=payload)  # type: ignore[arg-type]

            self.assertEqual(ctx.exception.status_code, 422)
            self.assertEqual(ctx.exception.code, "INVALID_TIME")
            self.assertEqual(db.added, [])

    def test_update_shift_rejects_clearing_one_break_end(self) -> None:
        shift = ShiftTemplate(
            id=5,
            code="DAY",
            name="Day",
            start_minute=540,
            end_minute=1080,
            spans_midnight=False,
            break_start_minute=720,
            break_end_minute=780,
        )
        db = _DummyDB(shift=shift)

        with self.assertRaises(ApiError) as ctx:
            update_shift(db, shift_id=5, payload=ShiftTemplateUpdate(break_end_time=None))  # type: ignore[arg-type]

        self.assertEqual(ctx.exception.code, "INVALID_TIME")
        self.assertEqual(shift.break_end_minute, 780)
        self.assertEqual(db.commits, 0)

    def test_delete_shift_in_use_is_rejected(self) -> None:
        db = _DummyDB(references=[3, None])

        with self.assertRaises(ApiError) as ctx:
            delete_shift(db, 5)  # type: ignore[arg-type]

        self.assertEqual(ctx.exception.code, "SHIFT_IN_USE")
        self.assertEqual(db.deleted, [])


if __name__ == "__main__":
    unittest.main()
