from __future__ import annotations

import unittest
from unittest.mock import patch

from timeclock.services.schema_guard import EXPECTED_HEAD, REQUIRED_TABLE_COLUMNS, verify_runtime_schema


class _FakeResult:
    def __init__(self, value):
        self._value = value

    def scalar(self):  # type: ignore[no-untyped-def]
        return self._value


class _FakeConnection:
    def __init__(self, version_value):
        self._version_value = version_value

    def __enter__(self):  # type: ignore[no-untyped-def]
        return self

    def __exit__(self, exc_type, exc, tb):  # type: ignore[no-untyped-def]
        return False

    def execute(self, _statement):  # type: ignore[no-untyped-def]
        return _FakeResult(self._version_value)


class _FakeEngine:
    def __init__(self, version_value):
        self._version_value = version_value

    def connect(self):  # type: ignore[no-untyped-def]
        return _FakeConnection(self._version_value)


class _FakeInspector:
    def __init__(self, *, columns_by_table: dict[str, set[str]], enums: list[dict[str, object]]):
        self._columns_by_table = columns_by_table
        self._enums = enums

    def get_columns(self, table_name: str):  # type: ignore[no-untyped-def]
        columns = self._columns_by_table[table_name]
        return [{"name": item} for item in columns]

    def get_enums(self):  # type: ignore[no-untyped-def]
        return self._enums


FULL_ENUMS = [
    {"name": "punch_type", "labels": ["TIME_IN", "BREAK_IN", "BREAK_OUT", "TIME_OUT"]},
    {"name": "attendance_status", "labels": ["PRESENT", "LATE", "ABSENT", "INCOMPLETE"]},
]


class SchemaGuardTests(unittest.TestCase):
    def test_verify_runtime_schema_ok_when_required_columns_exist(self) -> None:
        fake_inspector = _FakeInspector(
            columns_by_table={table: set(columns) for table, columns in REQUIRED_TABLE_COLUMNS.items()},
            enums=FULL_ENUMS,
        )

        with patch("timeclock.services.schema_guard.inspect", return_value=fake_inspector):
            result = verify_runtime_schema(_FakeEngine(EXPECTED_HEAD))  # type: ignore[arg-type]

        self.assertTrue(result.ok)
        self.assertEqual(result.issues, [])
        self.assertEqual(result.warnings, [])

    def test_verify_runtime_schema_reports_missing_columns(self) -> None:
        columns_by_table = {table: set(columns) for table, columns in REQUIRED_TABLE_COLUMNS.items()}
        columns_by_table["punch_events"] = {"id", "employee_id", "punched_at"}
        columns_by_table["attendance_records"].discard("is_locked")
        fake_inspector = _FakeInspector(
            columns_by_table=columns_by_table,
            enums=[
                {"name": "punch_type", "labels": ["TIME_IN", "TIME_OUT"]},
                FULL_ENUMS[1],
            ],
        )

        with patch("timeclock.services.schema_guard.inspect", return_value=fake_inspector):
            result = verify_runtime_schema(_FakeEngine(""))  # type: ignore[arg-type]

        self.assertFalse(result.ok)
        self.assertTrue(any(item.startswith("MISSING_COLUMNS:punch_events:") for item in result.issues))
        self.assertIn("MISSING_COLUMNS:attendance_records:is_locked", result.issues)
        self.assertIn("MISSING_ENUM_VALUES:punch_type:BREAK_IN,BREAK_OUT", result.issues)
        self.assertIn("ALEMBIC_VERSION_EMPTY", result.issues)

    def test_older_revision_is_a_warning(self) -> None:
        fake_inspector = _FakeInspector(
            columns_by_table={table: set(columns) for table, columns in REQUIRED_TABLE_COLUMNS.items()},
            enums=[],
        )

        with patch("timeclock.services.schema_guard.inspect", return_value=fake_inspector):
            result = verify_runtime_schema(_FakeEngine("0000_bootstrap"))  # type: ignore[arg-type]

        self.assertTrue(result.ok)
        self.assertIn("ALEMBIC_VERSION_NOT_HEAD:0000_bootstrap", result.warnings)
        self.assertIn("ENUM_NOT_FOUND:punch_type", result.warnings)


if __name__ == "__main__":
    unittest.main()
