from __future__ import annotations

import unittest
from datetime import date
from types import SimpleNamespace

from sqlalchemy.exc import OperationalError

from timeclock.audit import PUNCH_RECORDED, PUNCH_REJECTED, log_audit, log_punch_audit, punch_audit_details
from timeclock.models import AuditActorType, PunchSource, PunchType


class _DummyDB:
    def __init__(self, *, fail_commit: bool = False):
        self.fail_commit = fail_commit
        self.added: list[object] = []
        self.commits = 0
        self.rollbacks = 0

    def add(self, obj: object) -> None:
        self.added.append(obj)

    def commit(self) -> None:
        if self.fail_commit:
            raise OperationalError("INSERT INTO audit_logs", {}, Exception("disk I/O error"))
        self.commits += 1

    def rollback(self) -> None:
        self.rollbacks += 1


def _punch() -> SimpleNamespace:
    return SimpleNamespace(id=42, employee_id=7, punch_type=PunchType.TIME_IN, work_date=date(2024, 2, 9))


class AuditTests(unittest.TestCase):
    def test_punch_details_carry_punch_fields(self) -> None:
        details = punch_audit_details(
            source=PunchSource.KIOSK,
            punch=_punch(),  # type: ignore[arg-type]
            extra={"note": "ok"},
        )
        self.assertEqual(
            details,
            {"source": "KIOSK", "note": "ok", "employee_id": 7, "punch_type": "TIME_IN", "work_date": "2024-02-09"},
        )

    def test_recorded_punch_is_audited_as_success(self) -> None:
        db = _DummyDB()

        entry = log_punch_audit(
            db,  # type: ignore[arg-type]
            actor_type=AuditActorType.EMPLOYEE,
            actor_id="alice",
            source=PunchSource.WEB_SELF,
            punch=_punch(),  # type: ignore[arg-type]
            request_id="req-1",
        )

        self.assertIs(entry, db.added[0])
        self.assertEqual(entry.action, PUNCH_RECORDED)
        self.assertTrue(entry.success)
        self.assertEqual(entry.entity_type, "punch_event")
        self.assertEqual(entry.entity_id, "42")
        self.assertEqual(entry.details["request_id"], "req-1")
        self.assertEqual(db.commits, 1)

    def test_rejected_punch_is_audited_with_reason(self) -> None:
        db = _DummyDB()

        entry = log_punch_audit(
            db,  # type: ignore[arg-type]
            actor_type=AuditActorType.EMPLOYEE,
            actor_id="x" * 300,
            source=PunchSource.KIOSK,
            reason="too_early",
            user_agent="agent" * 300,
        )

        self.assertEqual(entry.action, PUNCH_REJECTED)
        self.assertFalse(entry.success)
        self.assertIsNone(entry.entity_id)
        self.assertEqual(entry.details, {"source": "KIOSK", "reason": "too_early"})
        self.assertEqual(len(entry.actor_id), 255)
        self.assertEqual(len(entry.user_agent), 1024)

    def test_failed_write_is_rolled_back_and_not_raised(self) -> None:
        db = _DummyDB(fail_commit=True)

        with self.assertLogs("timeclock.audit", level="ERROR") as logs:
            entry = log_audit(
                db,  # type: ignore[arg-type]
                actor_type=AuditActorType.ADMIN,
                actor_id="admin",
                action="SHIFT_CREATED",
                success=True,
            )

        self.assertIsNone(entry)
        self.assertEqual(db.rollbacks, 1)
        self.assertIn("audit_log_write_failed", logs.output[0])


if __name__ == "__main__":
    unittest.main()
