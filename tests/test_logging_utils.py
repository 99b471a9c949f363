from __future__ import annotations

import json
import logging
import unittest

from timeclock.errors import PUNCH_REJECTION_STATUS, PunchRejected
from timeclock.logging_utils import JsonFormatter


class JsonLoggingTests(unittest.TestCase):
    def test_extra_fields_are_flattened_into_payload(self) -> None:
        record = logging.LogRecord(
            name="timeclock.punch",
            level=logging.INFO,
            pathname=__file__,
            lineno=1,
            msg="punch_rejected",
            args=(),
            exc_info=None,
        )
        record.reason = "too_early"
        record.employee_id = 3

        payload = json.loads(JsonFormatter().format(record))

        self.assertEqual(payload["message"], "punch_rejected")
        self.assertEqual(payload["service"], "timeclock")
        self.assertEqual(payload["logger"], "timeclock.punch")
        self.assertEqual(payload["reason"], "too_early")
        self.assertEqual(payload["employee_id"], 3)
        self.assertNotIn("msg", payload)


class PunchRejectionTests(unittest.TestCase):
    def test_reason_maps_to_http_status(self) -> None:
        self.assertEqual(PunchRejected("too_early", "x").status_code, 409)
        self.assertEqual(PunchRejected("ip_not_allowed", "x").status_code, 403)
        self.assertEqual(PunchRejected("missing_credentials", "x").status_code, 400)
        self.assertEqual(len(PUNCH_REJECTION_STATUS), 12)

    def test_unknown_reason_is_a_programming_error(self) -> None:
        with self.assertRaises(ValueError):
            PunchRejected("coffee_break", "x")


if __name__ == "__main__":
    unittest.main()
