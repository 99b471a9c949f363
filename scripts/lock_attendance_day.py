#!/usr/bin/env python
"""Lock attendance days out of band.

Without arguments the previous org day is locked once its grace period has
passed. ``--date`` / ``--end-date`` force-lock an explicit range.
"""

from __future__ import annotations

import argparse
import json
import sys
from datetime import date, datetime, timezone
from pathlib import Path

ROOT_DIR = Path(__file__).resolve().parents[1]
if str(ROOT_DIR) not in sys.path:
    sys.path.insert(0, str(ROOT_DIR))

from timeclock.db import SessionLocal
from timeclock.logging_utils import setup_json_logging
from timeclock.services.attendance import recompute_attendance_for_date
from timeclock.services.day_lock import auto_lock_elapsed_days, lock_date_range
from timeclock.settings import get_settings


def _parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description=__doc__)
    parser.add_argument("--date", type=date.fromisoformat, default=None, help="first work date to lock (YYYY-MM-DD)")
    parser.add_argument("--end-date", type=date.fromisoformat, default=None, help="last work date to lock, inclusive")
    parser.add_argument(
        "--recompute",
        action="store_true",
        help="recompute every employee for each date before locking",
    )
    return parser.parse_args(argv)


def main(argv: list[str] | None = None) -> int:
    setup_json_logging(get_settings().log_level, service="timeclock-day-lock")
    args = _parse_args(argv)
    now_utc = datetime.now(timezone.utc)

    with SessionLocal() as db:
        if args.date is None:
            locked = auto_lock_elapsed_days(db, now=now_utc)
            summary = {"mode": "auto", "locked": locked}
        else:
            end_date = args.end_date or args.date
            if end_date < args.date:
                print(json.dumps({"ok": False, "error": "end-date must be on or after date"}))
                return 2
            if args.recompute:
                current = args.date
                while current <= end_date:
                    recompute_attendance_for_date(db, work_date=current)
                    current = date.fromordinal(current.toordinal() + 1)
            per_day = lock_date_range(db, start_date=args.date, end_date=end_date, now=now_utc)
            summary = {"mode": "range", "locked": sum(per_day.values()), "per_day": per_day}

    summary["ok"] = True
    summary["generated_at_utc"] = now_utc.isoformat()
    print(json.dumps(summary, ensure_ascii=False, indent=2))
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
