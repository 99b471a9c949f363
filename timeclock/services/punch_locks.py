from __future__ import annotations

import hashlib
import threading
from collections.abc import Iterator
from contextlib import contextmanager
from datetime import date

from sqlalchemy import text
from sqlalchemy.orm import Session

_REGISTRY_LOCK = threading.Lock()
_KEY_LOCKS: dict[tuple[int, date], threading.Lock] = {}
_KEY_USERS: dict[tuple[int, date], int] = {}


def advisory_key(employee_id: int, work_date: date) -> int:
    digest = hashlib.blake2b(f"punch:{employee_id}:{work_date.isoformat()}".encode(), digest_size=8).digest()
    return int.from_bytes(digest, "big", signed=True)


def _acquire_local(key: tuple[int, date]) -> threading.Lock:
    with _REGISTRY_LOCK:
        lock = _KEY_LOCKS.get(key)
        if lock is None:
            lock = threading.Lock()
            _KEY_LOCKS[key] = lock
        _KEY_USERS[key] = _KEY_USERS.get(key, 0) + 1
    lock.acquire()
    return lock


def _release_local(key: tuple[int, date], lock: threading.Lock) -> None:
    lock.release()
    with _REGISTRY_LOCK:
        remaining = _KEY_USERS.get(key, 1) - 1
        if remaining <= 0:
            _KEY_USERS.pop(key, None)
            _KEY_LOCKS.pop(key, None)
        else:
            _KEY_USERS[key] = remaining


@contextmanager
def employee_day_lock(db: Session, *, employee_id: int, work_date: date) -> Iterator[None]:
    """Serialize read-validate-append for one (employee, work day).

    The in-process lock covers a single worker; on PostgreSQL a transaction-scoped
    advisory lock covers every worker. It is released by the caller's commit or rollback.
    """
    key = (employee_id, work_date)
    lock = _acquire_local(key)
    try:
        bind = db.get_bind()
        if bind.dialect.name == "postgresql":
            db.execute(text("SELECT pg_advisory_xact_lock(:key)"), {"key": advisory_key(employee_id, work_date)})
        yield
    finally:
        _release_local(key, lock)
