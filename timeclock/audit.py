from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from timeclock.models import AuditActorType, AuditLog, PunchEvent, PunchSource

logger = logging.getLogger("timeclock.audit")

PUNCH_RECORDED = "PUNCH_RECORDED"
PUNCH_REJECTED = "PUNCH_REJECTED"


def log_audit(
    db: Session,
    *,
    actor_type: AuditActorType,
    actor_id: str,
    action: str,
    success: bool,
    entity_type: str | None = None,
    entity_id: str | None = None,
    ip: str | None = None,
    user_agent: str | None = None,
    details: dict[str, Any] | None = None,
    request_id: str | None = None,
) -> AuditLog | None:
    """Persist an audit row in its own commit.

    The business action has already been committed (or rejected) by the time this
    runs, so a failed audit write is logged and swallowed. Returns None in that case.
    """
    payload = dict(details or {})
    if request_id:
        payload.setdefault("request_id", request_id)
    entry = AuditLog(
        ts_utc=datetime.now(timezone.utc),
        actor_type=actor_type,
        actor_id=actor_id[:255],
        action=action,
        entity_type=entity_type,
        entity_id=entity_id,
        ip=ip,
        user_agent=user_agent[:1024] if user_agent else None,
        success=success,
        details=payload,
    )
    db.add(entry)
    try:
        db.commit()
    except SQLAlchemyError:
        db.rollback()
        logger.exception(
            "audit_log_write_failed",
            extra={"request_id": request_id, "action": action, "actor_id": actor_id},
        )
        return None

    logger.info(
        "audit_event",
        extra={
            "request_id": request_id,
            "action": action,
            "actor_type": actor_type.value,
            "actor_id": actor_id,
            "entity_type": entity_type,
            "entity_id": entity_id,
            "success": success,
        },
    )
    return entry


def punch_audit_details(
    *,
    source: PunchSource,
    punch: PunchEvent | None = None,
    reason: str | None = None,
    extra: dict[str, Any] | None = None,
) -> dict[str, Any]:
    details: dict[str, Any] = {"source": source.value, **(extra or {})}
    if reason is not None:
        details["reason"] = reason
    if punch is not None:
        details["employee_id"] = punch.employee_id
        details["punch_type"] = punch.punch_type.value
        details["work_date"] = punch.work_date.isoformat()
    return details


def log_punch_audit(
    db: Session,
    *,
    actor_type: AuditActorType,
    actor_id: str,
    source: PunchSource,
    punch: PunchEvent | None = None,
    reason: str | None = None,
    ip: str | None = None,
    user_agent: str | None = None,
    request_id: str | None = None,
    extra: dict[str, Any] | None = None,
) -> AuditLog | None:
    """Audit one punch outcome: PUNCH_RECORDED with the punch, or PUNCH_REJECTED with its reason."""
    return log_audit(
        db,
        actor_type=actor_type,
        actor_id=actor_id,
        action=PUNCH_REJECTED if reason is not None else PUNCH_RECORDED,
        success=reason is None,
        entity_type="punch_event",
        entity_id=str(punch.id) if punch is not None else None,
        ip=ip,
        user_agent=user_agent,
        details=punch_audit_details(source=source, punch=punch, reason=reason, extra=extra),
        request_id=request_id,
    )
