from __future__ import annotations

from datetime import date, timedelta
from typing import Any

from fastapi import APIRouter, Depends, Query, Request, status
from sqlalchemy.orm import Session

from timeclock.audit import log_audit, log_punch_audit
from timeclock.db import get_db
from timeclock.errors import ApiError, PunchRejected
from timeclock.models import AttendanceStatus, AuditActorType, Employee, PunchEvent, PunchSource
from timeclock.schemas import (
    AdminLoginRequest,
    AttendanceRecordRead,
    DailyScheduleResponse,
    DayStatusResponse,
    LockRangeRequest,
    LockRangeResponse,
    ManualPunchRequest,
    PatternAssignmentCreate,
    PatternAssignmentRead,
    PunchResponse,
    RecomputeAllRequest,
    RecomputeAllResponse,
    RecomputeRequest,
    ShiftOverrideRead,
    ShiftOverrideUpsert,
    ShiftTemplateCreate,
    ShiftTemplateRead,
    ShiftTemplateUpdate,
    TokenResponse,
    WeeklyPatternRead,
    WeeklyPatternUpsert,
)
from timeclock.security import (
    ROLE_ADMIN,
    client_ip,
    create_access_token,
    ensure_login_attempt_allowed,
    register_login_failure,
    register_login_success,
    require_admin,
    user_agent,
    verify_admin_credentials,
)
from timeclock.services.attendance import (
    force_recompute_day,
    get_day_status,
    list_attendance,
    recompute_attendance_for_date,
    to_attendance_read,
    to_punch_read,
)
from timeclock.services.clock import local_day, now_utc
from timeclock.services.day_lock import lock_date_range
from timeclock.services.punch_ledger import PunchCommand, append_punch
from timeclock.services.schedule_resolver import build_daily_schedule
from timeclock.services.shift_catalog import create_shift, delete_shift, list_shifts, update_shift
from timeclock.services.shift_overrides import delete_override, list_overrides, upsert_override
from timeclock.services.weekly_patterns import (
    assign_pattern,
    create_pattern,
    delete_assignment,
    delete_pattern,
    list_assignments,
    list_patterns,
    update_pattern,
)

router = APIRouter(tags=["admin"])

MAX_LOCK_RANGE_DAYS = 62


def _actor_id(request: Request) -> str:
    return str(getattr(request.state, "actor_id", None) or "admin")


def _audit_admin(
    db: Session,
    request: Request,
    *,
    action: str,
    entity_type: str,
    entity_id: str | None,
    details: dict[str, Any] | None = None,
    success: bool = True,
) -> None:
    log_audit(
        db,
        actor_type=AuditActorType.ADMIN,
        actor_id=_actor_id(request),
        action=action,
        success=success,
        entity_type=entity_type,
        entity_id=entity_id,
        ip=client_ip(request),
        user_agent=user_agent(request),
        details=details,
        request_id=getattr(request.state, "request_id", None),
    )


def _audit_manual_punch(
    db: Session,
    request: Request,
    *,
    punch: PunchEvent | None = None,
    reason: str | None = None,
    extra: dict[str, Any] | None = None,
) -> None:
    log_punch_audit(
        db,
        actor_type=AuditActorType.ADMIN,
        actor_id=_actor_id(request),
        source=PunchSource.MANUAL,
        punch=punch,
        reason=reason,
        ip=client_ip(request),
        user_agent=user_agent(request),
        request_id=getattr(request.state, "request_id", None),
        extra=extra,
    )


@router.post("/api/admin/auth/login", response_model=TokenResponse)
def admin_login(
    payload: AdminLoginRequest,
    request: Request,
    db: Session = Depends(get_db),
) -> TokenResponse:
    username = payload.username.strip()
    ip = client_ip(request)
    request_id = getattr(request.state, "request_id", None)
    throttle_key = f"admin:{ip or username}"

    try:
        ensure_login_attempt_allowed(throttle_key)
    except ApiError:
        log_audit(
            db,
            actor_type=AuditActorType.SYSTEM,
            actor_id=username,
            action="ADMIN_LOGIN_FAIL",
            success=False,
            ip=ip,
            user_agent=user_agent(request),
            details={"reason": "TOO_MANY_ATTEMPTS"},
            request_id=request_id,
        )
        raise

    if not verify_admin_credentials(username, payload.password):
        register_login_failure(throttle_key)
        log_audit(
            db,
            actor_type=AuditActorType.SYSTEM,
            actor_id=username,
            action="ADMIN_LOGIN_FAIL",
            success=False,
            ip=ip,
            user_agent=user_agent(request),
            details={"reason": "INVALID_CREDENTIALS"},
            request_id=request_id,
        )
        raise ApiError(status_code=401, code="INVALID_CREDENTIALS", message="Invalid credentials.")

    register_login_success(throttle_key)
    token, expires_in, _claims = create_access_token(sub=username, username=username, role=ROLE_ADMIN)
    request.state.actor = "admin"
    request.state.actor_id = username
    log_audit(
        db,
        actor_type=AuditActorType.ADMIN,
        actor_id=username,
        action="ADMIN_LOGIN_SUCCESS",
        success=True,
        ip=ip,
        user_agent=user_agent(request),
        request_id=request_id,
    )
    return TokenResponse(access_token=token, expires_in=expires_in)


@router.get(
    "/api/admin/shifts",
    response_model=list[ShiftTemplateRead],
    dependencies=[Depends(require_admin)],
)
def list_shifts_endpoint(db: Session = Depends(get_db)) -> list[ShiftTemplateRead]:
    return [ShiftTemplateRead.model_validate(shift) for shift in list_shifts(db)]


@router.post(
    "/api/admin/shifts",
    response_model=ShiftTemplateRead,
    status_code=status.HTTP_201_CREATED,
    dependencies=[Depends(require_admin)],
)
def create_shift_endpoint(
    payload: ShiftTemplateCreate,
    request: Request,
    db: Session = Depends(get_db),
) -> ShiftTemplateRead:
    shift = create_shift(db, payload=payload)
    _audit_admin(
        db,
        request,
        action="SHIFT_CREATE",
        entity_type="shift_template",
        entity_id=str(shift.id),
        details={"code": shift.code, "paid_hours_per_day": shift.paid_hours_per_day},
    )
    return ShiftTemplateRead.model_validate(shift)


@router.patch(
    "/api/admin/shifts/{shift_id}",
    response_model=ShiftTemplateRead,
    dependencies=[Depends(require_admin)],
)
def update_shift_endpoint(
    shift_id: int,
    payload: ShiftTemplateUpdate,
    request: Request,
    db: Session = Depends(get_db),
) -> ShiftTemplateRead:
    shift = update_shift(db, shift_id=shift_id, payload=payload)
    _audit_admin(
        db,
        request,
        action="SHIFT_UPDATE",
        entity_type="shift_template",
        entity_id=str(shift.id),
        details=payload.model_dump(exclude_unset=True),
    )
    return ShiftTemplateRead.model_validate(shift)


@router.delete(
    "/api/admin/shifts/{shift_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    dependencies=[Depends(require_admin)],
)
def delete_shift_endpoint(shift_id: int, request: Request, db: Session = Depends(get_db)) -> None:
    delete_shift(db, shift_id)
    _audit_admin(db, request, action="SHIFT_DELETE", entity_type="shift_template", entity_id=str(shift_id))


@router.get(
    "/api/admin/patterns",
    response_model=list[WeeklyPatternRead],
    dependencies=[Depends(require_admin)],
)
def list_patterns_endpoint(db: Session = Depends(get_db)) -> list[WeeklyPatternRead]:
    return [WeeklyPatternRead.model_validate(pattern) for pattern in list_patterns(db)]


@router.post(
    "/api/admin/patterns",
    response_model=WeeklyPatternRead,
    status_code=status.HTTP_201_CREATED,
    dependencies=[Depends(require_admin)],
)
def create_pattern_endpoint(
    payload: WeeklyPatternUpsert,
    request: Request,
    db: Session = Depends(get_db),
) -> WeeklyPatternRead:
    pattern = create_pattern(db, payload=payload)
    _audit_admin(
        db,
        request,
        action="PATTERN_CREATE",
        entity_type="weekly_pattern",
        entity_id=str(pattern.id),
        details=payload.model_dump(),
    )
    return WeeklyPatternRead.model_validate(pattern)


@router.put(
    "/api/admin/patterns/{pattern_id}",
    response_model=WeeklyPatternRead,
    dependencies=[Depends(require_admin)],
)
def update_pattern_endpoint(
    pattern_id: int,
    payload: WeeklyPatternUpsert,
    request: Request,
    db: Session = Depends(get_db),
) -> WeeklyPatternRead:
    pattern = update_pattern(db, pattern_id=pattern_id, payload=payload)
    _audit_admin(
        db,
        request,
        action="PATTERN_UPDATE",
        entity_type="weekly_pattern",
        entity_id=str(pattern.id),
        details=payload.model_dump(),
    )
    return WeeklyPatternRead.model_validate(pattern)


@router.delete(
    "/api/admin/patterns/{pattern_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    dependencies=[Depends(require_admin)],
)
def delete_pattern_endpoint(pattern_id: int, request: Request, db: Session = Depends(get_db)) -> None:
    delete_pattern(db, pattern_id)
    _audit_admin(db, request, action="PATTERN_DELETE", entity_type="weekly_pattern", entity_id=str(pattern_id))


@router.get(
    "/api/admin/pattern-assignments",
    response_model=list[PatternAssignmentRead],
    dependencies=[Depends(require_admin)],
)
def list_assignments_endpoint(
    employee_id: int | None = Query(default=None, ge=1),
    db: Session = Depends(get_db),
) -> list[PatternAssignmentRead]:
    return list_assignments(db, employee_id=employee_id)


@router.post(
    "/api/admin/pattern-assignments",
    response_model=PatternAssignmentRead,
    status_code=status.HTTP_201_CREATED,
    dependencies=[Depends(require_admin)],
)
def assign_pattern_endpoint(
    payload: PatternAssignmentCreate,
    request: Request,
    db: Session = Depends(get_db),
) -> PatternAssignmentRead:
    assignment = assign_pattern(db, payload=payload)
    _audit_admin(
        db,
        request,
        action="PATTERN_ASSIGN",
        entity_type="pattern_assignment",
        entity_id=str(assignment.id),
        details={
            "employee_id": assignment.employee_id,
            "pattern_id": assignment.pattern_id,
            "effective_date": assignment.effective_date.isoformat(),
            "reason": assignment.reason,
        },
    )
    return PatternAssignmentRead(
        id=assignment.id,
        employee_id=assignment.employee_id,
        pattern_id=assignment.pattern_id,
        pattern_code=assignment.pattern.code if assignment.pattern else None,
        pattern_name=assignment.pattern.name if assignment.pattern else None,
        effective_date=assignment.effective_date,
        reason=assignment.reason,
        is_latest=False,
    )


@router.delete(
    "/api/admin/pattern-assignments/{assignment_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    dependencies=[Depends(require_admin)],
)
def delete_assignment_endpoint(assignment_id: int, request: Request, db: Session = Depends(get_db)) -> None:
    delete_assignment(db, assignment_id)
    _audit_admin(
        db,
        request,
        action="PATTERN_ASSIGNMENT_DELETE",
        entity_type="pattern_assignment",
        entity_id=str(assignment_id),
    )


@router.get(
    "/api/admin/shift-overrides",
    response_model=list[ShiftOverrideRead],
    dependencies=[Depends(require_admin)],
)
def list_overrides_endpoint(
    start_date: date | None = Query(default=None),
    end_date: date | None = Query(default=None),
    employee_id: int | None = Query(default=None, ge=1),
    db: Session = Depends(get_db),
) -> list[ShiftOverrideRead]:
    overrides = list_overrides(db, start_date=start_date, end_date=end_date, employee_id=employee_id)
    return [ShiftOverrideRead.model_validate(item) for item in overrides]


@router.post(
    "/api/admin/shift-overrides",
    response_model=ShiftOverrideRead,
    dependencies=[Depends(require_admin)],
)
def upsert_override_endpoint(
    payload: ShiftOverrideUpsert,
    request: Request,
    db: Session = Depends(get_db),
) -> ShiftOverrideRead:
    override = upsert_override(db, payload=payload, created_by=_actor_id(request))
    _audit_admin(
        db,
        request,
        action="SHIFT_OVERRIDE_UPSERT",
        entity_type="shift_override",
        entity_id=str(override.id),
        details={
            "employee_id": override.employee_id,
            "work_date": override.work_date.isoformat(),
            "shift_id": override.shift_id,
            "source": override.source,
            "note": override.note,
        },
    )
    return ShiftOverrideRead.model_validate(override)


@router.delete(
    "/api/admin/shift-overrides/{override_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    dependencies=[Depends(require_admin)],
)
def delete_override_endpoint(override_id: int, request: Request, db: Session = Depends(get_db)) -> None:
    override = delete_override(db, override_id)
    _audit_admin(
        db,
        request,
        action="SHIFT_OVERRIDE_DELETE",
        entity_type="shift_override",
        entity_id=str(override_id),
        details={"employee_id": override.employee_id, "work_date": override.work_date.isoformat()},
    )


@router.get(
    "/api/admin/schedule/daily",
    response_model=DailyScheduleResponse,
    dependencies=[Depends(require_admin)],
)
def daily_schedule_endpoint(
    work_date: date | None = Query(default=None, alias="date"),
    db: Session = Depends(get_db),
) -> DailyScheduleResponse:
    return build_daily_schedule(db, day=work_date or local_day(now_utc()))


@router.get(
    "/api/admin/attendance",
    response_model=list[AttendanceRecordRead],
    dependencies=[Depends(require_admin)],
)
def list_attendance_endpoint(
    start_date: date | None = Query(default=None),
    end_date: date | None = Query(default=None),
    employee_id: int | None = Query(default=None, ge=1),
    status_filter: AttendanceStatus | None = Query(default=None, alias="status"),
    db: Session = Depends(get_db),
) -> list[AttendanceRecordRead]:
    today = local_day(now_utc())
    range_end = end_date or today
    range_start = start_date or (range_end - timedelta(days=30))
    records = list_attendance(
        db,
        start_date=range_start,
        end_date=range_end,
        employee_id=employee_id,
        status=status_filter,
    )
    return [to_attendance_read(record) for record in records]


@router.get(
    "/api/admin/attendance/day-status",
    response_model=DayStatusResponse,
    dependencies=[Depends(require_admin)],
)
def day_status_endpoint(
    employee_id: int = Query(..., ge=1),
    work_date: date | None = Query(default=None, alias="date"),
    db: Session = Depends(get_db),
) -> DayStatusResponse:
    if db.get(Employee, employee_id) is None:
        raise ApiError(status_code=404, code="EMPLOYEE_NOT_FOUND", message="Employee not found.")
    return get_day_status(db, employee_id=employee_id, work_date=work_date or local_day(now_utc()))


@router.post(
    "/api/admin/punches/manual",
    response_model=PunchResponse,
    status_code=status.HTTP_201_CREATED,
    dependencies=[Depends(require_admin)],
)
def manual_punch_endpoint(
    payload: ManualPunchRequest,
    request: Request,
    db: Session = Depends(get_db),
) -> PunchResponse:
    if db.get(Employee, payload.employee_id) is None:
        raise ApiError(status_code=404, code="EMPLOYEE_NOT_FOUND", message="Employee not found.")
    try:
        result = append_punch(
            db,
            PunchCommand(
                employee_id=payload.employee_id,
                punch_type=payload.punch_type,
                source=PunchSource.MANUAL,
                punched_at=payload.punched_at,
                client_ip=client_ip(request),
                note=payload.note,
            ),
        )
    except PunchRejected as exc:
        request.state.reason = exc.reason
        _audit_manual_punch(db, request, reason=exc.reason, extra={"employee_id": payload.employee_id})
        raise

    request.state.employee_id = result.punch.employee_id
    request.state.punch_id = result.punch.id
    _audit_manual_punch(db, request, punch=result.punch, extra={"note": payload.note})
    return PunchResponse(
        punch=to_punch_read(result.punch),
        attendance=to_attendance_read(result.attendance) if result.attendance is not None else None,
    )


@router.post(
    "/api/admin/attendance/recompute",
    response_model=AttendanceRecordRead,
    dependencies=[Depends(require_admin)],
)
def recompute_endpoint(
    payload: RecomputeRequest,
    request: Request,
    db: Session = Depends(get_db),
) -> AttendanceRecordRead:
    record = force_recompute_day(db, employee_id=payload.employee_id, work_date=payload.work_date)
    _audit_admin(
        db,
        request,
        action="ATTENDANCE_RECOMPUTE",
        entity_type="attendance_record",
        entity_id=str(record.id),
        details={"employee_id": payload.employee_id, "work_date": payload.work_date.isoformat()},
    )
    return to_attendance_read(record)


@router.post(
    "/api/admin/attendance/recompute-all",
    response_model=RecomputeAllResponse,
    dependencies=[Depends(require_admin)],
)
def recompute_all_endpoint(
    payload: RecomputeAllRequest,
    request: Request,
    db: Session = Depends(get_db),
) -> RecomputeAllResponse:
    recomputed, skipped = recompute_attendance_for_date(db, work_date=payload.work_date)
    _audit_admin(
        db,
        request,
        action="ATTENDANCE_RECOMPUTE_ALL",
        entity_type="attendance_day",
        entity_id=payload.work_date.isoformat(),
        details={"recomputed": recomputed, "skipped_locked": skipped},
    )
    return RecomputeAllResponse(work_date=payload.work_date, recomputed=recomputed, skipped_locked=skipped)


@router.post(
    "/api/admin/attendance/lock",
    response_model=LockRangeResponse,
    dependencies=[Depends(require_admin)],
)
def lock_range_endpoint(
    payload: LockRangeRequest,
    request: Request,
    db: Session = Depends(get_db),
) -> LockRangeResponse:
    if (payload.end_date - payload.start_date).days >= MAX_LOCK_RANGE_DAYS:
        raise ApiError(
            status_code=422,
            code="INVALID_DATE_RANGE",
            message=f"Lock range cannot exceed {MAX_LOCK_RANGE_DAYS} days.",
        )
    per_day = lock_date_range(db, start_date=payload.start_date, end_date=payload.end_date)
    locked = sum(per_day.values())
    _audit_admin(
        db,
        request,
        action="ATTENDANCE_LOCK",
        entity_type="attendance_day",
        entity_id=f"{payload.start_date.isoformat()}..{payload.end_date.isoformat()}",
        details={"locked": locked},
    )
    return LockRangeResponse(
        start_date=payload.start_date,
        end_date=payload.end_date,
        locked=locked,
        per_day=per_day,
    )
