from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Depends, Query, Request
from sqlalchemy import select
from sqlalchemy.orm import Session

from timeclock.audit import log_audit, log_punch_audit
from timeclock.db import get_db
from timeclock.errors import ApiError, PunchRejected
from timeclock.models import AuditActorType, PunchSource, UserAccount
from timeclock.schemas import (
    DayStatusResponse,
    EmployeeLoginRequest,
    KioskPunchRequest,
    PunchResponse,
    SelfPunchRequest,
    TokenResponse,
)
from timeclock.security import (
    ROLE_EMPLOYEE,
    client_ip,
    create_access_token,
    ensure_login_attempt_allowed,
    register_login_failure,
    register_login_success,
    require_employee,
    user_agent,
    verify_password,
)
from timeclock.services.attendance import get_day_status, to_attendance_read, to_punch_read
from timeclock.services.clock import local_day, now_utc
from timeclock.services.punch_ledger import (
    PunchCommand,
    PunchResult,
    append_punch,
    ensure_transport_allowed,
    parse_punch_type,
    parse_target_date,
)
from timeclock.settings import get_settings

router = APIRouter(tags=["punches"])


def _eligible_account(db: Session, username: str) -> UserAccount:
    account = db.scalar(select(UserAccount).where(UserAccount.username == username))
    if account is None or account.is_disabled or account.employee is None or not account.employee.is_active:
        raise PunchRejected("user_not_eligible", "User not eligible.")
    return account


def _audit_punch(
    db: Session,
    request: Request,
    *,
    actor_type: AuditActorType,
    actor_id: str,
    source: PunchSource,
    result: PunchResult | None = None,
    rejection: PunchRejected | None = None,
) -> None:
    punch = result.punch if result is not None else None
    if rejection is not None:
        request.state.reason = rejection.reason
    if punch is not None:
        request.state.punch_id = punch.id
        request.state.employee_id = punch.employee_id
    log_punch_audit(
        db,
        actor_type=actor_type,
        actor_id=actor_id,
        source=source,
        punch=punch,
        reason=rejection.reason if rejection is not None else None,
        ip=client_ip(request),
        user_agent=user_agent(request),
        request_id=getattr(request.state, "request_id", None),
    )


def _to_punch_response(result: PunchResult) -> PunchResponse:
    return PunchResponse(
        punch=to_punch_read(result.punch),
        attendance=to_attendance_read(result.attendance) if result.attendance is not None else None,
    )


@router.post("/api/kiosk/punch", response_model=PunchResponse)
def kiosk_punch(
    payload: KioskPunchRequest,
    request: Request,
    db: Session = Depends(get_db),
) -> PunchResponse:
    ip = client_ip(request)
    username = (payload.username or "").strip()
    actor_id = username or "anonymous"
    try:
        ensure_transport_allowed(ip, PunchSource.KIOSK)
        if not username or not payload.password:
            raise PunchRejected("missing_credentials", "username and password are required.")
        punch_type = parse_punch_type(payload.punch_type)
        account = _eligible_account(db, username)
        if not verify_password(payload.password, account.password_hash):
            raise PunchRejected("invalid_credentials", "Invalid credentials.")
        target_date = parse_target_date(payload.date)
        result = append_punch(
            db,
            PunchCommand(
                employee_id=account.employee_id,
                punch_type=punch_type,
                source=PunchSource.KIOSK,
                target_date=target_date,
                client_ip=ip,
            ),
        )
    except PunchRejected as exc:
        _audit_punch(
            db,
            request,
            actor_type=AuditActorType.EMPLOYEE,
            actor_id=actor_id,
            source=PunchSource.KIOSK,
            rejection=exc,
        )
        raise

    _audit_punch(
        db,
        request,
        actor_type=AuditActorType.EMPLOYEE,
        actor_id=actor_id,
        source=PunchSource.KIOSK,
        result=result,
    )
    return _to_punch_response(result)


@router.get("/api/kiosk/status", response_model=DayStatusResponse)
def kiosk_status(
    request: Request,
    username: str = Query(default=""),
    date: str | None = Query(default=None),
    db: Session = Depends(get_db),
) -> DayStatusResponse:
    ensure_transport_allowed(client_ip(request), PunchSource.KIOSK)
    normalized = username.strip()
    if not normalized:
        raise ApiError(status_code=400, code="missing_credentials", message="username is required.")
    account = _eligible_account(db, normalized)
    work_date = parse_target_date(date) or local_day(now_utc())
    return get_day_status(db, employee_id=account.employee_id, work_date=work_date)


@router.post("/api/self/login", response_model=TokenResponse)
def employee_login(
    payload: EmployeeLoginRequest,
    request: Request,
    db: Session = Depends(get_db),
) -> TokenResponse:
    username = payload.username.strip()
    ip = client_ip(request)
    throttle_key = f"employee:{ip or username}"
    ensure_login_attempt_allowed(throttle_key)

    account = db.scalar(select(UserAccount).where(UserAccount.username == username))
    eligible = (
        account is not None
        and not account.is_disabled
        and account.employee is not None
        and account.employee.is_active
    )
    if not eligible or not verify_password(payload.password, account.password_hash):
        register_login_failure(throttle_key)
        log_audit(
            db,
            actor_type=AuditActorType.EMPLOYEE,
            actor_id=username,
            action="EMPLOYEE_LOGIN_FAIL",
            success=False,
            ip=ip,
            user_agent=user_agent(request),
            details={"reason": "INVALID_CREDENTIALS" if eligible else "USER_NOT_ELIGIBLE"},
            request_id=getattr(request.state, "request_id", None),
        )
        raise ApiError(status_code=401, code="INVALID_CREDENTIALS", message="Invalid credentials.")

    register_login_success(throttle_key)
    token, expires_in, _claims = create_access_token(
        sub=account.username,
        username=account.username,
        role=ROLE_EMPLOYEE,
        employee_id=account.employee_id,
        expires_minutes=get_settings().employee_token_minutes,
    )
    request.state.employee_id = account.employee_id
    return TokenResponse(access_token=token, expires_in=expires_in)


def self_transport_gate(request: Request, db: Session = Depends(get_db)) -> None:
    try:
        ensure_transport_allowed(client_ip(request), PunchSource.WEB_SELF)
    except PunchRejected as exc:
        _audit_punch(
            db,
            request,
            actor_type=AuditActorType.EMPLOYEE,
            actor_id="anonymous",
            source=PunchSource.WEB_SELF,
            rejection=exc,
        )
        raise


@router.post(
    "/api/self/punch",
    response_model=PunchResponse,
    dependencies=[Depends(self_transport_gate)],
)
def self_punch(
    payload: SelfPunchRequest,
    request: Request,
    claims: dict[str, Any] = Depends(require_employee),
    db: Session = Depends(get_db),
) -> PunchResponse:
    employee_id = int(claims["employee_id"])
    actor_id = str(claims.get("username") or claims["sub"])
    try:
        punch_type = parse_punch_type(payload.punch_type)
        target_date = parse_target_date(payload.date)
        result = append_punch(
            db,
            PunchCommand(
                employee_id=employee_id,
                punch_type=punch_type,
                source=PunchSource.WEB_SELF,
                target_date=target_date,
                client_ip=client_ip(request),
            ),
        )
    except PunchRejected as exc:
        _audit_punch(
            db,
            request,
            actor_type=AuditActorType.EMPLOYEE,
            actor_id=actor_id,
            source=PunchSource.WEB_SELF,
            rejection=exc,
        )
        raise

    _audit_punch(
        db,
        request,
        actor_type=AuditActorType.EMPLOYEE,
        actor_id=actor_id,
        source=PunchSource.WEB_SELF,
        result=result,
    )
    return _to_punch_response(result)


@router.get("/api/self/status", response_model=DayStatusResponse)
def self_status(
    date: str | None = Query(default=None),
    claims: dict[str, Any] = Depends(require_employee),
    db: Session = Depends(get_db),
) -> DayStatusResponse:
    work_date = parse_target_date(date) or local_day(now_utc())
    return get_day_status(db, employee_id=int(claims["employee_id"]), work_date=work_date)
