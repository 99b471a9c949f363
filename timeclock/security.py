from __future__ import annotations

import hmac
import threading
from collections import defaultdict, deque
from datetime import datetime, timedelta, timezone
from typing import Any
from uuid import uuid4

from fastapi import Depends, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import JWTError, jwt
from passlib.context import CryptContext
from passlib.exc import UnknownHashError

from timeclock.errors import ApiError
from timeclock.settings import get_settings, get_trusted_proxy_ips

# pbkdf2_sha256 first: new hashes avoid the passlib/bcrypt backend mismatch, bcrypt hashes still verify.
pwd_context = CryptContext(schemes=["pbkdf2_sha256", "bcrypt"], deprecated="auto")
bearer_scheme = HTTPBearer(auto_error=False)

_LOCK = threading.Lock()
_FAILED_ATTEMPTS: dict[str, deque[datetime]] = defaultdict(deque)
_MAX_ATTEMPTS = 10
_ATTEMPT_WINDOW = timedelta(minutes=10)

ROLE_ADMIN = "admin"
ROLE_EMPLOYEE = "employee"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _cleanup_attempts(key: str, now: datetime) -> None:
    queue = _FAILED_ATTEMPTS[key]
    threshold = now - _ATTEMPT_WINDOW
    while queue and queue[0] < threshold:
        queue.popleft()
    if not queue:
        _FAILED_ATTEMPTS.pop(key, None)


def ensure_login_attempt_allowed(key: str) -> None:
    now = _utcnow()
    with _LOCK:
        _cleanup_attempts(key, now)
        queue = _FAILED_ATTEMPTS.get(key, deque())
        if len(queue) >= _MAX_ATTEMPTS:
            raise ApiError(
                status_code=429,
                code="TOO_MANY_ATTEMPTS",
                message="Too many failed login attempts. Please try again later.",
            )


def register_login_failure(key: str) -> None:
    now = _utcnow()
    with _LOCK:
        _cleanup_attempts(key, now)
        _FAILED_ATTEMPTS[key].append(now)


def register_login_success(key: str) -> None:
    with _LOCK:
        _FAILED_ATTEMPTS.pop(key, None)


def hash_password(password: str) -> str:
    return pwd_context.hash(password)


def verify_password(password: str, password_hash: str) -> bool:
    try:
        return pwd_context.verify(password, password_hash)
    except (ValueError, TypeError, UnknownHashError):
        # Invalid/legacy hash values should not crash auth flow.
        return False


def _strip_quotes(value: str) -> str:
    # Common deployment copy/paste issue: quoted env values.
    if len(value) >= 2 and value[0] == value[-1] and value[0] in {"'", '"'}:
        return value[1:-1]
    return value


def verify_admin_credentials(username: str, password: str) -> bool:
    settings = get_settings()
    env_username = _strip_quotes((settings.admin_user or "").strip())
    env_pass_hash = _strip_quotes((settings.admin_pass_hash or "").strip())

    if not hmac.compare_digest(username, env_username):
        return False
    if not env_pass_hash:
        return False
    return verify_password(password, env_pass_hash)


def client_ip(request: Request) -> str | None:
    """Peer address, or the forwarded client address when the peer is a trusted proxy."""
    peer = request.client.host if request.client else None
    if peer is None or peer not in get_trusted_proxy_ips():
        return peer
    forwarded_for = request.headers.get("x-forwarded-for")
    if forwarded_for:
        return forwarded_for.split(",")[0].strip() or peer
    real_ip = request.headers.get("x-real-ip")
    if real_ip:
        return real_ip.strip() or peer
    return peer


def user_agent(request: Request) -> str | None:
    return request.headers.get("user-agent")


def is_ip_allowed(ip: str | None, allow_list: list[str]) -> bool:
    """An empty allow-list admits everyone; otherwise the IP must match exactly."""
    if not allow_list:
        return True
    return bool(ip) and ip in allow_list


def create_access_token(
    *,
    sub: str,
    username: str,
    role: str = ROLE_ADMIN,
    employee_id: int | None = None,
    expires_minutes: int | None = None,
) -> tuple[str, int, dict[str, Any]]:
    settings = get_settings()
    if expires_minutes is None:
        expires_minutes = settings.access_token_minutes
    now = _utcnow()
    claims: dict[str, Any] = {
        "sub": sub,
        "username": username,
        "role": role,
        "employee_id": employee_id,
        "iss": settings.jwt_issuer,
        "aud": settings.jwt_audience,
        "iat": int(now.timestamp()),
        "exp": int((now + timedelta(minutes=expires_minutes)).timestamp()),
        "jti": str(uuid4()),
        "typ": "access",
    }
    token = jwt.encode(claims, settings.jwt_secret, algorithm="HS256")
    return token, expires_minutes * 60, claims


def decode_token(token: str, *, expected_role: str) -> dict[str, Any]:
    settings = get_settings()
    try:
        payload = jwt.decode(
            token,
            settings.jwt_secret,
            algorithms=["HS256"],
            audience=settings.jwt_audience,
            issuer=settings.jwt_issuer,
            options={"require_sub": True, "require_iat": True, "require_exp": True},
        )
    except JWTError as exc:
        raise ApiError(status_code=401, code="INVALID_TOKEN", message="Token is invalid.") from exc

    if payload.get("typ") != "access":
        raise ApiError(status_code=401, code="INVALID_TOKEN", message="Token type is invalid.")

    subject = payload.get("sub")
    if not isinstance(subject, str) or not subject:
        raise ApiError(status_code=401, code="INVALID_TOKEN", message="Token subject is invalid.")

    if payload.get("role") != expected_role:
        raise ApiError(status_code=403, code="FORBIDDEN", message="Insufficient permissions.")

    return payload


def _bearer_token(credentials: HTTPAuthorizationCredentials | None) -> str:
    if credentials is None or credentials.scheme.lower() != "bearer":
        raise ApiError(status_code=401, code="INVALID_TOKEN", message="Missing bearer token.")
    return credentials.credentials


def require_admin(
    request: Request,
    credentials: HTTPAuthorizationCredentials | None = Depends(bearer_scheme),
) -> dict[str, Any]:
    payload = decode_token(_bearer_token(credentials), expected_role=ROLE_ADMIN)
    request.state.actor = "admin"
    request.state.actor_id = str(payload.get("username") or payload.get("sub") or "admin")
    return payload


def require_employee(
    request: Request,
    credentials: HTTPAuthorizationCredentials | None = Depends(bearer_scheme),
) -> dict[str, Any]:
    payload = decode_token(_bearer_token(credentials), expected_role=ROLE_EMPLOYEE)
    employee_id = payload.get("employee_id")
    if not isinstance(employee_id, int):
        raise ApiError(status_code=401, code="INVALID_TOKEN", message="Token is not bound to an employee.")
    request.state.actor = "employee"
    request.state.actor_id = str(payload.get("username") or payload.get("sub"))
    request.state.employee_id = employee_id
    return payload
