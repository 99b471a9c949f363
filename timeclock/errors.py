from __future__ import annotations

from fastapi import Request
from fastapi.responses import JSONResponse


class ApiError(Exception):
    def __init__(self, status_code: int, code: str, message: str):
        super().__init__(message)
        self.status_code = status_code
        self.code = code
        self.message = message


PUNCH_REJECTION_STATUS: dict[str, int] = {
    "missing_credentials": 400,
    "invalid_credentials": 401,
    "user_not_eligible": 403,
    "ip_not_allowed": 403,
    "invalid_punch_type": 422,
    "invalid_date": 422,
    "wrong_date": 409,
    "no_shift_today": 409,
    "too_early": 409,
    "too_late": 409,
    "already_clocked_out": 409,
    "invalid_sequence": 409,
}


class PunchRejected(ApiError):
    """A punch that failed a gate. `reason` is the stable lowercase code clients branch on."""

    def __init__(self, reason: str, message: str):
        if reason not in PUNCH_REJECTION_STATUS:
            raise ValueError(f"Unknown punch rejection reason: {reason}")
        super().__init__(PUNCH_REJECTION_STATUS[reason], reason, message)
        self.reason = reason


def get_request_id(request: Request) -> str:
    request_id = getattr(request.state, "request_id", None)
    if request_id:
        return str(request_id)
    return "unknown"


def error_response(request: Request, *, status_code: int, code: str, message: str) -> JSONResponse:
    payload = {
        "error": {
            "code": code,
            "message": message,
            "request_id": get_request_id(request),
        }
    }
    return JSONResponse(status_code=status_code, content=payload)
