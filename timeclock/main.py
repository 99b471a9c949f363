import asyncio
import logging
import time
from contextlib import asynccontextmanager, suppress
from datetime import datetime, timezone
from typing import Any
from uuid import uuid4

from fastapi import FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from timeclock.db import SessionLocal, engine
from timeclock.errors import ApiError, error_response
from timeclock.logging_utils import setup_json_logging
from timeclock.routers import admin, punches
from timeclock.services.attendance import recompute_pending_days
from timeclock.services.day_lock import auto_lock_elapsed_days
from timeclock.services.schema_guard import SchemaGuardResult, verify_runtime_schema
from timeclock.settings import get_settings

settings = get_settings()
setup_json_logging(settings.log_level)
logger = logging.getLogger("timeclock.request")
worker_logger = logging.getLogger("timeclock.worker")


def _run_attendance_maintenance(now_utc: datetime) -> dict[str, int]:
    with SessionLocal() as db:
        recovered = recompute_pending_days(db)
        locked = auto_lock_elapsed_days(db, now=now_utc) if settings.auto_lock_enabled else 0
    return {"recovered_days": recovered, "locked_records": locked}


async def _attendance_worker_loop(stop_event: asyncio.Event) -> None:
    interval_seconds = max(15, int(settings.attendance_worker_interval_seconds))
    while not stop_event.is_set():
        try:
            now_utc = datetime.now(timezone.utc)
            summary = await asyncio.to_thread(_run_attendance_maintenance, now_utc)
        except Exception:
            worker_logger.exception("attendance_worker_tick_failed")
        else:
            if any(summary.values()):
                worker_logger.info("attendance_worker_tick", extra=summary)

        try:
            await asyncio.wait_for(stop_event.wait(), timeout=interval_seconds)
        except asyncio.TimeoutError:
            continue


async def _run_schema_guard(app_instance: FastAPI) -> None:
    result = await asyncio.to_thread(verify_runtime_schema, engine)
    app_instance.state.schema_guard_result = result
    if result.ok:
        worker_logger.info("schema_guard_ok", extra=result.to_dict())
        return

    worker_logger.error("schema_guard_failed", extra=result.to_dict())
    if settings.schema_guard_strict:
        joined_issues = "; ".join(result.issues)
        raise RuntimeError(f"Runtime schema guard failed: {joined_issues}")


@asynccontextmanager
async def lifespan(app_instance: FastAPI):
    await _run_schema_guard(app_instance)

    stop_event: asyncio.Event | None = None
    task: asyncio.Task[None] | None = None
    if settings.attendance_worker_enabled:
        stop_event = asyncio.Event()
        task = asyncio.create_task(_attendance_worker_loop(stop_event))
        worker_logger.info(
            "attendance_worker_started",
            extra={"interval_seconds": max(15, int(settings.attendance_worker_interval_seconds))},
        )
    try:
        yield
    finally:
        if stop_event is not None:
            stop_event.set()
        if task is not None:
            task.cancel()
            with suppress(asyncio.CancelledError):
                await task


app = FastAPI(title=settings.app_name, version="0.1.0", lifespan=lifespan)


@app.middleware("http")
async def request_middleware(request: Request, call_next):
    request_id = request.headers.get("X-Request-Id") or str(uuid4())
    request.state.request_id = request_id
    request.state.actor = getattr(request.state, "actor", "system")
    request.state.actor_id = getattr(request.state, "actor_id", "system")

    start = time.perf_counter()
    status_code = 500
    try:
        response = await call_next(request)
        status_code = response.status_code
        response.headers["X-Request-Id"] = request_id
        return response
    finally:
        latency_ms = round((time.perf_counter() - start) * 1000, 2)
        logger.info(
            "request_complete",
            extra={
                "request_id": request_id,
                "path": request.url.path,
                "method": request.method,
                "status_code": status_code,
                "latency_ms": latency_ms,
                "actor": getattr(request.state, "actor", "system"),
                "actor_id": getattr(request.state, "actor_id", "system"),
                "employee_id": getattr(request.state, "employee_id", None),
                "punch_id": getattr(request.state, "punch_id", None),
                "reason": getattr(request.state, "reason", None),
            },
        )


@app.exception_handler(ApiError)
async def handle_api_error(request: Request, exc: ApiError) -> JSONResponse:
    return error_response(
        request,
        status_code=exc.status_code,
        code=exc.code,
        message=exc.message,
    )


@app.exception_handler(HTTPException)
async def handle_http_exception(request: Request, exc: HTTPException) -> JSONResponse:
    status_code = exc.status_code
    code_map = {
        401: "INVALID_TOKEN",
        403: "FORBIDDEN",
        404: "NOT_FOUND",
        429: "TOO_MANY_ATTEMPTS",
    }
    code = code_map.get(status_code, "HTTP_ERROR")
    message = str(exc.detail) if exc.detail else "Request failed."
    return error_response(
        request,
        status_code=status_code,
        code=code,
        message=message,
    )


@app.exception_handler(RequestValidationError)
async def handle_validation_error(request: Request, exc: RequestValidationError) -> JSONResponse:
    return error_response(
        request,
        status_code=422,
        code="VALIDATION_ERROR",
        message=str(exc.errors()),
    )


@app.exception_handler(Exception)
async def handle_unexpected_error(request: Request, exc: Exception) -> JSONResponse:
    logger.exception(
        "unhandled_error",
        extra={
            "request_id": getattr(request.state, "request_id", "unknown"),
            "path": request.url.path,
            "method": request.method,
        },
    )
    return error_response(
        request,
        status_code=500,
        code="INTERNAL_ERROR",
        message="Unexpected server error.",
    )


app.include_router(punches.router)
app.include_router(admin.router)


def _default_schema_guard_result() -> SchemaGuardResult:
    return SchemaGuardResult(
        ok=False,
        checked_at_utc=datetime.now(timezone.utc),
        issues=["SCHEMA_GUARD_NOT_RUN"],
        warnings=[],
    )


@app.get("/health")
def health() -> dict[str, Any]:
    schema_guard_result: SchemaGuardResult = getattr(app.state, "schema_guard_result", _default_schema_guard_result())
    return {
        "status": "ok",
        "schema_guard": schema_guard_result.to_dict(),
    }
