from datetime import date, datetime

from pydantic import BaseModel, ConfigDict, Field, model_validator

from timeclock.models import AttendanceStatus, PunchSource, PunchType, ScheduleSource

HHMM_PATTERN = r"^\d{1,2}:\d{2}$"


class AdminLoginRequest(BaseModel):
    username: str = Field(min_length=1, max_length=150)
    password: str = Field(min_length=1, max_length=255)


class EmployeeLoginRequest(BaseModel):
    username: str = Field(min_length=1, max_length=150)
    password: str = Field(min_length=1, max_length=255)


class TokenResponse(BaseModel):
    access_token: str
    token_type: str = "bearer"
    expires_in: int


class ShiftTemplateCreate(BaseModel):
    code: str = Field(min_length=1, max_length=50)
    name: str = Field(min_length=1, max_length=100)
    start_time: str = Field(pattern=HHMM_PATTERN)
    end_time: str = Field(pattern=HHMM_PATTERN)
    spans_midnight: bool = False
    break_start_time: str | None = None
    break_end_time: str | None = None
    notes: str | None = Field(default=None, max_length=1000)


class ShiftTemplateUpdate(BaseModel):
    code: str | None = Field(default=None, min_length=1, max_length=50)
    name: str | None = Field(default=None, min_length=1, max_length=100)
    start_time: str | None = Field(default=None, pattern=HHMM_PATTERN)
    end_time: str | None = Field(default=None, pattern=HHMM_PATTERN)
    spans_midnight: bool | None = None
    break_start_time: str | None = None
    break_end_time: str | None = None
    notes: str | None = Field(default=None, max_length=1000)


class ShiftTemplateRead(BaseModel):
    id: int
    code: str
    name: str
    start_minute: int
    end_minute: int
    spans_midnight: bool
    break_start_minute: int | None
    break_end_minute: int | None
    unpaid_break_minutes: int
    paid_hours_per_day: float
    notes: str | None

    model_config = ConfigDict(from_attributes=True)


class WeeklyPatternUpsert(BaseModel):
    code: str = Field(min_length=1, max_length=50)
    name: str = Field(min_length=1, max_length=100)
    mon_shift_id: int | None = Field(default=None, ge=1)
    tue_shift_id: int | None = Field(default=None, ge=1)
    wed_shift_id: int | None = Field(default=None, ge=1)
    thu_shift_id: int | None = Field(default=None, ge=1)
    fri_shift_id: int | None = Field(default=None, ge=1)
    sat_shift_id: int | None = Field(default=None, ge=1)
    sun_shift_id: int | None = Field(default=None, ge=1)


class WeeklyPatternRead(BaseModel):
    id: int
    code: str
    name: str
    mon_shift_id: int | None
    tue_shift_id: int | None
    wed_shift_id: int | None
    thu_shift_id: int | None
    fri_shift_id: int | None
    sat_shift_id: int | None
    sun_shift_id: int | None

    model_config = ConfigDict(from_attributes=True)


class PatternAssignmentCreate(BaseModel):
    employee_id: int = Field(ge=1)
    pattern_id: int = Field(ge=1)
    effective_date: date
    reason: str | None = Field(default=None, max_length=500)


class PatternAssignmentRead(BaseModel):
    id: int
    employee_id: int
    pattern_id: int
    pattern_code: str | None = None
    pattern_name: str | None = None
    effective_date: date
    reason: str | None
    is_latest: bool = False


class ShiftOverrideUpsert(BaseModel):
    employee_id: int = Field(ge=1)
    work_date: date
    shift_id: int | None = Field(default=None, ge=1)
    source: str = Field(default="MANUAL", min_length=1, max_length=20)
    note: str | None = Field(default=None, max_length=1000)


class ShiftOverrideRead(BaseModel):
    id: int
    employee_id: int
    work_date: date
    shift_id: int | None
    source: str
    note: str | None
    created_by: str

    model_config = ConfigDict(from_attributes=True)


class ExpectedShiftRead(BaseModel):
    start: int | None
    end: int | None
    shift_id: int | None
    shift_name: str | None
    source: ScheduleSource


class DailyScheduleEntry(BaseModel):
    employee_id: int
    employee_code: str
    full_name: str
    department_name: str | None
    expected: ExpectedShiftRead


class DailyScheduleResponse(BaseModel):
    work_date: date
    entries: list[DailyScheduleEntry]


class PunchRead(BaseModel):
    id: int
    employee_id: int
    punched_at: datetime
    work_date: date
    punch_type: PunchType
    source: PunchSource
    client_ip: str | None = None

    model_config = ConfigDict(from_attributes=True)


class AttendanceRecordRead(BaseModel):
    id: int
    employee_id: int
    work_date: date
    status: AttendanceStatus
    expected_shift_id: int | None
    schedule_source: ScheduleSource
    scheduled_start_minutes: int | None
    scheduled_end_minutes: int | None
    actual_in_at: datetime | None
    actual_out_at: datetime | None
    worked_minutes: int | None
    break_minutes: int
    break_count: int
    late_minutes: int
    undertime_minutes: int
    overtime_minutes_raw: int
    is_locked: bool
    locked_at: datetime | None

    model_config = ConfigDict(from_attributes=True)


class KioskPunchRequest(BaseModel):
    # Loose on purpose: blank values map to reason codes, not validation errors.
    username: str | None = None
    password: str | None = None
    punch_type: str | None = None
    date: str | None = None


class SelfPunchRequest(BaseModel):
    punch_type: str | None = None
    date: str | None = None


class ManualPunchRequest(BaseModel):
    employee_id: int = Field(ge=1)
    punch_type: PunchType
    punched_at: datetime
    note: str | None = Field(default=None, max_length=1000)


class PunchResponse(BaseModel):
    punch: PunchRead
    attendance: AttendanceRecordRead | None = None


class DayStatusResponse(BaseModel):
    employee_id: int
    work_date: date
    expected: ExpectedShiftRead
    punches: list[PunchRead]
    last_punch: PunchRead | None
    break_count: int
    break_minutes: int
    attendance: AttendanceRecordRead | None = None


class RecomputeRequest(BaseModel):
    employee_id: int = Field(ge=1)
    work_date: date


class RecomputeAllRequest(BaseModel):
    work_date: date


class RecomputeAllResponse(BaseModel):
    work_date: date
    recomputed: int
    skipped_locked: int


class LockRangeRequest(BaseModel):
    start_date: date
    end_date: date

    @model_validator(mode="after")
    def validate_range(self) -> "LockRangeRequest":
        if self.end_date < self.start_date:
            raise ValueError("end_date must be on or after start_date")
        return self


class LockRangeResponse(BaseModel):
    start_date: date
    end_date: date
    locked: int
    per_day: dict[str, int]
