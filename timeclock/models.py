from __future__ import annotations

import enum
from datetime import date, datetime, timezone
from typing import Any

from sqlalchemy import (
    JSON,
    Boolean,
    Date,
    DateTime,
    Enum,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    UniqueConstraint,
    text,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column, relationship

from timeclock.db import Base

JsonDocument = JSON().with_variant(JSONB(), "postgresql")


class PunchType(str, enum.Enum):
    TIME_IN = "TIME_IN"
    BREAK_OUT = "BREAK_OUT"
    BREAK_IN = "BREAK_IN"
    TIME_OUT = "TIME_OUT"


class PunchSource(str, enum.Enum):
    KIOSK = "KIOSK"
    WEB_SELF = "WEB_SELF"
    MANUAL = "MANUAL"


class AttendanceStatus(str, enum.Enum):
    PRESENT = "PRESENT"
    LATE = "LATE"
    ABSENT = "ABSENT"
    INCOMPLETE = "INCOMPLETE"


class ScheduleSource(str, enum.Enum):
    OVERRIDE = "OVERRIDE"
    PATTERN = "PATTERN"
    NONE = "NONE"


class AuditActorType(str, enum.Enum):
    ADMIN = "ADMIN"
    EMPLOYEE = "EMPLOYEE"
    SYSTEM = "SYSTEM"


class Employee(Base):
    __tablename__ = "employees"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    employee_code: Mapped[str] = mapped_column(String(64), nullable=False, unique=True)
    full_name: Mapped[str] = mapped_column(String(255), nullable=False)
    department_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    position_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True, server_default=text("true"))

    user_account: Mapped[UserAccount | None] = relationship(back_populates="employee", uselist=False)
    pattern_assignments: Mapped[list[PatternAssignment]] = relationship(back_populates="employee")
    shift_overrides: Mapped[list[ShiftOverride]] = relationship(back_populates="employee")
    punch_events: Mapped[list[PunchEvent]] = relationship(back_populates="employee")
    attendance_records: Mapped[list[AttendanceRecord]] = relationship(back_populates="employee")


class UserAccount(Base):
    __tablename__ = "user_accounts"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    username: Mapped[str] = mapped_column(String(150), nullable=False, unique=True)
    password_hash: Mapped[str] = mapped_column(String(255), nullable=False)
    is_disabled: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False, server_default=text("false"))
    employee_id: Mapped[int | None] = mapped_column(
        ForeignKey("employees.id", ondelete="SET NULL"),
        nullable=True,
        unique=True,
    )

    employee: Mapped[Employee | None] = relationship(back_populates="user_account")


class ShiftTemplate(Base):
    __tablename__ = "shift_templates"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    code: Mapped[str] = mapped_column(String(50), nullable=False, unique=True)
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    start_minute: Mapped[int] = mapped_column(Integer, nullable=False)
    end_minute: Mapped[int] = mapped_column(Integer, nullable=False)
    spans_midnight: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False, server_default=text("false"))
    break_start_minute: Mapped[int | None] = mapped_column(Integer, nullable=True)
    break_end_minute: Mapped[int | None] = mapped_column(Integer, nullable=True)
    unpaid_break_minutes: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default=text("0"))
    paid_hours_per_day: Mapped[float] = mapped_column(Float, nullable=False, default=0.0, server_default=text("0"))
    notes: Mapped[str | None] = mapped_column(String(1000), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
        server_default=text("CURRENT_TIMESTAMP"),
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
        server_default=text("CURRENT_TIMESTAMP"),
        onupdate=lambda: datetime.now(timezone.utc),
    )


class WeeklyPattern(Base):
    __tablename__ = "weekly_patterns"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    code: Mapped[str] = mapped_column(String(50), nullable=False, unique=True)
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    mon_shift_id: Mapped[int | None] = mapped_column(ForeignKey("shift_templates.id"), nullable=True)
    tue_shift_id: Mapped[int | None] = mapped_column(ForeignKey("shift_templates.id"), nullable=True)
    wed_shift_id: Mapped[int | None] = mapped_column(ForeignKey("shift_templates.id"), nullable=True)
    thu_shift_id: Mapped[int | None] = mapped_column(ForeignKey("shift_templates.id"), nullable=True)
    fri_shift_id: Mapped[int | None] = mapped_column(ForeignKey("shift_templates.id"), nullable=True)
    sat_shift_id: Mapped[int | None] = mapped_column(ForeignKey("shift_templates.id"), nullable=True)
    sun_shift_id: Mapped[int | None] = mapped_column(ForeignKey("shift_templates.id"), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
        server_default=text("CURRENT_TIMESTAMP"),
    )

    assignments: Mapped[list[PatternAssignment]] = relationship(back_populates="pattern")


# date.weekday() order: Monday is 0.
WEEKDAY_SHIFT_COLUMNS: tuple[str, ...] = (
    "mon_shift_id",
    "tue_shift_id",
    "wed_shift_id",
    "thu_shift_id",
    "fri_shift_id",
    "sat_shift_id",
    "sun_shift_id",
)


class PatternAssignment(Base):
    __tablename__ = "pattern_assignments"
    __table_args__ = (
        UniqueConstraint("employee_id", "effective_date", name="uq_pattern_assignments_employee_date"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    employee_id: Mapped[int] = mapped_column(
        ForeignKey("employees.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    pattern_id: Mapped[int] = mapped_column(
        ForeignKey("weekly_patterns.id", ondelete="CASCADE"),
        nullable=False,
    )
    effective_date: Mapped[date] = mapped_column(Date, nullable=False, index=True)
    reason: Mapped[str | None] = mapped_column(String(500), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
        server_default=text("CURRENT_TIMESTAMP"),
    )

    employee: Mapped[Employee] = relationship(back_populates="pattern_assignments")
    pattern: Mapped[WeeklyPattern] = relationship(back_populates="assignments")


class ShiftOverride(Base):
    __tablename__ = "shift_overrides"
    __table_args__ = (
        UniqueConstraint("employee_id", "work_date", name="uq_shift_overrides_employee_date"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    employee_id: Mapped[int] = mapped_column(
        ForeignKey("employees.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    work_date: Mapped[date] = mapped_column(Date, nullable=False, index=True)
    shift_id: Mapped[int | None] = mapped_column(ForeignKey("shift_templates.id"), nullable=True)
    source: Mapped[str] = mapped_column(String(20), nullable=False, default="MANUAL", server_default=text("'MANUAL'"))
    note: Mapped[str | None] = mapped_column(String(1000), nullable=True)
    created_by: Mapped[str] = mapped_column(String(255), nullable=False, default="admin")
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
        server_default=text("CURRENT_TIMESTAMP"),
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
        server_default=text("CURRENT_TIMESTAMP"),
        onupdate=lambda: datetime.now(timezone.utc),
    )

    employee: Mapped[Employee] = relationship(back_populates="shift_overrides")
    shift: Mapped[ShiftTemplate | None] = relationship()


class PunchEvent(Base):
    __tablename__ = "punch_events"
    __table_args__ = (
        Index("ix_punch_events_employee_work_date", "employee_id", "work_date"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    employee_id: Mapped[int] = mapped_column(
        ForeignKey("employees.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    punched_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, index=True)
    work_date: Mapped[date] = mapped_column(Date, nullable=False)
    punch_type: Mapped[PunchType] = mapped_column(
        Enum(PunchType, name="punch_type"),
        nullable=False,
    )
    source: Mapped[PunchSource] = mapped_column(
        Enum(PunchSource, name="punch_source"),
        nullable=False,
    )
    client_ip: Mapped[str | None] = mapped_column(String(128), nullable=True)
    note: Mapped[str | None] = mapped_column(String(1000), nullable=True)
    aggregated_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True, index=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
        server_default=text("CURRENT_TIMESTAMP"),
    )

    employee: Mapped[Employee] = relationship(back_populates="punch_events")


class AttendanceRecord(Base):
    __tablename__ = "attendance_records"
    __table_args__ = (
        UniqueConstraint("employee_id", "work_date", name="uq_attendance_records_employee_date"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    employee_id: Mapped[int] = mapped_column(
        ForeignKey("employees.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    work_date: Mapped[date] = mapped_column(Date, nullable=False, index=True)
    status: Mapped[AttendanceStatus] = mapped_column(
        Enum(AttendanceStatus, name="attendance_status"),
        nullable=False,
    )
    expected_shift_id: Mapped[int | None] = mapped_column(
        ForeignKey("shift_templates.id", ondelete="SET NULL"),
        nullable=True,
    )
    schedule_source: Mapped[ScheduleSource] = mapped_column(
        Enum(ScheduleSource, name="schedule_source"),
        nullable=False,
        default=ScheduleSource.NONE,
        server_default=text("'NONE'"),
    )
    scheduled_start_minutes: Mapped[int | None] = mapped_column(Integer, nullable=True)
    scheduled_end_minutes: Mapped[int | None] = mapped_column(Integer, nullable=True)
    actual_in_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    actual_out_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    worked_minutes: Mapped[int | None] = mapped_column(Integer, nullable=True)
    break_minutes: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default=text("0"))
    break_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default=text("0"))
    late_minutes: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default=text("0"))
    undertime_minutes: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default=text("0"))
    overtime_minutes_raw: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default=text("0"))
    is_locked: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False, server_default=text("false"))
    locked_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    computed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    employee: Mapped[Employee] = relationship(back_populates="attendance_records")
    expected_shift: Mapped[ShiftTemplate | None] = relationship()


class AuditLog(Base):
    __tablename__ = "audit_logs"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    ts_utc: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=text("CURRENT_TIMESTAMP"),
        index=True,
    )
    actor_type: Mapped[AuditActorType] = mapped_column(
        Enum(AuditActorType, name="audit_actor_type"),
        nullable=False,
    )
    actor_id: Mapped[str] = mapped_column(String(255), nullable=False)
    action: Mapped[str] = mapped_column(String(255), nullable=False)
    entity_type: Mapped[str | None] = mapped_column(String(255), nullable=True)
    entity_id: Mapped[str | None] = mapped_column(String(255), nullable=True)
    ip: Mapped[str | None] = mapped_column(String(128), nullable=True)
    user_agent: Mapped[str | None] = mapped_column(String(1024), nullable=True)
    success: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True, server_default=text("true"))
    details: Mapped[dict[str, Any]] = mapped_column(
        JsonDocument,
        nullable=False,
        default=dict,
    )
