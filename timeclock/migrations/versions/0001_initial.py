"""Initial timekeeping schema

Revision ID: 0001_initial
Revises:
Create Date: 2026-10-16 00:00:00
"""

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision: str = "0001_initial"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

punch_type = postgresql.ENUM("TIME_IN", "BREAK_OUT", "BREAK_IN", "TIME_OUT", name="punch_type", create_type=False)
punch_source = postgresql.ENUM("KIOSK", "WEB_SELF", "MANUAL", name="punch_source", create_type=False)
attendance_status = postgresql.ENUM(
    "PRESENT",
    "LATE",
    "ABSENT",
    "INCOMPLETE",
    name="attendance_status",
    create_type=False,
)
schedule_source = postgresql.ENUM("OVERRIDE", "PATTERN", "NONE", name="schedule_source", create_type=False)
audit_actor_type = postgresql.ENUM("ADMIN", "EMPLOYEE", "SYSTEM", name="audit_actor_type", create_type=False)

ENUMS = (punch_type, punch_source, attendance_status, schedule_source, audit_actor_type)


def _created_at() -> sa.Column:
    return sa.Column(
        "created_at",
        sa.DateTime(timezone=True),
        nullable=False,
        server_default=sa.text("CURRENT_TIMESTAMP"),
    )


def upgrade() -> None:
    bind = op.get_bind()
    for enum_type in ENUMS:
        enum_type.create(bind, checkfirst=True)

    op.create_table(
        "employees",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("employee_code", sa.String(length=64), nullable=False),
        sa.Column("full_name", sa.String(length=255), nullable=False),
        sa.Column("department_name", sa.String(length=255), nullable=True),
        sa.Column("position_name", sa.String(length=255), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        sa.UniqueConstraint("employee_code", name="uq_employees_employee_code"),
    )

    op.create_table(
        "user_accounts",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("username", sa.String(length=150), nullable=False),
        sa.Column("password_hash", sa.String(length=255), nullable=False),
        sa.Column("is_disabled", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("employee_id", sa.Integer(), nullable=True),
        sa.ForeignKeyConstraint(["employee_id"], ["employees.id"], ondelete="SET NULL"),
        sa.UniqueConstraint("username", name="uq_user_accounts_username"),
        sa.UniqueConstraint("employee_id", name="uq_user_accounts_employee_id"),
    )

    op.create_table(
        "shift_templates",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("code", sa.String(length=50), nullable=False),
        sa.Column("name", sa.String(length=100), nullable=False),
        sa.Column("start_minute", sa.Integer(), nullable=False),
        sa.Column("end_minute", sa.Integer(), nullable=False),
        sa.Column("spans_midnight", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("break_start_minute", sa.Integer(), nullable=True),
        sa.Column("break_end_minute", sa.Integer(), nullable=True),
        sa.Column("unpaid_break_minutes", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("paid_hours_per_day", sa.Float(), nullable=False, server_default=sa.text("0")),
        sa.Column("notes", sa.String(length=1000), nullable=True),
        _created_at(),
        sa.Column(
            "updated_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.text("CURRENT_TIMESTAMP"),
        ),
        sa.UniqueConstraint("code", name="uq_shift_templates_code"),
        sa.CheckConstraint("start_minute >= 0 AND start_minute < 1440", name="ck_shift_templates_start_minute"),
        sa.CheckConstraint("end_minute >= 0 AND end_minute < 1440", name="ck_shift_templates_end_minute"),
        sa.CheckConstraint("spans_midnight OR end_minute > start_minute", name="ck_shift_templates_window"),
    )

    weekday_columns = [
        sa.Column(f"{day}_shift_id", sa.Integer(), nullable=True)
        for day in ("mon", "tue", "wed", "thu", "fri", "sat", "sun")
    ]
    weekday_fks = [
        sa.ForeignKeyConstraint([f"{day}_shift_id"], ["shift_templates.id"])
        for day in ("mon", "tue", "wed", "thu", "fri", "sat", "sun")
    ]
    op.create_table(
        "weekly_patterns",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("code", sa.String(length=50), nullable=False),
        sa.Column("name", sa.String(length=100), nullable=False),
        *weekday_columns,
        _created_at(),
        *weekday_fks,
        sa.UniqueConstraint("code", name="uq_weekly_patterns_code"),
    )

    op.create_table(
        "pattern_assignments",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("employee_id", sa.Integer(), nullable=False),
        sa.Column("pattern_id", sa.Integer(), nullable=False),
        sa.Column("effective_date", sa.Date(), nullable=False),
        sa.Column("reason", sa.String(length=500), nullable=True),
        _created_at(),
        sa.ForeignKeyConstraint(["employee_id"], ["employees.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["pattern_id"], ["weekly_patterns.id"], ondelete="CASCADE"),
        sa.UniqueConstraint("employee_id", "effective_date", name="uq_pattern_assignments_employee_date"),
    )
    op.create_index("ix_pattern_assignments_employee_id", "pattern_assignments", ["employee_id"])
    op.create_index("ix_pattern_assignments_effective_date", "pattern_assignments", ["effective_date"])

    op.create_table(
        "shift_overrides",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("employee_id", sa.Integer(), nullable=False),
        sa.Column("work_date", sa.Date(), nullable=False),
        sa.Column("shift_id", sa.Integer(), nullable=True),
        sa.Column("source", sa.String(length=20), nullable=False, server_default=sa.text("'MANUAL'")),
        sa.Column("note", sa.String(length=1000), nullable=True),
        sa.Column("created_by", sa.String(length=255), nullable=False, server_default=sa.text("'admin'")),
        _created_at(),
        sa.Column(
            "updated_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.text("CURRENT_TIMESTAMP"),
        ),
        sa.ForeignKeyConstraint(["employee_id"], ["employees.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["shift_id"], ["shift_templates.id"]),
        sa.UniqueConstraint("employee_id", "work_date", name="uq_shift_overrides_employee_date"),
    )
    op.create_index("ix_shift_overrides_employee_id", "shift_overrides", ["employee_id"])
    op.create_index("ix_shift_overrides_work_date", "shift_overrides", ["work_date"])

    op.create_table(
        "punch_events",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("employee_id", sa.Integer(), nullable=False),
        sa.Column("punched_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("work_date", sa.Date(), nullable=False),
        sa.Column("punch_type", punch_type, nullable=False),
        sa.Column("source", punch_source, nullable=False),
        sa.Column("client_ip", sa.String(length=128), nullable=True),
        sa.Column("note", sa.String(length=1000), nullable=True),
        sa.Column("aggregated_at", sa.DateTime(timezone=True), nullable=True),
        _created_at(),
        sa.ForeignKeyConstraint(["employee_id"], ["employees.id"], ondelete="CASCADE"),
    )
    op.create_index("ix_punch_events_employee_id", "punch_events", ["employee_id"])
    op.create_index("ix_punch_events_punched_at", "punch_events", ["punched_at"])
    op.create_index("ix_punch_events_aggregated_at", "punch_events", ["aggregated_at"])
    op.create_index("ix_punch_events_employee_work_date", "punch_events", ["employee_id", "work_date"])

    op.create_table(
        "attendance_records",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("employee_id", sa.Integer(), nullable=False),
        sa.Column("work_date", sa.Date(), nullable=False),
        sa.Column("status", attendance_status, nullable=False),
        sa.Column("expected_shift_id", sa.Integer(), nullable=True),
        sa.Column("schedule_source", schedule_source, nullable=False, server_default=sa.text("'NONE'")),
        sa.Column("scheduled_start_minutes", sa.Integer(), nullable=True),
        sa.Column("scheduled_end_minutes", sa.Integer(), nullable=True),
        sa.Column("actual_in_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("actual_out_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("worked_minutes", sa.Integer(), nullable=True),
        sa.Column("break_minutes", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("break_count", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("late_minutes", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("undertime_minutes", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("overtime_minutes_raw", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("is_locked", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("locked_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("computed_at", sa.DateTime(timezone=True), nullable=True),
        sa.ForeignKeyConstraint(["employee_id"], ["employees.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["expected_shift_id"], ["shift_templates.id"], ondelete="SET NULL"),
        sa.UniqueConstraint("employee_id", "work_date", name="uq_attendance_records_employee_date"),
    )
    op.create_index("ix_attendance_records_employee_id", "attendance_records", ["employee_id"])
    op.create_index("ix_attendance_records_work_date", "attendance_records", ["work_date"])

    op.create_table(
        "audit_logs",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column(
            "ts_utc",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.text("CURRENT_TIMESTAMP"),
        ),
        sa.Column("actor_type", audit_actor_type, nullable=False),
        sa.Column("actor_id", sa.String(length=255), nullable=False),
        sa.Column("action", sa.String(length=255), nullable=False),
        sa.Column("entity_type", sa.String(length=255), nullable=True),
        sa.Column("entity_id", sa.String(length=255), nullable=True),
        sa.Column("ip", sa.String(length=128), nullable=True),
        sa.Column("user_agent", sa.String(length=1024), nullable=True),
        sa.Column("success", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        sa.Column(
            "details",
            postgresql.JSONB(astext_type=sa.Text()),
            nullable=False,
            server_default=sa.text("'{}'::jsonb"),
        ),
    )
    op.create_index("ix_audit_logs_ts_utc", "audit_logs", ["ts_utc"])


def downgrade() -> None:
    op.drop_index("ix_audit_logs_ts_utc", table_name="audit_logs")
    op.drop_table("audit_logs")
    op.drop_index("ix_attendance_records_work_date", table_name="attendance_records")
    op.drop_index("ix_attendance_records_employee_id", table_name="attendance_records")
    op.drop_table("attendance_records")
    op.drop_index("ix_punch_events_employee_work_date", table_name="punch_events")
    op.drop_index("ix_punch_events_aggregated_at", table_name="punch_events")
    op.drop_index("ix_punch_events_punched_at", table_name="punch_events")
    op.drop_index("ix_punch_events_employee_id", table_name="punch_events")
    op.drop_table("punch_events")
    op.drop_index("ix_shift_overrides_work_date", table_name="shift_overrides")
    op.drop_index("ix_shift_overrides_employee_id", table_name="shift_overrides")
    op.drop_table("shift_overrides")
    op.drop_index("ix_pattern_assignments_effective_date", table_name="pattern_assignments")
    op.drop_index("ix_pattern_assignments_employee_id", table_name="pattern_assignments")
    op.drop_table("pattern_assignments")
    op.drop_table("weekly_patterns")
    op.drop_table("shift_templates")
    op.drop_table("user_accounts")
    op.drop_table("employees")

    bind = op.get_bind()
    for enum_type in reversed(ENUMS):
        enum_type.drop(bind, checkfirst=True)
