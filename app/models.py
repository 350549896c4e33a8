from __future__ import annotations

from datetime import date, datetime
from typing import Any

from sqlalchemy import (
    JSON,
    Boolean,
    Date,
    DateTime,
    Enum,
    Float,
    ForeignKey,
    Integer,
    String,
    Text,
    UniqueConstraint,
    text,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.db import Base
from app.services.period_state import UserRole, WorkflowStatus

JSONVariant = JSON().with_variant(JSONB, "postgresql")


class AppUser(Base):
    __tablename__ = "app_users"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    username: Mapped[str] = mapped_column(String(100), nullable=False, unique=True, index=True)
    password_hash: Mapped[str] = mapped_column(String(255), nullable=False)
    full_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    role: Mapped[UserRole] = mapped_column(
        Enum(UserRole, name="user_role"),
        nullable=False,
        default=UserRole.EMPLOYEE,
    )
    is_active: Mapped[bool] = mapped_column(
        Boolean,
        nullable=False,
        default=True,
        server_default=text("true"),
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=text("CURRENT_TIMESTAMP"),
    )

    periods: Mapped[list[TimesheetPeriod]] = relationship(back_populates="employee")
    planned_leaves: Mapped[list[PlannedLeave]] = relationship(back_populates="employee")


class TimesheetPeriod(Base):
    __tablename__ = "timesheet_periods"
    __table_args__ = (
        UniqueConstraint("employee_id", "period_key", name="uq_timesheet_periods_employee_period"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    employee_id: Mapped[int] = mapped_column(
        ForeignKey("app_users.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    period_key: Mapped[str] = mapped_column(String(7), nullable=False, index=True)
    status: Mapped[WorkflowStatus] = mapped_column(
        Enum(WorkflowStatus, name="timesheet_status"),
        nullable=False,
        default=WorkflowStatus.DRAFT,
    )
    revision_no: Mapped[int] = mapped_column(Integer, nullable=False, default=1, server_default=text("1"))
    manager_note: Mapped[str] = mapped_column(Text, nullable=False, default="", server_default=text("''"))
    day_entries: Mapped[list[dict[str, Any]]] = mapped_column(
        JSONVariant,
        nullable=False,
        default=list,
    )
    employee_signature: Mapped[dict[str, Any] | None] = mapped_column(JSONVariant, nullable=True)
    manager_signature: Mapped[dict[str, Any] | None] = mapped_column(JSONVariant, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=text("CURRENT_TIMESTAMP"),
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=text("CURRENT_TIMESTAMP"),
    )

    employee: Mapped[AppUser] = relationship(back_populates="periods")
    approval_events: Mapped[list[TimesheetApprovalEvent]] = relationship(
        back_populates="period",
        order_by="TimesheetApprovalEvent.seq",
    )
    export_batches: Mapped[list[TimesheetExportBatch]] = relationship(
        back_populates="period",
        order_by="TimesheetExportBatch.seq.desc()",
    )


class TimesheetApprovalEvent(Base):
    __tablename__ = "timesheet_approval_events"
    __table_args__ = (
        UniqueConstraint("period_id", "seq", name="uq_timesheet_approval_events_period_seq"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    period_id: Mapped[int] = mapped_column(
        ForeignKey("timesheet_periods.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    seq: Mapped[int] = mapped_column(Integer, nullable=False)
    ts_utc: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    actor: Mapped[str] = mapped_column(String(255), nullable=False)
    action: Mapped[str] = mapped_column(String(64), nullable=False)
    note: Mapped[str] = mapped_column(Text, nullable=False, default="")

    period: Mapped[TimesheetPeriod] = relationship(back_populates="approval_events")


class TimesheetExportBatch(Base):
    __tablename__ = "timesheet_export_batches"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    period_id: Mapped[int] = mapped_column(
        ForeignKey("timesheet_periods.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    seq: Mapped[int] = mapped_column(Integer, nullable=False)
    batch_id: Mapped[str] = mapped_column(String(64), nullable=False, unique=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    line_count: Mapped[int] = mapped_column(Integer, nullable=False)
    checksum: Mapped[str] = mapped_column(String(8), nullable=False)

    period: Mapped[TimesheetPeriod] = relationship(back_populates="export_batches")


class PlannedLeave(Base):
    __tablename__ = "planned_leaves"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    employee_id: Mapped[int] = mapped_column(
        ForeignKey("app_users.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    leave_date: Mapped[date] = mapped_column(Date, nullable=False, index=True)
    hours: Mapped[float] = mapped_column(Float, nullable=False)
    note: Mapped[str | None] = mapped_column(String(1000), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=text("CURRENT_TIMESTAMP"),
    )

    employee: Mapped[AppUser] = relationship(back_populates="planned_leaves")


class SignatureProfile(Base):
    __tablename__ = "signature_profiles"
    __table_args__ = (
        UniqueConstraint("user_id", "role", name="uq_signature_profiles_user_role"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[int] = mapped_column(
        ForeignKey("app_users.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    role: Mapped[str] = mapped_column(String(16), nullable=False)
    full_name: Mapped[str] = mapped_column(String(255), nullable=False)
    declaration: Mapped[str] = mapped_column(Text, nullable=False)
    profile_hash: Mapped[str] = mapped_column(String(64), nullable=False)
    setup_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)


class RuleConfigurationRecord(Base):
    __tablename__ = "rule_configurations"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    full_day_minutes: Mapped[int] = mapped_column(Integer, nullable=False)
    friday_short_day_minutes: Mapped[int] = mapped_column(Integer, nullable=False)
    leave_default_paid_minutes: Mapped[int] = mapped_column(Integer, nullable=False)
    early_knock_off_paid_as_full_day: Mapped[bool] = mapped_column(Boolean, nullable=False)
    early_knock_off_dates: Mapped[list[str]] = mapped_column(JSONVariant, nullable=False, default=list)
    public_holiday_dates: Mapped[list[str]] = mapped_column(JSONVariant, nullable=False, default=list)
    updated_by: Mapped[str | None] = mapped_column(String(255), nullable=True)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=text("CURRENT_TIMESTAMP"),
    )


class AuditLog(Base):
    __tablename__ = "audit_logs"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    ts_utc: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        index=True,
    )
    entity_table: Mapped[str] = mapped_column(String(100), nullable=False)
    entity_key: Mapped[str] = mapped_column(String(255), nullable=False, index=True)
    operation: Mapped[str] = mapped_column(String(100), nullable=False)
    actor_id: Mapped[str | None] = mapped_column(String(255), nullable=True)
    actor_role: Mapped[str | None] = mapped_column(String(32), nullable=True)
    request_id: Mapped[str | None] = mapped_column(String(128), nullable=True)
    reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    success: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True, server_default=text("true"))
    details: Mapped[dict[str, Any]] = mapped_column(JSONVariant, nullable=False, default=dict)
    field_changes: Mapped[list[dict[str, Any]]] = mapped_column(JSONVariant, nullable=False, default=list)
    prev_hash: Mapped[str | None] = mapped_column(String(64), nullable=True)
    event_hash: Mapped[str] = mapped_column(String(64), nullable=False, unique=True)
