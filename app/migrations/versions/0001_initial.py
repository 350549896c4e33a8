"""Initial timesheet schema

Revision ID: 0001_initial
Revises:
Create Date: 2026-10-19 00:00:00
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

JSON_TYPE = sa.JSON().with_variant(postgresql.JSONB(), "postgresql")

user_role = sa.Enum("EMPLOYEE", "MANAGER", "PAYROLL", "ADMIN", name="user_role")
timesheet_status = sa.Enum(
    "DRAFT",
    "SUBMITTED",
    "MANAGER_APPROVED",
    "MANAGER_REJECTED",
    "PAYROLL_VALIDATED",
    "LOCKED",
    name="timesheet_status",
)


def upgrade() -> None:
    op.create_table(
        "app_users",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("username", sa.String(length=100), nullable=False),
        sa.Column("password_hash", sa.String(length=255), nullable=False),
        sa.Column("full_name", sa.String(length=255), nullable=True),
        sa.Column("role", user_role, nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.text("CURRENT_TIMESTAMP"),
        ),
        sa.UniqueConstraint("username", name="uq_app_users_username"),
    )
    op.create_index("ix_app_users_username", "app_users", ["username"], unique=False)

    op.create_table(
        "timesheet_periods",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("employee_id", sa.Integer(), nullable=False),
        sa.Column("period_key", sa.String(length=7), nullable=False),
        sa.Column("status", timesheet_status, nullable=False),
        sa.Column("revision_no", sa.Integer(), nullable=False, server_default=sa.text("1")),
        sa.Column("manager_note", sa.Text(), nullable=False, server_default=sa.text("''")),
        sa.Column("day_entries", JSON_TYPE, nullable=False),
        sa.Column("employee_signature", JSON_TYPE, nullable=True),
        sa.Column("manager_signature", JSON_TYPE, nullable=True),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.text("CURRENT_TIMESTAMP"),
        ),
        sa.Column(
            "updated_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.text("CURRENT_TIMESTAMP"),
        ),
        sa.ForeignKeyConstraint(["employee_id"], ["app_users.id"], ondelete="CASCADE"),
        sa.UniqueConstraint("employee_id", "period_key", name="uq_timesheet_periods_employee_period"),
    )
    op.create_index("ix_timesheet_periods_employee_id", "timesheet_periods", ["employee_id"], unique=False)
    op.create_index("ix_timesheet_periods_period_key", "timesheet_periods", ["period_key"], unique=False)

    op.create_table(
        "timesheet_approval_events",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("period_id", sa.Integer(), nullable=False),
        sa.Column("seq", sa.Integer(), nullable=False),
        sa.Column("ts_utc", sa.DateTime(timezone=True), nullable=False),
        sa.Column("actor", sa.String(length=255), nullable=False),
        sa.Column("action", sa.String(length=64), nullable=False),
        sa.Column("note", sa.Text(), nullable=False),
        sa.ForeignKeyConstraint(["period_id"], ["timesheet_periods.id"], ondelete="CASCADE"),
        sa.UniqueConstraint("period_id", "seq", name="uq_timesheet_approval_events_period_seq"),
    )
    op.create_index(
        "ix_timesheet_approval_events_period_id",
        "timesheet_approval_events",
        ["period_id"],
        unique=False,
    )

    op.create_table(
        "timesheet_export_batches",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("period_id", sa.Integer(), nullable=False),
        sa.Column("seq", sa.Integer(), nullable=False),
        sa.Column("batch_id", sa.String(length=64), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("line_count", sa.Integer(), nullable=False),
        sa.Column("checksum", sa.String(length=8), nullable=False),
        sa.ForeignKeyConstraint(["period_id"], ["timesheet_periods.id"], ondelete="CASCADE"),
        sa.UniqueConstraint("batch_id", name="uq_timesheet_export_batches_batch_id"),
    )
    op.create_index(
        "ix_timesheet_export_batches_period_id",
        "timesheet_export_batches",
        ["period_id"],
        unique=False,
    )

    op.create_table(
        "planned_leaves",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("employee_id", sa.Integer(), nullable=False),
        sa.Column("leave_date", sa.Date(), nullable=False),
        sa.Column("hours", sa.Float(), nullable=False),
        sa.Column("note", sa.String(length=1000), nullable=True),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.text("CURRENT_TIMESTAMP"),
        ),
        sa.ForeignKeyConstraint(["employee_id"], ["app_users.id"], ondelete="CASCADE"),
    )
    op.create_index("ix_planned_leaves_employee_id", "planned_leaves", ["employee_id"], unique=False)
    op.create_index("ix_planned_leaves_leave_date", "planned_leaves", ["leave_date"], unique=False)

    op.create_table(
        "signature_profiles",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("user_id", sa.Integer(), nullable=False),
        sa.Column("role", sa.String(length=16), nullable=False),
        sa.Column("full_name", sa.String(length=255), nullable=False),
        sa.Column("declaration", sa.Text(), nullable=False),
        sa.Column("profile_hash", sa.String(length=64), nullable=False),
        sa.Column("setup_at", sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(["user_id"], ["app_users.id"], ondelete="CASCADE"),
        sa.UniqueConstraint("user_id", "role", name="uq_signature_profiles_user_role"),
    )
    op.create_index("ix_signature_profiles_user_id", "signature_profiles", ["user_id"], unique=False)

    op.create_table(
        "rule_configurations",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("full_day_minutes", sa.Integer(), nullable=False),
        sa.Column("friday_short_day_minutes", sa.Integer(), nullable=False),
        sa.Column("leave_default_paid_minutes", sa.Integer(), nullable=False),
        sa.Column("early_knock_off_paid_as_full_day", sa.Boolean(), nullable=False),
        sa.Column("early_knock_off_dates", JSON_TYPE, nullable=False),
        sa.Column("public_holiday_dates", JSON_TYPE, nullable=False),
        sa.Column("updated_by", sa.String(length=255), nullable=True),
        sa.Column(
            "updated_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.text("CURRENT_TIMESTAMP"),
        ),
    )

    op.create_table(
        "audit_logs",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("ts_utc", sa.DateTime(timezone=True), nullable=False),
        sa.Column("entity_table", sa.String(length=100), nullable=False),
        sa.Column("entity_key", sa.String(length=255), nullable=False),
        sa.Column("operation", sa.String(length=100), nullable=False),
        sa.Column("actor_id", sa.String(length=255), nullable=True),
        sa.Column("actor_role", sa.String(length=32), nullable=True),
        sa.Column("request_id", sa.String(length=128), nullable=True),
        sa.Column("reason", sa.Text(), nullable=True),
        sa.Column("success", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        sa.Column("details", JSON_TYPE, nullable=False),
        sa.Column("field_changes", JSON_TYPE, nullable=False),
        sa.Column("prev_hash", sa.String(length=64), nullable=True),
        sa.Column("event_hash", sa.String(length=64), nullable=False),
        sa.UniqueConstraint("event_hash", name="uq_audit_logs_event_hash"),
    )
    op.create_index("ix_audit_logs_ts_utc", "audit_logs", ["ts_utc"], unique=False)
    op.create_index("ix_audit_logs_entity_key", "audit_logs", ["entity_key"], unique=False)


def downgrade() -> None:
    op.drop_index("ix_audit_logs_entity_key", table_name="audit_logs")
    op.drop_index("ix_audit_logs_ts_utc", table_name="audit_logs")
    op.drop_table("audit_logs")
    op.drop_table("rule_configurations")
    op.drop_index("ix_signature_profiles_user_id", table_name="signature_profiles")
    op.drop_table("signature_profiles")
    op.drop_index("ix_planned_leaves_leave_date", table_name="planned_leaves")
    op.drop_index("ix_planned_leaves_employee_id", table_name="planned_leaves")
    op.drop_table("planned_leaves")
    op.drop_index("ix_timesheet_export_batches_period_id", table_name="timesheet_export_batches")
    op.drop_table("timesheet_export_batches")
    op.drop_index("ix_timesheet_approval_events_period_id", table_name="timesheet_approval_events")
    op.drop_table("timesheet_approval_events")
    op.drop_index("ix_timesheet_periods_period_key", table_name="timesheet_periods")
    op.drop_index("ix_timesheet_periods_employee_id", table_name="timesheet_periods")
    op.drop_table("timesheet_periods")
    op.drop_index("ix_app_users_username", table_name="app_users")
    op.drop_table("app_users")

    bind = op.get_bind()
    timesheet_status.drop(bind, checkfirst=True)
    user_role.drop(bind, checkfirst=True)
