from datetime import date, datetime
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, model_validator

from app.services.period_state import UserRole, WorkflowStatus
from app.services.timesheet_calc import DayType


class LoginRequest(BaseModel):
    username: str
    password: str


class AuthResponse(BaseModel):
    access_token: str
    token_type: str = "bearer"
    expires_in: int
    role: UserRole
    user_id: int


# Period read models


class ProjectLineRead(BaseModel):
    id: str
    description: str
    hours: float

    model_config = ConfigDict(from_attributes=True)


class DayEntryRead(BaseModel):
    date: date
    day_type: DayType
    project_lines: list[ProjectLineRead]
    absence_code: str
    notes: str

    model_config = ConfigDict(from_attributes=True)


class TotalsRead(BaseModel):
    normal_minutes: int
    overtime_minutes: int
    ph_worked_minutes: int
    leave_minutes: int
    paid_minutes: int

    model_config = ConfigDict(from_attributes=True)


class DayCalculationRead(BaseModel):
    normal_minutes: int
    overtime_minutes: int
    ph_worked_minutes: int
    leave_minutes: int
    blocking_errors: list[str]
    warnings: list[str]

    model_config = ConfigDict(from_attributes=True)


class WeeklyTotalsRead(BaseModel):
    week_label: str
    totals: TotalsRead

    model_config = ConfigDict(from_attributes=True)


class TimesheetExceptionRead(BaseModel):
    code: str
    severity: Literal["ERROR", "WARNING"]
    message: str
    date: date | None

    model_config = ConfigDict(from_attributes=True)


class ComputationRead(BaseModel):
    by_date: dict[date, DayCalculationRead]
    weekly: list[WeeklyTotalsRead]
    period_totals: TotalsRead
    has_blocking_errors: bool
    requires_manager_approval: bool
    exceptions: list[TimesheetExceptionRead]

    model_config = ConfigDict(from_attributes=True)


class SignatureRead(BaseModel):
    signed_by: str
    signed_at: datetime
    signature_hash: str
    declaration_text: str
    revision_no: int

    model_config = ConfigDict(from_attributes=True)


class ApprovalEventRead(BaseModel):
    timestamp: datetime
    actor: str
    action: str
    note: str

    model_config = ConfigDict(from_attributes=True)


class ExportBatchRead(BaseModel):
    batch_id: str
    created_at: datetime
    line_count: int
    checksum: str

    model_config = ConfigDict(from_attributes=True)


class PeriodRead(BaseModel):
    employee_id: int
    period_key: str
    status: WorkflowStatus
    revision_no: int
    is_editable: bool
    manager_note: str
    day_entries: list[DayEntryRead]
    approval_events: list[ApprovalEventRead]
    export_batches: list[ExportBatchRead]
    employee_signature: SignatureRead | None = None
    manager_signature: SignatureRead | None = None
    employee_signature_current: bool
    manager_signature_current: bool
    computation: ComputationRead


class PeriodCommandResponse(BaseModel):
    ok: bool
    message: str
    period: PeriodRead


# Period command requests


class ProjectLineInput(BaseModel):
    id: str | None = Field(default=None, max_length=64)
    description: str = Field(default="", max_length=500)
    hours: float = Field(default=0.0, allow_inf_nan=False)


class DayEditRequest(BaseModel):
    absence_code: str | None = Field(default=None, max_length=16)
    notes: str | None = Field(default=None, max_length=4000)
    project_lines: list[ProjectLineInput] | None = None

    @model_validator(mode="after")
    def _validate_not_empty(self) -> "DayEditRequest":
        if self.absence_code is None and self.notes is None and self.project_lines is None:
            raise ValueError("At least one of absence_code, notes or project_lines is required.")
        return self


class ProjectLineCreateRequest(BaseModel):
    description: str = Field(default="", max_length=500)
    hours: float = Field(default=0.0, allow_inf_nan=False)


class ProjectLineUpdateRequest(BaseModel):
    description: str | None = Field(default=None, max_length=500)
    hours: float | None = Field(default=None, allow_inf_nan=False)


class ManagerNoteRequest(BaseModel):
    note: str = Field(default="", max_length=2000)


class SignRequest(BaseModel):
    signed_by: str | None = Field(default=None, max_length=255)


class RejectRequest(BaseModel):
    note: str | None = Field(default=None, max_length=2000)


# Rules and audit


class RuleConfigurationRead(BaseModel):
    full_day_minutes: int
    friday_short_day_minutes: int
    leave_default_paid_minutes: int
    early_knock_off_paid_as_full_day: bool
    early_knock_off_dates: list[date]
    public_holiday_dates: list[date]


class RuleConfigurationUpdate(BaseModel):
    full_day_minutes: int | None = Field(default=None, ge=0)
    friday_short_day_minutes: int | None = Field(default=None, ge=0)
    leave_default_paid_minutes: int | None = Field(default=None, ge=0)
    early_knock_off_paid_as_full_day: bool | None = None
    early_knock_off_dates: list[date] | None = None
    public_holiday_dates: list[date] | None = None


class RuleUpdateResponse(BaseModel):
    rules: RuleConfigurationRead
    reclassified_periods: int
    signatures_cleared: int


class AuditLogRead(BaseModel):
    id: int
    ts_utc: datetime
    entity_table: str
    entity_key: str
    operation: str
    actor_id: str | None = None
    actor_role: str | None = None
    request_id: str | None = None
    reason: str | None = None
    success: bool
    details: dict[str, Any] = Field(default_factory=dict)
    field_changes: list[dict[str, Any]] = Field(default_factory=list)
    prev_hash: str | None = None
    event_hash: str

    model_config = ConfigDict(from_attributes=True)


class AuditChainVerifyResponse(BaseModel):
    ok: bool
    checked: int
    first_broken_id: int | None = None


# Leave


class PlannedLeaveCreate(BaseModel):
    employee_id: int | None = Field(default=None, ge=1)
    leave_date: date | None = None
    hours: float | None = None
    note: str | None = Field(default=None, max_length=1000)


class PlannedLeaveRead(BaseModel):
    id: int
    employee_id: int
    leave_date: date
    hours: float
    note: str | None = None
    created_at: datetime | None = None

    model_config = ConfigDict(from_attributes=True)


class PlannedLeaveCommandResponse(BaseModel):
    ok: bool
    message: str
    leave: PlannedLeaveRead | None = None


class LeaveSummaryRead(BaseModel):
    year: int
    entitlement_hours: float
    taken_hours: float
    planned_hours: float
    remaining_after_taken: float
    remaining_after_planned: float

    model_config = ConfigDict(from_attributes=True)


# Signature profiles


class SignatureProfileUpsert(BaseModel):
    full_name: str = Field(default="", max_length=255)


class SignatureProfileRead(BaseModel):
    role: str
    full_name: str
    declaration: str
    profile_hash: str
    setup_at: datetime

    model_config = ConfigDict(from_attributes=True)


class SignatureProfileResponse(BaseModel):
    ok: bool
    message: str
    profile: SignatureProfileRead | None = None
