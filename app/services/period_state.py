from __future__ import annotations

import enum
import re
from calendar import monthrange
from dataclasses import dataclass, field, replace
from datetime import date, datetime
from uuid import uuid4

from app.services.timesheet_calc import DayEntry, DayType, ProjectLine, RuleConfiguration, classify_day

PERIOD_KEY_PATTERN = re.compile(r"^(\d{4})-(0[1-9]|1[0-2])$")
DEFAULT_PROJECT_DESCRIPTION = "General Project Work"
PUBLIC_HOLIDAY_NOTE = "Public holiday"


class WorkflowStatus(str, enum.Enum):
    DRAFT = "DRAFT"
    SUBMITTED = "SUBMITTED"
    MANAGER_APPROVED = "MANAGER_APPROVED"
    MANAGER_REJECTED = "MANAGER_REJECTED"
    PAYROLL_VALIDATED = "PAYROLL_VALIDATED"
    LOCKED = "LOCKED"


EDITABLE_STATUSES = frozenset({WorkflowStatus.DRAFT, WorkflowStatus.MANAGER_REJECTED})


class UserRole(str, enum.Enum):
    EMPLOYEE = "EMPLOYEE"
    MANAGER = "MANAGER"
    PAYROLL = "PAYROLL"
    ADMIN = "ADMIN"


class PeriodKeyError(ValueError):
    pass


@dataclass(frozen=True)
class ElectronicSignature:
    signed_by: str
    signed_at: datetime
    signature_hash: str
    declaration_text: str
    revision_no: int


@dataclass(frozen=True)
class ApprovalEvent:
    timestamp: datetime
    actor: str
    action: str
    note: str


@dataclass(frozen=True)
class ExportBatch:
    batch_id: str
    created_at: datetime
    line_count: int
    checksum: str


@dataclass
class PeriodState:
    employee_id: int
    period_key: str
    status: WorkflowStatus = WorkflowStatus.DRAFT
    revision_no: int = 1
    day_entries: list[DayEntry] = field(default_factory=list)
    approval_events: list[ApprovalEvent] = field(default_factory=list)
    export_batches: list[ExportBatch] = field(default_factory=list)
    manager_note: str = ""
    employee_signature: ElectronicSignature | None = None
    manager_signature: ElectronicSignature | None = None

    @property
    def is_editable(self) -> bool:
        return self.status in EDITABLE_STATUSES

    def entry_for(self, day: date) -> DayEntry | None:
        for entry in self.day_entries:
            if entry.date == day:
                return entry
        return None

    def has_current_signature(self, signature: ElectronicSignature | None) -> bool:
        return signature is not None and signature.revision_no == self.revision_no


def parse_period_key(period_key: str) -> tuple[int, int]:
    match = PERIOD_KEY_PATTERN.match(period_key or "")
    if match is None:
        raise PeriodKeyError(f"Invalid period key: {period_key!r} (expected YYYY-MM)")
    return int(match.group(1)), int(match.group(2))


def period_dates(period_key: str) -> list[date]:
    year, month = parse_period_key(period_key)
    return [date(year, month, day) for day in range(1, monthrange(year, month)[1] + 1)]


def date_in_period(day: date, period_key: str) -> bool:
    year, month = parse_period_key(period_key)
    return day.year == year and day.month == month


def new_project_line(hours: float = 0.0, description: str = "") -> ProjectLine:
    return ProjectLine(id=f"PL-{uuid4().hex[:12]}", description=description, hours=hours)


def build_default_entries(period_key: str, config: RuleConfiguration, as_of: date) -> list[DayEntry]:
    entries: list[DayEntry] = []
    for day in period_dates(period_key):
        # Business days only; weekend rows are created on demand.
        if day.weekday() >= 5:
            continue

        day_type = classify_day(day, config)
        if day_type == DayType.PUBLIC_HOLIDAY:
            entries.append(DayEntry(date=day, day_type=day_type, absence_code="PH", notes=PUBLIC_HOLIDAY_NOTE))
            continue

        if day > as_of:
            entries.append(DayEntry(date=day, day_type=day_type, project_lines=(new_project_line(),)))
            continue

        default_minutes = (
            config.friday_short_day_minutes if day_type == DayType.FRIDAY_SHORT_DAY else config.full_day_minutes
        )
        default_hours = default_minutes / 60
        entries.append(
            DayEntry(
                date=day,
                day_type=day_type,
                project_lines=(new_project_line(default_hours, DEFAULT_PROJECT_DESCRIPTION),),
            )
        )
    return entries


def build_period_state(employee_id: int, period_key: str, config: RuleConfiguration, as_of: date) -> PeriodState:
    return PeriodState(
        employee_id=employee_id,
        period_key=period_key,
        day_entries=build_default_entries(period_key, config, as_of),
    )


def reclassify_entries(entries: list[DayEntry], config: RuleConfiguration) -> tuple[list[DayEntry], bool]:
    """Return entries with day types re-derived from ``config`` and whether any changed."""
    changed = False
    updated: list[DayEntry] = []
    for entry in entries:
        day_type = classify_day(entry.date, config)
        if day_type != entry.day_type:
            changed = True
            entry = replace(entry, day_type=day_type)
        updated.append(entry)
    return updated, changed
