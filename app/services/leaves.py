from __future__ import annotations

import math
from dataclasses import dataclass
from datetime import date

from sqlalchemy import select
from sqlalchemy.orm import Session

from app.errors import ApiError
from app.models import AppUser, PlannedLeave, TimesheetPeriod
from app.services.rule_config import get_rule_configuration
from app.services.timesheet_calc import AbsenceCode
from app.settings import get_settings


@dataclass(frozen=True)
class LeaveResult:
    ok: bool
    message: str
    leave: PlannedLeave | None = None


@dataclass(frozen=True)
class LeaveSummary:
    year: int
    entitlement_hours: float
    taken_hours: float
    planned_hours: float

    @property
    def remaining_after_taken(self) -> float:
        return round(self.entitlement_hours - self.taken_hours, 2)

    @property
    def remaining_after_planned(self) -> float:
        return round(self.entitlement_hours - self.taken_hours - self.planned_hours, 2)


def _ensure_employee(db: Session, employee_id: int) -> None:
    if db.get(AppUser, employee_id) is None:
        raise ApiError(status_code=404, code="EMPLOYEE_NOT_FOUND", message="Employee not found.")


def add_planned_leave(
    db: Session,
    *,
    employee_id: int,
    leave_date: date | None,
    hours: float | None,
    note: str | None = None,
) -> LeaveResult:
    _ensure_employee(db, employee_id)
    if leave_date is None:
        return LeaveResult(ok=False, message="Planned leave date is required.")
    if hours is None or not math.isfinite(hours) or hours <= 0:
        return LeaveResult(ok=False, message="Planned leave hours must be greater than zero.")

    leave = PlannedLeave(
        employee_id=employee_id,
        leave_date=leave_date,
        hours=float(hours),
        note=(note or "").strip() or None,
    )
    db.add(leave)
    db.commit()
    db.refresh(leave)
    return LeaveResult(ok=True, message="Planned leave added.", leave=leave)


def list_planned_leaves(db: Session, *, employee_id: int, year: int | None = None) -> list[PlannedLeave]:
    stmt = (
        select(PlannedLeave)
        .where(PlannedLeave.employee_id == employee_id)
        .order_by(PlannedLeave.leave_date.asc(), PlannedLeave.id.asc())
    )
    if year is not None:
        stmt = stmt.where(
            PlannedLeave.leave_date >= date(year, 1, 1),
            PlannedLeave.leave_date <= date(year, 12, 31),
        )
    return list(db.scalars(stmt).all())


def remove_planned_leave(db: Session, *, employee_id: int, leave_id: int) -> LeaveResult:
    leave = db.get(PlannedLeave, leave_id)
    if leave is None or leave.employee_id != employee_id:
        return LeaveResult(ok=False, message="Planned leave not found.")
    db.delete(leave)
    db.commit()
    return LeaveResult(ok=True, message="Planned leave removed.")


def _taken_annual_leave_days(db: Session, *, employee_id: int, year: int) -> int:
    periods = db.scalars(
        select(TimesheetPeriod).where(
            TimesheetPeriod.employee_id == employee_id,
            TimesheetPeriod.period_key.like(f"{year:04d}-%"),
        )
    )
    return sum(
        1
        for period in periods
        for entry in period.day_entries or []
        if str(entry.get("absence_code") or "").strip().upper() == AbsenceCode.AL.value
    )


def leave_summary(db: Session, *, employee_id: int, year: int) -> LeaveSummary:
    _ensure_employee(db, employee_id)
    config = get_rule_configuration(db)
    hours_per_day = config.leave_default_paid_minutes / 60
    taken_hours = _taken_annual_leave_days(db, employee_id=employee_id, year=year) * hours_per_day
    planned_hours = sum(leave.hours for leave in list_planned_leaves(db, employee_id=employee_id, year=year))
    return LeaveSummary(
        year=year,
        entitlement_hours=float(get_settings().annual_leave_entitlement_hours),
        taken_hours=round(taken_hours, 2),
        planned_hours=round(planned_hours, 2),
    )
