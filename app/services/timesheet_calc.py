from __future__ import annotations

import enum
import math
from collections.abc import Iterable
from dataclasses import dataclass, field
from datetime import date
from math import ceil
from typing import Literal

MAX_WORKED_MINUTES_PER_DAY = 16 * 60
NOTES_MAX_LENGTH = 500


class DayType(str, enum.Enum):
    WORKDAY = "WORKDAY"
    FRIDAY_SHORT_DAY = "FRIDAY_SHORT_DAY"
    EARLY_KNOCK_OFF = "EARLY_KNOCK_OFF"
    PUBLIC_HOLIDAY = "PUBLIC_HOLIDAY"
    WEEKEND = "WEEKEND"


class AbsenceCode(str, enum.Enum):
    AL = "AL"
    SL = "SL"
    LWOP = "LWOP"
    PH = "PH"


ABSENCE_CODES = frozenset(item.value for item in AbsenceCode)


class RuleConfigurationError(ValueError):
    pass


@dataclass(frozen=True)
class RuleConfiguration:
    full_day_minutes: int = 480
    friday_short_day_minutes: int = 360
    leave_default_paid_minutes: int = 480
    early_knock_off_paid_as_full_day: bool = True
    early_knock_off_dates: frozenset[date] = frozenset()
    public_holiday_dates: frozenset[date] = frozenset()

    def __post_init__(self) -> None:
        for name in ("full_day_minutes", "friday_short_day_minutes", "leave_default_paid_minutes"):
            value = getattr(self, name)
            if isinstance(value, bool) or not isinstance(value, int) or value < 0:
                raise RuleConfigurationError(f"{name} must be a non-negative integer")
        for name in ("early_knock_off_dates", "public_holiday_dates"):
            values = getattr(self, name)
            if not all(isinstance(item, date) for item in values):
                raise RuleConfigurationError(f"{name} must contain calendar dates")
            object.__setattr__(self, name, frozenset(values))


@dataclass(frozen=True)
class ProjectLine:
    id: str
    description: str = ""
    hours: float = 0.0


@dataclass(frozen=True)
class DayEntry:
    date: date
    day_type: DayType
    project_lines: tuple[ProjectLine, ...] = ()
    absence_code: str = ""
    notes: str = ""


@dataclass(frozen=True)
class DayCalculation:
    normal_minutes: int = 0
    overtime_minutes: int = 0
    ph_worked_minutes: int = 0
    leave_minutes: int = 0
    blocking_errors: tuple[str, ...] = ()
    warnings: tuple[str, ...] = ()

    @property
    def totals(self) -> TimesheetTotals:
        return TimesheetTotals(
            normal_minutes=self.normal_minutes,
            overtime_minutes=self.overtime_minutes,
            ph_worked_minutes=self.ph_worked_minutes,
            leave_minutes=self.leave_minutes,
        )


@dataclass(frozen=True)
class TimesheetTotals:
    """Additive minute buckets; ``TimesheetTotals()`` is the identity for ``+``."""

    normal_minutes: int = 0
    overtime_minutes: int = 0
    ph_worked_minutes: int = 0
    leave_minutes: int = 0

    @property
    def paid_minutes(self) -> int:
        return self.normal_minutes + self.overtime_minutes + self.ph_worked_minutes + self.leave_minutes

    def __add__(self, other: TimesheetTotals) -> TimesheetTotals:
        if not isinstance(other, TimesheetTotals):
            return NotImplemented
        return TimesheetTotals(
            normal_minutes=self.normal_minutes + other.normal_minutes,
            overtime_minutes=self.overtime_minutes + other.overtime_minutes,
            ph_worked_minutes=self.ph_worked_minutes + other.ph_worked_minutes,
            leave_minutes=self.leave_minutes + other.leave_minutes,
        )

    def to_dict(self) -> dict[str, int]:
        return {
            "normal_minutes": self.normal_minutes,
            "overtime_minutes": self.overtime_minutes,
            "ph_worked_minutes": self.ph_worked_minutes,
            "leave_minutes": self.leave_minutes,
            "paid_minutes": self.paid_minutes,
        }


@dataclass(frozen=True)
class TimesheetException:
    code: str
    severity: Literal["ERROR", "WARNING"]
    message: str
    date: date | None = None


@dataclass(frozen=True)
class WeeklyTotals:
    week_label: str
    totals: TimesheetTotals


@dataclass(frozen=True)
class PeriodComputation:
    by_date: dict[date, DayCalculation] = field(default_factory=dict)
    weekly: tuple[WeeklyTotals, ...] = ()
    period_totals: TimesheetTotals = field(default_factory=TimesheetTotals)
    has_blocking_errors: bool = False
    requires_manager_approval: bool = False
    exceptions: tuple[TimesheetException, ...] = ()


def classify_day(day: date, config: RuleConfiguration) -> DayType:
    if day in config.public_holiday_dates:
        return DayType.PUBLIC_HOLIDAY
    weekday = day.weekday()
    if weekday >= 5:
        return DayType.WEEKEND
    if day in config.early_knock_off_dates:
        return DayType.EARLY_KNOCK_OFF
    if weekday == 4:
        return DayType.FRIDAY_SHORT_DAY
    return DayType.WORKDAY


def coerce_hours(raw: object) -> float:
    try:
        value = float(raw)  # type: ignore[arg-type]
    except (TypeError, ValueError):
        return 0.0
    if not math.isfinite(value):
        return 0.0
    return value


def line_hours(line: ProjectLine) -> float:
    return coerce_hours(line.hours)


def sum_project_hours(entry: DayEntry) -> float:
    return sum(line_hours(line) for line in entry.project_lines)


def worked_minutes_for(entry: DayEntry) -> int:
    # Half-up, not round-half-even.
    return int(math.floor(sum_project_hours(entry) * 60 + 0.5))


def week_label(day: date) -> str:
    day_of_year = day.timetuple().tm_yday
    return f"{day.year}-W{ceil(day_of_year / 7):02d}"


def _blocked(errors: list[str], warnings: list[str]) -> DayCalculation:
    return DayCalculation(blocking_errors=tuple(errors), warnings=tuple(warnings))


def calculate_day(
    entry: DayEntry,
    config: RuleConfiguration,
    *,
    as_of: date | None = None,
) -> DayCalculation:
    blocking_errors: list[str] = []
    warnings: list[str] = []

    if len(entry.notes or "") > NOTES_MAX_LENGTH:
        warnings.append("NOTES_TOO_LONG")

    absence_code = (entry.absence_code or "").strip()
    has_absence = bool(absence_code)

    if has_absence and absence_code not in ABSENCE_CODES:
        blocking_errors.append("INVALID_ABSENCE_CODE")

    if any(line_hours(line) < 0 for line in entry.project_lines):
        blocking_errors.append("NEGATIVE_TOTALS")

    worked_minutes = worked_minutes_for(entry)

    if has_absence and worked_minutes > 0:
        blocking_errors.append("CODE_HOURS_CONFLICT")

    if worked_minutes > MAX_WORKED_MINUTES_PER_DAY:
        blocking_errors.append("IMPOSSIBLE_HOURS")

    if has_absence:
        if blocking_errors:
            return _blocked(blocking_errors, warnings)
        if entry.day_type == DayType.PUBLIC_HOLIDAY and absence_code != AbsenceCode.PH.value:
            blocking_errors.append("PH_CODE_REQUIRED")
            return _blocked(blocking_errors, warnings)
        leave_minutes = 0 if absence_code == AbsenceCode.LWOP.value else config.leave_default_paid_minutes
        return DayCalculation(leave_minutes=leave_minutes, warnings=tuple(warnings))

    if worked_minutes == 0:
        if as_of is not None and entry.date > as_of:
            return _blocked(blocking_errors, warnings)
        if entry.day_type == DayType.PUBLIC_HOLIDAY:
            blocking_errors.append("PH_CODE_REQUIRED")
        else:
            blocking_errors.append("MISSING_ENTRY_DAY")
        return _blocked(blocking_errors, warnings)

    if any(line_hours(line) > 0 and not (line.description or "").strip() for line in entry.project_lines):
        blocking_errors.append("PROJECT_DESCRIPTION_REQUIRED")

    if blocking_errors:
        return _blocked(blocking_errors, warnings)

    if entry.day_type == DayType.PUBLIC_HOLIDAY:
        return DayCalculation(ph_worked_minutes=worked_minutes, warnings=tuple(warnings))

    if entry.day_type == DayType.WEEKEND:
        return DayCalculation(overtime_minutes=worked_minutes, warnings=tuple(warnings))

    if entry.day_type == DayType.EARLY_KNOCK_OFF and config.early_knock_off_paid_as_full_day:
        return DayCalculation(
            normal_minutes=config.full_day_minutes,
            overtime_minutes=max(0, worked_minutes - config.full_day_minutes),
            warnings=tuple(warnings),
        )

    if entry.day_type == DayType.FRIDAY_SHORT_DAY:
        normal_cap = config.friday_short_day_minutes
    else:
        normal_cap = config.full_day_minutes
    return DayCalculation(
        normal_minutes=min(worked_minutes, normal_cap),
        overtime_minutes=max(0, worked_minutes - normal_cap),
        warnings=tuple(warnings),
    )


def calculate_period(
    entries: Iterable[DayEntry],
    config: RuleConfiguration,
    *,
    as_of: date | None = None,
) -> PeriodComputation:
    """Fold day calculations into weekly buckets, period totals and exceptions.

    Exceptions are emitted in entry order; weekly buckets come back sorted by
    label, which is chronological for the ``YYYY-Www`` format.
    """
    by_date: dict[date, DayCalculation] = {}
    weekly_map: dict[str, TimesheetTotals] = {}
    exceptions: list[TimesheetException] = []
    period_totals = TimesheetTotals()
    has_blocking_errors = False
    requires_manager_approval = False

    for entry in entries:
        result = calculate_day(entry, config, as_of=as_of)
        by_date[entry.date] = result
        day_totals = result.totals

        period_totals = period_totals + day_totals
        label = week_label(entry.date)
        weekly_map[label] = weekly_map.get(label, TimesheetTotals()) + day_totals

        for code in result.blocking_errors:
            has_blocking_errors = True
            exceptions.append(TimesheetException(code=code, severity="ERROR", message=code, date=entry.date))

        for code in result.warnings:
            exceptions.append(TimesheetException(code=code, severity="WARNING", message=code, date=entry.date))

        if result.overtime_minutes > 0:
            requires_manager_approval = True
            exceptions.append(
                TimesheetException(
                    code="OT_APPROVAL_REQUIRED",
                    severity="ERROR",
                    message="Overtime requires manager approval",
                    date=entry.date,
                )
            )

        if result.ph_worked_minutes > 0:
            requires_manager_approval = True
            exceptions.append(
                TimesheetException(
                    code="PH_WORKED_APPROVAL_REQUIRED",
                    severity="ERROR",
                    message="Public holiday worked requires manager approval",
                    date=entry.date,
                )
            )

    weekly = tuple(WeeklyTotals(week_label=label, totals=weekly_map[label]) for label in sorted(weekly_map))
    return PeriodComputation(
        by_date=by_date,
        weekly=weekly,
        period_totals=period_totals,
        has_blocking_errors=has_blocking_errors,
        requires_manager_approval=requires_manager_approval,
        exceptions=tuple(exceptions),
    )


def minutes_to_hours_string(minutes: int) -> str:
    return f"{minutes / 60:.2f}"
