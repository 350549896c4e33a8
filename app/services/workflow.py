from __future__ import annotations

import enum
from collections.abc import Callable, Sequence
from dataclasses import dataclass, replace
from datetime import date, datetime, timezone

from app.services.integrity import build_batch_id, compute_export_checksum, compute_signature_hash
from app.services.period_state import (
    EDITABLE_STATUSES,
    ApprovalEvent,
    ElectronicSignature,
    ExportBatch,
    PeriodState,
    UserRole,
    WorkflowStatus,
    date_in_period,
    new_project_line,
)
from app.services.timesheet_calc import (
    DayEntry,
    DayType,
    PeriodComputation,
    ProjectLine,
    RuleConfiguration,
    calculate_period,
    classify_day,
    sum_project_hours,
)

EMPLOYEE_SIGNATURE_DECLARATION = (
    "I certify this monthly timesheet is true and complete to the best of my knowledge."
)
MANAGER_SIGNATURE_DECLARATION = (
    "I approve this monthly timesheet after review and confirm approvals for "
    "overtime/public holiday work where required."
)
SIGNER_NAME_MIN_LENGTH = 3
REJECTION_NOTE_MIN_LENGTH = 5

_UNSET = object()


class Transition(str, enum.Enum):
    EDIT_DAY = "EDIT_DAY"
    SET_MANAGER_NOTE = "SET_MANAGER_NOTE"
    SIGN_EMPLOYEE = "SIGN_EMPLOYEE"
    SUBMIT = "SUBMIT"
    SIGN_MANAGER = "SIGN_MANAGER"
    APPROVE = "APPROVE"
    REJECT = "REJECT"
    PAYROLL_VALIDATE = "PAYROLL_VALIDATE"
    LOCK = "LOCK"
    CREATE_EXPORT_BATCH = "CREATE_EXPORT_BATCH"


@dataclass(frozen=True)
class TransitionRule:
    from_statuses: frozenset[WorkflowStatus]
    to_status: WorkflowStatus | None
    roles: frozenset[UserRole]
    actor_label: str
    status_message: str


_EMPLOYEE = frozenset({UserRole.EMPLOYEE})
_MANAGER = frozenset({UserRole.MANAGER})
_PAYROLL = frozenset({UserRole.PAYROLL})

TRANSITIONS: dict[Transition, TransitionRule] = {
    Transition.EDIT_DAY: TransitionRule(
        from_statuses=EDITABLE_STATUSES,
        to_status=None,
        roles=_EMPLOYEE,
        actor_label="Employee",
        status_message="Timesheet can only be edited in Draft or Rejected status.",
    ),
    Transition.SET_MANAGER_NOTE: TransitionRule(
        from_statuses=frozenset({WorkflowStatus.SUBMITTED}),
        to_status=None,
        roles=_MANAGER,
        actor_label="Manager",
        status_message="Manager note can only be changed on submitted timesheets.",
    ),
    Transition.SIGN_EMPLOYEE: TransitionRule(
        from_statuses=EDITABLE_STATUSES,
        to_status=None,
        roles=_EMPLOYEE,
        actor_label="Employee",
        status_message="Employee signing is only available in Draft or Rejected status.",
    ),
    Transition.SUBMIT: TransitionRule(
        from_statuses=EDITABLE_STATUSES,
        to_status=WorkflowStatus.SUBMITTED,
        roles=_EMPLOYEE,
        actor_label="Employee",
        status_message="Only Draft or Rejected timesheets can be submitted.",
    ),
    Transition.SIGN_MANAGER: TransitionRule(
        from_statuses=frozenset({WorkflowStatus.SUBMITTED}),
        to_status=None,
        roles=_MANAGER,
        actor_label="Manager",
        status_message="Manager signing is only available for submitted timesheets.",
    ),
    Transition.APPROVE: TransitionRule(
        from_statuses=frozenset({WorkflowStatus.SUBMITTED}),
        to_status=WorkflowStatus.MANAGER_APPROVED,
        roles=_MANAGER,
        actor_label="Manager",
        status_message="Manager can approve only submitted timesheets.",
    ),
    Transition.REJECT: TransitionRule(
        from_statuses=frozenset({WorkflowStatus.SUBMITTED}),
        to_status=WorkflowStatus.MANAGER_REJECTED,
        roles=_MANAGER,
        actor_label="Manager",
        status_message="Manager can reject only submitted timesheets.",
    ),
    Transition.PAYROLL_VALIDATE: TransitionRule(
        from_statuses=frozenset({WorkflowStatus.MANAGER_APPROVED}),
        to_status=WorkflowStatus.PAYROLL_VALIDATED,
        roles=_PAYROLL,
        actor_label="Payroll",
        status_message="Payroll validation requires manager approval first.",
    ),
    Transition.LOCK: TransitionRule(
        from_statuses=frozenset({WorkflowStatus.PAYROLL_VALIDATED}),
        to_status=WorkflowStatus.LOCKED,
        roles=_PAYROLL,
        actor_label="Payroll",
        status_message="Only payroll-validated timesheets can be locked.",
    ),
    Transition.CREATE_EXPORT_BATCH: TransitionRule(
        from_statuses=frozenset({WorkflowStatus.PAYROLL_VALIDATED, WorkflowStatus.LOCKED}),
        to_status=None,
        roles=_PAYROLL,
        actor_label="Payroll",
        status_message="Export requires payroll validated or locked status.",
    ),
}


@dataclass(frozen=True)
class TransitionResult:
    ok: bool
    message: str

    @classmethod
    def success(cls, message: str) -> TransitionResult:
        return cls(ok=True, message=message)

    @classmethod
    def failure(cls, message: str) -> TransitionResult:
        return cls(ok=False, message=message)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class PeriodWorkflow:
    """Guarded lifecycle operations over one in-memory ``PeriodState``.

    Every public operation returns a ``TransitionResult``; a failed guard
    leaves the state untouched. ``role=None`` skips the role check and is
    meant for internal callers that already authorized the actor.
    """

    def __init__(
        self,
        state: PeriodState,
        config: RuleConfiguration,
        *,
        as_of: date | None = None,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self.state = state
        self.config = config
        self.as_of = as_of
        self._clock = clock

    def compute(self) -> PeriodComputation:
        return calculate_period(self.state.day_entries, self.config, as_of=self.as_of)

    def _guard(self, transition: Transition, role: UserRole | None) -> TransitionResult | None:
        rule = TRANSITIONS[transition]
        if role is not None and role != UserRole.ADMIN and role not in rule.roles:
            allowed = ", ".join(sorted(item.value for item in rule.roles))
            return TransitionResult.failure(f"Role {role.value} cannot perform this action (requires {allowed}).")
        if self.state.status not in rule.from_statuses:
            return TransitionResult.failure(rule.status_message)
        return None

    def _append_event(self, transition: Transition, note: str, actor: str | None, at: datetime) -> None:
        rule = TRANSITIONS[transition]
        self.state.approval_events.append(
            ApprovalEvent(timestamp=at, actor=actor or rule.actor_label, action=_EVENT_ACTIONS[transition], note=note)
        )

    def _move(self, transition: Transition) -> None:
        target = TRANSITIONS[transition].to_status
        if target is not None:
            self.state.status = target

    def _clear_signatures(self) -> None:
        self.state.employee_signature = None
        self.state.manager_signature = None

    # Day entry editing

    def _resolve_entry(self, day: date, *, create_weekend: bool) -> tuple[int | None, DayEntry | None, str | None]:
        if not date_in_period(day, self.state.period_key):
            return None, None, f"Date {day.isoformat()} is outside period {self.state.period_key}."
        for index, entry in enumerate(self.state.day_entries):
            if entry.date == day:
                return index, entry, None
        if create_weekend and day.weekday() >= 5:
            entry = DayEntry(
                date=day,
                day_type=classify_day(day, self.config),
                project_lines=(new_project_line(),),
            )
            return None, entry, None
        return None, None, f"No day entry exists for {day.isoformat()}."

    def _store_entry(self, index: int | None, entry: DayEntry) -> None:
        entry = replace(entry, day_type=classify_day(entry.date, self.config))
        if index is None:
            self.state.day_entries.append(entry)
            self.state.day_entries.sort(key=lambda item: item.date)
        else:
            self.state.day_entries[index] = entry
        self._clear_signatures()

    def edit_day(
        self,
        day: date,
        *,
        absence_code: str | None = None,
        notes: str | None = None,
        project_lines: Sequence[ProjectLine] | None = None,
        role: UserRole | None = None,
    ) -> TransitionResult:
        blocked = self._guard(Transition.EDIT_DAY, role)
        if blocked is not None:
            return blocked
        index, entry, error = self._resolve_entry(day, create_weekend=True)
        if entry is None:
            return TransitionResult.failure(error or "Day entry not found.")

        if project_lines is not None:
            entry = replace(entry, project_lines=tuple(project_lines))
        if notes is not None:
            entry = replace(entry, notes=notes)
        if absence_code is not None:
            normalized_code = absence_code.strip().upper()
            entry = replace(entry, absence_code=normalized_code)
            if normalized_code:
                entry = replace(entry, project_lines=())
        elif sum_project_hours(entry) > 0:
            entry = replace(entry, absence_code="")
        if not entry.absence_code and not entry.project_lines:
            entry = replace(entry, project_lines=(new_project_line(),))

        self._store_entry(index, entry)
        return TransitionResult.success(f"Day {day.isoformat()} updated.")

    def add_project_line(
        self,
        day: date,
        *,
        description: str = "",
        hours: float = 0.0,
        role: UserRole | None = None,
    ) -> TransitionResult:
        blocked = self._guard(Transition.EDIT_DAY, role)
        if blocked is not None:
            return blocked
        index, entry, error = self._resolve_entry(day, create_weekend=True)
        if entry is None:
            return TransitionResult.failure(error or "Day entry not found.")

        line = new_project_line(hours, description)
        self._store_entry(index, replace(entry, absence_code="", project_lines=(*entry.project_lines, line)))
        return TransitionResult.success(f"Project line {line.id} added.")

    def update_project_line(
        self,
        day: date,
        line_id: str,
        *,
        description: str | None = None,
        hours: float | None = None,
        role: UserRole | None = None,
    ) -> TransitionResult:
        blocked = self._guard(Transition.EDIT_DAY, role)
        if blocked is not None:
            return blocked
        index, entry, error = self._resolve_entry(day, create_weekend=False)
        if entry is None:
            return TransitionResult.failure(error or "Day entry not found.")
        if not any(line.id == line_id for line in entry.project_lines):
            return TransitionResult.failure(f"Project line {line_id} not found on {day.isoformat()}.")

        lines = tuple(
            replace(
                line,
                description=line.description if description is None else description,
                hours=line.hours if hours is None else hours,
            )
            if line.id == line_id
            else line
            for line in entry.project_lines
        )
        updated = replace(entry, project_lines=lines)
        if sum_project_hours(updated) > 0:
            updated = replace(updated, absence_code="")
        self._store_entry(index, updated)
        return TransitionResult.success(f"Project line {line_id} updated.")

    def remove_project_line(self, day: date, line_id: str, *, role: UserRole | None = None) -> TransitionResult:
        blocked = self._guard(Transition.EDIT_DAY, role)
        if blocked is not None:
            return blocked
        index, entry, error = self._resolve_entry(day, create_weekend=False)
        if entry is None:
            return TransitionResult.failure(error or "Day entry not found.")
        remaining = tuple(line for line in entry.project_lines if line.id != line_id)
        if len(remaining) == len(entry.project_lines):
            return TransitionResult.failure(f"Project line {line_id} not found on {day.isoformat()}.")
        if not remaining and not entry.absence_code:
            remaining = (new_project_line(),)
        self._store_entry(index, replace(entry, project_lines=remaining))
        return TransitionResult.success(f"Project line {line_id} removed.")

    def remove_day(self, day: date, *, role: UserRole | None = None) -> TransitionResult:
        blocked = self._guard(Transition.EDIT_DAY, role)
        if blocked is not None:
            return blocked
        index, entry, error = self._resolve_entry(day, create_weekend=False)
        if entry is None or index is None:
            return TransitionResult.failure(error or "Day entry not found.")
        if entry.day_type != DayType.WEEKEND and day.weekday() < 5:
            return TransitionResult.failure("Only weekend day entries can be removed.")
        del self.state.day_entries[index]
        self._clear_signatures()
        return TransitionResult.success(f"Weekend day {day.isoformat()} removed.")

    # Manager note

    def set_manager_note(self, note: str, *, role: UserRole | None = None) -> TransitionResult:
        blocked = self._guard(Transition.SET_MANAGER_NOTE, role)
        if blocked is not None:
            return blocked
        if note != self.state.manager_note:
            self.state.manager_note = note
            self.state.manager_signature = None
        return TransitionResult.success("Manager note saved.")

    # Signatures and status transitions

    def sign_employee(
        self,
        signed_by: str,
        *,
        role: UserRole | None = None,
        actor: str | None = None,
    ) -> TransitionResult:
        blocked = self._guard(Transition.SIGN_EMPLOYEE, role)
        if blocked is not None:
            return blocked
        if self.compute().has_blocking_errors:
            return TransitionResult.failure("Fix validation errors before signing.")
        signer = (signed_by or "").strip()
        if len(signer) < SIGNER_NAME_MIN_LENGTH:
            return TransitionResult.failure("Enter the employee full name for electronic signature.")

        signed_at = self._clock()
        signature_hash = compute_signature_hash(
            self.state,
            role="EMPLOYEE",
            signed_by=signer,
            declaration=EMPLOYEE_SIGNATURE_DECLARATION,
        )
        self.state.employee_signature = ElectronicSignature(
            signed_by=signer,
            signed_at=signed_at,
            signature_hash=signature_hash,
            declaration_text=EMPLOYEE_SIGNATURE_DECLARATION,
            revision_no=self.state.revision_no,
        )
        self.state.manager_signature = None
        self._append_event(
            Transition.SIGN_EMPLOYEE,
            f"Employee e-signed by {signer}; hash {signature_hash}",
            actor,
            signed_at,
        )
        return TransitionResult.success("Employee electronic signature captured.")

    def submit(self, *, role: UserRole | None = None, actor: str | None = None) -> TransitionResult:
        blocked = self._guard(Transition.SUBMIT, role)
        if blocked is not None:
            return blocked
        if self.compute().has_blocking_errors:
            return TransitionResult.failure("Fix validation errors before submit.")
        if not self.state.has_current_signature(self.state.employee_signature):
            return TransitionResult.failure("Employee electronic signature is required before submit.")

        self._move(Transition.SUBMIT)
        self.state.manager_signature = None
        self._append_event(
            Transition.SUBMIT,
            f"Monthly timesheet submitted for {self.state.period_key}",
            actor,
            self._clock(),
        )
        return TransitionResult.success("Timesheet submitted.")

    def sign_manager(
        self,
        signed_by: str,
        *,
        role: UserRole | None = None,
        actor: str | None = None,
    ) -> TransitionResult:
        blocked = self._guard(Transition.SIGN_MANAGER, role)
        if blocked is not None:
            return blocked
        if not self.state.has_current_signature(self.state.employee_signature):
            return TransitionResult.failure(
                "Valid employee electronic signature is required before manager signing."
            )
        signer = (signed_by or "").strip()
        if len(signer) < SIGNER_NAME_MIN_LENGTH:
            return TransitionResult.failure("Enter the manager full name for electronic signature.")

        signed_at = self._clock()
        signature_hash = compute_signature_hash(
            self.state,
            role="MANAGER",
            signed_by=signer,
            declaration=MANAGER_SIGNATURE_DECLARATION,
        )
        self.state.manager_signature = ElectronicSignature(
            signed_by=signer,
            signed_at=signed_at,
            signature_hash=signature_hash,
            declaration_text=MANAGER_SIGNATURE_DECLARATION,
            revision_no=self.state.revision_no,
        )
        self._append_event(
            Transition.SIGN_MANAGER,
            f"Manager e-signed by {signer}; hash {signature_hash}",
            actor,
            signed_at,
        )
        return TransitionResult.success("Manager electronic signature captured.")

    def approve(self, *, role: UserRole | None = None, actor: str | None = None) -> TransitionResult:
        blocked = self._guard(Transition.APPROVE, role)
        if blocked is not None:
            return blocked
        if not self.state.has_current_signature(self.state.manager_signature):
            return TransitionResult.failure("Manager electronic signature is required before approval.")
        if self.compute().requires_manager_approval and not self.state.manager_note.strip():
            return TransitionResult.failure("Add manager confirmation note for OT/PH approval.")

        self._move(Transition.APPROVE)
        self._append_event(Transition.APPROVE, self.state.manager_note or "Approved", actor, self._clock())
        return TransitionResult.success("Manager approved.")

    def reject(
        self,
        *,
        note: str | None = None,
        role: UserRole | None = None,
        actor: str | None = None,
    ) -> TransitionResult:
        blocked = self._guard(Transition.REJECT, role)
        if blocked is not None:
            return blocked
        effective_note = self.state.manager_note if note is None else note
        if len(effective_note.strip()) < REJECTION_NOTE_MIN_LENGTH:
            return TransitionResult.failure(
                f"Rejection note is required (at least {REJECTION_NOTE_MIN_LENGTH} characters)."
            )

        self.state.manager_note = effective_note
        self._move(Transition.REJECT)
        self.state.revision_no += 1
        self._clear_signatures()
        self._append_event(Transition.REJECT, effective_note, actor, self._clock())
        return TransitionResult.success("Manager rejected. Employee can edit and resubmit.")

    def payroll_validate(self, *, role: UserRole | None = None, actor: str | None = None) -> TransitionResult:
        blocked = self._guard(Transition.PAYROLL_VALIDATE, role)
        if blocked is not None:
            return blocked
        if self.state.employee_signature is None or self.state.manager_signature is None:
            return TransitionResult.failure(
                "Employee and manager electronic signatures are required before payroll validation."
            )

        self._move(Transition.PAYROLL_VALIDATE)
        self._append_event(Transition.PAYROLL_VALIDATE, "All blocking exceptions resolved", actor, self._clock())
        return TransitionResult.success("Payroll validated.")

    def lock(self, *, role: UserRole | None = None, actor: str | None = None) -> TransitionResult:
        blocked = self._guard(Transition.LOCK, role)
        if blocked is not None:
            return blocked

        self._move(Transition.LOCK)
        self._append_event(Transition.LOCK, "Month locked", actor, self._clock())
        return TransitionResult.success("Month locked.")

    def create_export_batch(
        self,
        *,
        role: UserRole | None = None,
        actor: str | None = None,
    ) -> TransitionResult:
        blocked = self._guard(Transition.CREATE_EXPORT_BATCH, role)
        if blocked is not None:
            return blocked

        created_at = self._clock()
        batch_id = build_batch_id(self.state.period_key, now=created_at)
        checksum = compute_export_checksum(self.state, self.compute().period_totals)
        line_count = sum(
            1
            for entry in self.state.day_entries
            if sum_project_hours(entry) > 0 or (entry.absence_code or "").strip()
        )
        self.state.export_batches.insert(
            0,
            ExportBatch(batch_id=batch_id, created_at=created_at, line_count=line_count, checksum=checksum),
        )
        self._append_event(Transition.CREATE_EXPORT_BATCH, f"Batch {batch_id}", actor, created_at)
        return TransitionResult.success(f"Export batch {batch_id} created.")


_EVENT_ACTIONS: dict[Transition, str] = {
    Transition.SIGN_EMPLOYEE: "EMPLOYEE_E_SIGN",
    Transition.SUBMIT: "SUBMIT",
    Transition.SIGN_MANAGER: "MANAGER_E_SIGN",
    Transition.APPROVE: "MANAGER_APPROVE",
    Transition.REJECT: "MANAGER_REJECT",
    Transition.PAYROLL_VALIDATE: "PAYROLL_VALIDATE",
    Transition.LOCK: "LOCK",
    Transition.CREATE_EXPORT_BATCH: "EXPORT_BATCH",
}
