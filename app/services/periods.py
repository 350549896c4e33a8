from __future__ import annotations

import logging
import threading
from collections.abc import Callable
from dataclasses import dataclass
from datetime import date, datetime
from typing import Any

from sqlalchemy.orm import Session

from app.audit import log_audit
from app.errors import ApiError, InvalidPeriodKeyError
from app.services.period_state import PeriodKeyError, PeriodState, UserRole, parse_period_key
from app.services.period_store import load_period_state, save_period_state
from app.services.rule_config import get_rule_configuration
from app.services.signature_profiles import default_signer_name
from app.services.timesheet_calc import PeriodComputation, ProjectLine, calculate_period
from app.services.workflow import PeriodWorkflow, TransitionResult
from app.settings import local_today

logger = logging.getLogger("app.periods")

_REGISTRY_LOCK = threading.Lock()
_PERIOD_LOCKS: dict[tuple[int, str], threading.Lock] = {}

WorkflowCommand = Callable[[PeriodWorkflow], TransitionResult]


@dataclass(frozen=True)
class Actor:
    user_id: int | None
    username: str
    role: UserRole | None
    full_name: str | None = None

    @property
    def label(self) -> str:
        name = (self.full_name or self.username or "").strip()
        if self.role is None:
            return name or "System"
        return f"{name} ({self.role.value})" if name else self.role.value.title()


SYSTEM_ACTOR = Actor(user_id=None, username="system", role=None)


@dataclass(frozen=True)
class CommandOutcome:
    ok: bool
    message: str
    state: PeriodState
    computation: PeriodComputation


def period_lock(employee_id: int, period_key: str) -> threading.Lock:
    key = (employee_id, period_key)
    with _REGISTRY_LOCK:
        lock = _PERIOD_LOCKS.get(key)
        if lock is None:
            lock = threading.Lock()
            _PERIOD_LOCKS[key] = lock
        return lock


def validate_period_key(period_key: str) -> str:
    try:
        parse_period_key(period_key)
    except PeriodKeyError as exc:
        raise InvalidPeriodKeyError(str(exc)) from exc
    return period_key


def ensure_period_access(actor: Actor, employee_id: int) -> None:
    if actor.role == UserRole.EMPLOYEE and actor.user_id != employee_id:
        raise ApiError(status_code=403, code="FORBIDDEN", message="Employees can only access their own timesheets.")


def get_period(
    db: Session,
    employee_id: int,
    period_key: str,
    *,
    as_of: date | None = None,
) -> CommandOutcome:
    validate_period_key(period_key)
    config = get_rule_configuration(db)
    as_of = as_of or local_today()
    with period_lock(employee_id, period_key):
        try:
            _, state = load_period_state(db, employee_id, period_key, config, as_of)
            db.commit()
        except Exception:
            db.rollback()
            raise
    computation = calculate_period(state.day_entries, config, as_of=as_of)
    return CommandOutcome(ok=True, message="", state=state, computation=computation)


def run_period_command(
    db: Session,
    employee_id: int,
    period_key: str,
    command: WorkflowCommand,
    *,
    operation: str,
    actor: Actor,
    as_of: date | None = None,
    request_id: str | None = None,
    clock: Callable[[], datetime] | None = None,
    metadata: dict[str, Any] | None = None,
) -> CommandOutcome:
    """Load, mutate and save one period under its lock.

    Guard failures are returned as ``ok=False`` outcomes and persist
    nothing beyond lazy creation of the period itself.
    """
    validate_period_key(period_key)
    config = get_rule_configuration(db)
    as_of = as_of or local_today()

    with period_lock(employee_id, period_key):
        try:
            row, state = load_period_state(db, employee_id, period_key, config, as_of, for_update=True)
            status_before = state.status
            revision_before = state.revision_no
            workflow_kwargs: dict[str, Any] = {"as_of": as_of}
            if clock is not None:
                workflow_kwargs["clock"] = clock
            workflow = PeriodWorkflow(state, config, **workflow_kwargs)
            result = command(workflow)
            if result.ok:
                save_period_state(db, row, state)
            db.commit()
        except Exception:
            db.rollback()
            raise

    computation = workflow.compute()
    log_extra = {
        "request_id": request_id,
        "employee_id": employee_id,
        "period_key": period_key,
        "operation": operation,
        "actor_id": actor.username,
        "actor_role": actor.role.value if actor.role is not None else None,
        "status": state.status.value,
        "revision_no": state.revision_no,
    }
    if not result.ok:
        logger.info("period_command_rejected", extra={**log_extra, "reason": result.message})
        return CommandOutcome(ok=False, message=result.message, state=state, computation=computation)

    logger.info("period_command_applied", extra=log_extra)
    field_changes: list[dict[str, Any]] = []
    if state.status != status_before:
        field_changes.append({"field": "status", "old": status_before.value, "new": state.status.value})
    if state.revision_no != revision_before:
        field_changes.append({"field": "revision_no", "old": revision_before, "new": state.revision_no})
    log_audit(
        db,
        entity_table="timesheet_periods",
        entity_key=f"{employee_id}:{period_key}",
        operation=operation,
        success=True,
        actor_id=actor.username,
        actor_role=actor.role.value if actor.role is not None else None,
        request_id=request_id,
        reason=result.message,
        metadata=metadata,
        field_changes=field_changes,
    )
    return CommandOutcome(ok=True, message=result.message, state=state, computation=computation)


# Day entry commands


def edit_day(
    db: Session,
    employee_id: int,
    period_key: str,
    day: date,
    *,
    actor: Actor,
    absence_code: str | None = None,
    notes: str | None = None,
    project_lines: list[ProjectLine] | None = None,
    **options: Any,
) -> CommandOutcome:
    return run_period_command(
        db,
        employee_id,
        period_key,
        lambda workflow: workflow.edit_day(
            day,
            absence_code=absence_code,
            notes=notes,
            project_lines=project_lines,
            role=actor.role,
        ),
        operation="EDIT_DAY",
        actor=actor,
        metadata={"date": day.isoformat()},
        **options,
    )


def remove_day(db: Session, employee_id: int, period_key: str, day: date, *, actor: Actor, **options: Any) -> CommandOutcome:
    return run_period_command(
        db,
        employee_id,
        period_key,
        lambda workflow: workflow.remove_day(day, role=actor.role),
        operation="REMOVE_DAY",
        actor=actor,
        metadata={"date": day.isoformat()},
        **options,
    )


def add_project_line(
    db: Session,
    employee_id: int,
    period_key: str,
    day: date,
    *,
    actor: Actor,
    description: str = "",
    hours: float = 0.0,
    **options: Any,
) -> CommandOutcome:
    return run_period_command(
        db,
        employee_id,
        period_key,
        lambda workflow: workflow.add_project_line(day, description=description, hours=hours, role=actor.role),
        operation="ADD_PROJECT_LINE",
        actor=actor,
        metadata={"date": day.isoformat()},
        **options,
    )


def update_project_line(
    db: Session,
    employee_id: int,
    period_key: str,
    day: date,
    line_id: str,
    *,
    actor: Actor,
    description: str | None = None,
    hours: float | None = None,
    **options: Any,
) -> CommandOutcome:
    return run_period_command(
        db,
        employee_id,
        period_key,
        lambda workflow: workflow.update_project_line(
            day,
            line_id,
            description=description,
            hours=hours,
            role=actor.role,
        ),
        operation="UPDATE_PROJECT_LINE",
        actor=actor,
        metadata={"date": day.isoformat(), "line_id": line_id},
        **options,
    )


def remove_project_line(
    db: Session,
    employee_id: int,
    period_key: str,
    day: date,
    line_id: str,
    *,
    actor: Actor,
    **options: Any,
) -> CommandOutcome:
    return run_period_command(
        db,
        employee_id,
        period_key,
        lambda workflow: workflow.remove_project_line(day, line_id, role=actor.role),
        operation="REMOVE_PROJECT_LINE",
        actor=actor,
        metadata={"date": day.isoformat(), "line_id": line_id},
        **options,
    )


# Workflow commands


def set_manager_note(
    db: Session,
    employee_id: int,
    period_key: str,
    note: str,
    *,
    actor: Actor,
    **options: Any,
) -> CommandOutcome:
    return run_period_command(
        db,
        employee_id,
        period_key,
        lambda workflow: workflow.set_manager_note(note, role=actor.role),
        operation="SET_MANAGER_NOTE",
        actor=actor,
        **options,
    )


def sign_employee(
    db: Session,
    employee_id: int,
    period_key: str,
    *,
    actor: Actor,
    signed_by: str | None = None,
    **options: Any,
) -> CommandOutcome:
    signer = (signed_by or "").strip() or default_signer_name(db, actor.user_id, "EMPLOYEE")
    return run_period_command(
        db,
        employee_id,
        period_key,
        lambda workflow: workflow.sign_employee(signer, role=actor.role, actor=actor.label),
        operation="SIGN_EMPLOYEE",
        actor=actor,
        **options,
    )


def sign_manager(
    db: Session,
    employee_id: int,
    period_key: str,
    *,
    actor: Actor,
    signed_by: str | None = None,
    **options: Any,
) -> CommandOutcome:
    signer = (signed_by or "").strip() or default_signer_name(db, actor.user_id, "MANAGER")
    return run_period_command(
        db,
        employee_id,
        period_key,
        lambda workflow: workflow.sign_manager(signer, role=actor.role, actor=actor.label),
        operation="SIGN_MANAGER",
        actor=actor,
        **options,
    )


def submit(db: Session, employee_id: int, period_key: str, *, actor: Actor, **options: Any) -> CommandOutcome:
    return run_period_command(
        db,
        employee_id,
        period_key,
        lambda workflow: workflow.submit(role=actor.role, actor=actor.label),
        operation="SUBMIT",
        actor=actor,
        **options,
    )


def approve(db: Session, employee_id: int, period_key: str, *, actor: Actor, **options: Any) -> CommandOutcome:
    return run_period_command(
        db,
        employee_id,
        period_key,
        lambda workflow: workflow.approve(role=actor.role, actor=actor.label),
        operation="APPROVE",
        actor=actor,
        **options,
    )


def reject(
    db: Session,
    employee_id: int,
    period_key: str,
    *,
    actor: Actor,
    note: str | None = None,
    **options: Any,
) -> CommandOutcome:
    return run_period_command(
        db,
        employee_id,
        period_key,
        lambda workflow: workflow.reject(note=note, role=actor.role, actor=actor.label),
        operation="REJECT",
        actor=actor,
        **options,
    )


def payroll_validate(db: Session, employee_id: int, period_key: str, *, actor: Actor, **options: Any) -> CommandOutcome:
    return run_period_command(
        db,
        employee_id,
        period_key,
        lambda workflow: workflow.payroll_validate(role=actor.role, actor=actor.label),
        operation="PAYROLL_VALIDATE",
        actor=actor,
        **options,
    )


def lock(db: Session, employee_id: int, period_key: str, *, actor: Actor, **options: Any) -> CommandOutcome:
    return run_period_command(
        db,
        employee_id,
        period_key,
        lambda workflow: workflow.lock(role=actor.role, actor=actor.label),
        operation="LOCK",
        actor=actor,
        **options,
    )


def create_export_batch(
    db: Session,
    employee_id: int,
    period_key: str,
    *,
    actor: Actor,
    **options: Any,
) -> CommandOutcome:
    return run_period_command(
        db,
        employee_id,
        period_key,
        lambda workflow: workflow.create_export_batch(role=actor.role, actor=actor.label),
        operation="CREATE_EXPORT_BATCH",
        actor=actor,
        **options,
    )
