from datetime import date

from fastapi import APIRouter, Depends, Request, Response
from sqlalchemy.orm import Session

from app.db import get_db
from app.schemas import (
    DayEditRequest,
    ManagerNoteRequest,
    PeriodCommandResponse,
    PeriodRead,
    ProjectLineCreateRequest,
    ProjectLineUpdateRequest,
    RejectRequest,
    SignRequest,
)
from app.security import require_user
from app.services import periods
from app.services.exports import build_period_xlsx_bytes
from app.services.period_state import new_project_line
from app.services.periods import Actor, CommandOutcome
from app.services.timesheet_calc import ProjectLine

router = APIRouter(prefix="/api/timesheets/{employee_id}/{period_key}", tags=["timesheets"])
XLSX_MEDIA_TYPE = "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet"


def build_period_read(outcome: CommandOutcome) -> PeriodRead:
    state = outcome.state
    return PeriodRead.model_validate(
        {
            "employee_id": state.employee_id,
            "period_key": state.period_key,
            "status": state.status,
            "revision_no": state.revision_no,
            "is_editable": state.is_editable,
            "manager_note": state.manager_note,
            "day_entries": state.day_entries,
            "approval_events": state.approval_events,
            "export_batches": state.export_batches,
            "employee_signature": state.employee_signature,
            "manager_signature": state.manager_signature,
            "employee_signature_current": state.has_current_signature(state.employee_signature),
            "manager_signature_current": state.has_current_signature(state.manager_signature),
            "computation": outcome.computation,
        },
        from_attributes=True,
    )


def _command_response(outcome: CommandOutcome) -> PeriodCommandResponse:
    return PeriodCommandResponse(ok=outcome.ok, message=outcome.message, period=build_period_read(outcome))


def _request_id(request: Request) -> str | None:
    return getattr(request.state, "request_id", None)


def _period_actor(request: Request, employee_id: int, actor: Actor = Depends(require_user)) -> Actor:
    periods.ensure_period_access(actor, employee_id)
    request.state.employee_id = employee_id
    return actor


@router.get("", response_model=PeriodRead)
def get_period(
    employee_id: int,
    period_key: str,
    actor: Actor = Depends(_period_actor),
    db: Session = Depends(get_db),
) -> PeriodRead:
    return build_period_read(periods.get_period(db, employee_id, period_key))


@router.patch("/days/{day}", response_model=PeriodCommandResponse)
def edit_day(
    employee_id: int,
    period_key: str,
    day: date,
    payload: DayEditRequest,
    request: Request,
    actor: Actor = Depends(_period_actor),
    db: Session = Depends(get_db),
) -> PeriodCommandResponse:
    project_lines: list[ProjectLine] | None = None
    if payload.project_lines is not None:
        project_lines = [
            ProjectLine(id=line.id, description=line.description, hours=line.hours)
            if line.id
            else new_project_line(line.hours, line.description)
            for line in payload.project_lines
        ]
    outcome = periods.edit_day(
        db,
        employee_id,
        period_key,
        day,
        actor=actor,
        absence_code=payload.absence_code,
        notes=payload.notes,
        project_lines=project_lines,
        request_id=_request_id(request),
    )
    return _command_response(outcome)


@router.delete("/days/{day}", response_model=PeriodCommandResponse)
def remove_day(
    employee_id: int,
    period_key: str,
    day: date,
    request: Request,
    actor: Actor = Depends(_period_actor),
    db: Session = Depends(get_db),
) -> PeriodCommandResponse:
    outcome = periods.remove_day(db, employee_id, period_key, day, actor=actor, request_id=_request_id(request))
    return _command_response(outcome)


@router.post("/days/{day}/lines", response_model=PeriodCommandResponse)
def add_project_line(
    employee_id: int,
    period_key: str,
    day: date,
    request: Request,
    payload: ProjectLineCreateRequest | None = None,
    actor: Actor = Depends(_period_actor),
    db: Session = Depends(get_db),
) -> PeriodCommandResponse:
    payload = payload or ProjectLineCreateRequest()
    outcome = periods.add_project_line(
        db,
        employee_id,
        period_key,
        day,
        actor=actor,
        description=payload.description,
        hours=payload.hours,
        request_id=_request_id(request),
    )
    return _command_response(outcome)


@router.patch("/days/{day}/lines/{line_id}", response_model=PeriodCommandResponse)
def update_project_line(
    employee_id: int,
    period_key: str,
    day: date,
    line_id: str,
    payload: ProjectLineUpdateRequest,
    request: Request,
    actor: Actor = Depends(_period_actor),
    db: Session = Depends(get_db),
) -> PeriodCommandResponse:
    outcome = periods.update_project_line(
        db,
        employee_id,
        period_key,
        day,
        line_id,
        actor=actor,
        description=payload.description,
        hours=payload.hours,
        request_id=_request_id(request),
    )
    return _command_response(outcome)


@router.delete("/days/{day}/lines/{line_id}", response_model=PeriodCommandResponse)
def remove_project_line(
    employee_id: int,
    period_key: str,
    day: date,
    line_id: str,
    request: Request,
    actor: Actor = Depends(_period_actor),
    db: Session = Depends(get_db),
) -> PeriodCommandResponse:
    outcome = periods.remove_project_line(
        db,
        employee_id,
        period_key,
        day,
        line_id,
        actor=actor,
        request_id=_request_id(request),
    )
    return _command_response(outcome)


@router.put("/manager-note", response_model=PeriodCommandResponse)
def set_manager_note(
    employee_id: int,
    period_key: str,
    payload: ManagerNoteRequest,
    request: Request,
    actor: Actor = Depends(_period_actor),
    db: Session = Depends(get_db),
) -> PeriodCommandResponse:
    outcome = periods.set_manager_note(
        db,
        employee_id,
        period_key,
        payload.note,
        actor=actor,
        request_id=_request_id(request),
    )
    return _command_response(outcome)


@router.post("/sign/employee", response_model=PeriodCommandResponse)
def sign_employee(
    employee_id: int,
    period_key: str,
    request: Request,
    payload: SignRequest | None = None,
    actor: Actor = Depends(_period_actor),
    db: Session = Depends(get_db),
) -> PeriodCommandResponse:
    outcome = periods.sign_employee(
        db,
        employee_id,
        period_key,
        actor=actor,
        signed_by=payload.signed_by if payload is not None else None,
        request_id=_request_id(request),
    )
    return _command_response(outcome)


@router.post("/sign/manager", response_model=PeriodCommandResponse)
def sign_manager(
    employee_id: int,
    period_key: str,
    request: Request,
    payload: SignRequest | None = None,
    actor: Actor = Depends(_period_actor),
    db: Session = Depends(get_db),
) -> PeriodCommandResponse:
    outcome = periods.sign_manager(
        db,
        employee_id,
        period_key,
        actor=actor,
        signed_by=payload.signed_by if payload is not None else None,
        request_id=_request_id(request),
    )
    return _command_response(outcome)


@router.post("/submit", response_model=PeriodCommandResponse)
def submit(
    employee_id: int,
    period_key: str,
    request: Request,
    actor: Actor = Depends(_period_actor),
    db: Session = Depends(get_db),
) -> PeriodCommandResponse:
    return _command_response(periods.submit(db, employee_id, period_key, actor=actor, request_id=_request_id(request)))


@router.post("/approve", response_model=PeriodCommandResponse)
def approve(
    employee_id: int,
    period_key: str,
    request: Request,
    actor: Actor = Depends(_period_actor),
    db: Session = Depends(get_db),
) -> PeriodCommandResponse:
    return _command_response(periods.approve(db, employee_id, period_key, actor=actor, request_id=_request_id(request)))


@router.post("/reject", response_model=PeriodCommandResponse)
def reject(
    employee_id: int,
    period_key: str,
    request: Request,
    payload: RejectRequest | None = None,
    actor: Actor = Depends(_period_actor),
    db: Session = Depends(get_db),
) -> PeriodCommandResponse:
    outcome = periods.reject(
        db,
        employee_id,
        period_key,
        actor=actor,
        note=payload.note if payload is not None else None,
        request_id=_request_id(request),
    )
    return _command_response(outcome)


@router.post("/payroll-validate", response_model=PeriodCommandResponse)
def payroll_validate(
    employee_id: int,
    period_key: str,
    request: Request,
    actor: Actor = Depends(_period_actor),
    db: Session = Depends(get_db),
) -> PeriodCommandResponse:
    outcome = periods.payroll_validate(db, employee_id, period_key, actor=actor, request_id=_request_id(request))
    return _command_response(outcome)


@router.post("/lock", response_model=PeriodCommandResponse)
def lock(
    employee_id: int,
    period_key: str,
    request: Request,
    actor: Actor = Depends(_period_actor),
    db: Session = Depends(get_db),
) -> PeriodCommandResponse:
    return _command_response(periods.lock(db, employee_id, period_key, actor=actor, request_id=_request_id(request)))


@router.post("/export-batches", response_model=PeriodCommandResponse)
def create_export_batch(
    employee_id: int,
    period_key: str,
    request: Request,
    actor: Actor = Depends(_period_actor),
    db: Session = Depends(get_db),
) -> PeriodCommandResponse:
    outcome = periods.create_export_batch(db, employee_id, period_key, actor=actor, request_id=_request_id(request))
    return _command_response(outcome)


@router.get("/export.xlsx")
def download_export(
    employee_id: int,
    period_key: str,
    actor: Actor = Depends(_period_actor),
    db: Session = Depends(get_db),
) -> Response:
    outcome = periods.get_period(db, employee_id, period_key)
    payload = build_period_xlsx_bytes(outcome.state, outcome.computation)
    return Response(
        content=payload,
        media_type=XLSX_MEDIA_TYPE,
        headers={
            "Content-Disposition": f'attachment; filename="timesheet-{employee_id}-{period_key}.xlsx"',
        },
    )
