from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from app.db import get_db
from app.errors import ApiError
from app.models import SignatureProfile
from app.schemas import (
    LeaveSummaryRead,
    PlannedLeaveCommandResponse,
    PlannedLeaveCreate,
    PlannedLeaveRead,
    SignatureProfileRead,
    SignatureProfileResponse,
    SignatureProfileUpsert,
)
from app.security import require_user
from app.services.leaves import add_planned_leave, leave_summary, list_planned_leaves, remove_planned_leave
from app.services.periods import Actor, ensure_period_access
from app.services.signature_profiles import (
    clear_signature_profile,
    get_signature_profile,
    upsert_signature_profile,
)
from app.settings import local_today

router = APIRouter(tags=["leave"])


def _target_employee(actor: Actor, employee_id: int | None) -> int:
    target = employee_id if employee_id is not None else actor.user_id
    if target is None:
        raise ApiError(status_code=422, code="EMPLOYEE_REQUIRED", message="employee_id is required.")
    ensure_period_access(actor, target)
    return target


@router.get("/api/leave/planned", response_model=list[PlannedLeaveRead])
def get_planned_leaves(
    employee_id: int | None = Query(default=None, ge=1),
    year: int | None = Query(default=None, ge=1970, le=9999),
    actor: Actor = Depends(require_user),
    db: Session = Depends(get_db),
):
    return list_planned_leaves(db, employee_id=_target_employee(actor, employee_id), year=year)


@router.post("/api/leave/planned", response_model=PlannedLeaveCommandResponse)
def create_planned_leave(
    payload: PlannedLeaveCreate,
    actor: Actor = Depends(require_user),
    db: Session = Depends(get_db),
) -> PlannedLeaveCommandResponse:
    result = add_planned_leave(
        db,
        employee_id=_target_employee(actor, payload.employee_id),
        leave_date=payload.leave_date,
        hours=payload.hours,
        note=payload.note,
    )
    return PlannedLeaveCommandResponse(
        ok=result.ok,
        message=result.message,
        leave=PlannedLeaveRead.model_validate(result.leave) if result.leave is not None else None,
    )


@router.delete("/api/leave/planned/{leave_id}", response_model=PlannedLeaveCommandResponse)
def delete_planned_leave(
    leave_id: int,
    employee_id: int | None = Query(default=None, ge=1),
    actor: Actor = Depends(require_user),
    db: Session = Depends(get_db),
) -> PlannedLeaveCommandResponse:
    result = remove_planned_leave(db, employee_id=_target_employee(actor, employee_id), leave_id=leave_id)
    return PlannedLeaveCommandResponse(ok=result.ok, message=result.message)


@router.get("/api/leave/summary", response_model=LeaveSummaryRead)
def get_leave_summary(
    employee_id: int | None = Query(default=None, ge=1),
    year: int | None = Query(default=None, ge=1970, le=9999),
    actor: Actor = Depends(require_user),
    db: Session = Depends(get_db),
) -> LeaveSummaryRead:
    summary = leave_summary(
        db,
        employee_id=_target_employee(actor, employee_id),
        year=year if year is not None else local_today().year,
    )
    return LeaveSummaryRead.model_validate(summary)


def _profile_response(ok: bool, message: str, profile: SignatureProfile | None = None) -> SignatureProfileResponse:
    return SignatureProfileResponse(
        ok=ok,
        message=message,
        profile=SignatureProfileRead.model_validate(profile) if profile is not None else None,
    )


@router.get("/api/signature-profiles/{role}", response_model=SignatureProfileResponse)
def read_signature_profile(
    role: str,
    actor: Actor = Depends(require_user),
    db: Session = Depends(get_db),
) -> SignatureProfileResponse:
    profile = get_signature_profile(db, _target_employee(actor, None), role)
    if profile is None:
        return _profile_response(False, "No signature profile set up.")
    return _profile_response(True, "Signature profile found.", profile)


@router.put("/api/signature-profiles/{role}", response_model=SignatureProfileResponse)
def save_signature_profile(
    role: str,
    payload: SignatureProfileUpsert,
    actor: Actor = Depends(require_user),
    db: Session = Depends(get_db),
) -> SignatureProfileResponse:
    result = upsert_signature_profile(
        db,
        user_id=_target_employee(actor, None),
        role=role,
        full_name=payload.full_name,
    )
    return _profile_response(result.ok, result.message, result.profile)


@router.delete("/api/signature-profiles/{role}", response_model=SignatureProfileResponse)
def delete_signature_profile(
    role: str,
    actor: Actor = Depends(require_user),
    db: Session = Depends(get_db),
) -> SignatureProfileResponse:
    result = clear_signature_profile(db, user_id=_target_employee(actor, None), role=role)
    return _profile_response(result.ok, result.message)
