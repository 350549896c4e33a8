from __future__ import annotations

from datetime import date, datetime, timezone
from typing import Any

from sqlalchemy import select
from sqlalchemy.orm import Session

from app.errors import PeriodNotFoundError
from app.models import AppUser, TimesheetApprovalEvent, TimesheetExportBatch, TimesheetPeriod
from app.services.period_state import (
    ApprovalEvent,
    ElectronicSignature,
    ExportBatch,
    PeriodState,
    build_period_state,
)
from app.services.timesheet_calc import DayEntry, DayType, ProjectLine, RuleConfiguration, classify_day


def _as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def entry_to_json(entry: DayEntry) -> dict[str, Any]:
    return {
        "date": entry.date.isoformat(),
        "day_type": entry.day_type.value,
        "absence_code": entry.absence_code,
        "notes": entry.notes,
        "project_lines": [
            {"id": line.id, "description": line.description, "hours": line.hours}
            for line in entry.project_lines
        ],
    }


def entry_from_json(raw: dict[str, Any], config: RuleConfiguration | None = None) -> DayEntry:
    day = date.fromisoformat(str(raw["date"]))
    if config is not None:
        day_type = classify_day(day, config)
    else:
        day_type = DayType(raw.get("day_type") or classify_day(day, RuleConfiguration()).value)
    return DayEntry(
        date=day,
        day_type=day_type,
        absence_code=str(raw.get("absence_code") or ""),
        notes=str(raw.get("notes") or ""),
        project_lines=tuple(
            ProjectLine(
                id=str(line["id"]),
                description=str(line.get("description") or ""),
                hours=line.get("hours", 0.0),
            )
            for line in raw.get("project_lines") or []
        ),
    )


def signature_to_json(signature: ElectronicSignature | None) -> dict[str, Any] | None:
    if signature is None:
        return None
    return {
        "signed_by": signature.signed_by,
        "signed_at": _as_utc(signature.signed_at).isoformat(),
        "signature_hash": signature.signature_hash,
        "declaration_text": signature.declaration_text,
        "revision_no": signature.revision_no,
    }


def signature_from_json(raw: dict[str, Any] | None) -> ElectronicSignature | None:
    if not raw:
        return None
    return ElectronicSignature(
        signed_by=str(raw["signed_by"]),
        signed_at=_as_utc(datetime.fromisoformat(str(raw["signed_at"]))),
        signature_hash=str(raw["signature_hash"]),
        declaration_text=str(raw["declaration_text"]),
        revision_no=int(raw["revision_no"]),
    )


def state_from_row(row: TimesheetPeriod, config: RuleConfiguration | None = None) -> PeriodState:
    return PeriodState(
        employee_id=row.employee_id,
        period_key=row.period_key,
        status=row.status,
        revision_no=row.revision_no,
        manager_note=row.manager_note or "",
        day_entries=sorted(
            (entry_from_json(item, config) for item in row.day_entries or []),
            key=lambda entry: entry.date,
        ),
        approval_events=[
            ApprovalEvent(timestamp=_as_utc(event.ts_utc), actor=event.actor, action=event.action, note=event.note)
            for event in row.approval_events
        ],
        export_batches=[
            ExportBatch(
                batch_id=batch.batch_id,
                created_at=_as_utc(batch.created_at),
                line_count=batch.line_count,
                checksum=batch.checksum,
            )
            for batch in row.export_batches
        ],
        employee_signature=signature_from_json(row.employee_signature),
        manager_signature=signature_from_json(row.manager_signature),
    )


def get_period_row(
    db: Session,
    employee_id: int,
    period_key: str,
    *,
    for_update: bool = False,
) -> TimesheetPeriod | None:
    stmt = select(TimesheetPeriod).where(
        TimesheetPeriod.employee_id == employee_id,
        TimesheetPeriod.period_key == period_key,
    )
    if for_update:
        stmt = stmt.with_for_update()
    return db.scalar(stmt)


def load_period_state(
    db: Session,
    employee_id: int,
    period_key: str,
    config: RuleConfiguration,
    as_of: date,
    *,
    for_update: bool = False,
) -> tuple[TimesheetPeriod, PeriodState]:
    """Fetch a period, creating the default day set on first access.

    The caller owns the transaction: a freshly created row is only flushed.
    """
    row = get_period_row(db, employee_id, period_key, for_update=for_update)
    if row is not None:
        return row, state_from_row(row, config)

    if db.get(AppUser, employee_id) is None:
        raise PeriodNotFoundError(f"Employee {employee_id} has no timesheets.")

    state = build_period_state(employee_id, period_key, config, as_of)
    row = TimesheetPeriod(
        employee_id=employee_id,
        period_key=period_key,
        status=state.status,
        revision_no=state.revision_no,
        manager_note=state.manager_note,
        day_entries=[entry_to_json(entry) for entry in state.day_entries],
        updated_at=datetime.now(timezone.utc),
    )
    db.add(row)
    db.flush()
    return row, state


def save_period_state(db: Session, row: TimesheetPeriod, state: PeriodState) -> None:
    row.status = state.status
    row.revision_no = state.revision_no
    row.manager_note = state.manager_note
    row.day_entries = [entry_to_json(entry) for entry in sorted(state.day_entries, key=lambda item: item.date)]
    row.employee_signature = signature_to_json(state.employee_signature)
    row.manager_signature = signature_to_json(state.manager_signature)
    row.updated_at = datetime.now(timezone.utc)

    # Events and batches are insert-only; only the new tail is written.
    stored_events = len(row.approval_events)
    for seq, event in enumerate(state.approval_events[stored_events:], start=stored_events + 1):
        db.add(
            TimesheetApprovalEvent(
                period_id=row.id,
                seq=seq,
                ts_utc=event.timestamp,
                actor=event.actor,
                action=event.action,
                note=event.note,
            )
        )

    stored_batch_ids = {batch.batch_id for batch in row.export_batches}
    next_seq = len(row.export_batches) + 1
    for batch in reversed(state.export_batches):
        if batch.batch_id in stored_batch_ids:
            continue
        db.add(
            TimesheetExportBatch(
                period_id=row.id,
                seq=next_seq,
                batch_id=batch.batch_id,
                created_at=batch.created_at,
                line_count=batch.line_count,
                checksum=batch.checksum,
            )
        )
        next_seq += 1
    db.flush()
    db.expire(row, ["approval_events", "export_batches"])
