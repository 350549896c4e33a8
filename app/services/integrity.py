from __future__ import annotations

import hashlib
import itertools
import json
from datetime import datetime, timezone
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Any, Literal

from app.services.period_state import PeriodState
from app.services.timesheet_calc import DayEntry, TimesheetTotals, coerce_hours

SignatureRole = Literal["EMPLOYEE", "MANAGER"]

_TWO_PLACES = Decimal("0.01")
_BATCH_COUNTER = itertools.count(1)


def canonical_json(payload: Any) -> str:
    return json.dumps(payload, sort_keys=True, separators=(",", ":"), ensure_ascii=True)


def canonical_hours(value: Any) -> str:
    try:
        quantized = Decimal(repr(coerce_hours(value))).quantize(_TWO_PLACES, rounding=ROUND_HALF_UP)
    except InvalidOperation:
        quantized = Decimal("0.00")
    return format(quantized, "f")


def _canonical_day_for_signature(entry: DayEntry) -> dict[str, Any]:
    return {
        "date": entry.date.isoformat(),
        "absence_code": (entry.absence_code or "").strip(),
        "notes": (entry.notes or "").strip(),
        "project_lines": [
            {
                "description": (line.description or "").strip(),
                "hours": canonical_hours(line.hours),
            }
            for line in sorted(entry.project_lines, key=lambda item: item.id)
        ],
    }


def canonicalize_entries(entries: list[DayEntry]) -> list[dict[str, Any]]:
    return [_canonical_day_for_signature(entry) for entry in sorted(entries, key=lambda item: item.date)]


def canonicalize_period(state: PeriodState) -> dict[str, Any]:
    """Order-independent snapshot of a period's signed content.

    Day types and derived calculations are excluded, so a configuration
    change alone never alters a signature hash.
    """
    return {
        "period_key": state.period_key,
        "revision_no": state.revision_no,
        "status": state.status.value,
        "manager_note": (state.manager_note or "").strip(),
        "day_entries": canonicalize_entries(state.day_entries),
    }


def compute_signature_hash(
    state: PeriodState,
    *,
    role: SignatureRole,
    signed_by: str,
    declaration: str,
) -> str:
    snapshot = canonicalize_period(state)
    employee_signature_hash = None
    if role == "MANAGER" and state.employee_signature is not None:
        employee_signature_hash = state.employee_signature.signature_hash

    payload = {
        "role": role,
        "period_key": snapshot["period_key"],
        "revision_no": snapshot["revision_no"],
        "status": snapshot["status"],
        "signed_by": (signed_by or "").strip(),
        "declaration": declaration,
        "manager_note": snapshot["manager_note"],
        "day_entries": snapshot["day_entries"],
        "employee_signature_hash": employee_signature_hash,
    }
    return hashlib.sha256(canonical_json(payload).encode("utf-8")).hexdigest()


def rolling_hash(value: str) -> str:
    checksum = 0
    for char in value:
        checksum = (checksum * 31 + ord(char)) & 0xFFFFFFFF
    return f"{checksum:08x}"


def export_payload(state: PeriodState, totals: TimesheetTotals) -> dict[str, Any]:
    return {
        "period_key": state.period_key,
        "revision_no": state.revision_no,
        "status": state.status.value,
        "totals": totals.to_dict(),
        "entries": [
            {
                "date": entry.date.isoformat(),
                "absence_code": (entry.absence_code or "").strip(),
                "project_lines": [
                    {
                        "id": line.id,
                        "description": (line.description or "").strip(),
                        "hours": canonical_hours(line.hours),
                    }
                    for line in sorted(entry.project_lines, key=lambda item: item.id)
                ],
            }
            for entry in sorted(state.day_entries, key=lambda item: item.date)
        ],
        "employee_signature_hash": (
            state.employee_signature.signature_hash if state.employee_signature is not None else None
        ),
        "manager_signature_hash": (
            state.manager_signature.signature_hash if state.manager_signature is not None else None
        ),
    }


def compute_export_checksum(state: PeriodState, totals: TimesheetTotals) -> str:
    return rolling_hash(canonical_json(export_payload(state, totals)))


def build_batch_id(period_key: str, *, now: datetime | None = None) -> str:
    moment = now or datetime.now(timezone.utc)
    millis = int(moment.timestamp() * 1000)
    return f"TSB-{period_key.replace('-', '')}-{millis}-{next(_BATCH_COUNTER)}"
