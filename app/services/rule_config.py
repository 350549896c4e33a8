from __future__ import annotations

import logging
import threading
from collections.abc import Mapping
from dataclasses import dataclass, fields, replace
from datetime import date
from typing import Any

from sqlalchemy import select
from sqlalchemy.orm import Session

from app.audit import log_audit
from app.errors import InvalidRuleConfigurationError
from app.models import RuleConfigurationRecord, TimesheetPeriod
from app.services.period_state import EDITABLE_STATUSES
from app.services.period_store import entry_from_json, entry_to_json
from app.services.timesheet_calc import RuleConfiguration, RuleConfigurationError
from app.settings import get_settings

logger = logging.getLogger("app.rules")

_CONFIG_LOCK = threading.Lock()
_DATE_SET_FIELDS = ("early_knock_off_dates", "public_holiday_dates")
_CONFIG_FIELDS = frozenset(item.name for item in fields(RuleConfiguration))


@dataclass(frozen=True)
class RuleUpdateResult:
    config: RuleConfiguration
    reclassified_periods: int
    signatures_cleared: int


def default_rule_configuration() -> RuleConfiguration:
    settings = get_settings()
    return RuleConfiguration(
        full_day_minutes=settings.default_full_day_minutes,
        friday_short_day_minutes=settings.default_friday_short_day_minutes,
        leave_default_paid_minutes=settings.default_leave_paid_minutes,
        early_knock_off_paid_as_full_day=settings.default_early_knock_off_paid_as_full_day,
    )


def _parse_dates(name: str, values: Any) -> frozenset[date]:
    if isinstance(values, (str, bytes)) or not hasattr(values, "__iter__"):
        raise RuleConfigurationError(f"{name} must be a list of dates")
    parsed: set[date] = set()
    for value in values:
        if isinstance(value, date):
            parsed.add(value)
            continue
        try:
            parsed.add(date.fromisoformat(str(value)))
        except ValueError as exc:
            raise RuleConfigurationError(f"{name} contains an invalid date: {value!r}") from exc
    return frozenset(parsed)


def record_to_config(record: RuleConfigurationRecord) -> RuleConfiguration:
    return RuleConfiguration(
        full_day_minutes=record.full_day_minutes,
        friday_short_day_minutes=record.friday_short_day_minutes,
        leave_default_paid_minutes=record.leave_default_paid_minutes,
        early_knock_off_paid_as_full_day=record.early_knock_off_paid_as_full_day,
        early_knock_off_dates=_parse_dates("early_knock_off_dates", record.early_knock_off_dates or []),
        public_holiday_dates=_parse_dates("public_holiday_dates", record.public_holiday_dates or []),
    )


def config_to_dict(config: RuleConfiguration) -> dict[str, Any]:
    return {
        "full_day_minutes": config.full_day_minutes,
        "friday_short_day_minutes": config.friday_short_day_minutes,
        "leave_default_paid_minutes": config.leave_default_paid_minutes,
        "early_knock_off_paid_as_full_day": config.early_knock_off_paid_as_full_day,
        "early_knock_off_dates": sorted(item.isoformat() for item in config.early_knock_off_dates),
        "public_holiday_dates": sorted(item.isoformat() for item in config.public_holiday_dates),
    }


def apply_rule_patch(current: RuleConfiguration, patch: Mapping[str, Any]) -> RuleConfiguration:
    unknown = set(patch) - _CONFIG_FIELDS
    if unknown:
        raise RuleConfigurationError(f"Unknown rule fields: {', '.join(sorted(unknown))}")

    changes: dict[str, Any] = {}
    for name, value in patch.items():
        if value is None:
            continue
        if name in _DATE_SET_FIELDS:
            changes[name] = _parse_dates(name, value)
        else:
            changes[name] = value
    return replace(current, **changes)


def _active_record(db: Session, *, for_update: bool = False) -> RuleConfigurationRecord | None:
    stmt = select(RuleConfigurationRecord).order_by(RuleConfigurationRecord.id.asc()).limit(1)
    if for_update:
        stmt = stmt.with_for_update()
    return db.scalar(stmt)


def get_rule_configuration(db: Session) -> RuleConfiguration:
    record = _active_record(db)
    if record is None:
        return default_rule_configuration()
    return record_to_config(record)


def _rederive_periods(db: Session, config: RuleConfiguration) -> tuple[int, int]:
    reclassified = 0
    signatures_cleared = 0
    for period in db.scalars(select(TimesheetPeriod).order_by(TimesheetPeriod.id.asc()).with_for_update()):
        changed = False
        updated_entries: list[dict[str, Any]] = []
        for raw in period.day_entries or []:
            entry = entry_from_json(raw, config)
            if entry.day_type.value != raw.get("day_type"):
                changed = True
            updated_entries.append(entry_to_json(entry))
        if not changed:
            continue

        reclassified += 1
        period.day_entries = updated_entries
        if period.status in EDITABLE_STATUSES and (period.employee_signature or period.manager_signature):
            period.employee_signature = None
            period.manager_signature = None
            signatures_cleared += 1
    return reclassified, signatures_cleared


def update_rule_configuration(
    db: Session,
    patch: Mapping[str, Any],
    *,
    actor_id: str,
    actor_role: str | None = None,
    request_id: str | None = None,
) -> RuleUpdateResult:
    with _CONFIG_LOCK:
        try:
            record = _active_record(db, for_update=True)
            current = record_to_config(record) if record is not None else default_rule_configuration()
            try:
                updated = apply_rule_patch(current, patch)
            except (TypeError, RuleConfigurationError) as exc:
                raise InvalidRuleConfigurationError(str(exc)) from exc

            values = config_to_dict(updated)
            if record is None:
                record = RuleConfigurationRecord(**values, updated_by=actor_id)
                db.add(record)
            else:
                for name, value in values.items():
                    setattr(record, name, value)
                record.updated_by = actor_id

            reclassified, signatures_cleared = _rederive_periods(db, updated)
            db.commit()
        except Exception:
            db.rollback()
            raise

    before = config_to_dict(current)
    field_changes = [
        {"field": name, "old": before[name], "new": value}
        for name, value in values.items()
        if before[name] != value
    ]
    logger.info(
        "rules_updated",
        extra={
            "request_id": request_id,
            "actor_id": actor_id,
            "changed_fields": [item["field"] for item in field_changes],
            "reclassified_periods": reclassified,
            "signatures_cleared": signatures_cleared,
        },
    )
    log_audit(
        db,
        entity_table="rule_configurations",
        entity_key=str(record.id),
        operation="RULES_UPDATE",
        success=True,
        actor_id=actor_id,
        actor_role=actor_role,
        request_id=request_id,
        metadata={"reclassified_periods": reclassified, "signatures_cleared": signatures_cleared},
        field_changes=field_changes,
    )
    return RuleUpdateResult(
        config=updated,
        reclassified_periods=reclassified,
        signatures_cleared=signatures_cleared,
    )
