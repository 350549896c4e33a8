from __future__ import annotations

import hashlib
import logging
import threading
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any

from sqlalchemy import select
from sqlalchemy.orm import Session

from app.models import AuditLog
from app.services.integrity import canonical_json

logger = logging.getLogger("app.audit")

_CHAIN_LOCK = threading.Lock()


@dataclass(frozen=True)
class AuditChainReport:
    ok: bool
    checked: int
    first_broken_id: int | None = None

    def to_dict(self) -> dict[str, Any]:
        return {"ok": self.ok, "checked": self.checked, "first_broken_id": self.first_broken_id}


def _ts_key(value: datetime) -> str:
    # SQLite hands back naive datetimes; the chain hashes UTC wall time only.
    if value.tzinfo is not None:
        value = value.astimezone(timezone.utc).replace(tzinfo=None)
    return value.isoformat(timespec="microseconds")


def audit_payload(row: AuditLog) -> dict[str, Any]:
    return {
        "ts_utc": _ts_key(row.ts_utc),
        "entity_table": row.entity_table,
        "entity_key": row.entity_key,
        "operation": row.operation,
        "actor_id": row.actor_id,
        "actor_role": row.actor_role,
        "request_id": row.request_id,
        "reason": row.reason,
        "success": bool(row.success),
        "details": row.details or {},
        "field_changes": row.field_changes or [],
    }


def compute_event_hash(prev_hash: str | None, payload: dict[str, Any]) -> str:
    material = (prev_hash or "") + canonical_json(payload)
    return hashlib.sha256(material.encode("utf-8")).hexdigest()


def _latest_event_hash(db: Session) -> str | None:
    return db.scalar(select(AuditLog.event_hash).order_by(AuditLog.id.desc()).limit(1))


def log_audit(
    db: Session,
    *,
    entity_table: str,
    entity_key: str,
    operation: str,
    success: bool,
    actor_id: str | None = None,
    actor_role: str | None = None,
    request_id: str | None = None,
    reason: str | None = None,
    metadata: dict[str, Any] | None = None,
    field_changes: list[dict[str, Any]] | None = None,
) -> None:
    with _CHAIN_LOCK:
        audit = AuditLog(
            ts_utc=datetime.now(timezone.utc),
            entity_table=entity_table,
            entity_key=entity_key,
            operation=operation,
            actor_id=actor_id,
            actor_role=actor_role,
            request_id=request_id,
            reason=reason,
            success=success,
            details=metadata or {},
            field_changes=field_changes or [],
        )
        try:
            audit.prev_hash = _latest_event_hash(db)
            audit.event_hash = compute_event_hash(audit.prev_hash, audit_payload(audit))
            db.add(audit)
            db.commit()
        except Exception:
            db.rollback()
            logger.exception(
                "audit_log_write_failed",
                extra={
                    "request_id": request_id,
                    "entity_table": entity_table,
                    "entity_key": entity_key,
                    "operation": operation,
                    "actor_id": actor_id,
                    "success": success,
                },
            )
            return

    logger.info(
        "audit_event",
        extra={
            "request_id": request_id,
            "entity_table": entity_table,
            "entity_key": entity_key,
            "operation": operation,
            "actor_id": actor_id,
            "actor_role": actor_role,
            "success": success,
            "event_hash": audit.event_hash,
            "details": metadata or {},
        },
    )


def verify_audit_chain(db: Session) -> AuditChainReport:
    prev_hash: str | None = None
    checked = 0
    for row in db.scalars(select(AuditLog).order_by(AuditLog.id.asc())):
        checked += 1
        expected = compute_event_hash(prev_hash, audit_payload(row))
        if row.prev_hash != prev_hash or row.event_hash != expected:
            logger.warning("audit_chain_broken", extra={"audit_id": row.id, "checked": checked})
            return AuditChainReport(ok=False, checked=checked, first_broken_id=row.id)
        prev_hash = row.event_hash
    return AuditChainReport(ok=True, checked=checked)
