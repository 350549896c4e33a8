from typing import Any

from fastapi import APIRouter, Depends, Query, Request
from sqlalchemy import select
from sqlalchemy.orm import Session

from app.audit import verify_audit_chain
from app.db import get_db
from app.models import AuditLog
from app.schemas import (
    AuditChainVerifyResponse,
    AuditLogRead,
    RuleConfigurationRead,
    RuleConfigurationUpdate,
    RuleUpdateResponse,
)
from app.security import require_roles, require_user
from app.services.period_state import UserRole
from app.services.periods import Actor
from app.services.rule_config import config_to_dict, get_rule_configuration, update_rule_configuration

router = APIRouter(tags=["admin"])


@router.get(
    "/api/admin/rules",
    response_model=RuleConfigurationRead,
    dependencies=[Depends(require_user)],
)
def get_rules(db: Session = Depends(get_db)) -> dict[str, Any]:
    return config_to_dict(get_rule_configuration(db))


@router.put("/api/admin/rules", response_model=RuleUpdateResponse)
def update_rules(
    payload: RuleConfigurationUpdate,
    request: Request,
    actor: Actor = Depends(require_roles(UserRole.ADMIN)),
    db: Session = Depends(get_db),
) -> RuleUpdateResponse:
    result = update_rule_configuration(
        db,
        payload.model_dump(exclude_unset=True),
        actor_id=actor.username,
        actor_role=actor.role.value if actor.role is not None else None,
        request_id=getattr(request.state, "request_id", None),
    )
    return RuleUpdateResponse(
        rules=RuleConfigurationRead(**config_to_dict(result.config)),
        reclassified_periods=result.reclassified_periods,
        signatures_cleared=result.signatures_cleared,
    )


@router.get(
    "/api/admin/audit-logs",
    response_model=list[AuditLogRead],
    dependencies=[Depends(require_roles(UserRole.ADMIN))],
)
def list_audit_logs(
    operation: str | None = Query(default=None),
    entity_table: str | None = Query(default=None),
    entity_key: str | None = Query(default=None),
    success: bool | None = Query(default=None),
    limit: int = Query(default=100, ge=1, le=500),
    db: Session = Depends(get_db),
) -> list[AuditLog]:
    stmt = select(AuditLog).order_by(AuditLog.id.desc()).limit(limit)
    if operation:
        stmt = stmt.where(AuditLog.operation == operation)
    if entity_table:
        stmt = stmt.where(AuditLog.entity_table == entity_table)
    if entity_key:
        stmt = stmt.where(AuditLog.entity_key == entity_key)
    if success is not None:
        stmt = stmt.where(AuditLog.success.is_(success))
    return list(db.scalars(stmt).all())


@router.get(
    "/api/admin/audit-logs/verify",
    response_model=AuditChainVerifyResponse,
    dependencies=[Depends(require_roles(UserRole.ADMIN))],
)
def verify_audit_logs(db: Session = Depends(get_db)) -> dict[str, Any]:
    return verify_audit_chain(db).to_dict()
