from fastapi import APIRouter, Depends, Request
from sqlalchemy.orm import Session

from app.audit import log_audit
from app.db import get_db
from app.errors import ApiError
from app.schemas import AuthResponse, LoginRequest
from app.security import (
    authenticate_user,
    create_access_token,
    ensure_login_attempt_allowed,
    register_login_failure,
    register_login_success,
)

router = APIRouter(tags=["auth"])


def _client_ip(request: Request) -> str | None:
    forwarded_for = request.headers.get("x-forwarded-for")
    if forwarded_for:
        return forwarded_for.split(",")[0].strip()
    if request.client:
        return request.client.host
    return None


@router.post("/api/auth/login", response_model=AuthResponse)
def login(
    payload: LoginRequest,
    request: Request,
    db: Session = Depends(get_db),
) -> AuthResponse:
    username = payload.username.strip()
    ip = _client_ip(request)
    request_id = getattr(request.state, "request_id", None)
    request.state.actor = "system"
    request.state.actor_id = "system"

    if ip:
        try:
            ensure_login_attempt_allowed(ip)
        except ApiError:
            log_audit(
                db,
                entity_table="app_users",
                entity_key=username,
                operation="LOGIN_FAIL",
                success=False,
                actor_id=username,
                request_id=request_id,
                reason="TOO_MANY_ATTEMPTS",
                metadata={"ip": ip},
            )
            raise

    user = authenticate_user(db, username, payload.password)
    if user is None:
        if ip:
            register_login_failure(ip)
        log_audit(
            db,
            entity_table="app_users",
            entity_key=username,
            operation="LOGIN_FAIL",
            success=False,
            actor_id=username,
            request_id=request_id,
            reason="INVALID_CREDENTIALS",
            metadata={"ip": ip},
        )
        raise ApiError(
            status_code=401,
            code="INVALID_CREDENTIALS",
            message="Invalid credentials.",
        )

    if ip:
        register_login_success(ip)
    token, expires_in, _ = create_access_token(user)
    request.state.actor = user.role.value
    request.state.actor_id = user.username
    log_audit(
        db,
        entity_table="app_users",
        entity_key=str(user.id),
        operation="LOGIN_SUCCESS",
        success=True,
        actor_id=user.username,
        actor_role=user.role.value,
        request_id=request_id,
        metadata={"ip": ip},
    )
    return AuthResponse(access_token=token, expires_in=expires_in, role=user.role, user_id=user.id)
