from __future__ import annotations

import hashlib
from dataclasses import dataclass
from datetime import datetime, timezone

from sqlalchemy import select
from sqlalchemy.orm import Session

from app.errors import ApiError
from app.models import SignatureProfile
from app.services.integrity import SignatureRole, canonical_json
from app.services.workflow import (
    EMPLOYEE_SIGNATURE_DECLARATION,
    MANAGER_SIGNATURE_DECLARATION,
    SIGNER_NAME_MIN_LENGTH,
)

DECLARATIONS: dict[str, str] = {
    "EMPLOYEE": EMPLOYEE_SIGNATURE_DECLARATION,
    "MANAGER": MANAGER_SIGNATURE_DECLARATION,
}


@dataclass(frozen=True)
class ProfileResult:
    ok: bool
    message: str
    profile: SignatureProfile | None = None


def _normalize_role(role: str) -> SignatureRole:
    normalized = (role or "").strip().upper()
    if normalized not in DECLARATIONS:
        raise ApiError(status_code=422, code="INVALID_SIGNATURE_ROLE", message="Role must be EMPLOYEE or MANAGER.")
    return normalized  # type: ignore[return-value]


def compute_profile_hash(*, user_id: int, role: str, full_name: str, declaration: str) -> str:
    payload = {"role": role, "full_name": full_name, "declaration": declaration, "user_id": user_id}
    return hashlib.sha256(canonical_json(payload).encode("utf-8")).hexdigest()


def get_signature_profile(db: Session, user_id: int, role: str) -> SignatureProfile | None:
    return db.scalar(
        select(SignatureProfile).where(
            SignatureProfile.user_id == user_id,
            SignatureProfile.role == _normalize_role(role),
        )
    )


def upsert_signature_profile(db: Session, *, user_id: int, role: str, full_name: str) -> ProfileResult:
    normalized_role = _normalize_role(role)
    name = (full_name or "").strip()
    if len(name) < SIGNER_NAME_MIN_LENGTH:
        return ProfileResult(ok=False, message="Enter full name to set up electronic signature.")

    declaration = DECLARATIONS[normalized_role]
    profile = get_signature_profile(db, user_id, normalized_role)
    if profile is None:
        profile = SignatureProfile(user_id=user_id, role=normalized_role)
        db.add(profile)
    profile.full_name = name
    profile.declaration = declaration
    profile.profile_hash = compute_profile_hash(
        user_id=user_id,
        role=normalized_role,
        full_name=name,
        declaration=declaration,
    )
    profile.setup_at = datetime.now(timezone.utc)
    db.commit()
    db.refresh(profile)
    return ProfileResult(ok=True, message=f"{normalized_role.title()} signature profile saved.", profile=profile)


def clear_signature_profile(db: Session, *, user_id: int, role: str) -> ProfileResult:
    profile = get_signature_profile(db, user_id, role)
    if profile is None:
        return ProfileResult(ok=False, message="No signature profile to clear.")
    db.delete(profile)
    db.commit()
    return ProfileResult(ok=True, message="Signature profile cleared.")


def default_signer_name(db: Session, user_id: int | None, role: str) -> str:
    if user_id is None:
        return ""
    profile = get_signature_profile(db, user_id, role)
    return profile.full_name if profile is not None else ""
