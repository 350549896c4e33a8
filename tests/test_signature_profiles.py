from __future__ import annotations

import unittest

from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from app.db import Base
from app.errors import ApiError
from app.models import AppUser
from app.services.period_state import UserRole
from app.services.signature_profiles import (
    clear_signature_profile,
    compute_profile_hash,
    default_signer_name,
    get_signature_profile,
    upsert_signature_profile,
)
from app.services.workflow import MANAGER_SIGNATURE_DECLARATION


def _make_session() -> Session:
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)
    return sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)()


class SignatureProfileTests(unittest.TestCase):
    def setUp(self) -> None:
        self.db = _make_session()
        user = AppUser(username="mark", password_hash="x", full_name="Mark Manager", role=UserRole.MANAGER)
        self.db.add(user)
        self.db.commit()
        self.user_id = user.id

    def tearDown(self) -> None:
        self.db.close()

    def test_upsert_creates_then_updates_single_profile(self) -> None:
        first = upsert_signature_profile(self.db, user_id=self.user_id, role="manager", full_name="Mark Manager")
        second = upsert_signature_profile(self.db, user_id=self.user_id, role="MANAGER", full_name=" Mark A Manager ")

        self.assertTrue(first.ok and second.ok)
        assert first.profile is not None and second.profile is not None
        self.assertEqual(first.profile.id, second.profile.id)
        self.assertEqual(second.profile.full_name, "Mark A Manager")
        self.assertEqual(second.profile.declaration, MANAGER_SIGNATURE_DECLARATION)
        self.assertEqual(
            second.profile.profile_hash,
            compute_profile_hash(
                user_id=self.user_id,
                role="MANAGER",
                full_name="Mark A Manager",
                declaration=MANAGER_SIGNATURE_DECLARATION,
            ),
        )

    def test_short_name_rejected(self) -> None:
        result = upsert_signature_profile(self.db, user_id=self.user_id, role="MANAGER", full_name="MM")

        self.assertFalse(result.ok)
        self.assertIsNone(get_signature_profile(self.db, self.user_id, "MANAGER"))

    def test_unknown_role_rejected(self) -> None:
        with self.assertRaises(ApiError) as ctx:
            upsert_signature_profile(self.db, user_id=self.user_id, role="PAYROLL", full_name="Pat Payroll")
        self.assertEqual(ctx.exception.code, "INVALID_SIGNATURE_ROLE")

    def test_profiles_are_per_role(self) -> None:
        upsert_signature_profile(self.db, user_id=self.user_id, role="EMPLOYEE", full_name="Mark As Employee")
        upsert_signature_profile(self.db, user_id=self.user_id, role="MANAGER", full_name="Mark As Manager")

        self.assertEqual(default_signer_name(self.db, self.user_id, "EMPLOYEE"), "Mark As Employee")
        self.assertEqual(default_signer_name(self.db, self.user_id, "MANAGER"), "Mark As Manager")
        self.assertEqual(default_signer_name(self.db, None, "MANAGER"), "")

    def test_clear_profile(self) -> None:
        upsert_signature_profile(self.db, user_id=self.user_id, role="MANAGER", full_name="Mark Manager")

        self.assertTrue(clear_signature_profile(self.db, user_id=self.user_id, role="MANAGER").ok)
        self.assertFalse(clear_signature_profile(self.db, user_id=self.user_id, role="MANAGER").ok)
        self.assertEqual(default_signer_name(self.db, self.user_id, "MANAGER"), "")


if __name__ == "__main__":
    unittest.main()
