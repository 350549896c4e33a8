from __future__ import annotations

import unittest

from sqlalchemy import create_engine, select
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from app.audit import compute_event_hash, log_audit, verify_audit_chain
from app.db import Base
from app.models import AuditLog


def _make_session() -> Session:
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)
    return sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)()


class AuditChainTests(unittest.TestCase):
    def setUp(self) -> None:
        self.db = _make_session()

    def tearDown(self) -> None:
        self.db.close()

    def _log(self, operation: str, **kwargs) -> None:
        log_audit(
            self.db,
            entity_table="timesheet_periods",
            entity_key="1:2026-03",
            operation=operation,
            success=True,
            actor_id="jane",
            **kwargs,
        )

    def test_empty_chain_is_valid(self) -> None:
        report = verify_audit_chain(self.db)

        self.assertTrue(report.ok)
        self.assertEqual(report.checked, 0)

    def test_events_link_to_previous_hash(self) -> None:
        self._log("SIGN_EMPLOYEE")
        self._log("SUBMIT", field_changes=[{"field": "status", "old": "DRAFT", "new": "SUBMITTED"}])
        self._log("APPROVE", metadata={"note": "ok"})

        rows = self.db.scalars(select(AuditLog).order_by(AuditLog.id)).all()
        self.assertIsNone(rows[0].prev_hash)
        self.assertEqual(rows[1].prev_hash, rows[0].event_hash)
        self.assertEqual(rows[2].prev_hash, rows[1].event_hash)
        report = verify_audit_chain(self.db)
        self.assertTrue(report.ok)
        self.assertEqual(report.checked, 3)

    def test_tampered_row_breaks_chain(self) -> None:
        self._log("SIGN_EMPLOYEE")
        self._log("SUBMIT", reason="Timesheet submitted.")
        self._log("APPROVE")

        rows = self.db.scalars(select(AuditLog).order_by(AuditLog.id)).all()
        rows[1].reason = "Edited after the fact"
        self.db.commit()

        report = verify_audit_chain(self.db)
        self.assertFalse(report.ok)
        self.assertEqual(report.first_broken_id, rows[1].id)
        self.assertEqual(report.to_dict()["checked"], 2)

    def test_event_hash_depends_on_previous(self) -> None:
        payload = {"operation": "SUBMIT"}
        self.assertNotEqual(compute_event_hash(None, payload), compute_event_hash("abc", payload))
        self.assertEqual(compute_event_hash(None, payload), compute_event_hash("", payload))


if __name__ == "__main__":
    unittest.main()
