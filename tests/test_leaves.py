from __future__ import annotations

import unittest
from datetime import date

from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from app.db import Base
from app.errors import ApiError
from app.models import AppUser
from app.services import periods
from app.services.leaves import add_planned_leave, leave_summary, list_planned_leaves, remove_planned_leave
from app.services.period_state import UserRole
from app.services.periods import Actor


def _make_session() -> Session:
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)
    return sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)()


class PlannedLeaveTests(unittest.TestCase):
    def setUp(self) -> None:
        self.db = _make_session()
        users = [
            AppUser(username="jane", password_hash="x", full_name="Jane Citizen", role=UserRole.EMPLOYEE),
            AppUser(username="sam", password_hash="x", full_name="Sam Lee", role=UserRole.EMPLOYEE),
        ]
        self.db.add_all(users)
        self.db.commit()
        self.jane_id, self.sam_id = users[0].id, users[1].id

    def tearDown(self) -> None:
        self.db.close()

    def test_add_and_list_by_year(self) -> None:
        add_planned_leave(self.db, employee_id=self.jane_id, leave_date=date(2026, 12, 24), hours=8, note=" xmas ")
        add_planned_leave(self.db, employee_id=self.jane_id, leave_date=date(2026, 6, 1), hours=4)
        add_planned_leave(self.db, employee_id=self.jane_id, leave_date=date(2027, 1, 4), hours=8)

        leaves = list_planned_leaves(self.db, employee_id=self.jane_id, year=2026)

        self.assertEqual([leave.leave_date for leave in leaves], [date(2026, 6, 1), date(2026, 12, 24)])
        self.assertEqual(leaves[1].note, "xmas")
        self.assertEqual(len(list_planned_leaves(self.db, employee_id=self.jane_id)), 3)

    def test_invalid_leave_rejected(self) -> None:
        self.assertFalse(add_planned_leave(self.db, employee_id=self.jane_id, leave_date=None, hours=8).ok)
        self.assertFalse(add_planned_leave(self.db, employee_id=self.jane_id, leave_date=date(2026, 5, 1), hours=0).ok)
        self.assertFalse(
            add_planned_leave(self.db, employee_id=self.jane_id, leave_date=date(2026, 5, 1), hours=float("inf")).ok
        )
        self.assertEqual(list_planned_leaves(self.db, employee_id=self.jane_id), [])

    def test_unknown_employee_raises(self) -> None:
        with self.assertRaises(ApiError) as ctx:
            add_planned_leave(self.db, employee_id=404, leave_date=date(2026, 5, 1), hours=8)
        self.assertEqual(ctx.exception.status_code, 404)

    def test_cannot_remove_another_employees_leave(self) -> None:
        leave = add_planned_leave(self.db, employee_id=self.jane_id, leave_date=date(2026, 5, 1), hours=8).leave
        assert leave is not None

        self.assertFalse(remove_planned_leave(self.db, employee_id=self.sam_id, leave_id=leave.id).ok)
        self.assertTrue(remove_planned_leave(self.db, employee_id=self.jane_id, leave_id=leave.id).ok)
        self.assertEqual(list_planned_leaves(self.db, employee_id=self.jane_id), [])

    def test_summary_counts_taken_and_planned(self) -> None:
        actor = Actor(self.jane_id, "jane", UserRole.EMPLOYEE, "Jane Citizen")
        for day in (date(2026, 3, 2), date(2026, 3, 3)):
            periods.edit_day(self.db, self.jane_id, "2026-03", day, actor=actor, absence_code="AL", as_of=date(2026, 3, 31))
        periods.edit_day(
            self.db, self.jane_id, "2026-03", date(2026, 3, 4), actor=actor, absence_code="SL", as_of=date(2026, 3, 31)
        )
        add_planned_leave(self.db, employee_id=self.jane_id, leave_date=date(2026, 9, 1), hours=8)

        summary = leave_summary(self.db, employee_id=self.jane_id, year=2026)

        self.assertEqual(summary.entitlement_hours, 152.0)
        self.assertEqual(summary.taken_hours, 16.0)
        self.assertEqual(summary.planned_hours, 8.0)
        self.assertEqual(summary.remaining_after_taken, 136.0)
        self.assertEqual(summary.remaining_after_planned, 128.0)

    def test_summary_ignores_other_years(self) -> None:
        add_planned_leave(self.db, employee_id=self.jane_id, leave_date=date(2025, 9, 1), hours=8)

        summary = leave_summary(self.db, employee_id=self.jane_id, year=2026)

        self.assertEqual(summary.planned_hours, 0.0)
        self.assertEqual(summary.taken_hours, 0.0)


if __name__ == "__main__":
    unittest.main()
