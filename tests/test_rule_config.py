from __future__ import annotations

import unittest
from datetime import date

from sqlalchemy import create_engine, select
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from app.db import Base
from app.errors import InvalidRuleConfigurationError
from app.models import AppUser, AuditLog, RuleConfigurationRecord
from app.services import periods
from app.services.period_state import UserRole
from app.services.periods import Actor
from app.services.rule_config import apply_rule_patch, get_rule_configuration, update_rule_configuration
from app.services.timesheet_calc import DayType, RuleConfiguration, RuleConfigurationError

AS_OF = date(2026, 3, 31)
PERIOD = "2026-03"
HOLIDAY = date(2026, 3, 9)


def _make_session() -> Session:
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)
    return sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)()


class ApplyRulePatchTests(unittest.TestCase):
    def test_dates_parsed_from_iso_strings(self) -> None:
        updated = apply_rule_patch(RuleConfiguration(), {"public_holiday_dates": ["2026-03-09", "2026-03-09"]})
        self.assertEqual(updated.public_holiday_dates, frozenset({HOLIDAY}))

    def test_none_values_are_ignored(self) -> None:
        updated = apply_rule_patch(RuleConfiguration(), {"full_day_minutes": None, "friday_short_day_minutes": 300})

        self.assertEqual(updated.full_day_minutes, 480)
        self.assertEqual(updated.friday_short_day_minutes, 300)

    def test_unknown_field_rejected(self) -> None:
        with self.assertRaises(RuleConfigurationError):
            apply_rule_patch(RuleConfiguration(), {"weekly_cap": 10})

    def test_bad_date_rejected(self) -> None:
        with self.assertRaises(RuleConfigurationError):
            apply_rule_patch(RuleConfiguration(), {"early_knock_off_dates": ["2026-02-30"]})


class RuleConfigurationServiceTests(unittest.TestCase):
    def setUp(self) -> None:
        self.db = _make_session()
        employee = AppUser(username="jane", password_hash="x", full_name="Jane Citizen", role=UserRole.EMPLOYEE)
        self.db.add(employee)
        self.db.commit()
        self.db.refresh(employee)
        self.employee_id = employee.id
        self.actor = Actor(employee.id, "jane", UserRole.EMPLOYEE, "Jane Citizen")

    def tearDown(self) -> None:
        self.db.close()

    def test_defaults_used_without_stored_record(self) -> None:
        config = get_rule_configuration(self.db)

        self.assertEqual(config.full_day_minutes, 480)
        self.assertEqual(config.friday_short_day_minutes, 360)
        self.assertTrue(config.early_knock_off_paid_as_full_day)

    def test_update_persists_and_is_audited(self) -> None:
        result = update_rule_configuration(
            self.db,
            {"full_day_minutes": 450},
            actor_id="admin",
            actor_role="ADMIN",
            request_id="req-9",
        )

        self.assertEqual(result.config.full_day_minutes, 450)
        self.assertEqual(get_rule_configuration(self.db).full_day_minutes, 450)
        self.assertEqual(len(self.db.scalars(select(RuleConfigurationRecord)).all()), 1)
        audit = self.db.scalars(select(AuditLog)).one()
        self.assertEqual(audit.operation, "RULES_UPDATE")
        self.assertEqual(audit.field_changes, [{"field": "full_day_minutes", "old": 480, "new": 450}])

    def test_new_holiday_reclassifies_and_clears_draft_signatures(self) -> None:
        periods.sign_employee(
            self.db,
            self.employee_id,
            PERIOD,
            actor=self.actor,
            signed_by="Jane Citizen",
            as_of=AS_OF,
        )

        result = update_rule_configuration(
            self.db,
            {"public_holiday_dates": [HOLIDAY.isoformat()]},
            actor_id="admin",
        )

        self.assertEqual(result.reclassified_periods, 1)
        self.assertEqual(result.signatures_cleared, 1)
        outcome = periods.get_period(self.db, self.employee_id, PERIOD, as_of=AS_OF)
        entry = outcome.state.entry_for(HOLIDAY)
        assert entry is not None
        self.assertEqual(entry.day_type, DayType.PUBLIC_HOLIDAY)
        self.assertIsNone(outcome.state.employee_signature)
        self.assertEqual(outcome.computation.by_date[HOLIDAY].ph_worked_minutes, 480)

    def test_submitted_period_keeps_signature(self) -> None:
        periods.sign_employee(self.db, self.employee_id, PERIOD, actor=self.actor, signed_by="Jane Citizen", as_of=AS_OF)
        periods.submit(self.db, self.employee_id, PERIOD, actor=self.actor, as_of=AS_OF)

        result = update_rule_configuration(
            self.db,
            {"early_knock_off_dates": ["2026-03-04"]},
            actor_id="admin",
        )

        self.assertEqual(result.reclassified_periods, 1)
        self.assertEqual(result.signatures_cleared, 0)
        state = periods.get_period(self.db, self.employee_id, PERIOD, as_of=AS_OF).state
        self.assertIsNotNone(state.employee_signature)

    def test_unchanged_day_types_leave_periods_alone(self) -> None:
        periods.get_period(self.db, self.employee_id, PERIOD, as_of=AS_OF)

        result = update_rule_configuration(self.db, {"leave_default_paid_minutes": 456}, actor_id="admin")

        self.assertEqual(result.reclassified_periods, 0)

    def test_invalid_patch_rolls_back(self) -> None:
        with self.assertRaises(InvalidRuleConfigurationError):
            update_rule_configuration(self.db, {"full_day_minutes": -5}, actor_id="admin")

        self.assertEqual(self.db.scalars(select(RuleConfigurationRecord)).all(), [])
        self.assertEqual(self.db.scalars(select(AuditLog)).all(), [])
        self.assertEqual(get_rule_configuration(self.db).full_day_minutes, 480)


if __name__ == "__main__":
    unittest.main()
