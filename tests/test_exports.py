from __future__ import annotations

import unittest
from datetime import date, datetime, timezone
from io import BytesIO

from openpyxl import load_workbook

from app.errors import ApiError
from app.services.exports import build_period_xlsx_bytes, minutes_to_hhmm
from app.services.period_state import build_period_state
from app.services.timesheet_calc import RuleConfiguration
from app.services.workflow import PeriodWorkflow

CONFIG = RuleConfiguration()
AS_OF = date(2026, 3, 31)


def _validated_workflow() -> PeriodWorkflow:
    workflow = PeriodWorkflow(
        build_period_state(3, "2026-03", CONFIG, AS_OF),
        CONFIG,
        as_of=AS_OF,
        clock=lambda: datetime(2026, 4, 2, 10, 0, tzinfo=timezone.utc),
    )
    workflow.add_project_line(date(2026, 3, 7), description="Weekend deploy", hours=3)
    workflow.sign_employee("Jane Citizen")
    workflow.submit()
    workflow.set_manager_note("Weekend deploy approved")
    workflow.sign_manager("Mark Manager")
    workflow.approve()
    workflow.payroll_validate()
    return workflow


class ExportWorkbookTests(unittest.TestCase):
    def test_requires_export_batch(self) -> None:
        workflow = _validated_workflow()

        with self.assertRaises(ApiError) as ctx:
            build_period_xlsx_bytes(workflow.state, workflow.compute())
        self.assertEqual(ctx.exception.status_code, 409)
        self.assertEqual(ctx.exception.code, "EXPORT_BATCH_REQUIRED")

    def test_workbook_contents(self) -> None:
        workflow = _validated_workflow()
        self.assertTrue(workflow.create_export_batch().ok)
        computation = workflow.compute()
        batch = workflow.state.export_batches[0]

        wb = load_workbook(BytesIO(build_period_xlsx_bytes(workflow.state, computation)))

        self.assertEqual(wb.sheetnames, ["Meta", "Daily", "Weekly"])
        meta = {row[0]: row[1] for row in wb["Meta"].iter_rows(min_row=2, values_only=True)}
        self.assertEqual(meta["Batch ID"], batch.batch_id)
        self.assertEqual(meta["Checksum"], batch.checksum)
        self.assertEqual(meta["Status"], "PAYROLL_VALIDATED")

        daily = list(wb["Daily"].iter_rows(min_row=2, values_only=True))
        self.assertEqual(len(daily), 23 + 1)
        saturday = next(row for row in daily if row[0] == "2026-03-07")
        self.assertEqual(saturday[1], "WEEKEND")
        self.assertEqual(saturday[5], "03:00")
        self.assertIn("OT_APPROVAL_REQUIRED", saturday[9])
        self.assertEqual(daily[-1][0], "TOTAL")
        self.assertEqual(daily[-1][8], minutes_to_hhmm(computation.period_totals.paid_minutes))

        weekly = list(wb["Weekly"].iter_rows(min_row=2, values_only=True))
        self.assertEqual(len(weekly), len(computation.weekly) + 1)

    def test_hhmm_formatting(self) -> None:
        self.assertEqual(minutes_to_hhmm(0), "00:00")
        self.assertEqual(minutes_to_hhmm(485), "08:05")
        self.assertEqual(minutes_to_hhmm(-10), "00:00")


if __name__ == "__main__":
    unittest.main()
