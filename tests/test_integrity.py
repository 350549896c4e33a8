from datetime import date, datetime, timezone
import unittest

from app.services.integrity import (
    build_batch_id,
    canonical_hours,
    canonicalize_period,
    compute_export_checksum,
    compute_signature_hash,
    rolling_hash,
)
from app.services.period_state import PeriodState
from app.services.timesheet_calc import DayEntry, DayType, ProjectLine, TimesheetTotals


def _state(entries: list[DayEntry]) -> PeriodState:
    return PeriodState(employee_id=1, period_key="2026-03", day_entries=entries)


MONDAY = DayEntry(
    date=date(2026, 3, 2),
    day_type=DayType.WORKDAY,
    project_lines=(
        ProjectLine(id="PL-a", description="Design ", hours=4),
        ProjectLine(id="PL-b", description="Build", hours=4.0),
    ),
)
TUESDAY = DayEntry(date=date(2026, 3, 3), day_type=DayType.WORKDAY, absence_code="AL")
REORDERED_MONDAY = DayEntry(
    date=MONDAY.date,
    day_type=MONDAY.day_type,
    project_lines=tuple(reversed(MONDAY.project_lines)),
)


class CanonicalizationTests(unittest.TestCase):
    def test_hours_are_fixed_two_decimals(self) -> None:
        self.assertEqual(canonical_hours(8), "8.00")
        self.assertEqual(canonical_hours(7.125), "7.13")
        self.assertEqual(canonical_hours("abc"), "0.00")

    def test_entry_and_line_order_do_not_matter(self) -> None:
        first = canonicalize_period(_state([MONDAY, TUESDAY]))
        second = canonicalize_period(_state([TUESDAY, REORDERED_MONDAY]))

        self.assertEqual(first, second)

    def test_day_type_excluded_from_snapshot(self) -> None:
        holiday_monday = DayEntry(
            date=MONDAY.date,
            day_type=DayType.PUBLIC_HOLIDAY,
            project_lines=MONDAY.project_lines,
        )
        self.assertEqual(
            canonicalize_period(_state([MONDAY])),
            canonicalize_period(_state([holiday_monday])),
        )


class SignatureHashTests(unittest.TestCase):
    def test_hash_is_deterministic(self) -> None:
        kwargs = {"role": "EMPLOYEE", "signed_by": "Jane Citizen", "declaration": "I certify"}
        first = compute_signature_hash(_state([MONDAY, TUESDAY]), **kwargs)
        second = compute_signature_hash(_state([TUESDAY, MONDAY]), **kwargs)

        self.assertEqual(first, second)
        self.assertEqual(len(first), 64)

    def test_hash_changes_with_content(self) -> None:
        kwargs = {"role": "EMPLOYEE", "signed_by": "Jane Citizen", "declaration": "I certify"}
        changed = DayEntry(date=TUESDAY.date, day_type=TUESDAY.day_type, absence_code="SL")

        self.assertNotEqual(
            compute_signature_hash(_state([MONDAY, TUESDAY]), **kwargs),
            compute_signature_hash(_state([MONDAY, changed]), **kwargs),
        )

    def test_role_is_part_of_hash(self) -> None:
        state = _state([MONDAY])
        self.assertNotEqual(
            compute_signature_hash(state, role="EMPLOYEE", signed_by="Sam Lee", declaration="d"),
            compute_signature_hash(state, role="MANAGER", signed_by="Sam Lee", declaration="d"),
        )


class ExportChecksumTests(unittest.TestCase):
    def test_checksum_is_eight_hex_chars(self) -> None:
        checksum = compute_export_checksum(_state([MONDAY]), TimesheetTotals(normal_minutes=480))

        self.assertEqual(len(checksum), 8)
        int(checksum, 16)

    def test_checksum_ignores_entry_and_line_order(self) -> None:
        totals = TimesheetTotals(normal_minutes=480, leave_minutes=480)

        self.assertEqual(
            compute_export_checksum(_state([MONDAY, TUESDAY]), totals),
            compute_export_checksum(_state([TUESDAY, REORDERED_MONDAY]), totals),
        )

    def test_checksum_depends_on_totals(self) -> None:
        state = _state([MONDAY])
        self.assertNotEqual(
            compute_export_checksum(state, TimesheetTotals(normal_minutes=480)),
            compute_export_checksum(state, TimesheetTotals(normal_minutes=470)),
        )

    def test_rolling_hash_known_values(self) -> None:
        self.assertEqual(rolling_hash(""), "00000000")
        self.assertEqual(rolling_hash("a"), "00000061")
        self.assertEqual(rolling_hash("ab"), f"{97 * 31 + 98:08x}")

    def test_batch_ids_unique_for_same_instant(self) -> None:
        moment = datetime(2026, 4, 1, tzinfo=timezone.utc)
        first = build_batch_id("2026-03", now=moment)
        second = build_batch_id("2026-03", now=moment)

        self.assertNotEqual(first, second)
        self.assertTrue(first.startswith(f"TSB-202603-{int(moment.timestamp() * 1000)}-"))


if __name__ == "__main__":
    unittest.main()
