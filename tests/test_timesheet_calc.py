from datetime import date
import unittest

from app.services.timesheet_calc import (
    DayEntry,
    DayType,
    ProjectLine,
    RuleConfiguration,
    RuleConfigurationError,
    TimesheetTotals,
    calculate_day,
    calculate_period,
    classify_day,
    week_label,
    worked_minutes_for,
)

CONFIG = RuleConfiguration()


def _entry(day: date, *hours: float, absence_code: str = "", notes: str = "", day_type: DayType | None = None) -> DayEntry:
    lines = tuple(ProjectLine(id=f"L{index}", description="Site work", hours=value) for index, value in enumerate(hours))
    return DayEntry(
        date=day,
        day_type=day_type or classify_day(day, CONFIG),
        project_lines=lines,
        absence_code=absence_code,
        notes=notes,
    )


class ClassifyDayTests(unittest.TestCase):
    def test_weekday_kinds(self) -> None:
        self.assertEqual(classify_day(date(2026, 3, 2), CONFIG), DayType.WORKDAY)
        self.assertEqual(classify_day(date(2026, 3, 6), CONFIG), DayType.FRIDAY_SHORT_DAY)
        self.assertEqual(classify_day(date(2026, 3, 7), CONFIG), DayType.WEEKEND)
        self.assertEqual(classify_day(date(2026, 3, 8), CONFIG), DayType.WEEKEND)

    def test_public_holiday_wins_over_weekend_and_early_knock_off(self) -> None:
        config = RuleConfiguration(
            public_holiday_dates=frozenset({date(2026, 3, 7), date(2026, 3, 9)}),
            early_knock_off_dates=frozenset({date(2026, 3, 9)}),
        )
        self.assertEqual(classify_day(date(2026, 3, 7), config), DayType.PUBLIC_HOLIDAY)
        self.assertEqual(classify_day(date(2026, 3, 9), config), DayType.PUBLIC_HOLIDAY)

    def test_early_knock_off_overrides_friday(self) -> None:
        config = RuleConfiguration(early_knock_off_dates=frozenset({date(2026, 3, 6)}))
        self.assertEqual(classify_day(date(2026, 3, 6), config), DayType.EARLY_KNOCK_OFF)

    def test_early_knock_off_on_weekend_stays_weekend(self) -> None:
        config = RuleConfiguration(early_knock_off_dates=frozenset({date(2026, 3, 7)}))
        self.assertEqual(classify_day(date(2026, 3, 7), config), DayType.WEEKEND)

    def test_classification_is_stable(self) -> None:
        day = date(2026, 3, 13)
        self.assertEqual(classify_day(day, CONFIG), classify_day(day, CONFIG))

    def test_negative_minutes_rejected(self) -> None:
        with self.assertRaises(RuleConfigurationError):
            RuleConfiguration(full_day_minutes=-1)


class CalculateDayTests(unittest.TestCase):
    def test_full_workday_is_all_normal(self) -> None:
        result = calculate_day(_entry(date(2026, 3, 2), 8), CONFIG)

        self.assertEqual(result.normal_minutes, 480)
        self.assertEqual(result.overtime_minutes, 0)
        self.assertEqual(result.blocking_errors, ())

    def test_long_workday_splits_overtime(self) -> None:
        result = calculate_day(_entry(date(2026, 3, 2), 6, 3.5), CONFIG)

        self.assertEqual(result.normal_minutes, 480)
        self.assertEqual(result.overtime_minutes, 90)

    def test_public_holiday_code_pays_leave_default(self) -> None:
        config = RuleConfiguration(public_holiday_dates=frozenset({date(2026, 3, 9)}))
        entry = DayEntry(date=date(2026, 3, 9), day_type=DayType.PUBLIC_HOLIDAY, absence_code="PH")

        result = calculate_day(entry, config)

        self.assertEqual(result.leave_minutes, 480)
        self.assertEqual(result.normal_minutes, 0)
        self.assertEqual(result.blocking_errors, ())

    def test_code_with_hours_conflicts(self) -> None:
        result = calculate_day(_entry(date(2026, 3, 2), 2, absence_code="AL"), CONFIG)

        self.assertIn("CODE_HOURS_CONFLICT", result.blocking_errors)
        self.assertEqual(result.totals, TimesheetTotals())

    def test_friday_cap_is_short_day(self) -> None:
        result = calculate_day(_entry(date(2026, 3, 6), 8), CONFIG)

        self.assertEqual(result.normal_minutes, 360)
        self.assertEqual(result.overtime_minutes, 120)

    def test_early_knock_off_paid_as_full_day(self) -> None:
        config = RuleConfiguration(early_knock_off_dates=frozenset({date(2026, 3, 4)}))
        entry = _entry(date(2026, 3, 4), 5, day_type=DayType.EARLY_KNOCK_OFF)

        result = calculate_day(entry, config)

        self.assertEqual(result.normal_minutes, 480)
        self.assertEqual(result.overtime_minutes, 0)

    def test_early_knock_off_not_topped_up_when_disabled(self) -> None:
        config = RuleConfiguration(
            early_knock_off_dates=frozenset({date(2026, 3, 4)}),
            early_knock_off_paid_as_full_day=False,
        )
        entry = _entry(date(2026, 3, 4), 5, day_type=DayType.EARLY_KNOCK_OFF)

        result = calculate_day(entry, config)

        self.assertEqual(result.normal_minutes, 300)

    def test_weekend_work_is_overtime(self) -> None:
        result = calculate_day(_entry(date(2026, 3, 7), 4), CONFIG)

        self.assertEqual(result.normal_minutes, 0)
        self.assertEqual(result.overtime_minutes, 240)

    def test_worked_public_holiday_goes_to_ph_bucket(self) -> None:
        entry = _entry(date(2026, 3, 9), 7, day_type=DayType.PUBLIC_HOLIDAY)

        result = calculate_day(entry, CONFIG)

        self.assertEqual(result.ph_worked_minutes, 420)
        self.assertEqual(result.overtime_minutes, 0)

    def test_empty_public_holiday_requires_code(self) -> None:
        entry = DayEntry(date=date(2026, 3, 9), day_type=DayType.PUBLIC_HOLIDAY)
        self.assertEqual(calculate_day(entry, CONFIG).blocking_errors, ("PH_CODE_REQUIRED",))

    def test_leave_code_on_public_holiday_requires_ph(self) -> None:
        entry = DayEntry(date=date(2026, 3, 9), day_type=DayType.PUBLIC_HOLIDAY, absence_code="AL")
        self.assertEqual(calculate_day(entry, CONFIG).blocking_errors, ("PH_CODE_REQUIRED",))

    def test_lwop_pays_nothing(self) -> None:
        result = calculate_day(_entry(date(2026, 3, 2), absence_code="LWOP"), CONFIG)

        self.assertEqual(result.totals.paid_minutes, 0)
        self.assertEqual(result.blocking_errors, ())

    def test_unknown_absence_code_blocks(self) -> None:
        result = calculate_day(_entry(date(2026, 3, 2), absence_code="XX"), CONFIG)
        self.assertIn("INVALID_ABSENCE_CODE", result.blocking_errors)

    def test_missing_past_day_blocks(self) -> None:
        result = calculate_day(_entry(date(2026, 3, 2), 0), CONFIG, as_of=date(2026, 3, 10))
        self.assertEqual(result.blocking_errors, ("MISSING_ENTRY_DAY",))

    def test_future_empty_day_is_not_missing(self) -> None:
        result = calculate_day(_entry(date(2026, 3, 20), 0), CONFIG, as_of=date(2026, 3, 10))
        self.assertEqual(result.blocking_errors, ())

    def test_negative_line_blocks(self) -> None:
        result = calculate_day(_entry(date(2026, 3, 2), 9, -1), CONFIG)
        self.assertIn("NEGATIVE_TOTALS", result.blocking_errors)

    def test_more_than_sixteen_hours_is_impossible(self) -> None:
        result = calculate_day(_entry(date(2026, 3, 2), 10, 7), CONFIG)
        self.assertIn("IMPOSSIBLE_HOURS", result.blocking_errors)
        self.assertEqual(result.totals, TimesheetTotals())

    def test_blank_description_blocks_worked_line(self) -> None:
        entry = DayEntry(
            date=date(2026, 3, 2),
            day_type=DayType.WORKDAY,
            project_lines=(ProjectLine(id="L1", description="  ", hours=8),),
        )
        self.assertEqual(calculate_day(entry, CONFIG).blocking_errors, ("PROJECT_DESCRIPTION_REQUIRED",))

    def test_long_notes_only_warn(self) -> None:
        result = calculate_day(_entry(date(2026, 3, 2), 8, notes="x" * 501), CONFIG)

        self.assertEqual(result.warnings, ("NOTES_TOO_LONG",))
        self.assertEqual(result.blocking_errors, ())
        self.assertEqual(result.normal_minutes, 480)

    def test_unparseable_hours_count_as_zero(self) -> None:
        entry = DayEntry(
            date=date(2026, 3, 2),
            day_type=DayType.WORKDAY,
            project_lines=(
                ProjectLine(id="L1", description="a", hours="abc"),  # type: ignore[arg-type]
                ProjectLine(id="L2", description="b", hours=float("nan")),
                ProjectLine(id="L3", description="c", hours=7.5),
            ),
        )
        self.assertEqual(worked_minutes_for(entry), 450)

    def test_minutes_round_half_up(self) -> None:
        entry = _entry(date(2026, 3, 2), 0.125)
        self.assertEqual(worked_minutes_for(entry), 8)


class CalculatePeriodTests(unittest.TestCase):
    def test_overtime_flags_manager_approval(self) -> None:
        day = date(2026, 3, 2)
        result = calculate_period([_entry(day, 9.5)], CONFIG)

        self.assertTrue(result.requires_manager_approval)
        codes = [(item.code, item.date) for item in result.exceptions]
        self.assertIn(("OT_APPROVAL_REQUIRED", day), codes)
        self.assertFalse(result.has_blocking_errors)

    def test_worked_public_holiday_flags_approval(self) -> None:
        entry = _entry(date(2026, 3, 9), 4, day_type=DayType.PUBLIC_HOLIDAY)
        result = calculate_period([entry], CONFIG)

        self.assertTrue(result.requires_manager_approval)
        self.assertEqual(result.exceptions[0].code, "PH_WORKED_APPROVAL_REQUIRED")

    def test_totals_equal_sum_of_days(self) -> None:
        entries = [
            _entry(date(2026, 3, 2), 8),
            _entry(date(2026, 3, 3), 9),
            _entry(date(2026, 3, 6), 6),
            _entry(date(2026, 3, 9), absence_code="SL"),
            _entry(date(2026, 3, 14), 3),
        ]

        result = calculate_period(entries, CONFIG)

        summed = TimesheetTotals()
        for entry in entries:
            summed = summed + calculate_day(entry, CONFIG).totals
        self.assertEqual(result.period_totals, summed)
        weekly_sum = TimesheetTotals()
        for bucket in result.weekly:
            weekly_sum = weekly_sum + bucket.totals
        self.assertEqual(weekly_sum, result.period_totals)
        self.assertEqual(result.period_totals.normal_minutes, 480 + 480 + 360)
        self.assertEqual(result.period_totals.overtime_minutes, 60 + 180)
        self.assertEqual(result.period_totals.leave_minutes, 480)

    def test_weekly_buckets_sorted_by_label(self) -> None:
        entries = [_entry(date(2026, 3, 20), 8), _entry(date(2026, 3, 2), 8)]
        result = calculate_period(entries, CONFIG)

        labels = [bucket.week_label for bucket in result.weekly]
        self.assertEqual(labels, sorted(labels))

    def test_blocking_error_is_reported(self) -> None:
        result = calculate_period([_entry(date(2026, 3, 2), 2, absence_code="AL")], CONFIG)

        self.assertTrue(result.has_blocking_errors)
        self.assertEqual(result.exceptions[0].severity, "ERROR")

    def test_empty_period(self) -> None:
        result = calculate_period([], CONFIG)

        self.assertEqual(result.period_totals, TimesheetTotals())
        self.assertEqual(result.weekly, ())
        self.assertFalse(result.has_blocking_errors)


class TotalsAndLabelTests(unittest.TestCase):
    def test_totals_identity_and_associativity(self) -> None:
        a = TimesheetTotals(1, 2, 3, 4)
        b = TimesheetTotals(5, 6, 7, 8)
        c = TimesheetTotals(9, 10, 11, 12)

        self.assertEqual(a + TimesheetTotals(), a)
        self.assertEqual(TimesheetTotals() + a, a)
        self.assertEqual((a + b) + c, a + (b + c))
        self.assertEqual(a.paid_minutes, 10)

    def test_week_label_counts_from_first_of_year(self) -> None:
        self.assertEqual(week_label(date(2026, 1, 1)), "2026-W01")
        self.assertEqual(week_label(date(2026, 1, 7)), "2026-W01")
        self.assertEqual(week_label(date(2026, 1, 8)), "2026-W02")
        self.assertEqual(week_label(date(2026, 12, 31)), "2026-W53")


if __name__ == "__main__":
    unittest.main()
