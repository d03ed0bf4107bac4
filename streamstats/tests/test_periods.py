from __future__ import annotations

import unittest
from datetime import date, datetime, timedelta, timezone

from streamstats.errors import InputError, InvalidTimeRangeError
from streamstats.services.analytics_models import Granularity, PlayMetrics
from streamstats.services.periods import (
    TimeRange,
    Window,
    child_periods,
    first_week_start,
    month_end,
    resolve_window,
    rollup_days,
    shift_months,
    week_start,
)
from streamstats.services.rollup import combine_metrics
from streamstats.services.safe_math import weighted_average


class TimeRangeTest(unittest.TestCase):
    def test_parse_accepts_every_known_range(self) -> None:
        for value in ("24h", "7d", "30d", "90d", "3m", "1y", "all"):
            self.assertEqual(TimeRange.parse(value).value, value)

    def test_unknown_range_is_rejected(self) -> None:
        with self.assertRaises(InvalidTimeRangeError) as ctx:
            TimeRange.parse("2w")
        self.assertIsInstance(ctx.exception, InputError)
        self.assertIn("2w", str(ctx.exception))
        self.assertIn("24h", str(ctx.exception))


class ResolveWindowTest(unittest.TestCase):
    NOW = datetime(2024, 5, 31, 12, 0, tzinfo=timezone.utc)

    def test_fixed_day_ranges(self) -> None:
        self.assertEqual(resolve_window("24h", self.NOW).duration, timedelta(days=1))
        self.assertEqual(resolve_window("7d", self.NOW).duration, timedelta(days=7))
        self.assertEqual(resolve_window("90d", self.NOW).duration, timedelta(days=90))

    def test_calendar_month_ranges_clamp_the_day(self) -> None:
        window = resolve_window("3m", self.NOW)
        self.assertEqual(window.start, datetime(2024, 2, 29, 12, 0, tzinfo=timezone.utc))
        self.assertEqual(window.end, self.NOW)
        self.assertEqual(resolve_window("1y", self.NOW).start.year, 2023)

    def test_all_starts_at_configured_date(self) -> None:
        window = resolve_window("all", self.NOW, all_time_start=date(2021, 6, 1))
        self.assertEqual(window.start, datetime(2021, 6, 1, tzinfo=timezone.utc))

    def test_previous_window_has_equal_length(self) -> None:
        window = resolve_window("7d", self.NOW)
        previous = window.previous()
        self.assertEqual(previous.end, window.start)
        self.assertEqual(previous.duration, window.duration)

    def test_invalid_range_raises(self) -> None:
        with self.assertRaises(InvalidTimeRangeError):
            resolve_window("forever", self.NOW)


class CalendarHelpersTest(unittest.TestCase):
    def test_week_start_is_monday(self) -> None:
        self.assertEqual(week_start(date(2024, 3, 10)), date(2024, 3, 4))
        self.assertEqual(week_start(date(2024, 3, 4)), date(2024, 3, 4))

    def test_month_end_handles_leap_years(self) -> None:
        self.assertEqual(month_end(date(2024, 2, 1)), date(2024, 2, 29))
        self.assertEqual(month_end(date(2023, 2, 1)), date(2023, 2, 28))

    def test_shift_months_crosses_years(self) -> None:
        moment = datetime(2024, 1, 31, tzinfo=timezone.utc)
        self.assertEqual(shift_months(moment, -2), datetime(2023, 11, 30, tzinfo=timezone.utc))
        self.assertEqual(shift_months(moment, 13), datetime(2025, 2, 28, tzinfo=timezone.utc))

    def test_rollup_days_follow_week_starts(self) -> None:
        self.assertEqual(rollup_days(Granularity.DAILY, date(2024, 3, 5)), (date(2024, 3, 5), date(2024, 3, 5)))
        self.assertEqual(rollup_days(Granularity.WEEKLY, date(2024, 3, 4)), (date(2024, 3, 4), date(2024, 3, 10)))
        # March 2024 holds the weeks of the 4th through the 25th.
        self.assertEqual(rollup_days(Granularity.MONTHLY, date(2024, 3, 1)), (date(2024, 3, 4), date(2024, 3, 31)))
        # 2023's first Monday is January 2nd; 2024 starts on a Monday.
        self.assertEqual(rollup_days(Granularity.YEARLY, date(2023, 1, 1)), (date(2023, 1, 2), date(2023, 12, 31)))

    def test_child_periods(self) -> None:
        self.assertEqual(len(child_periods(Granularity.WEEKLY, date(2024, 3, 4))), 7)
        self.assertEqual(
            child_periods(Granularity.MONTHLY, date(2024, 4, 1)),
            [date(2024, 4, d) for d in (1, 8, 15, 22, 29)],
        )
        self.assertEqual(child_periods(Granularity.YEARLY, date(2024, 1, 1))[-1], date(2024, 12, 1))
        self.assertEqual(child_periods(Granularity.DAILY, date(2024, 1, 1)), [])

    def test_first_week_start(self) -> None:
        self.assertEqual(first_week_start(date(2024, 5, 1)), date(2024, 5, 6))
        self.assertEqual(first_week_start(date(2024, 4, 1)), date(2024, 4, 1))


class CombineMetricsTest(unittest.TestCase):
    def test_counters_sum_and_rates_weight_by_plays(self) -> None:
        combined = combine_metrics(
            [
                PlayMetrics(total_plays=1, unique_plays=1, total_likes=2, replay_rate=100.0),
                PlayMetrics(total_plays=3, unique_plays=2, total_likes=1, replay_rate=0.0),
            ]
        )
        self.assertEqual(combined.total_plays, 4)
        self.assertEqual(combined.unique_plays, 3)
        self.assertEqual(combined.total_likes, 3)
        self.assertAlmostEqual(combined.replay_rate, 25.0)

    def test_zero_play_parts_contribute_no_weight(self) -> None:
        combined = combine_metrics(
            [
                PlayMetrics(total_plays=0, total_shares=4, skip_rate=0.0),
                PlayMetrics(total_plays=2, skip_rate=50.0),
            ]
        )
        self.assertEqual(combined.total_shares, 4)
        self.assertAlmostEqual(combined.skip_rate, 50.0)

    def test_empty_input(self) -> None:
        self.assertEqual(combine_metrics([]), PlayMetrics())
        self.assertEqual(weighted_average([]), 0.0)

    def test_window_duration(self) -> None:
        start = datetime(2024, 1, 1, tzinfo=timezone.utc)
        self.assertEqual(Window(start, start + timedelta(hours=5)).duration, timedelta(hours=5))


if __name__ == "__main__":
    unittest.main()
