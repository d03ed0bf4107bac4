from __future__ import annotations

import unittest
from datetime import date, timedelta
from zoneinfo import ZoneInfo

from streamstats.errors import StorageError
from streamstats.services.analytics_models import Granularity, PlayMetrics, TrackStats
from streamstats.services.stats_aggregator import StatsAggregator
from streamstats.tests.fakes import InMemoryAnalyticsRepository, utc


class FailingUpsertRepository(InMemoryAnalyticsRepository):
    def upsert_stats(self, granularity, rows):
        raise StorageError("connection lost")


def _daily_row(track_id: str, day: date, plays: int, **fields) -> TrackStats:
    fields.setdefault("duration_samples", plays)
    fields.setdefault("completion_samples", plays)
    return TrackStats(
        track_id=track_id,
        period=day,
        metrics=PlayMetrics(total_plays=plays, unique_plays=plays, **fields),
    )


class DailyAggregationTest(unittest.TestCase):
    def setUp(self) -> None:
        self.repo = InMemoryAnalyticsRepository()
        self.aggregator = StatsAggregator(self.repo)

    def test_day_without_events_writes_nothing(self) -> None:
        self.repo.add_play("t1", "s1", utc(2024, 3, 4, 12))

        written = self.aggregator.aggregate_daily(date(2024, 3, 5))

        self.assertEqual(written, 0)
        self.assertEqual(self.repo.stats[Granularity.DAILY], {})

    def test_unique_plays_counts_distinct_sessions(self) -> None:
        for minute in range(3):
            self.repo.add_play("t1", "shared", utc(2024, 3, 5, 10, minute))
        for index in range(7):
            self.repo.add_play("t1", f"s{index}", utc(2024, 3, 5, 11, index))

        self.aggregator.aggregate_daily(date(2024, 3, 5))

        metrics = self.repo.stats[Granularity.DAILY][("t1", date(2024, 3, 5))].metrics
        self.assertEqual(metrics.total_plays, 10)
        self.assertEqual(metrics.unique_plays, 8)
        self.assertLessEqual(metrics.unique_plays, metrics.total_plays)

    def test_rates_and_interaction_counts(self) -> None:
        day = date(2024, 3, 5)
        self.repo.add_play("t1", "a", utc(2024, 3, 5, 9), duration=200, completion_rate=100, replayed=True)
        self.repo.add_play("t1", "b", utc(2024, 3, 5, 9), duration=100, completion_rate=50, skipped=True)
        self.repo.add_play("t1", "c", utc(2024, 3, 5, 9), skipped=True)
        self.repo.add_play("t1", "d", utc(2024, 3, 5, 9))
        self.repo.add_interaction("like", "t1", utc(2024, 3, 5, 10), action="like")
        self.repo.add_interaction("like", "t1", utc(2024, 3, 5, 10), action="unlike")
        self.repo.add_interaction("share", "t1", utc(2024, 3, 5, 10))
        self.repo.add_interaction("download", "t1", utc(2024, 3, 5, 10))
        self.repo.add_interaction("save", "t1", utc(2024, 3, 5, 10), action="save")

        self.aggregator.aggregate_daily(day)

        metrics = self.repo.stats[Granularity.DAILY][("t1", day)].metrics
        self.assertEqual(metrics.total_likes, 1)
        self.assertEqual(metrics.total_shares, 1)
        self.assertEqual(metrics.total_downloads, 1)
        self.assertEqual(metrics.total_saves, 1)
        # Averages use only plays that reported a value.
        self.assertAlmostEqual(metrics.avg_duration, 150.0)
        self.assertAlmostEqual(metrics.avg_completion_rate, 75.0)
        self.assertAlmostEqual(metrics.skip_rate, 50.0)
        self.assertAlmostEqual(metrics.replay_rate, 25.0)

    def test_track_with_only_a_like_gets_a_row(self) -> None:
        day = date(2024, 3, 5)
        self.repo.add_interaction("like", "t2", utc(2024, 3, 5, 8), action="like")
        self.repo.add_interaction("save", "t3", utc(2024, 3, 5, 8), action="save")

        written = self.aggregator.aggregate_daily(day)

        self.assertEqual(written, 1)
        metrics = self.repo.stats[Granularity.DAILY][("t2", day)].metrics
        self.assertEqual(metrics.total_plays, 0)
        self.assertEqual(metrics.total_likes, 1)
        self.assertEqual(metrics.skip_rate, 0.0)

    def test_window_is_half_open(self) -> None:
        self.repo.add_play("t1", "s1", utc(2024, 3, 5, 0, 0))
        self.repo.add_play("t1", "s2", utc(2024, 3, 6, 0, 0))

        self.aggregator.aggregate_daily(date(2024, 3, 5))

        metrics = self.repo.stats[Granularity.DAILY][("t1", date(2024, 3, 5))].metrics
        self.assertEqual(metrics.total_plays, 1)

    def test_rerun_is_idempotent(self) -> None:
        day = date(2024, 3, 5)
        self.repo.add_play("t1", "s1", utc(2024, 3, 5, 9), completion_rate=80)
        self.repo.add_play("t2", "s2", utc(2024, 3, 5, 9))

        first = self.aggregator.aggregate_daily(day)
        snapshot = dict(self.repo.stats[Granularity.DAILY])
        second = self.aggregator.aggregate_daily(day)

        self.assertEqual(first, second)
        self.assertEqual(self.repo.stats[Granularity.DAILY], snapshot)

    def test_local_timezone_decides_the_day(self) -> None:
        aggregator = StatsAggregator(self.repo, tz=ZoneInfo("America/New_York"))
        # 03:00 UTC on March 5th is still March 4th in New York.
        self.repo.add_play("t1", "s1", utc(2024, 3, 5, 3))

        aggregator.aggregate_daily(date(2024, 3, 4))

        self.assertIn(("t1", date(2024, 3, 4)), self.repo.stats[Granularity.DAILY])

    def test_storage_failure_propagates(self) -> None:
        repo = FailingUpsertRepository()
        repo.add_play("t1", "s1", utc(2024, 3, 5, 9))

        with self.assertLogs("streamstats.services.stats_aggregator", level="ERROR"):
            with self.assertRaises(StorageError):
                StatsAggregator(repo).aggregate_daily(date(2024, 3, 5))


class RollupTest(unittest.TestCase):
    def setUp(self) -> None:
        self.repo = InMemoryAnalyticsRepository()
        self.aggregator = StatsAggregator(self.repo)

    def _seed_daily(self, rows) -> None:
        self.repo.upsert_stats(Granularity.DAILY, rows)

    def test_weekly_totals_equal_sum_of_days(self) -> None:
        monday = date(2024, 3, 4)
        rows = [_daily_row("t1", monday + timedelta(days=offset), plays=offset + 1) for offset in range(7)]
        rows.append(_daily_row("t1", monday + timedelta(days=7), plays=100))
        self._seed_daily(rows)

        written = self.aggregator.aggregate_weekly(monday)

        self.assertEqual(written, 1)
        weekly = self.repo.stats[Granularity.WEEKLY][("t1", monday)].metrics
        self.assertEqual(weekly.total_plays, sum(range(1, 8)))
        self.assertEqual(weekly.unique_plays, sum(range(1, 8)))

    def test_weekly_rates_are_play_weighted(self) -> None:
        monday = date(2024, 3, 4)
        self._seed_daily(
            [
                _daily_row("t1", monday, plays=1, avg_completion_rate=100.0, skip_rate=0.0),
                _daily_row("t1", monday + timedelta(days=1), plays=99, avg_completion_rate=0.0, skip_rate=100.0),
            ]
        )

        self.aggregator.aggregate_weekly(monday)

        weekly = self.repo.stats[Granularity.WEEKLY][("t1", monday)].metrics
        self.assertAlmostEqual(weekly.avg_completion_rate, 1.0)
        self.assertAlmostEqual(weekly.skip_rate, 99.0)

    def test_weekly_normalizes_to_monday(self) -> None:
        monday = date(2024, 3, 4)
        self._seed_daily([_daily_row("t1", monday, plays=3)])

        self.aggregator.aggregate_weekly(date(2024, 3, 7))

        self.assertIn(("t1", monday), self.repo.stats[Granularity.WEEKLY])

    def test_monthly_uses_weeks_starting_in_month(self) -> None:
        self.repo.upsert_stats(
            Granularity.WEEKLY,
            [
                _daily_row("t1", date(2024, 2, 26), plays=50),
                _daily_row("t1", date(2024, 3, 4), plays=5),
                _daily_row("t1", date(2024, 3, 25), plays=7),
                _daily_row("t1", date(2024, 4, 1), plays=70),
            ],
        )

        self.aggregator.aggregate_monthly(date(2024, 3, 15))

        monthly = self.repo.stats[Granularity.MONTHLY][("t1", date(2024, 3, 1))].metrics
        self.assertEqual(monthly.total_plays, 12)

    def test_yearly_rolls_up_months(self) -> None:
        self.repo.upsert_stats(
            Granularity.MONTHLY,
            [
                _daily_row("t1", date(2023, 1, 1), plays=4),
                _daily_row("t1", date(2023, 12, 1), plays=6),
                _daily_row("t2", date(2023, 6, 1), plays=1),
                _daily_row("t1", date(2024, 1, 1), plays=100),
            ],
        )

        written = self.aggregator.aggregate_yearly(2023)

        self.assertEqual(written, 2)
        yearly = self.repo.stats[Granularity.YEARLY]
        self.assertEqual(yearly[("t1", 2023)].metrics.total_plays, 10)
        self.assertEqual(yearly[("t2", 2023)].metrics.total_plays, 1)

    def test_empty_week_writes_nothing(self) -> None:
        self.assertEqual(self.aggregator.aggregate_weekly(date(2024, 3, 4)), 0)

    def test_averages_weighted_by_reported_samples(self) -> None:
        monday = date(2024, 3, 4)
        # Two plays on Monday, only one of which reported a duration.
        self._seed_daily(
            [
                _daily_row("t1", monday, plays=2, duration_samples=1, avg_duration=100.0),
                _daily_row("t1", monday + timedelta(days=1), plays=1, avg_duration=10.0),
            ]
        )

        self.aggregator.aggregate_weekly(monday)

        weekly = self.repo.stats[Granularity.WEEKLY][("t1", monday)].metrics
        self.assertAlmostEqual(weekly.avg_duration, 55.0)
        self.assertEqual(weekly.duration_samples, 2)


class CompletenessTest(unittest.TestCase):
    def setUp(self) -> None:
        self.repo = InMemoryAnalyticsRepository()

    def _aggregator(self, now) -> StatsAggregator:
        return StatsAggregator(self.repo, clock=lambda: now)

    def test_day_aggregated_after_it_ends_is_complete(self) -> None:
        self._aggregator(utc(2024, 3, 6)).aggregate_daily(date(2024, 3, 5))
        self.assertTrue(self.repo.aggregation_runs[(Granularity.DAILY, date(2024, 3, 5))])

    def test_open_day_is_incomplete(self) -> None:
        self._aggregator(utc(2024, 3, 5, 12)).aggregate_daily(date(2024, 3, 5))
        self.assertFalse(self.repo.aggregation_runs[(Granularity.DAILY, date(2024, 3, 5))])

    def test_week_needs_every_day_complete(self) -> None:
        monday = date(2024, 3, 4)
        aggregator = self._aggregator(utc(2024, 3, 20))
        self.repo.mark_complete(Granularity.DAILY, [monday + timedelta(days=n) for n in range(6)])

        aggregator.aggregate_weekly(monday)
        self.assertFalse(self.repo.aggregation_runs[(Granularity.WEEKLY, monday)])

        aggregator.aggregate_daily(monday + timedelta(days=6))
        aggregator.aggregate_weekly(monday)
        self.assertTrue(self.repo.aggregation_runs[(Granularity.WEEKLY, monday)])

    def test_scheduled_monday_rollup_is_partial(self) -> None:
        # Run just after midnight for the Monday that just ended.
        aggregator = self._aggregator(utc(2024, 3, 5, 0, 5))

        aggregator.run_all_aggregations(date(2024, 3, 4))

        self.assertTrue(self.repo.aggregation_runs[(Granularity.DAILY, date(2024, 3, 4))])
        self.assertFalse(self.repo.aggregation_runs[(Granularity.WEEKLY, date(2024, 3, 4))])

    def test_month_needs_weeks_starting_inside_it(self) -> None:
        aggregator = self._aggregator(utc(2024, 5, 1))
        self.repo.mark_complete(Granularity.WEEKLY, [date(2024, 3, 4), date(2024, 3, 11), date(2024, 3, 18)])

        aggregator.aggregate_monthly(date(2024, 3, 1))
        self.assertFalse(self.repo.aggregation_runs[(Granularity.MONTHLY, date(2024, 3, 1))])

        self.repo.mark_complete(Granularity.WEEKLY, [date(2024, 3, 25)])
        aggregator.aggregate_monthly(date(2024, 3, 1))
        self.assertTrue(self.repo.aggregation_runs[(Granularity.MONTHLY, date(2024, 3, 1))])

    def test_year_is_recorded_on_january_first(self) -> None:
        self.repo.mark_complete(Granularity.MONTHLY, [date(2023, month, 1) for month in range(1, 13)])

        self._aggregator(utc(2024, 2, 1)).aggregate_yearly(2023)

        self.assertTrue(self.repo.aggregation_runs[(Granularity.YEARLY, date(2023, 1, 1))])


class OrchestratorTest(unittest.TestCase):
    def setUp(self) -> None:
        self.repo = InMemoryAnalyticsRepository()
        self.aggregator = StatsAggregator(self.repo)

    def test_ordinary_day_runs_only_daily(self) -> None:
        results = self.aggregator.run_all_aggregations(date(2024, 3, 5))
        self.assertEqual(list(results), ["daily"])

    def test_monday_runs_weekly(self) -> None:
        results = self.aggregator.run_all_aggregations(date(2024, 3, 4))
        self.assertEqual(list(results), ["daily", "weekly"])

    def test_first_of_month_runs_monthly(self) -> None:
        # 2024-02-01 is a Thursday.
        results = self.aggregator.run_all_aggregations(date(2024, 2, 1))
        self.assertEqual(list(results), ["daily", "monthly"])

    def test_new_year_on_monday_runs_every_tier(self) -> None:
        results = self.aggregator.run_all_aggregations(date(2024, 1, 1))
        self.assertEqual(list(results), ["daily", "weekly", "monthly", "yearly"])

    def test_daily_runs_before_rollups(self) -> None:
        self.repo.add_play("t1", "s1", utc(2024, 3, 4, 9))

        results = self.aggregator.run_all_aggregations(date(2024, 3, 4))

        # The Monday's own daily row is already visible to the weekly rollup.
        self.assertEqual(results, {"daily": 1, "weekly": 1})
        weekly = self.repo.stats[Granularity.WEEKLY][("t1", date(2024, 3, 4))].metrics
        self.assertEqual(weekly.total_plays, 1)

    def test_backfill_sums_rows_per_tier(self) -> None:
        self.repo.add_play("t1", "s1", utc(2024, 3, 3, 9))
        self.repo.add_play("t1", "s2", utc(2024, 3, 4, 9))

        totals = self.aggregator.backfill(date(2024, 3, 2), date(2024, 3, 5))

        self.assertEqual(totals, {"daily": 2, "weekly": 1})
        self.assertEqual(len(self.repo.stats[Granularity.DAILY]), 2)

    def test_failure_in_daily_stops_the_run(self) -> None:
        repo = FailingUpsertRepository()
        repo.add_play("t1", "s1", utc(2024, 3, 4, 9))

        with self.assertLogs("streamstats.services.stats_aggregator", level="ERROR"):
            with self.assertRaises(StorageError):
                StatsAggregator(repo).run_all_aggregations(date(2024, 3, 4))


if __name__ == "__main__":
    unittest.main()
