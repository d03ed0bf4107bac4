"""
Statistics Aggregator Service

Rolls raw engagement events up into the daily, weekly, monthly and yearly
summary tables. Every write is an upsert keyed by (track, period), so re-running
a job with unchanged inputs rewrites identical rows.

Each run is also recorded in aggregation_runs together with whether the period
was complete: a day is complete once it has ended, a coarser period once every
period rolled into it was complete. Readers only substitute complete periods
for raw events.
"""

from __future__ import annotations

import logging
from datetime import date, datetime, timedelta, timezone, tzinfo
from typing import Callable

from streamstats.db.repository import AnalyticsRepository
from streamstats.services.analytics_models import Granularity, TrackStats
from streamstats.services.periods import (
    as_date,
    child_periods,
    day_window,
    is_month_start,
    is_week_start,
    is_year_start,
    month_end,
    month_start,
    week_end,
    week_start,
    year_bounds,
)
from streamstats.services.rollup import rollup_rows

logger = logging.getLogger(__name__)


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


class StatsAggregator:
    """Service for building the per-track summary tables."""

    def __init__(
        self,
        repository: AnalyticsRepository,
        tz: tzinfo = timezone.utc,
        clock: Callable[[], datetime] = _utc_now,
    ) -> None:
        self.repository = repository
        self.tz = tz
        self.clock = clock

    def _local_date(self, value: date | datetime) -> date:
        if isinstance(value, datetime) and value.tzinfo is not None:
            return value.astimezone(self.tz).date()
        return as_date(value)

    def aggregate_daily(self, day: date | datetime) -> int:
        """
        Fold one day's raw events into a daily_stats row per active track.

        Tracks without a play, like, share or download event that day get no
        row. A day aggregated before it has ended is recorded as incomplete.

        Args:
            day: Date (or datetime, truncated to its local day)

        Returns:
            Number of rows written
        """
        day = self._local_date(day)
        window = day_window(day, self.tz)

        try:
            summaries = self.repository.summarize_events_by_track(window.start, window.end)
            rows = [
                TrackStats(track_id=summary.track_id, period=day, metrics=summary.to_metrics())
                for summary in summaries
            ]
            written = self.repository.upsert_stats(Granularity.DAILY, rows)
            complete = self.clock() >= window.end
            self.repository.record_aggregation(Granularity.DAILY, day, complete)
        except Exception:
            logger.exception(f"Error in daily aggregation for {day.isoformat()}")
            raise

        logger.info(
            f"Daily aggregation for {day.isoformat()}: {written} tracks"
            + ("" if complete else " (day still open)")
        )
        return written

    def aggregate_weekly(self, start: date | datetime) -> int:
        """Roll daily rows of the ISO week starting at ``start`` into weekly_stats."""
        start = week_start(self._local_date(start))
        return self._rollup(Granularity.WEEKLY, start, start, start, week_end(start))

    def aggregate_monthly(self, start: date | datetime) -> int:
        """Roll weekly rows whose week starts inside the month into monthly_stats."""
        start = month_start(self._local_date(start))
        return self._rollup(Granularity.MONTHLY, start, start, start, month_end(start))

    def aggregate_yearly(self, year: int) -> int:
        """Roll monthly rows of ``year`` into yearly_stats."""
        first, last = year_bounds(year)
        return self._rollup(Granularity.YEARLY, year, first, first, last)

    def _children_complete(self, granularity: Granularity, start: date, first: date, last: date) -> bool:
        expected = set(child_periods(granularity, start))
        done = self.repository.completed_periods(granularity.child, first, last)
        return expected <= done

    def _rollup(
        self,
        granularity: Granularity,
        period: date | int,
        start: date,
        first: date,
        last: date,
    ) -> int:
        child = granularity.child
        try:
            children = self.repository.fetch_stats(child, first, last)
            rows = rollup_rows(children, period)
            written = self.repository.upsert_stats(granularity, rows)
            complete = self._children_complete(granularity, start, first, last)
            self.repository.record_aggregation(granularity, start, complete)
        except Exception:
            logger.exception(f"Error in {granularity.label} aggregation for {period}")
            raise

        logger.info(
            f"{granularity.label.capitalize()} aggregation for {period}: "
            f"{written} tracks from {len(children)} {child.label} rows"
            + ("" if complete else " (partial)")
        )
        return written

    def run_all_aggregations(self, day: date | datetime) -> dict[str, int]:
        """
        Run the daily job, then any rollup whose period starts on ``day``.

        Weekly runs on Mondays, monthly on the 1st and yearly on January 1st.
        Meant to be called once per day by an external scheduler; a skipped
        day leaves the coarser tables stale until that period is re-run.
        Rollups started on their first day only hold that day so far and are
        recorded as partial.

        Returns:
            Rows written per tier that ran
        """
        day = self._local_date(day)
        results: dict[str, int] = {}

        try:
            results[Granularity.DAILY.label] = self.aggregate_daily(day)

            if is_week_start(day):
                results[Granularity.WEEKLY.label] = self.aggregate_weekly(day)

            if is_month_start(day):
                results[Granularity.MONTHLY.label] = self.aggregate_monthly(day)

            if is_year_start(day):
                results[Granularity.YEARLY.label] = self.aggregate_yearly(day.year)
        except Exception:
            logger.exception(f"Error in run_all_aggregations for {day.isoformat()}")
            raise

        return results

    def backfill(self, first: date, last: date) -> dict[str, int]:
        """Re-run ``run_all_aggregations`` for every day in [first, last]."""
        totals: dict[str, int] = {}
        day = first
        while day <= last:
            for tier, written in self.run_all_aggregations(day).items():
                totals[tier] = totals.get(tier, 0) + written
            day += timedelta(days=1)
        return totals
