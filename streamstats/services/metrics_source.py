"""
Metrics Sources

Base play metrics for a set of tracks over a window can come straight from the
raw event tables or, for long windows, mostly from the summary tables.
Which one is used for a time range is decided by ``MetricsSourcePolicy``.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from dataclasses import replace
from datetime import date, datetime, timedelta, timezone, tzinfo
from typing import Sequence

from streamstats.db.repository import AnalyticsRepository
from streamstats.services.analytics_models import Granularity, PlayMetrics
from streamstats.services.periods import TimeRange, Window, day_window, rollup_days
from streamstats.services.rollup import combine_metrics

logger = logging.getLogger(__name__)

AUTO_AGGREGATED_RANGES = frozenset(
    {
        TimeRange.LAST_30D,
        TimeRange.LAST_90D,
        TimeRange.LAST_3M,
        TimeRange.LAST_1Y,
        TimeRange.ALL,
    }
)


class MetricsSource(ABC):
    name = "base"

    @abstractmethod
    def fetch(self, track_ids: Sequence[str], window: Window) -> PlayMetrics:
        """Base play metrics for ``track_ids`` over ``window``."""


class RawEventMetricsSource(MetricsSource):
    """Computes every metric from the raw event tables."""

    name = "raw"

    def __init__(self, repository: AnalyticsRepository) -> None:
        self.repository = repository

    def fetch(self, track_ids: Sequence[str], window: Window) -> PlayMetrics:
        if not track_ids:
            return PlayMetrics()
        summary = self.repository.summarize_events(track_ids, window.start, window.end)
        return summary.to_metrics()


# Coarsest first: a tier is used only where its whole span fits the window.
_ROLLUP_TIERS = (Granularity.YEARLY, Granularity.MONTHLY, Granularity.WEEKLY)


def _tier_start(granularity: Granularity, day: date) -> date:
    if granularity is Granularity.YEARLY:
        return date(day.year, 1, 1)
    if granularity is Granularity.MONTHLY:
        return day.replace(day=1)
    return day


class AggregatedMetricsSource(MetricsSource):
    """
    Covers the whole days inside the window with the coarsest complete summary
    rows that fit (yearly, monthly, weekly, then daily) and reads everything
    else from raw events: the partial first and last day, plus any day whose
    aggregation has not run or ran before the day was over.

    The result matches the raw computation. Counters add up across rows,
    skip/replay rates are weighted by plays and the duration/completion
    averages by the number of plays that reported a value. Unique plays and
    saves are counted from raw events over the whole window: distinct sessions
    do not add up across periods, and days with only save events have no
    summary row.
    """

    name = "aggregated"

    def __init__(
        self,
        repository: AnalyticsRepository,
        tz: tzinfo = timezone.utc,
        raw: RawEventMetricsSource | None = None,
    ) -> None:
        self.repository = repository
        self.tz = tz
        self.raw = raw or RawEventMetricsSource(repository)

    def _localize(self, moment: datetime) -> datetime:
        if moment.tzinfo is None:
            return moment.replace(tzinfo=self.tz)
        return moment.astimezone(self.tz)

    def plan(self, first: date, last: date) -> tuple[dict[Granularity, list[date]], list[tuple[date, date]]]:
        """
        Split the whole days [first, last] into summary periods and raw spans.

        Returns:
            Start dates of the periods to read per tier, and the inclusive
            day spans left to raw events
        """
        # Month and year starts may precede the first Monday they cover.
        completed = {
            granularity: self.repository.completed_periods(
                granularity, first - timedelta(days=7), last
            )
            for granularity in Granularity
        }
        periods: dict[Granularity, list[date]] = {granularity: [] for granularity in Granularity}
        raw_spans: list[tuple[date, date]] = []

        day = first
        while day <= last:
            chosen = None
            if day.weekday() == 0:
                for granularity in _ROLLUP_TIERS:
                    start = _tier_start(granularity, day)
                    span_first, span_last = rollup_days(granularity, start)
                    if span_first == day and span_last <= last and start in completed[granularity]:
                        chosen = granularity, start, span_last
                        break

            if chosen is not None:
                granularity, start, span_last = chosen
                periods[granularity].append(start)
                day = span_last + timedelta(days=1)
                continue

            if day in completed[Granularity.DAILY]:
                periods[Granularity.DAILY].append(day)
            elif raw_spans and raw_spans[-1][1] == day - timedelta(days=1):
                raw_spans[-1] = (raw_spans[-1][0], day)
            else:
                raw_spans.append((day, day))
            day += timedelta(days=1)

        return periods, raw_spans

    def _summary_parts(
        self, track_ids: Sequence[str], periods: dict[Granularity, list[date]]
    ) -> list[PlayMetrics]:
        parts: list[PlayMetrics] = []
        for granularity, starts in periods.items():
            if not starts:
                continue
            keys = {granularity.period_key(start) for start in starts}
            rows = self.repository.fetch_stats(granularity, min(keys), max(keys), track_ids)
            parts.extend(row.metrics for row in rows if row.period in keys)
        return parts

    def fetch(self, track_ids: Sequence[str], window: Window) -> PlayMetrics:
        if not track_ids:
            return PlayMetrics()

        start = self._localize(window.start)
        end = self._localize(window.end)

        first_full = start.date()
        if day_window(first_full, self.tz).start < start:
            first_full += timedelta(days=1)
        last_full = end.date() - timedelta(days=1)

        if first_full > last_full:
            logger.debug("Window shorter than a whole day, using raw events")
            return self.raw.fetch(track_ids, window)

        periods, raw_spans = self.plan(first_full, last_full)

        raw_windows: list[Window] = []

        def add_raw(piece: Window) -> None:
            if raw_windows and raw_windows[-1].end == piece.start:
                raw_windows[-1] = Window(raw_windows[-1].start, piece.end)
            else:
                raw_windows.append(piece)

        covered_start = day_window(first_full, self.tz).start
        covered_end = day_window(last_full, self.tz).end
        if start < covered_start:
            add_raw(Window(start, covered_start))
        for span_first, span_last in raw_spans:
            add_raw(Window(day_window(span_first, self.tz).start, day_window(span_last, self.tz).end))
        if covered_end < end:
            add_raw(Window(covered_end, end))

        logger.debug(
            "Aggregated cover: "
            + ", ".join(f"{len(starts)} {granularity.label}" for granularity, starts in periods.items())
            + f", {len(raw_windows)} raw windows"
        )

        parts = self._summary_parts(track_ids, periods)
        parts.extend(self.raw.fetch(track_ids, piece) for piece in raw_windows)

        combined = combine_metrics(parts)
        return replace(
            combined,
            unique_plays=self.repository.count_distinct_sessions(track_ids, start, end),
            total_saves=self.repository.count_saves(track_ids, start, end),
        )


class MetricsSourcePolicy:
    """
    Picks the metrics source for a time range.

    ``raw`` and ``aggregated`` always use that source; ``auto`` uses the
    aggregated source for ranges of 30 days or longer.
    """

    def __init__(
        self,
        raw: MetricsSource,
        aggregated: MetricsSource,
        policy: str = "auto",
    ) -> None:
        if policy not in ("raw", "aggregated", "auto"):
            raise ValueError(f"Unknown metrics source policy: {policy}")
        self.raw = raw
        self.aggregated = aggregated
        self.policy = policy

    def for_range(self, time_range: TimeRange) -> MetricsSource:
        if self.policy == "raw":
            return self.raw
        if self.policy == "aggregated":
            return self.aggregated
        return self.aggregated if time_range in AUTO_AGGREGATED_RANGES else self.raw
