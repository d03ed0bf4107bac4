"""
Engagement Analytics

Read-side view over the engagement data of one track, one artist's tracks or
the whole catalog. Long ranges are served from the summary tables through the
same metrics sources the scoring engine uses, so a figure reported here equals
the one a score was computed from.
"""

from __future__ import annotations

import logging
from datetime import date, datetime, timezone
from typing import Any, Callable

from streamstats.db.repository import AnalyticsRepository
from streamstats.errors import InputError
from streamstats.services.analytics_models import PlayMetrics
from streamstats.services.metrics_source import (
    AggregatedMetricsSource,
    MetricsSourcePolicy,
    RawEventMetricsSource,
)
from streamstats.services.periods import TimeRange, resolve_window

logger = logging.getLogger(__name__)

METRICS = ("plays", "likes", "shares", "downloads", "saves")

# Counter reported for each non-play metric.
_COUNTER_FIELDS = {
    "likes": "total_likes",
    "shares": "total_shares",
    "downloads": "total_downloads",
    "saves": "total_saves",
}

TOP_TRACKS_LIMIT = 10


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


def _play_view(metrics: PlayMetrics) -> dict[str, Any]:
    return {
        "total_plays": metrics.total_plays,
        "unique_plays": metrics.unique_plays,
        "avg_duration": round(metrics.avg_duration, 2),
        "avg_completion_rate": round(metrics.avg_completion_rate, 2),
        "skip_rate": round(metrics.skip_rate, 2),
        "replay_rate": round(metrics.replay_rate, 2),
    }


class EngagementAnalytics:
    """Service answering engagement queries for a track, an artist or globally."""

    def __init__(
        self,
        repository: AnalyticsRepository,
        metrics_policy: MetricsSourcePolicy | None = None,
        clock: Callable[[], datetime] = _utc_now,
        all_time_start: date = date(2020, 1, 1),
    ) -> None:
        self.repository = repository
        self.metrics_policy = metrics_policy or MetricsSourcePolicy(
            raw=RawEventMetricsSource(repository),
            aggregated=AggregatedMetricsSource(repository),
            policy="auto",
        )
        self.clock = clock
        self.all_time_start = all_time_start

    def query(
        self,
        time_range: str | TimeRange = "7d",
        metric: str = "plays",
        track_id: str | None = None,
        artist_id: str | None = None,
    ) -> dict[str, Any]:
        """
        Engagement figures for ``metric`` over a lookback window.

        The scope is ``track_id`` when given, else every track of
        ``artist_id``, else every track in the catalog.

        Raises:
            InputError: on an unknown metric or when both ids are given
            InvalidTimeRangeError: if ``time_range`` is not a known range
        """
        if metric not in METRICS:
            raise InputError(f"Invalid metric {metric!r}. Must be one of: {', '.join(METRICS)}")
        if track_id and artist_id:
            raise InputError("Pass either track_id or artist_id, not both")

        time_range = TimeRange.parse(time_range)
        window = resolve_window(time_range, self.clock(), self.all_time_start)

        if track_id:
            scope = {"scope": "track", "track_id": track_id}
            track_ids = [track_id]
        elif artist_id:
            scope = {"scope": "artist", "artist_id": artist_id}
            track_ids = self.repository.list_artist_track_ids(artist_id)
        else:
            scope = {"scope": "global"}
            track_ids = self.repository.list_track_ids()

        source = self.metrics_policy.for_range(time_range)
        metrics = source.fetch(track_ids, window)
        logger.debug(
            f"Analytics {metric} for {scope['scope']} over {time_range.value}: "
            f"{len(track_ids)} tracks via {source.name} source"
        )

        if metric == "plays":
            data = _play_view(metrics)
            data["source_breakdown"] = self.repository.source_play_counts(
                track_ids, window.start, window.end
            )
            if scope["scope"] == "artist":
                data["tracks_count"] = len(track_ids)
            elif scope["scope"] == "global":
                data["top_tracks"] = self._top_tracks(window.start, window.end)
        else:
            field = _COUNTER_FIELDS[metric]
            data = {field: getattr(metrics, field)}

        return {
            **scope,
            "time_range": time_range.value,
            "metric": metric,
            "source": source.name,
            "window": {"start": window.start.isoformat(), "end": window.end.isoformat()},
            "data": data,
        }

    def _top_tracks(self, start: datetime, end: datetime) -> list[dict[str, Any]]:
        summaries = [
            summary
            for summary in self.repository.summarize_events_by_track(start, end)
            if summary.total_plays > 0
        ]
        summaries.sort(key=lambda summary: (-summary.total_plays, summary.track_id))
        return [
            {"track_id": summary.track_id, "plays": summary.total_plays}
            for summary in summaries[:TOP_TRACKS_LIMIT]
        ]
