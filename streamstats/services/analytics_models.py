"""
Analytics Data Models

Plain value types shared by the aggregation jobs, the scoring engine and the
storage layer.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime
from enum import Enum

from streamstats.services.safe_math import percentage, safe_ratio


class Granularity(Enum):
    """Summary table tiers, finest first."""

    DAILY = ("daily", "daily_stats", "date")
    WEEKLY = ("weekly", "weekly_stats", "week_start")
    MONTHLY = ("monthly", "monthly_stats", "month_start")
    YEARLY = ("yearly", "yearly_stats", "year")

    def __init__(self, label: str, table: str, period_column: str) -> None:
        self.label = label
        self.table = table
        self.period_column = period_column

    @property
    def child(self) -> "Granularity | None":
        order = list(Granularity)
        index = order.index(self)
        return order[index - 1] if index > 0 else None

    def period_key(self, start: date) -> date | int:
        """Value of the period column for the period starting at ``start``."""
        return start.year if self is Granularity.YEARLY else start


# Counters summed exactly during a rollup.
ADDITIVE_FIELDS = (
    "total_plays",
    "unique_plays",
    "total_likes",
    "total_shares",
    "total_downloads",
    "total_saves",
    "duration_samples",
    "completion_samples",
)

# Rates/averages recomputed during a rollup, each weighted by the counter it
# was averaged over: plays that reported a value for the averages, all plays
# for the rates.
RATE_WEIGHTS = {
    "avg_duration": "duration_samples",
    "avg_completion_rate": "completion_samples",
    "skip_rate": "total_plays",
    "replay_rate": "total_plays",
}

WEIGHTED_FIELDS = tuple(RATE_WEIGHTS)

METRIC_FIELDS = ADDITIVE_FIELDS + WEIGHTED_FIELDS


@dataclass(frozen=True)
class EventSummary:
    """Sufficient statistics for the raw events of one track (or a track set)."""

    track_id: str | None = None
    total_plays: int = 0
    unique_sessions: int = 0
    total_likes: int = 0
    total_shares: int = 0
    total_downloads: int = 0
    total_saves: int = 0
    duration_sum: float = 0.0
    duration_samples: int = 0
    completion_sum: float = 0.0
    completion_samples: int = 0
    skipped_plays: int = 0
    replayed_plays: int = 0

    def to_metrics(self) -> "PlayMetrics":
        return PlayMetrics(
            total_plays=self.total_plays,
            unique_plays=self.unique_sessions,
            total_likes=self.total_likes,
            total_shares=self.total_shares,
            total_downloads=self.total_downloads,
            total_saves=self.total_saves,
            duration_samples=self.duration_samples,
            completion_samples=self.completion_samples,
            avg_duration=safe_ratio(self.duration_sum, self.duration_samples),
            avg_completion_rate=safe_ratio(self.completion_sum, self.completion_samples),
            skip_rate=percentage(self.skipped_plays, self.total_plays),
            replay_rate=percentage(self.replayed_plays, self.total_plays),
        )


@dataclass(frozen=True)
class PlayMetrics:
    total_plays: int = 0
    unique_plays: int = 0
    total_likes: int = 0
    total_shares: int = 0
    total_downloads: int = 0
    total_saves: int = 0
    duration_samples: int = 0
    completion_samples: int = 0
    avg_duration: float = 0.0
    avg_completion_rate: float = 0.0
    skip_rate: float = 0.0
    replay_rate: float = 0.0


@dataclass(frozen=True)
class TrackStats:
    """One row of a summary table."""

    track_id: str
    period: date | int
    metrics: PlayMetrics


@dataclass(frozen=True)
class SessionStats:
    total_sessions: int = 0
    repeat_sessions: int = 0


@dataclass(frozen=True)
class ArtistMetrics:
    base: PlayMetrics = field(default_factory=PlayMetrics)
    growth_velocity: float = 0.0
    viral_coefficient: float = 0.0
    geographic_reach: int = 0
    cross_platform_score: float = 0.0
    retention_rate: float = 0.0


@dataclass(frozen=True)
class ArtistRef:
    artist_id: str
    artist_name: str


@dataclass(frozen=True)
class StrengthScore:
    artist_id: str
    time_range: str
    engagement_score: float
    growth_score: float
    quality_score: float
    potential_score: float
    overall_score: float
    updated_at: datetime | None = None
    artist_name: str | None = None

    def as_dict(self) -> dict:
        return {
            "artist_id": self.artist_id,
            "artist_name": self.artist_name,
            "time_range": self.time_range,
            "overall_score": self.overall_score,
            "engagement_score": self.engagement_score,
            "growth_score": self.growth_score,
            "quality_score": self.quality_score,
            "potential_score": self.potential_score,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }


@dataclass(frozen=True)
class ScoreStatus:
    time_range: str
    scored_artists: int
    active_artists: int
    last_calculated: datetime | None
