"""
Artist Strength Scoring

Turns an artist's play activity over a time range into four normalized
sub-scores (engagement, growth, quality, potential) and a weighted overall
score, all in [0, 100].
"""

from __future__ import annotations

import logging
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from typing import Any, Callable

from streamstats.db.repository import AnalyticsRepository
from streamstats.services.analytics_models import ArtistMetrics, SessionStats, StrengthScore
from streamstats.services.metrics_source import (
    AggregatedMetricsSource,
    MetricsSourcePolicy,
    RawEventMetricsSource,
)
from streamstats.services.periods import TimeRange, resolve_window
from streamstats.services.potential_model import PlaceholderPotentialModel, PotentialModel
from streamstats.services.safe_math import clamp, percentage, safe_ratio
from streamstats.services.stats_cache import StatsCache

logger = logging.getLogger(__name__)

OVERALL_WEIGHTS = {
    "engagement": 0.40,
    "growth": 0.30,
    "quality": 0.20,
    "potential": 0.10,
}

SCORE_CATEGORIES = (
    (90, "Superstar Potential"),
    (80, "Strong Commercial Viability"),
    (70, "Solid Artist with Good Potential"),
    (60, "Developing Artist with Promise"),
    (50, "Early Stage, Needs Development"),
)


def score_category(score: float) -> str:
    for threshold, label in SCORE_CATEGORIES:
        if score >= threshold:
            return label
    return "Requires Significant Improvement"


# ============================================================================
# Derived metrics
# ============================================================================

def growth_velocity(current_plays: int, previous_plays: int) -> float:
    """Relative change against the preceding window; 1 for a first appearance."""
    if previous_plays == 0:
        return 1.0 if current_plays > 0 else 0.0
    return (current_plays - previous_plays) / previous_plays


def cross_platform_score(source_counts: dict[str, int]) -> float:
    source_count = len(source_counts)
    if source_count == 0:
        return 0.0
    plays_per_source = sum(source_counts.values()) / source_count
    return min(source_count * 10 + plays_per_source / 10, 100.0)


def retention_rate(sessions: SessionStats) -> float:
    """Share of sessions that played the artist more than once, in percent."""
    return percentage(sessions.repeat_sessions, sessions.total_sessions)


# ============================================================================
# Sub-scores
# ============================================================================

def _to_percent(terms: tuple[tuple[float, float], ...]) -> float:
    return clamp(sum(weight * value for weight, value in terms)) * 100


def engagement_score(metrics: ArtistMetrics) -> float:
    base = metrics.base
    plays = base.total_plays
    terms = (
        (0.30, clamp(base.avg_completion_rate / 100)),
        (0.25, clamp(base.replay_rate / 100)),
        (0.20, clamp(safe_ratio(base.total_likes, plays) * 10)),  # 10% like rate saturates
        (0.15, clamp(safe_ratio(base.total_saves, plays) * 20)),  # 5% save rate saturates
        (0.10, clamp(safe_ratio(base.total_shares, plays) * 50)),  # 2% share rate saturates
    )
    return _to_percent(terms)


def growth_score(metrics: ArtistMetrics, days_in_range: int) -> float:
    base = metrics.base
    terms = (
        (0.40, clamp(safe_ratio(base.total_plays, days_in_range) / 100)),
        (0.30, clamp(safe_ratio(base.unique_plays, base.total_plays))),
        (0.20, clamp(metrics.geographic_reach / 10)),
        (0.10, clamp(metrics.growth_velocity)),
    )
    return _to_percent(terms)


def quality_score(metrics: ArtistMetrics, genre_fit: float) -> float:
    terms = (
        (0.40, clamp(1 - metrics.base.skip_rate / 100)),
        (0.30, clamp(metrics.retention_rate / 100)),
        (0.20, clamp(metrics.cross_platform_score / 100)),
        (0.10, clamp(genre_fit)),
    )
    return _to_percent(terms)


def potential_score(
    metrics: ArtistMetrics, market_position: float, demographic_appeal: float
) -> float:
    terms = (
        (0.50, clamp(metrics.viral_coefficient)),
        (0.30, clamp(market_position)),
        (0.20, clamp(demographic_appeal)),
    )
    return _to_percent(terms)


def overall_score(engagement: float, growth: float, quality: float, potential: float) -> float:
    combined = (
        engagement * OVERALL_WEIGHTS["engagement"]
        + growth * OVERALL_WEIGHTS["growth"]
        + quality * OVERALL_WEIGHTS["quality"]
        + potential * OVERALL_WEIGHTS["potential"]
    )
    return clamp(combined, 0.0, 100.0)


def score_breakdown(
    metrics: ArtistMetrics,
    genre_fit: float,
    market_position: float,
    demographic_appeal: float,
) -> dict[str, dict[str, float]]:
    base = metrics.base
    plays = base.total_plays
    return {
        "engagement": {
            "completion_rate": base.avg_completion_rate,
            "replay_rate": base.replay_rate,
            "like_rate": percentage(base.total_likes, plays),
            "save_rate": percentage(base.total_saves, plays),
            "share_rate": percentage(base.total_shares, plays),
        },
        "growth": {
            "play_velocity": metrics.growth_velocity,
            "unique_listener_ratio": percentage(base.unique_plays, plays),
            "geographic_expansion": metrics.geographic_reach,
            "time_consistency": metrics.growth_velocity,
        },
        "quality": {
            "skip_rate": base.skip_rate,
            "retention_rate": metrics.retention_rate,
            "cross_platform_score": metrics.cross_platform_score,
            "genre_fit": genre_fit * 100,
        },
        "potential": {
            "viral_coefficient": metrics.viral_coefficient,
            "market_position": market_position * 100,
            "demographic_appeal": demographic_appeal * 100,
        },
    }


@dataclass(frozen=True)
class StrengthScoreResult:
    artist_id: str
    time_range: str
    engagement_score: float
    growth_score: float
    quality_score: float
    potential_score: float
    overall_score: float
    breakdown: dict[str, dict[str, float]]
    calculated_at: datetime

    def to_record(self) -> StrengthScore:
        return StrengthScore(
            artist_id=self.artist_id,
            time_range=self.time_range,
            engagement_score=self.engagement_score,
            growth_score=self.growth_score,
            quality_score=self.quality_score,
            potential_score=self.potential_score,
            overall_score=self.overall_score,
            updated_at=self.calculated_at,
        )

    def as_dict(self) -> dict[str, Any]:
        return {
            "artist_id": self.artist_id,
            "time_range": self.time_range,
            "engagement_score": self.engagement_score,
            "growth_score": self.growth_score,
            "quality_score": self.quality_score,
            "potential_score": self.potential_score,
            "overall_score": self.overall_score,
            "score_category": score_category(self.overall_score),
            "breakdown": self.breakdown,
            "calculated_at": self.calculated_at.isoformat(),
        }


@dataclass
class BatchSummary:
    time_range: str
    succeeded: list[str] = field(default_factory=list)
    failed: dict[str, str] = field(default_factory=dict)
    skipped: list[str] = field(default_factory=list)

    def as_dict(self) -> dict[str, Any]:
        return {
            "time_range": self.time_range,
            "succeeded": len(self.succeeded),
            "failed": len(self.failed),
            "skipped": len(self.skipped),
            "errors": dict(self.failed),
        }


def _top_artists_prefix(time_range: TimeRange) -> str:
    return f"top_artists:{time_range.value}:"


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


class ArtistStrengthCalculator:
    """Service computing, storing and ranking artist strength scores."""

    def __init__(
        self,
        repository: AnalyticsRepository,
        metrics_policy: MetricsSourcePolicy | None = None,
        potential_model: PotentialModel | None = None,
        clock: Callable[[], datetime] = _utc_now,
        all_time_start: date = date(2020, 1, 1),
        cache: StatsCache | None = None,
        max_workers: int = 4,
    ) -> None:
        self.repository = repository
        self.metrics_policy = metrics_policy or MetricsSourcePolicy(
            raw=RawEventMetricsSource(repository),
            aggregated=AggregatedMetricsSource(repository),
            policy="raw",
        )
        self.potential_model = potential_model or PlaceholderPotentialModel()
        self.clock = clock
        self.all_time_start = all_time_start
        self.cache = cache or StatsCache()
        self.max_workers = max(1, max_workers)

    def calculate_artist_metrics(
        self, artist_id: str, time_range: str | TimeRange
    ) -> ArtistMetrics:
        """
        Gather base and derived metrics for an artist's tracks.

        Raises:
            InvalidTimeRangeError: if ``time_range`` is not a known range
        """
        time_range = TimeRange.parse(time_range)
        window = resolve_window(time_range, self.clock(), self.all_time_start)

        track_ids = self.repository.list_artist_track_ids(artist_id)
        if not track_ids:
            logger.debug(f"Artist {artist_id} has no tracks")
            return ArtistMetrics()

        source = self.metrics_policy.for_range(time_range)
        base = source.fetch(track_ids, window)

        previous = window.previous()
        previous_plays = self.repository.count_plays(track_ids, previous.start, previous.end)
        sessions = self.repository.session_stats(track_ids, window.start, window.end)
        sources = self.repository.source_play_counts(track_ids, window.start, window.end)
        # Distinct IPs stand in for distinct locations.
        geographic_reach = self.repository.count_distinct_ips(track_ids, window.start, window.end)

        return ArtistMetrics(
            base=base,
            growth_velocity=growth_velocity(base.total_plays, previous_plays),
            viral_coefficient=safe_ratio(base.total_plays, sessions.total_sessions),
            geographic_reach=geographic_reach,
            cross_platform_score=cross_platform_score(sources),
            retention_rate=retention_rate(sessions),
        )

    def score_metrics(
        self, artist_id: str, time_range: str | TimeRange, metrics: ArtistMetrics
    ) -> StrengthScoreResult:
        """Combine metrics into sub-scores without touching storage."""
        time_range = TimeRange.parse(time_range)
        genre_fit = self.potential_model.genre_fit(artist_id, time_range)
        market_position = self.potential_model.market_position(artist_id, time_range)
        demographic_appeal = self.potential_model.demographic_appeal(artist_id, time_range)

        if metrics.base.total_plays == 0:
            # No listening evidence in the window: nothing to rank on.
            engagement = growth = quality = potential = 0.0
        else:
            engagement = engagement_score(metrics)
            growth = growth_score(metrics, time_range.days)
            quality = quality_score(metrics, genre_fit)
            potential = potential_score(metrics, market_position, demographic_appeal)

        return StrengthScoreResult(
            artist_id=artist_id,
            time_range=time_range.value,
            engagement_score=engagement,
            growth_score=growth,
            quality_score=quality,
            potential_score=potential,
            overall_score=overall_score(engagement, growth, quality, potential),
            breakdown=score_breakdown(metrics, genre_fit, market_position, demographic_appeal),
            calculated_at=self.clock(),
        )

    def calculate_artist_strength_score(
        self, artist_id: str, time_range: str | TimeRange
    ) -> StrengthScoreResult:
        """
        Compute an artist's strength score and store it, replacing any
        previous score for the same time range.
        """
        time_range = TimeRange.parse(time_range)
        logger.info(f"Calculating strength score for artist {artist_id} ({time_range.value})")

        metrics = self.calculate_artist_metrics(artist_id, time_range)
        result = self.score_metrics(artist_id, time_range, metrics)

        self.repository.upsert_strength_score(result.to_record())
        self.cache.invalidate_pattern(_top_artists_prefix(time_range))

        logger.info(f"Strength score for artist {artist_id}: {result.overall_score:.2f}")
        return result

    def get_top_artists(self, time_range: str | TimeRange, limit: int = 50) -> list[dict[str, Any]]:
        """
        Stored scores for a time range, best first.

        Args:
            time_range: One of 24h, 7d, 30d, 90d, 3m, 1y, all
            limit: Maximum number of artists to return

        Returns:
            List of dicts with artist_id, artist_name, overall and sub-scores
        """
        time_range = TimeRange.parse(time_range)
        if limit < 1:
            return []

        prefix = _top_artists_prefix(time_range)
        cache_key = f"{prefix}{limit}"
        hit, value = self.cache.get(cache_key)
        if hit:
            return value

        # A score stored while the ranking is read must not be hidden behind
        # a cached copy of the older ranking.
        version = self.cache.version(prefix)

        scores = self.repository.fetch_strength_scores(time_range.value, limit)
        scores = sorted(scores, key=lambda s: (-s.overall_score, s.artist_id))[:limit]
        result = [
            {
                "artist_id": score.artist_id,
                "artist_name": score.artist_name,
                "overall_score": score.overall_score,
                "engagement_score": score.engagement_score,
                "growth_score": score.growth_score,
                "quality_score": score.quality_score,
                "potential_score": score.potential_score,
            }
            for score in scores
        ]
        self.cache.set(cache_key, result, prefix=prefix, expected_version=version)
        return result

    def batch_calculate_scores(
        self,
        time_range: str | TimeRange,
        resume_since: datetime | None = None,
    ) -> BatchSummary:
        """
        Score every active artist for a time range.

        A failure for one artist is logged and the batch moves on. With
        ``resume_since``, artists whose stored score was updated at or after
        that moment are skipped, so an interrupted batch can pick up where it
        stopped.
        """
        time_range = TimeRange.parse(time_range)
        summary = BatchSummary(time_range=time_range.value)

        logger.info(f"Starting batch calculation for {time_range.value}")
        artists = self.repository.list_active_artists()

        if resume_since is not None:
            done = self.repository.score_timestamps(time_range.value)
            pending = []
            for artist in artists:
                updated_at = done.get(artist.artist_id)
                if updated_at is not None and updated_at >= resume_since:
                    summary.skipped.append(artist.artist_id)
                else:
                    pending.append(artist)
            artists = pending

        logger.info(f"Calculating scores for {len(artists)} artists")

        with ThreadPoolExecutor(max_workers=self.max_workers) as executor:
            futures = {
                executor.submit(self.calculate_artist_strength_score, artist.artist_id, time_range): artist
                for artist in artists
            }
            for future in as_completed(futures):
                artist = futures[future]
                try:
                    future.result()
                except Exception as exc:  # noqa: BLE001
                    logger.error(
                        f"Failed to calculate score for {artist.artist_name} "
                        f"({artist.artist_id}): {exc}"
                    )
                    summary.failed[artist.artist_id] = str(exc)
                    continue
                logger.debug(f"Calculated score for {artist.artist_name}")
                summary.succeeded.append(artist.artist_id)

        logger.info(
            f"Batch calculation completed for {time_range.value}: "
            f"{len(summary.succeeded)} scored, {len(summary.failed)} failed, "
            f"{len(summary.skipped)} skipped"
        )
        return summary

    def get_batch_status(self, time_range: str | TimeRange) -> dict[str, Any]:
        time_range = TimeRange.parse(time_range)
        status = self.repository.score_status(time_range.value)
        completion = percentage(status.scored_artists, status.active_artists)
        return {
            "time_range": time_range.value,
            "total_artists": status.scored_artists,
            "total_active_artists": status.active_artists,
            "completion_percentage": round(completion, 2),
            "last_calculated": (
                status.last_calculated.isoformat() if status.last_calculated else None
            ),
            "status": "completed" if completion >= 100 else "in_progress",
        }
