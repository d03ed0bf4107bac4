"""
Service construction from settings.

The services take their repository explicitly; these helpers only supply the
defaults (Postgres repository, settings-driven policy and constants).
"""

from __future__ import annotations

from datetime import date
from typing import Any

from streamstats.app_settings import aggregation_settings, load_settings, scoring_settings
from streamstats.db.repository import AnalyticsRepository
from streamstats.services.engagement_analytics import EngagementAnalytics
from streamstats.services.metrics_source import (
    AggregatedMetricsSource,
    MetricsSourcePolicy,
    RawEventMetricsSource,
)
from streamstats.services.periods import get_timezone
from streamstats.services.potential_model import PlaceholderPotentialModel
from streamstats.services.stats_aggregator import StatsAggregator
from streamstats.services.stats_cache import StatsCache
from streamstats.services.strength_scoring import ArtistStrengthCalculator


def build_repository(settings: dict[str, Any] | None = None) -> AnalyticsRepository:
    from streamstats.db.postgres_repository import PostgresAnalyticsRepository

    aggregation = aggregation_settings(settings)
    return PostgresAnalyticsRepository(upsert_batch_size=aggregation["upsert_batch_size"])


def build_stats_aggregator(
    repository: AnalyticsRepository | None = None,
    settings: dict[str, Any] | None = None,
) -> StatsAggregator:
    settings = settings or load_settings()
    repository = repository or build_repository(settings)
    tz = get_timezone(aggregation_settings(settings)["timezone"])
    return StatsAggregator(repository, tz=tz)


def _metrics_policy(
    repository: AnalyticsRepository, settings: dict[str, Any], policy: str
) -> MetricsSourcePolicy:
    tz = get_timezone(aggregation_settings(settings)["timezone"])
    raw = RawEventMetricsSource(repository)
    return MetricsSourcePolicy(
        raw=raw,
        aggregated=AggregatedMetricsSource(repository, tz=tz, raw=raw),
        policy=policy,
    )


def _all_time_start(scoring: dict[str, Any]) -> date:
    return date.fromisoformat(str(scoring.get("all_time_start") or "2020-01-01"))


def build_strength_calculator(
    repository: AnalyticsRepository | None = None,
    settings: dict[str, Any] | None = None,
) -> ArtistStrengthCalculator:
    settings = settings or load_settings()
    repository = repository or build_repository(settings)
    scoring = scoring_settings(settings)
    cache_settings = settings.get("cache") or {}

    return ArtistStrengthCalculator(
        repository,
        metrics_policy=_metrics_policy(repository, settings, scoring["metrics_source"]),
        potential_model=PlaceholderPotentialModel.from_settings(scoring),
        all_time_start=_all_time_start(scoring),
        cache=StatsCache(
            ttl=float(cache_settings.get("top_artists_ttl", StatsCache.DEFAULT_TTL)),
            max_size=int(cache_settings.get("max_entries", 500)),
        ),
        max_workers=scoring["batch_workers"],
    )


def build_engagement_analytics(
    repository: AnalyticsRepository | None = None,
    settings: dict[str, Any] | None = None,
) -> EngagementAnalytics:
    settings = settings or load_settings()
    repository = repository or build_repository(settings)
    scoring = scoring_settings(settings)

    return EngagementAnalytics(
        repository,
        metrics_policy=_metrics_policy(repository, settings, scoring["metrics_source"]),
        all_time_start=_all_time_start(scoring),
    )
