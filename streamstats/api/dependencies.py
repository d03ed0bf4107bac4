from __future__ import annotations

from functools import lru_cache

from streamstats.services.engagement_analytics import EngagementAnalytics
from streamstats.services.service_factory import (
    build_engagement_analytics,
    build_repository,
    build_stats_aggregator,
    build_strength_calculator,
)
from streamstats.services.stats_aggregator import StatsAggregator
from streamstats.services.strength_scoring import ArtistStrengthCalculator


@lru_cache(maxsize=1)
def _shared_repository():
    return build_repository()


def get_stats_aggregator() -> StatsAggregator:
    return _get_stats_aggregator()


def get_strength_calculator() -> ArtistStrengthCalculator:
    return _get_strength_calculator()


def get_engagement_analytics() -> EngagementAnalytics:
    return _get_engagement_analytics()


@lru_cache(maxsize=1)
def _get_stats_aggregator() -> StatsAggregator:
    return build_stats_aggregator(_shared_repository())


@lru_cache(maxsize=1)
def _get_strength_calculator() -> ArtistStrengthCalculator:
    return build_strength_calculator(_shared_repository())


@lru_cache(maxsize=1)
def _get_engagement_analytics() -> EngagementAnalytics:
    return build_engagement_analytics(_shared_repository())
