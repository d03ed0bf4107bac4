from __future__ import annotations

from collections import defaultdict
from datetime import date
from typing import Iterable, Sequence

from streamstats.services.analytics_models import (
    ADDITIVE_FIELDS,
    RATE_WEIGHTS,
    PlayMetrics,
    TrackStats,
)
from streamstats.services.safe_math import weighted_average


def combine_metrics(parts: Sequence[PlayMetrics]) -> PlayMetrics:
    """
    Fold several periods' metrics into one.

    Counters are summed exactly. Skip and replay rates are weighted by each
    part's play count, so a 1-play period at 100% and a 99-play period at 0%
    combine to 1%, not 50%. Duration and completion averages are weighted by
    the number of plays that reported a value, which reproduces the plain
    mean over those plays.
    """
    values: dict[str, float] = {}
    for name in ADDITIVE_FIELDS:
        values[name] = sum(getattr(part, name) for part in parts)
    for name, weight in RATE_WEIGHTS.items():
        values[name] = weighted_average(
            (getattr(part, name), getattr(part, weight)) for part in parts
        )
    return PlayMetrics(**values)


def rollup_rows(child_rows: Iterable[TrackStats], period: date | int) -> list[TrackStats]:
    """Group finer summary rows by track and fold each group into one row."""
    by_track: dict[str, list[PlayMetrics]] = defaultdict(list)
    for row in child_rows:
        by_track[row.track_id].append(row.metrics)

    return [
        TrackStats(track_id=track_id, period=period, metrics=combine_metrics(parts))
        for track_id, parts in sorted(by_track.items())
    ]
