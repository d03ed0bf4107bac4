"""
Analytics storage interface.

The aggregation and scoring services depend only on this interface; the
Postgres implementation lives in ``postgres_repository``.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from datetime import date, datetime
from typing import Sequence

from streamstats.services.analytics_models import (
    ArtistRef,
    EventSummary,
    Granularity,
    ScoreStatus,
    SessionStats,
    StrengthScore,
    TrackStats,
)


class AnalyticsRepository(ABC):
    # --- event store -------------------------------------------------------

    @abstractmethod
    def summarize_events_by_track(
        self, start: datetime, end: datetime
    ) -> list[EventSummary]:
        """
        Per-track event summaries for every track with at least one play,
        like, share or download event in [start, end).
        """

    @abstractmethod
    def summarize_events(
        self, track_ids: Sequence[str], start: datetime, end: datetime
    ) -> EventSummary:
        """Single summary over all events of ``track_ids`` in [start, end)."""

    @abstractmethod
    def count_plays(
        self, track_ids: Sequence[str], start: datetime, end: datetime
    ) -> int:
        ...

    @abstractmethod
    def count_saves(
        self, track_ids: Sequence[str], start: datetime, end: datetime
    ) -> int:
        ...

    @abstractmethod
    def count_distinct_sessions(
        self, track_ids: Sequence[str], start: datetime, end: datetime
    ) -> int:
        ...

    @abstractmethod
    def session_stats(
        self, track_ids: Sequence[str], start: datetime, end: datetime
    ) -> SessionStats:
        """Number of play sessions and how many of them played more than once."""

    @abstractmethod
    def source_play_counts(
        self, track_ids: Sequence[str], start: datetime, end: datetime
    ) -> dict[str, int]:
        ...

    @abstractmethod
    def count_distinct_ips(
        self, track_ids: Sequence[str], start: datetime, end: datetime
    ) -> int:
        ...

    # --- summary tables ----------------------------------------------------

    @abstractmethod
    def fetch_stats(
        self,
        granularity: Granularity,
        first: date | int,
        last: date | int,
        track_ids: Sequence[str] | None = None,
    ) -> list[TrackStats]:
        """Summary rows whose period key lies in [first, last] (inclusive)."""

    @abstractmethod
    def upsert_stats(self, granularity: Granularity, rows: Sequence[TrackStats]) -> int:
        """Insert or overwrite rows keyed by (track_id, period). Returns rows written."""

    @abstractmethod
    def record_aggregation(
        self, granularity: Granularity, period_start: date, complete: bool
    ) -> None:
        """
        Remember that the period starting at ``period_start`` was aggregated,
        and whether every event it covers had arrived when it ran.
        """

    @abstractmethod
    def completed_periods(
        self, granularity: Granularity, first: date, last: date
    ) -> set[date]:
        """Start dates in [first, last] of periods recorded as complete."""

    # --- registry ----------------------------------------------------------

    @abstractmethod
    def list_track_ids(self) -> list[str]:
        ...

    @abstractmethod
    def list_artist_track_ids(self, artist_id: str) -> list[str]:
        ...

    @abstractmethod
    def list_active_artists(self) -> list[ArtistRef]:
        ...

    # --- strength scores ---------------------------------------------------

    @abstractmethod
    def upsert_strength_score(self, score: StrengthScore) -> None:
        ...

    @abstractmethod
    def fetch_strength_scores(self, time_range: str, limit: int) -> list[StrengthScore]:
        """
        Stored scores for ``time_range`` joined with the artist name, highest
        overall score first (ties by artist id), at most ``limit`` rows.
        """

    @abstractmethod
    def score_timestamps(self, time_range: str) -> dict[str, datetime]:
        """Last update time of each stored score for ``time_range``."""

    @abstractmethod
    def score_status(self, time_range: str) -> ScoreStatus:
        ...
