"""
Postgres Analytics Repository

psycopg implementation of ``AnalyticsRepository``. Summation happens in the
database through grouped queries; summary and score writes are
``INSERT ... ON CONFLICT DO UPDATE`` upserts keyed by their natural keys.
"""

from __future__ import annotations

import logging
from contextlib import contextmanager
from datetime import date, datetime
from typing import Any, Callable, Iterator, Sequence

import psycopg
from psycopg import sql

from streamstats.db.connection import get_connection
from streamstats.db.repository import AnalyticsRepository
from streamstats.errors import StorageError
from streamstats.services.analytics_models import (
    ADDITIVE_FIELDS,
    METRIC_FIELDS,
    ArtistRef,
    EventSummary,
    Granularity,
    PlayMetrics,
    ScoreStatus,
    SessionStats,
    StrengthScore,
    TrackStats,
)

logger = logging.getLogger(__name__)

_WINDOW = "timestamp >= %(start)s AND timestamp < %(end)s"
_SCOPED_WINDOW = "track_id = ANY(%(track_ids)s) AND " + _WINDOW

# Play aggregates shared by the per-track and the track-set summaries.
_PLAY_AGGREGATES = """
    COUNT(*) AS total_plays,
    COUNT(DISTINCT session_id) AS unique_sessions,
    COALESCE(SUM(duration), 0) AS duration_sum,
    COUNT(duration) AS duration_samples,
    COALESCE(SUM(completion_rate), 0) AS completion_sum,
    COUNT(completion_rate) AS completion_samples,
    COUNT(*) FILTER (WHERE skipped) AS skipped_plays,
    COUNT(*) FILTER (WHERE replayed) AS replayed_plays
"""

_SUMMARY_BY_TRACK_SQL = f"""
    WITH active AS (
        SELECT track_id FROM play_events WHERE {_WINDOW}
        UNION
        SELECT track_id FROM like_events WHERE {_WINDOW}
        UNION
        SELECT track_id FROM share_events WHERE {_WINDOW}
        UNION
        SELECT track_id FROM download_events WHERE {_WINDOW}
    ),
    plays AS (
        SELECT track_id, {_PLAY_AGGREGATES}
        FROM play_events
        WHERE {_WINDOW}
        GROUP BY track_id
    ),
    likes AS (
        SELECT track_id, COUNT(*) AS n FROM like_events
        WHERE {_WINDOW} AND action = 'like'
        GROUP BY track_id
    ),
    shares AS (
        SELECT track_id, COUNT(*) AS n FROM share_events
        WHERE {_WINDOW}
        GROUP BY track_id
    ),
    downloads AS (
        SELECT track_id, COUNT(*) AS n FROM download_events
        WHERE {_WINDOW}
        GROUP BY track_id
    ),
    saves AS (
        SELECT track_id, COUNT(*) AS n FROM save_events
        WHERE {_WINDOW} AND action = 'save'
        GROUP BY track_id
    )
    SELECT
        a.track_id,
        COALESCE(p.total_plays, 0),
        COALESCE(p.unique_sessions, 0),
        COALESCE(l.n, 0),
        COALESCE(sh.n, 0),
        COALESCE(d.n, 0),
        COALESCE(sv.n, 0),
        COALESCE(p.duration_sum, 0),
        COALESCE(p.duration_samples, 0),
        COALESCE(p.completion_sum, 0),
        COALESCE(p.completion_samples, 0),
        COALESCE(p.skipped_plays, 0),
        COALESCE(p.replayed_plays, 0)
    FROM active a
    LEFT JOIN plays p ON p.track_id = a.track_id
    LEFT JOIN likes l ON l.track_id = a.track_id
    LEFT JOIN shares sh ON sh.track_id = a.track_id
    LEFT JOIN downloads d ON d.track_id = a.track_id
    LEFT JOIN saves sv ON sv.track_id = a.track_id
    ORDER BY a.track_id
"""

_SUMMARY_FOR_TRACKS_SQL = f"""
    WITH plays AS (
        SELECT {_PLAY_AGGREGATES}
        FROM play_events
        WHERE {_SCOPED_WINDOW}
    )
    SELECT
        p.total_plays,
        p.unique_sessions,
        (SELECT COUNT(*) FROM like_events WHERE {_SCOPED_WINDOW} AND action = 'like'),
        (SELECT COUNT(*) FROM share_events WHERE {_SCOPED_WINDOW}),
        (SELECT COUNT(*) FROM download_events WHERE {_SCOPED_WINDOW}),
        (SELECT COUNT(*) FROM save_events WHERE {_SCOPED_WINDOW} AND action = 'save'),
        p.duration_sum,
        p.duration_samples,
        p.completion_sum,
        p.completion_samples,
        p.skipped_plays,
        p.replayed_plays
    FROM plays p
"""


def _summary_from_row(track_id: str | None, values: Sequence[Any]) -> EventSummary:
    return EventSummary(
        track_id=track_id,
        total_plays=int(values[0] or 0),
        unique_sessions=int(values[1] or 0),
        total_likes=int(values[2] or 0),
        total_shares=int(values[3] or 0),
        total_downloads=int(values[4] or 0),
        total_saves=int(values[5] or 0),
        duration_sum=float(values[6] or 0),
        duration_samples=int(values[7] or 0),
        completion_sum=float(values[8] or 0),
        completion_samples=int(values[9] or 0),
        skipped_plays=int(values[10] or 0),
        replayed_plays=int(values[11] or 0),
    )


class PostgresAnalyticsRepository(AnalyticsRepository):
    """Analytics storage backed by the pooled Postgres connection."""

    def __init__(
        self,
        connection_factory: Callable[[], Any] = get_connection,
        upsert_batch_size: int = 500,
    ) -> None:
        self._connection_factory = connection_factory
        self.upsert_batch_size = upsert_batch_size

    @contextmanager
    def _cursor(self, commit: bool = False) -> Iterator[psycopg.Cursor]:
        try:
            with self._connection_factory() as conn:
                with conn.cursor() as cur:
                    yield cur
                if commit:
                    conn.commit()
        except psycopg.Error as exc:
            logger.error(f"Analytics storage query failed: {exc}")
            raise StorageError(str(exc)) from exc

    def _scalar(self, query: str, params: dict[str, Any]) -> Any:
        with self._cursor() as cur:
            cur.execute(query, params)
            row = cur.fetchone()
        return row[0] if row else None

    # --- event store -------------------------------------------------------

    def summarize_events_by_track(self, start: datetime, end: datetime) -> list[EventSummary]:
        with self._cursor() as cur:
            cur.execute(_SUMMARY_BY_TRACK_SQL, {"start": start, "end": end})
            rows = cur.fetchall()
        return [_summary_from_row(row[0], row[1:]) for row in rows]

    def summarize_events(
        self, track_ids: Sequence[str], start: datetime, end: datetime
    ) -> EventSummary:
        if not track_ids:
            return EventSummary()
        params = {"track_ids": list(track_ids), "start": start, "end": end}
        with self._cursor() as cur:
            cur.execute(_SUMMARY_FOR_TRACKS_SQL, params)
            row = cur.fetchone()
        return _summary_from_row(None, row) if row else EventSummary()

    def count_plays(self, track_ids: Sequence[str], start: datetime, end: datetime) -> int:
        if not track_ids:
            return 0
        return int(
            self._scalar(
                f"SELECT COUNT(*) FROM play_events WHERE {_SCOPED_WINDOW}",
                {"track_ids": list(track_ids), "start": start, "end": end},
            )
            or 0
        )

    def count_saves(self, track_ids: Sequence[str], start: datetime, end: datetime) -> int:
        if not track_ids:
            return 0
        return int(
            self._scalar(
                f"SELECT COUNT(*) FROM save_events WHERE {_SCOPED_WINDOW} AND action = 'save'",
                {"track_ids": list(track_ids), "start": start, "end": end},
            )
            or 0
        )

    def count_distinct_sessions(
        self, track_ids: Sequence[str], start: datetime, end: datetime
    ) -> int:
        if not track_ids:
            return 0
        return int(
            self._scalar(
                f"SELECT COUNT(DISTINCT session_id) FROM play_events WHERE {_SCOPED_WINDOW}",
                {"track_ids": list(track_ids), "start": start, "end": end},
            )
            or 0
        )

    def session_stats(
        self, track_ids: Sequence[str], start: datetime, end: datetime
    ) -> SessionStats:
        if not track_ids:
            return SessionStats()
        with self._cursor() as cur:
            cur.execute(
                f"""
                SELECT
                    COUNT(*),
                    COUNT(*) FILTER (WHERE plays > 1)
                FROM (
                    SELECT session_id, COUNT(*) AS plays
                    FROM play_events
                    WHERE {_SCOPED_WINDOW}
                    GROUP BY session_id
                ) per_session
                """,
                {"track_ids": list(track_ids), "start": start, "end": end},
            )
            row = cur.fetchone()
        if not row:
            return SessionStats()
        return SessionStats(total_sessions=int(row[0] or 0), repeat_sessions=int(row[1] or 0))

    def source_play_counts(
        self, track_ids: Sequence[str], start: datetime, end: datetime
    ) -> dict[str, int]:
        if not track_ids:
            return {}
        with self._cursor() as cur:
            cur.execute(
                f"""
                SELECT source, COUNT(*)
                FROM play_events
                WHERE {_SCOPED_WINDOW}
                GROUP BY source
                """,
                {"track_ids": list(track_ids), "start": start, "end": end},
            )
            rows = cur.fetchall()
        return {row[0]: int(row[1]) for row in rows}

    def count_distinct_ips(
        self, track_ids: Sequence[str], start: datetime, end: datetime
    ) -> int:
        if not track_ids:
            return 0
        return int(
            self._scalar(
                f"""
                SELECT COUNT(DISTINCT ip)
                FROM play_events
                WHERE {_SCOPED_WINDOW} AND ip IS NOT NULL
                """,
                {"track_ids": list(track_ids), "start": start, "end": end},
            )
            or 0
        )

    # --- summary tables ----------------------------------------------------

    def fetch_stats(
        self,
        granularity: Granularity,
        first: date | int,
        last: date | int,
        track_ids: Sequence[str] | None = None,
    ) -> list[TrackStats]:
        period = sql.Identifier(granularity.period_column)
        query = sql.SQL(
            "SELECT track_id, {period}, {metrics} FROM {table} "
            "WHERE {period} BETWEEN %(first)s AND %(last)s"
        ).format(
            period=period,
            metrics=sql.SQL(", ").join(sql.Identifier(name) for name in METRIC_FIELDS),
            table=sql.Identifier(granularity.table),
        )
        params: dict[str, Any] = {"first": first, "last": last}
        if track_ids is not None:
            if not track_ids:
                return []
            query += sql.SQL(" AND track_id = ANY(%(track_ids)s)")
            params["track_ids"] = list(track_ids)
        query += sql.SQL(" ORDER BY track_id, {period}").format(period=period)

        with self._cursor() as cur:
            cur.execute(query, params)
            rows = cur.fetchall()

        return [
            TrackStats(
                track_id=row[0],
                period=row[1],
                metrics=PlayMetrics(
                    **{
                        name: (int(value) if name in ADDITIVE_FIELDS else float(value))
                        for name, value in zip(METRIC_FIELDS, row[2:])
                    }
                ),
            )
            for row in rows
        ]

    def upsert_stats(self, granularity: Granularity, rows: Sequence[TrackStats]) -> int:
        if not rows:
            return 0
        columns = ("track_id", granularity.period_column) + METRIC_FIELDS
        query = sql.SQL(
            "INSERT INTO {table} ({columns}, updated_at) VALUES ({values}, NOW()) "
            "ON CONFLICT (track_id, {period}) DO UPDATE SET {updates}, updated_at = NOW()"
        ).format(
            table=sql.Identifier(granularity.table),
            columns=sql.SQL(", ").join(sql.Identifier(name) for name in columns),
            values=sql.SQL(", ").join(sql.Placeholder() for _ in columns),
            period=sql.Identifier(granularity.period_column),
            updates=sql.SQL(", ").join(
                sql.SQL("{col} = EXCLUDED.{col}").format(col=sql.Identifier(name))
                for name in METRIC_FIELDS
            ),
        )

        params = [
            (row.track_id, row.period) + tuple(getattr(row.metrics, name) for name in METRIC_FIELDS)
            for row in rows
        ]
        with self._cursor(commit=True) as cur:
            for offset in range(0, len(params), self.upsert_batch_size):
                cur.executemany(query, params[offset : offset + self.upsert_batch_size])

        logger.debug(f"Upserted {len(params)} rows into {granularity.table}")
        return len(params)

    def record_aggregation(
        self, granularity: Granularity, period_start: date, complete: bool
    ) -> None:
        with self._cursor(commit=True) as cur:
            cur.execute(
                """
                INSERT INTO aggregation_runs (granularity, period_start, complete, updated_at)
                VALUES (%s, %s, %s, NOW())
                ON CONFLICT (granularity, period_start) DO UPDATE SET
                    complete = EXCLUDED.complete,
                    updated_at = EXCLUDED.updated_at
                """,
                (granularity.label, period_start, complete),
            )

    def completed_periods(
        self, granularity: Granularity, first: date, last: date
    ) -> set[date]:
        with self._cursor() as cur:
            cur.execute(
                """
                SELECT period_start
                FROM aggregation_runs
                WHERE granularity = %s
                  AND period_start BETWEEN %s AND %s
                  AND complete
                """,
                (granularity.label, first, last),
            )
            return {row[0] for row in cur.fetchall()}

    # --- registry ----------------------------------------------------------

    def list_track_ids(self) -> list[str]:
        with self._cursor() as cur:
            cur.execute("SELECT track_id FROM tracks ORDER BY track_id")
            return [row[0] for row in cur.fetchall()]

    def list_artist_track_ids(self, artist_id: str) -> list[str]:
        with self._cursor() as cur:
            cur.execute(
                "SELECT track_id FROM tracks WHERE artist_id = %s ORDER BY track_id",
                (artist_id,),
            )
            return [row[0] for row in cur.fetchall()]

    def list_active_artists(self) -> list[ArtistRef]:
        with self._cursor() as cur:
            cur.execute(
                """
                SELECT artist_id, artist_name
                FROM artists
                WHERE is_active = TRUE
                ORDER BY artist_id
                """
            )
            return [ArtistRef(artist_id=row[0], artist_name=row[1]) for row in cur.fetchall()]

    # --- strength scores ---------------------------------------------------

    def upsert_strength_score(self, score: StrengthScore) -> None:
        with self._cursor(commit=True) as cur:
            cur.execute(
                """
                INSERT INTO artist_strength_scores (
                    artist_id,
                    time_range,
                    engagement_score,
                    growth_score,
                    quality_score,
                    potential_score,
                    overall_score,
                    updated_at
                )
                VALUES (%s, %s, %s, %s, %s, %s, %s, COALESCE(%s, NOW()))
                ON CONFLICT (artist_id, time_range) DO UPDATE SET
                    engagement_score = EXCLUDED.engagement_score,
                    growth_score = EXCLUDED.growth_score,
                    quality_score = EXCLUDED.quality_score,
                    potential_score = EXCLUDED.potential_score,
                    overall_score = EXCLUDED.overall_score,
                    updated_at = EXCLUDED.updated_at
                """,
                (
                    score.artist_id,
                    score.time_range,
                    score.engagement_score,
                    score.growth_score,
                    score.quality_score,
                    score.potential_score,
                    score.overall_score,
                    score.updated_at,
                ),
            )

    def fetch_strength_scores(self, time_range: str, limit: int) -> list[StrengthScore]:
        with self._cursor() as cur:
            cur.execute(
                """
                SELECT
                    s.artist_id,
                    a.artist_name,
                    s.engagement_score,
                    s.growth_score,
                    s.quality_score,
                    s.potential_score,
                    s.overall_score,
                    s.updated_at
                FROM artist_strength_scores s
                JOIN artists a ON a.artist_id = s.artist_id
                WHERE s.time_range = %s
                ORDER BY s.overall_score DESC, s.artist_id
                LIMIT %s
                """,
                (time_range, limit),
            )
            rows = cur.fetchall()

        return [
            StrengthScore(
                artist_id=row[0],
                artist_name=row[1],
                time_range=time_range,
                engagement_score=float(row[2]),
                growth_score=float(row[3]),
                quality_score=float(row[4]),
                potential_score=float(row[5]),
                overall_score=float(row[6]),
                updated_at=row[7],
            )
            for row in rows
        ]

    def score_timestamps(self, time_range: str) -> dict[str, datetime]:
        with self._cursor() as cur:
            cur.execute(
                "SELECT artist_id, updated_at FROM artist_strength_scores WHERE time_range = %s",
                (time_range,),
            )
            return {row[0]: row[1] for row in cur.fetchall()}

    def score_status(self, time_range: str) -> ScoreStatus:
        with self._cursor() as cur:
            cur.execute(
                """
                SELECT
                    (SELECT COUNT(*) FROM artist_strength_scores WHERE time_range = %s),
                    (SELECT COUNT(*) FROM artists WHERE is_active = TRUE),
                    (SELECT MAX(updated_at) FROM artist_strength_scores WHERE time_range = %s)
                """,
                (time_range, time_range),
            )
            row = cur.fetchone()

        return ScoreStatus(
            time_range=time_range,
            scored_artists=int(row[0] or 0),
            active_artists=int(row[1] or 0),
            last_calculated=row[2],
        )
