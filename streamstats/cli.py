from __future__ import annotations

import argparse
import json
import logging
import sys
from datetime import date, datetime, timedelta, timezone
from pathlib import Path

if __package__ is None:  # Allow running as a script.
    sys.path.insert(0, str(Path(__file__).resolve().parent.parent))

from streamstats.errors import AnalyticsError, InputError
from streamstats.services.engagement_analytics import METRICS
from streamstats.services.periods import TimeRange
from streamstats.services.service_factory import (
    build_engagement_analytics,
    build_repository,
    build_stats_aggregator,
    build_strength_calculator,
)

LEVELS = ("all", "daily", "weekly", "monthly", "yearly")


def _parse_date(value: str) -> date:
    try:
        return date.fromisoformat(value)
    except ValueError:
        raise argparse.ArgumentTypeError(f"Invalid date: {value} (expected YYYY-MM-DD)")


def _parse_datetime(value: str) -> datetime:
    try:
        parsed = datetime.fromisoformat(value)
    except ValueError:
        raise argparse.ArgumentTypeError(f"Invalid timestamp: {value}")
    return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Run engagement rollups and artist strength scoring.",
    )
    parser.add_argument(
        "--log-level",
        default="INFO",
        help="Logging level (DEBUG, INFO, WARNING, ERROR).",
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    aggregate = subparsers.add_parser("aggregate", help="Build summary tables.")
    aggregate.add_argument(
        "--date",
        type=_parse_date,
        default=None,
        help="Day to aggregate (defaults to yesterday, UTC).",
    )
    aggregate.add_argument(
        "--until",
        type=_parse_date,
        default=None,
        help="Backfill every day from --date through this date.",
    )
    aggregate.add_argument(
        "--level",
        choices=LEVELS,
        default="all",
        help="Which tier to run; 'all' runs the daily job plus due rollups.",
    )

    score = subparsers.add_parser("score", help="Score one artist.")
    score.add_argument("--artist", required=True, help="Artist id.")
    score.add_argument("--time-range", default="7d", help="One of " + ", ".join(TimeRange.values()))

    batch = subparsers.add_parser("batch", help="Score every active artist.")
    batch.add_argument("--time-range", default="7d", help="One of " + ", ".join(TimeRange.values()))
    batch.add_argument(
        "--resume-since",
        type=_parse_datetime,
        default=None,
        help="Skip artists already scored at or after this ISO timestamp.",
    )

    top = subparsers.add_parser("top", help="Show the top-ranked artists.")
    top.add_argument("--time-range", default="7d", help="One of " + ", ".join(TimeRange.values()))
    top.add_argument("--limit", type=int, default=10, help="Number of artists to show.")

    analytics = subparsers.add_parser("analytics", help="Report engagement for a track, an artist or everything.")
    scope = analytics.add_mutually_exclusive_group()
    scope.add_argument("--track", default=None, help="Track id.")
    scope.add_argument("--artist", default=None, help="Artist id.")
    analytics.add_argument("--time-range", default="7d", help="One of " + ", ".join(TimeRange.values()))
    analytics.add_argument("--metric", default="plays", help="One of " + ", ".join(METRICS))

    return parser.parse_args(argv)


def _run_aggregate(args: argparse.Namespace) -> int:
    aggregator = build_stats_aggregator(build_repository())
    target = args.date or (datetime.now(aggregator.tz).date() - timedelta(days=1))

    if args.until is not None:
        if args.level != "all":
            print("--until only works with --level all", file=sys.stderr)
            return 2
        results = aggregator.backfill(target, args.until)
    elif args.level == "daily":
        results = {"daily": aggregator.aggregate_daily(target)}
    elif args.level == "weekly":
        results = {"weekly": aggregator.aggregate_weekly(target)}
    elif args.level == "monthly":
        results = {"monthly": aggregator.aggregate_monthly(target)}
    elif args.level == "yearly":
        results = {"yearly": aggregator.aggregate_yearly(target.year)}
    else:
        results = aggregator.run_all_aggregations(target)

    print(
        "Aggregation complete. "
        + ", ".join(f"{tier}: {written}" for tier, written in results.items())
    )
    return 0


def main(argv: list[str] | None = None) -> int:
    args = parse_args(argv)
    logging.basicConfig(
        level=getattr(logging, str(args.log_level).upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    try:
        if args.command == "aggregate":
            return _run_aggregate(args)

        if args.command == "analytics":
            analytics = build_engagement_analytics(build_repository())
            result = analytics.query(
                time_range=args.time_range,
                metric=args.metric,
                track_id=args.track,
                artist_id=args.artist,
            )
            print(json.dumps(result, indent=2))
            return 0

        calculator = build_strength_calculator(build_repository())

        if args.command == "score":
            result = calculator.calculate_artist_strength_score(args.artist, args.time_range)
            print(json.dumps(result.as_dict(), indent=2))
        elif args.command == "batch":
            summary = calculator.batch_calculate_scores(args.time_range, resume_since=args.resume_since)
            print(json.dumps(summary.as_dict(), indent=2))
        elif args.command == "top":
            if args.limit < 1:
                print("--limit must be >= 1", file=sys.stderr)
                return 2
            for rank, artist in enumerate(calculator.get_top_artists(args.time_range, args.limit), 1):
                print(f"{rank:>3}. {artist['artist_name']:<32} {artist['overall_score']:6.2f}")
    except InputError as exc:
        print(str(exc), file=sys.stderr)
        return 2
    except AnalyticsError as exc:
        print(f"Failed: {exc}", file=sys.stderr)
        return 1

    return 0


if __name__ == "__main__":
    raise SystemExit(main())
