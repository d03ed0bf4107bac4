"""
Aggregation API Routes

Scheduler-facing endpoints that run the summary-table jobs.
"""

from __future__ import annotations

import datetime as dt
import logging
from typing import Any

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel

from streamstats.api.dependencies import get_stats_aggregator
from streamstats.services.periods import month_start, shift_months, week_start
from streamstats.services.stats_aggregator import StatsAggregator

router = APIRouter()
logger = logging.getLogger(__name__)


class DailyRequest(BaseModel):
    date: dt.date | None = None


class WeeklyRequest(BaseModel):
    week: dt.date | None = None


class MonthlyRequest(BaseModel):
    month: dt.date | None = None


class YearlyRequest(BaseModel):
    year: int | None = None


def _today(aggregator: StatsAggregator) -> dt.date:
    return dt.datetime.now(aggregator.tz).date()


@router.post("/daily")
async def aggregate_daily(
    payload: DailyRequest | None = None,
    aggregator: StatsAggregator = Depends(get_stats_aggregator),
) -> dict[str, Any]:
    """
    Aggregate one day of raw events. Defaults to yesterday.
    """
    target = payload.date if payload and payload.date else _today(aggregator) - dt.timedelta(days=1)

    try:
        written = aggregator.aggregate_daily(target)
    except Exception as e:
        logger.exception("Daily aggregation failed")
        raise HTTPException(status_code=500, detail=str(e))

    return {
        "success": True,
        "message": f"Daily aggregation completed for {target.isoformat()}",
        "date": target.isoformat(),
        "rows_written": written,
    }


@router.post("/weekly")
async def aggregate_weekly(
    payload: WeeklyRequest | None = None,
    aggregator: StatsAggregator = Depends(get_stats_aggregator),
) -> dict[str, Any]:
    """
    Roll daily rows into a week. Defaults to the week before the current one.
    """
    if payload and payload.week:
        target = week_start(payload.week)
    else:
        target = week_start(_today(aggregator) - dt.timedelta(days=7))

    try:
        written = aggregator.aggregate_weekly(target)
    except Exception as e:
        logger.exception("Weekly aggregation failed")
        raise HTTPException(status_code=500, detail=str(e))

    return {
        "success": True,
        "message": f"Weekly aggregation completed for week starting {target.isoformat()}",
        "week_start": target.isoformat(),
        "rows_written": written,
    }


@router.post("/monthly")
async def aggregate_monthly(
    payload: MonthlyRequest | None = None,
    aggregator: StatsAggregator = Depends(get_stats_aggregator),
) -> dict[str, Any]:
    """
    Roll weekly rows into a month. Defaults to last month.
    """
    if payload and payload.month:
        target = month_start(payload.month)
    else:
        this_month = dt.datetime.combine(month_start(_today(aggregator)), dt.time.min)
        target = shift_months(this_month, -1).date()

    try:
        written = aggregator.aggregate_monthly(target)
    except Exception as e:
        logger.exception("Monthly aggregation failed")
        raise HTTPException(status_code=500, detail=str(e))

    return {
        "success": True,
        "message": f"Monthly aggregation completed for month starting {target.isoformat()}",
        "month_start": target.isoformat(),
        "rows_written": written,
    }


@router.post("/yearly")
async def aggregate_yearly(
    payload: YearlyRequest | None = None,
    aggregator: StatsAggregator = Depends(get_stats_aggregator),
) -> dict[str, Any]:
    """
    Roll monthly rows into a year. Defaults to last year.
    """
    year = payload.year if payload and payload.year else _today(aggregator).year - 1

    try:
        written = aggregator.aggregate_yearly(year)
    except Exception as e:
        logger.exception("Yearly aggregation failed")
        raise HTTPException(status_code=500, detail=str(e))

    return {
        "success": True,
        "message": f"Yearly aggregation completed for {year}",
        "year": year,
        "rows_written": written,
    }


@router.post("/run")
async def run_all_aggregations(
    payload: DailyRequest | None = None,
    aggregator: StatsAggregator = Depends(get_stats_aggregator),
) -> dict[str, Any]:
    """
    Run the daily job plus any rollup whose period starts on the date.
    Defaults to yesterday.
    """
    target = payload.date if payload and payload.date else _today(aggregator) - dt.timedelta(days=1)

    try:
        results = aggregator.run_all_aggregations(target)
    except Exception as e:
        logger.exception("Aggregation run failed")
        raise HTTPException(status_code=500, detail=str(e))

    return {
        "success": True,
        "date": target.isoformat(),
        "rows_written": results,
    }
