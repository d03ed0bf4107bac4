"""
Strength Score API Routes

Endpoints for computing, ranking and batch-recomputing artist strength scores.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any

from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException, Query
from pydantic import BaseModel

from streamstats.api.dependencies import get_strength_calculator
from streamstats.errors import InputError
from streamstats.services.periods import TimeRange
from streamstats.services.strength_scoring import ArtistStrengthCalculator, score_category

router = APIRouter()
logger = logging.getLogger(__name__)

TIME_RANGE_HELP = f"Time range: {', '.join(TimeRange.values())}"


class BatchRequest(BaseModel):
    time_range: str = "7d"


def _parse_time_range(value: str) -> TimeRange:
    try:
        return TimeRange.parse(value)
    except InputError as e:
        raise HTTPException(status_code=400, detail=str(e))


def _run_batch(calculator: ArtistStrengthCalculator, time_range: TimeRange) -> None:
    try:
        calculator.batch_calculate_scores(time_range)
    except Exception:
        logger.exception(f"Batch calculation failed for {time_range.value}")


@router.get("/artists/{artist_id}")
async def get_artist_strength(
    artist_id: str,
    time_range: str = Query("7d", description=TIME_RANGE_HELP),
    calculator: ArtistStrengthCalculator = Depends(get_strength_calculator),
) -> dict[str, Any]:
    """
    Compute, store and return the strength score of one artist.
    """
    parsed = _parse_time_range(time_range)

    try:
        result = calculator.calculate_artist_strength_score(artist_id, parsed)
    except Exception as e:
        logger.exception(f"Failed to calculate strength score for {artist_id}")
        raise HTTPException(status_code=500, detail=str(e))

    return {"success": True, "data": result.as_dict()}


@router.get("/top")
async def get_top_artists(
    time_range: str = Query("7d", description=TIME_RANGE_HELP),
    limit: int = Query(50, ge=1, le=100, description="Max artists to return"),
    min_score: float = Query(0.0, ge=0, le=100, description="Minimum overall score"),
    calculator: ArtistStrengthCalculator = Depends(get_strength_calculator),
) -> dict[str, Any]:
    """
    Get stored strength scores ranked by overall score.
    """
    parsed = _parse_time_range(time_range)

    try:
        top_artists = calculator.get_top_artists(parsed, limit)
    except Exception as e:
        logger.exception("Failed to get top artists")
        raise HTTPException(status_code=500, detail=str(e))

    ranked = [
        {
            **artist,
            "rank": index + 1,
            "score_category": score_category(artist["overall_score"]),
        }
        for index, artist in enumerate(
            a for a in top_artists if a["overall_score"] >= min_score
        )
    ]

    return {
        "success": True,
        "data": {
            "artists": ranked,
            "time_range": parsed.value,
            "total": len(ranked),
            "min_score": min_score,
            "generated_at": datetime.now(timezone.utc).isoformat(),
        },
    }


@router.post("/batch")
async def start_batch(
    payload: BatchRequest,
    background_tasks: BackgroundTasks,
    calculator: ArtistStrengthCalculator = Depends(get_strength_calculator),
) -> dict[str, Any]:
    """
    Start recomputing scores for every active artist in the background.
    """
    parsed = _parse_time_range(payload.time_range)
    background_tasks.add_task(_run_batch, calculator, parsed)

    return {
        "success": True,
        "message": f"Batch calculation started for {parsed.value}",
        "data": {
            "time_range": parsed.value,
            "status": "started",
            "started_at": datetime.now(timezone.utc).isoformat(),
        },
    }


@router.get("/batch/status")
async def get_batch_status(
    time_range: str = Query("7d", description=TIME_RANGE_HELP),
    calculator: ArtistStrengthCalculator = Depends(get_strength_calculator),
) -> dict[str, Any]:
    """
    Report how many active artists have a stored score for the time range.
    """
    parsed = _parse_time_range(time_range)

    try:
        return {"success": True, "data": calculator.get_batch_status(parsed)}
    except Exception as e:
        logger.exception("Failed to get batch calculation status")
        raise HTTPException(status_code=500, detail=str(e))
