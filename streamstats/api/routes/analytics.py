"""
Engagement Analytics API Routes
"""

from __future__ import annotations

import logging
from typing import Any

from fastapi import APIRouter, Depends, HTTPException, Query

from streamstats.api.dependencies import get_engagement_analytics
from streamstats.errors import InputError
from streamstats.services.engagement_analytics import METRICS, EngagementAnalytics
from streamstats.services.periods import TimeRange

router = APIRouter()
logger = logging.getLogger(__name__)


@router.get("/analytics")
async def get_analytics(
    track_id: str | None = Query(None, description="Limit to one track"),
    artist_id: str | None = Query(None, description="Limit to one artist's tracks"),
    time_range: str = Query("7d", description=f"Time range: {', '.join(TimeRange.values())}"),
    metric: str = Query("plays", description=f"Metric: {', '.join(METRICS)}"),
    analytics: EngagementAnalytics = Depends(get_engagement_analytics),
) -> dict[str, Any]:
    """
    Engagement totals for a track, an artist or the whole catalog.
    """
    try:
        result = analytics.query(
            time_range=time_range,
            metric=metric,
            track_id=track_id,
            artist_id=artist_id,
        )
    except InputError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except Exception as e:
        logger.exception("Failed to fetch analytics")
        raise HTTPException(status_code=500, detail=str(e))

    return {
        "success": True,
        "data": result,
        "time_range": result["time_range"],
        "metric": result["metric"],
    }
