import logging

from fastapi import FastAPI

from streamstats.api.routes import aggregation, analytics, strength
from streamstats.db import connection as db_connection

logger = logging.getLogger(__name__)

app = FastAPI(
    title="Streamstats API",
    description="Engagement rollups and artist strength scoring",
    version="1.0.0",
)

app.include_router(aggregation.router, prefix="/api/aggregations", tags=["aggregations"])
app.include_router(strength.router, prefix="/api/strength", tags=["strength"])
app.include_router(analytics.router, prefix="/api/stats", tags=["analytics"])


@app.on_event("shutdown")
async def shutdown_connection_pool() -> None:
    """Close the database connection pool on shutdown."""
    db_connection.close_pool()


@app.get("/")
async def root():
    return {"message": "Streamstats API", "version": "1.0.0"}


@app.get("/health")
async def health():
    """Health check with connection pool stats."""
    try:
        pool = db_connection.get_pool_stats()
    except Exception as e:
        logger.warning(f"Health check could not read pool stats: {e}")
        return {"status": "degraded", "error": str(e)}
    return {"status": "ok", "pool": pool}
