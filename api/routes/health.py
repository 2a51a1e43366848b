"""
Health check endpoint with database and enrichment queue status
"""

from fastapi import APIRouter, Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import text
from api.dependencies import get_db
from schemas.api import HealthCheckResponse, EnrichmentQueueInfo
from datetime import datetime
import logging

logger = logging.getLogger(__name__)
router = APIRouter(tags=["Health"])


@router.get("/health", response_model=HealthCheckResponse)
async def health_check(request: Request, db: AsyncSession = Depends(get_db)):
    """
    Health check endpoint.

    Returns:
    - Database connectivity status
    - Enrichment queue state (when the application started one)
    """
    db_connected = False

    try:
        await db.execute(text("SELECT 1"))
        db_connected = True
    except Exception as e:
        logger.error(f"Database connection failed: {str(e)}")

    queue_info = None
    queue = getattr(request.app.state, "enrichment_queue", None)
    if queue is not None:
        queue_info = EnrichmentQueueInfo(
            running=queue.running,
            depth=queue.depth,
            processed=queue.processed,
            failed=queue.failed,
        )

    # Status is derived by the validator in HealthCheckResponse
    return HealthCheckResponse(
        status="healthy",
        timestamp=datetime.utcnow(),
        database_connected=db_connected,
        enrichment_queue=queue_info,
    )
