"""
Measurement ingestion and review endpoints
"""

from fastapi import APIRouter, Depends, HTTPException, Query, Request, status
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select
from api.dependencies import get_db, get_usage_meter, get_enrichment_queue, get_quality_engine
from schemas.api import MeasurementCreate, MeasurementResponse, ReviewRequest, SpectralAnalysisResponse
from schemas.quality import CampaignQualityStats, UserContributionStats
from models.base import MeasurementStatus, ResourceKind
from models.measurement import Measurement
from models.metric import EnvironmentalMetric
from models.spectral_analysis import SpectralAnalysis
from models.user import User
from metering.usage_meter import UsageMeter
from enrichment.queue import EnrichmentQueue
from quality.engine import QualityEngine
from typing import List
import uuid
import logging

logger = logging.getLogger(__name__)
router = APIRouter(tags=["Measurements"])


@router.post("/measurements", response_model=MeasurementResponse, status_code=status.HTTP_201_CREATED)
async def create_measurement(
    payload: MeasurementCreate,
    request: Request,
    db: AsyncSession = Depends(get_db),
    usage_meter: UsageMeter = Depends(get_usage_meter),
    enrichment_queue: EnrichmentQueue = Depends(get_enrichment_queue)
):
    """
    Submit a measurement.

    - Takes one data_points unit of the submitter's quota in the same
      transaction as the insert (429 with the reset time when exhausted)
    - Queues satellite enrichment once the measurement is committed
    """
    request_id = getattr(request.state, "request_id", f"req_{uuid.uuid4().hex[:12]}")

    async with db.begin():
        user = await db.get(User, payload.user_id)
        if user is None:
            raise HTTPException(status_code=404, detail=f"User {payload.user_id} not found")
        if await db.get(EnvironmentalMetric, payload.metric_id) is None:
            raise HTTPException(status_code=404, detail=f"Metric {payload.metric_id} not found")

        await usage_meter.reserve(db, user, ResourceKind.DATA_POINTS)
        measurement = Measurement(
            user_id=payload.user_id,
            campaign_id=payload.campaign_id,
            metric_id=payload.metric_id,
            value=payload.value,
            latitude=payload.latitude,
            longitude=payload.longitude,
            accuracy=payload.accuracy,
            collected_at=payload.collected_at,
            status=MeasurementStatus(payload.status),
        )
        db.add(measurement)
        await db.flush()

    enrichment_queue.enqueue_enrichment(measurement.id)
    logger.info(f"[{request_id}] Created measurement {measurement.id} for user {user.id}")
    return measurement


@router.get("/measurements/{measurement_id}", response_model=MeasurementResponse)
async def get_measurement(measurement_id: int, db: AsyncSession = Depends(get_db)):
    measurement = await db.get(Measurement, measurement_id)
    if measurement is None:
        raise HTTPException(status_code=404, detail=f"Measurement {measurement_id} not found")
    return measurement


@router.get("/measurements/{measurement_id}/analyses", response_model=List[SpectralAnalysisResponse])
async def get_measurement_analyses(measurement_id: int, db: AsyncSession = Depends(get_db)):
    """Spectral analyses written for a measurement, oldest first"""
    result = await db.execute(
        select(SpectralAnalysis)
        .where(SpectralAnalysis.measurement_id == measurement_id)
        .order_by(SpectralAnalysis.id)
    )
    return result.scalars().all()


@router.post("/measurements/{measurement_id}/review", response_model=MeasurementResponse)
async def review_measurement(
    measurement_id: int,
    review: ReviewRequest,
    db: AsyncSession = Depends(get_db)
):
    """
    Human review.

    - approve / reject: only from pending (409 otherwise)
    - reset: back to pending from any state, clearing review metadata
    """
    async with db.begin():
        measurement = await db.get(Measurement, measurement_id)
        if measurement is None:
            raise HTTPException(status_code=404, detail=f"Measurement {measurement_id} not found")

        if review.action == "approve":
            measurement.approve(review.reviewer_id, notes=review.notes)
        elif review.action == "reject":
            measurement.reject(review.reviewer_id, notes=review.notes)
        else:
            measurement.reset_to_pending()

        if review.clear_flags:
            measurement.clear_flags()

    logger.info(f"Measurement {measurement_id} reviewed: {review.action} -> {measurement.status.value}")
    return measurement


@router.get("/campaigns/{campaign_id}/quality", response_model=CampaignQualityStats)
async def get_campaign_quality(
    campaign_id: int,
    quality_engine: QualityEngine = Depends(get_quality_engine)
):
    return await quality_engine.campaign_quality_stats(campaign_id)


@router.get("/quality/contributors", response_model=List[UserContributionStats])
async def get_contributor_stats(
    days: int = Query(30, ge=1, le=365, description="Trailing window in days"),
    quality_engine: QualityEngine = Depends(get_quality_engine)
):
    return await quality_engine.user_contribution_stats(days=days)
