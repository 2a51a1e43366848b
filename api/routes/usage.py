"""
Usage and quota endpoints
"""

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.ext.asyncio import AsyncSession
from api.dependencies import get_db, get_usage_meter
from schemas.usage import UsageSnapshot
from models.user import User
from metering.usage_meter import UsageMeter
import logging

logger = logging.getLogger(__name__)
router = APIRouter(tags=["Usage"])


@router.get("/usage/{user_id}", response_model=UsageSnapshot)
async def get_usage(
    user_id: int,
    db: AsyncSession = Depends(get_db),
    usage_meter: UsageMeter = Depends(get_usage_meter)
):
    """
    Current billing cycle usage for a user.

    Returns used/limit/remaining per resource, the cycle boundaries, when the
    counters reset and the hourly request rate limit of the user's plan.
    """
    user = await db.get(User, user_id)
    if user is None:
        raise HTTPException(status_code=404, detail=f"User {user_id} not found")
    return await usage_meter.usage_snapshot(user, session=db)
