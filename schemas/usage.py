"""
Pydantic schemas for usage metering responses
"""

from pydantic import BaseModel, Field
from typing import Dict
from datetime import date, datetime


class ResourceUsage(BaseModel):
    used: int = Field(..., ge=0)
    limit: int
    remaining: int = Field(..., ge=0)
    unlimited: bool = False


class UsageSnapshot(BaseModel):
    """Current-cycle usage of every metered resource for one user"""
    user_id: int
    plan_tier: str
    billing_cycle_start: date
    billing_cycle_end: date
    resets_at: datetime
    rate_limit_per_hour: int
    resources: Dict[str, ResourceUsage]
