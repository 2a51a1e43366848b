"""
Pydantic schemas for quality-engine reports
"""

from datetime import datetime
from typing import Optional

from pydantic import BaseModel


class CampaignQualityStats(BaseModel):
    campaign_id: int
    total: int = 0
    pending: int = 0
    approved: int = 0
    rejected: int = 0
    draft: int = 0
    flagged: int = 0
    high_accuracy: int = 0
    approval_rate: float = 0.0       # percent of all measurements
    high_accuracy_rate: float = 0.0  # percent of all measurements


class UserContributionStats(BaseModel):
    """One contributor's submissions within the reporting window"""
    user_id: int
    email: str
    total_submissions: int = 0
    approved_count: int = 0
    rejected_count: int = 0
    approval_rate: float = 0.0  # percent of submissions
    avg_accuracy: float = 0.0   # meters, 0 when no submission carried accuracy
    first_submission: Optional[datetime] = None
    last_submission: Optional[datetime] = None


class QualityRunSummary(BaseModel):
    flagged: int = 0
    approved: int = 0
