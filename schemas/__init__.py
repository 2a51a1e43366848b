"""
Pydantic schemas for data validation and serialization.

This package defines Pydantic models shared by the API, the enrichment
components, the usage meter and the quality engine:

Schemas:
    flags: Tagged quality flags stored on measurements
    imagery: Index results, overlays and API-call audit entries
    usage: Per-resource usage and quota snapshots
    quality: Campaign and contributor quality statistics, batch run summaries
    api: API endpoint request/response schemas

Usage:
    from schemas import MeasurementCreate, UsageSnapshot
    from schemas.flags import parse_flags, dump_flags

Example:
    # Validate a submitted measurement
    payload = MeasurementCreate(
        user_id=7,
        campaign_id=1,
        metric_id=3,
        value=Decimal("18.5"),
        latitude=Decimal("55.7072"),
        longitude=Decimal("12.5704"),
    )

    # latitude without longitude is rejected
    MeasurementCreate(user_id=7, campaign_id=1, metric_id=3, value=1, latitude=55)  # ValidationError
"""

from schemas.flags import QualityFlag, LowAccuracyFlag, OutlierFlag, OutsideZoneFlag, UnexpectedRangeFlag
from schemas.imagery import IndexResult, OverlayImage, ApiCallContext, ApiCallEntry, ApiCallLog
from schemas.usage import ResourceUsage, UsageSnapshot
from schemas.quality import CampaignQualityStats, QualityRunSummary, UserContributionStats
from schemas.api import (
    HealthCheckResponse,
    MeasurementCreate,
    MeasurementResponse,
    ReviewRequest,
    SpectralAnalysisResponse,
    QuotaExceededResponse,
)

__all__ = [
    "QualityFlag",
    "LowAccuracyFlag",
    "OutlierFlag",
    "OutsideZoneFlag",
    "UnexpectedRangeFlag",
    "IndexResult",
    "OverlayImage",
    "ApiCallContext",
    "ApiCallEntry",
    "ApiCallLog",
    "ResourceUsage",
    "UsageSnapshot",
    "CampaignQualityStats",
    "QualityRunSummary",
    "UserContributionStats",
    "HealthCheckResponse",
    "MeasurementCreate",
    "MeasurementResponse",
    "ReviewRequest",
    "SpectralAnalysisResponse",
    "QuotaExceededResponse",
]
