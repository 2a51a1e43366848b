"""
Pydantic schemas for API request/response models
"""

from pydantic import BaseModel, Field, field_validator, model_validator
from typing import Optional, List, Dict, Any, Literal
from decimal import Decimal
from datetime import date, datetime, timezone
from models.base import MeasurementStatus


# ============================================================================
# Health Check Schemas
# ============================================================================

class EnrichmentQueueInfo(BaseModel):
    running: bool
    depth: int = 0
    processed: int = 0
    failed: int = 0


class HealthCheckResponse(BaseModel):
    """Health check response model"""
    status: str = Field(..., description="Overall system status: healthy, degraded, unhealthy")
    timestamp: datetime = Field(default_factory=datetime.utcnow)
    database_connected: bool
    enrichment_queue: Optional[EnrichmentQueueInfo] = None

    @model_validator(mode="after")
    def determine_status(self):
        """Determine overall health status"""
        if not self.database_connected:
            self.status = "unhealthy"
        elif self.enrichment_queue is not None and not self.enrichment_queue.running:
            self.status = "degraded"
        else:
            self.status = "healthy"
        return self


# ============================================================================
# Measurement Schemas
# ============================================================================

class MeasurementCreate(BaseModel):
    """
    Schema for submitting a measurement.

    Ensures:
    - latitude and longitude are given together
    - coordinates are within WGS84 bounds
    - accuracy is non-negative
    - collected_at is stored as naive UTC (offsets are converted, not dropped)
    """
    user_id: int
    campaign_id: int
    metric_id: int
    value: Decimal = Field(..., max_digits=12, decimal_places=4)
    latitude: Optional[Decimal] = Field(None, ge=-90, le=90)
    longitude: Optional[Decimal] = Field(None, ge=-180, le=180)
    accuracy: Optional[Decimal] = Field(None, ge=0)
    collected_at: datetime = Field(default_factory=datetime.utcnow)
    status: Literal["draft", "pending"] = "pending"

    @model_validator(mode="after")
    def check_location_pair(self):
        if (self.latitude is None) != (self.longitude is None):
            raise ValueError("latitude and longitude must both be provided or both be omitted")
        return self

    @field_validator("collected_at")
    @classmethod
    def normalize_to_utc(cls, v: datetime) -> datetime:
        if v.tzinfo is not None:
            return v.astimezone(timezone.utc).replace(tzinfo=None)
        return v


class MeasurementResponse(BaseModel):
    id: int
    user_id: int
    campaign_id: int
    metric_id: int
    value: Decimal
    latitude: Optional[Decimal] = None
    longitude: Optional[Decimal] = None
    accuracy: Optional[Decimal] = None
    collected_at: datetime
    status: MeasurementStatus
    reviewed_by: Optional[int] = None
    reviewed_at: Optional[datetime] = None
    review_notes: Optional[str] = None
    quality_flags: List[Dict[str, Any]] = Field(default_factory=list)
    created_at: datetime

    class Config:
        from_attributes = True
        use_enum_values = True

    @field_validator("quality_flags", mode="before")
    @classmethod
    def default_flags(cls, v):
        return v or []


class ReviewRequest(BaseModel):
    """Human review decision"""
    action: Literal["approve", "reject", "reset"]
    reviewer_id: Optional[int] = None
    notes: Optional[str] = Field(None, max_length=2000)
    clear_flags: bool = False

    @model_validator(mode="after")
    def reviewer_required(self):
        if self.action in ("approve", "reject") and self.reviewer_id is None:
            raise ValueError("reviewer_id is required to approve or reject")
        return self


class SpectralAnalysisResponse(BaseModel):
    id: int
    measurement_id: Optional[int] = None
    campaign_id: int
    latitude: Decimal
    longitude: Decimal
    acquisition_date: date
    satellite_source: str
    ndvi_value: Optional[float] = None
    moisture_index: Optional[float] = None
    ndre_value: Optional[float] = None
    evi_value: Optional[float] = None
    msi_value: Optional[float] = None
    savi_value: Optional[float] = None
    gndvi_value: Optional[float] = None
    # Always null: the processing API reports no scene cloud cover
    cloud_coverage_percent: Optional[float] = None
    ndvi_interpretation: Optional[str] = None
    moisture_interpretation: Optional[str] = None
    indices_fetched: List[str] = Field(default_factory=list)
    created_at: datetime

    class Config:
        from_attributes = True


# ============================================================================
# Error Schemas
# ============================================================================

class QuotaExceededResponse(BaseModel):
    error: str = "quota_exceeded"
    message: str
    resource: str
    limit: int
    used: int
    resets_at: datetime
    retry_after_seconds: int
