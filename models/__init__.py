"""
SQLAlchemy ORM models for database tables.

This package defines the database schema using SQLAlchemy ORM models:

Models:
    base: Base declarative class, column type variants and shared enums
          (PlanTier, MeasurementStatus, ResourceKind, CallType)
    user: Account record carrying the plan tier and subscription start
    metric: Environmental metric with an optional expected value range
    measurement: Field observation with review lifecycle and quality flags
    spectral_analysis: Remote-sensing indices for one measurement
    usage_counter: Per-user, per-resource, per-billing-cycle counters
    api_call: Append-only imagery API audit log
    survey_zone: Campaign survey area as a GeoJSON polygon

Database Schema:
    All models inherit from the Base declarative class. JSON columns use
    JSONB on PostgreSQL and plain JSON on other dialects.

Usage:
    from models import Measurement, SpectralAnalysis, UsageCounter
    from models.base import MeasurementStatus, ResourceKind

Example:
    measurement = Measurement(
        campaign_id=1,
        metric_id=3,
        user_id=7,
        value=Decimal("18.5000"),
        latitude=Decimal("55.7072"),
        longitude=Decimal("12.5704"),
        accuracy=Decimal("4.50"),
    )
    session.add(measurement)
    await session.commit()

Relationships:
    - Measurement -> SpectralAnalysis (one-to-many, one per enrichment run)
    - Measurement -> ApiCallRecord (one-to-many)
    - User -> UsageCounter (one-to-many, one per resource per cycle)
"""

from models.base import Base, PlanTier, MeasurementStatus, ResourceKind, CallType, SYSTEM_REVIEWER_ID
from models.user import User
from models.metric import EnvironmentalMetric
from models.measurement import Measurement
from models.spectral_analysis import SpectralAnalysis, SATELLITE_SOURCE
from models.usage_counter import UsageCounter
from models.api_call import ApiCallRecord
from models.survey_zone import SurveyZone

__all__ = [
    "Base",
    "PlanTier",
    "MeasurementStatus",
    "ResourceKind",
    "CallType",
    "SYSTEM_REVIEWER_ID",
    "User",
    "EnvironmentalMetric",
    "Measurement",
    "SpectralAnalysis",
    "SATELLITE_SOURCE",
    "UsageCounter",
    "ApiCallRecord",
    "SurveyZone",
]
