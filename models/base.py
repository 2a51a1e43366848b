from sqlalchemy import JSON, BigInteger, Integer
from sqlalchemy.orm import declarative_base
from sqlalchemy.dialects.postgresql import JSONB
import enum

Base = declarative_base()

# JSONB on PostgreSQL, plain JSON elsewhere (SQLite in tests)
JSONType = JSON().with_variant(JSONB(), "postgresql")

# SQLite only autoincrements INTEGER PRIMARY KEY columns
IdType = BigInteger().with_variant(Integer, "sqlite")

# Reviewer id recorded on automated approvals
SYSTEM_REVIEWER_ID = 0


# ============================================================================
# ENUMS
# ============================================================================

class PlanTier(str, enum.Enum):
    """Subscription plan tiers"""
    FREE = "free"
    PRO = "pro"
    ENTERPRISE = "enterprise"


class MeasurementStatus(str, enum.Enum):
    """Measurement review lifecycle"""
    DRAFT = "draft"
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"


class ResourceKind(str, enum.Enum):
    """Metered resource kinds"""
    DATA_POINTS = "data_points"
    SATELLITE_ANALYSES = "satellite_analyses"
    REPORT_EXPORTS = "report_exports"


class CallType(str, enum.Enum):
    """Imagery API call categories recorded in the audit log"""
    ENRICHMENT = "enrichment"
    OVERLAY = "overlay"
    ANALYSIS = "analysis"
