from sqlalchemy import Column, String, Boolean, Integer, Numeric, Date, DateTime, BigInteger, ForeignKey, Index
from datetime import datetime
from models.base import Base, IdType


class ApiCallRecord(Base):
    """
    Append-only audit of imagery API invocations.

    One row per fetch attempt (cache hits included, with zero cost), not per
    aggregated analysis.
    """
    __tablename__ = "satellite_api_calls"

    id = Column(IdType, primary_key=True, autoincrement=True)
    measurement_id = Column(
        BigInteger, ForeignKey("measurements.id", ondelete="SET NULL"), nullable=True, index=True
    )
    campaign_id = Column(BigInteger, nullable=True, index=True)
    user_id = Column(BigInteger, nullable=True, index=True)

    call_type = Column(String(20), nullable=False)  # enrichment, overlay, analysis
    index_type = Column(String(20), nullable=True)
    latitude = Column(Numeric(10, 7), nullable=False)
    longitude = Column(Numeric(10, 7), nullable=False)
    acquisition_date = Column(Date, nullable=False)

    cached = Column(Boolean, nullable=False, default=False)
    response_time_ms = Column(Integer, nullable=True)
    cost_credits = Column(Numeric(8, 4), nullable=False, default=1.0)
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow, index=True)

    __table_args__ = (
        Index("idx_api_calls_user_created", "user_id", "created_at"),
    )
