from sqlalchemy import Column, String, Integer, Date, DateTime, BigInteger, ForeignKey, UniqueConstraint
from datetime import datetime
from models.base import Base, IdType


class UsageCounter(Base):
    """
    Per-user, per-resource consumption within one billing cycle.

    A new cycle gets a new row keyed by its start date; old rows are never
    reset. count is only ever changed through the usage meter's atomic upsert.
    """
    __tablename__ = "usage_meters"

    id = Column(IdType, primary_key=True, autoincrement=True)
    user_id = Column(BigInteger, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    resource = Column(String(50), nullable=False)
    count = Column(Integer, nullable=False, default=0)
    billing_cycle_start = Column(Date, nullable=False)
    billing_cycle_end = Column(Date, nullable=False)
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)
    updated_at = Column(DateTime, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow)

    __table_args__ = (
        UniqueConstraint("user_id", "resource", "billing_cycle_start", name="uq_usage_user_resource_cycle"),
    )
