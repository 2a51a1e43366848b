from sqlalchemy import Column, String, DateTime
from datetime import datetime
from models.base import Base, IdType, PlanTier


class User(Base):
    """
    Minimal account record.

    Accounts are managed elsewhere; the pipeline only needs the plan tier and
    the subscription start date to derive quota limits and billing cycles.
    plan_tier is kept as a plain string so an unrecognised tier degrades to
    the free plan instead of failing to load.
    """
    __tablename__ = "users"

    id = Column(IdType, primary_key=True, autoincrement=True)
    email = Column(String(255), nullable=False, unique=True)
    plan_tier = Column(String(20), nullable=False, default=PlanTier.FREE.value)
    subscription_started_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)

    def __repr__(self):
        return f"<User(id={self.id}, plan_tier={self.plan_tier})>"
