from sqlalchemy import Column, String, Numeric
from models.base import Base, IdType


class EnvironmentalMetric(Base):
    """Measured quantity (e.g. water temperature) with an optional expected value range"""
    __tablename__ = "environmental_metrics"

    id = Column(IdType, primary_key=True, autoincrement=True)
    name = Column(String(100), nullable=False, unique=True)
    unit = Column(String(30), nullable=True)
    expected_min = Column(Numeric(12, 4), nullable=True)
    expected_max = Column(Numeric(12, 4), nullable=True)
