from sqlalchemy import Column, String, Text, Numeric, DateTime, BigInteger
from shapely.geometry import Point, shape
from datetime import datetime
from models.base import Base, IdType, JSONType


class SurveyZone(Base):
    """
    Area a campaign collects measurements in.

    area is a GeoJSON Polygon or MultiPolygon in WGS84 (lon, lat order).
    A campaign without zones accepts measurements anywhere.
    """
    __tablename__ = "survey_zones"

    id = Column(IdType, primary_key=True, autoincrement=True)
    campaign_id = Column(BigInteger, nullable=False, index=True)
    name = Column(String(255), nullable=False)
    description = Column(Text, nullable=True)
    area = Column(JSONType, nullable=False)
    area_km2 = Column(Numeric(12, 2), nullable=True)
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)

    def __repr__(self):
        return f"<SurveyZone(id={self.id}, campaign_id={self.campaign_id}, name='{self.name}')>"

    @property
    def geometry(self):
        return shape(self.area)

    def covers_point(self, latitude, longitude) -> bool:
        """True when the point lies inside the zone or on its boundary."""
        return self.geometry.covers(Point(float(longitude), float(latitude)))
