from sqlalchemy import Column, String, Date, DateTime, Float, Numeric, ForeignKey, Index, BigInteger
from datetime import datetime
from models.base import Base, IdType, JSONType

SATELLITE_SOURCE = "Sentinel-2 L2A"


class SpectralAnalysis(Base):
    """
    Remote-sensing indices for one measurement location and acquisition date.

    Written once by the enrichment orchestrator and never updated. Each index
    column is NULL when that index could not be fetched; extra_metadata holds
    the ordered list of indices that succeeded (indices_fetched), the fetch
    date and temporal_offset_days (acquisition_date minus collection day).

    measurement_id is SET NULL when the measurement is removed, so a row
    outlives its measurement as a campaign-scoped analysis.
    """
    __tablename__ = "spectral_analyses"

    id = Column(IdType, primary_key=True, autoincrement=True)
    measurement_id = Column(
        BigInteger, ForeignKey("measurements.id", ondelete="SET NULL"), nullable=True, index=True
    )
    campaign_id = Column(BigInteger, nullable=False, index=True)

    latitude = Column(Numeric(10, 7), nullable=False)
    longitude = Column(Numeric(10, 7), nullable=False)
    acquisition_date = Column(Date, nullable=False)
    satellite_source = Column(String(50), nullable=False, default=SATELLITE_SOURCE)

    # Index values
    ndvi_value = Column(Float, nullable=True)
    moisture_index = Column(Float, nullable=True)
    ndre_value = Column(Float, nullable=True)
    evi_value = Column(Float, nullable=True)
    msi_value = Column(Float, nullable=True)
    savi_value = Column(Float, nullable=True)
    gndvi_value = Column(Float, nullable=True)
    # The processing API returns only the index raster, no scene cloud cover;
    # the column stays NULL until a catalogue lookup supplies it.
    cloud_coverage_percent = Column(Float, nullable=True)

    ndvi_interpretation = Column(String(100), nullable=True)
    moisture_interpretation = Column(String(100), nullable=True)

    extra_metadata = Column("metadata", JSONType, nullable=True)
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)

    __table_args__ = (
        Index("idx_analysis_campaign_date", "campaign_id", "acquisition_date"),
    )

    @property
    def indices_fetched(self):
        return list((self.extra_metadata or {}).get("indices_fetched", []))
