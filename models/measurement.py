from sqlalchemy import (
    Column, Text, Numeric, DateTime, BigInteger, Enum, ForeignKey, Index, CheckConstraint
)
from sqlalchemy.orm import relationship
from datetime import datetime
from models.base import Base, IdType, JSONType, MeasurementStatus
from core.exceptions import InvalidStatusTransition
from schemas.flags import parse_flags, dump_flags


class Measurement(Base):
    """
    One field observation submitted to a campaign.

    Lifecycle:
    - draft -> pending (submit)
    - pending -> approved | rejected (review)
    - any -> pending (reset; clears review metadata)

    Location is optional but latitude and longitude are always set together.
    quality_flags is an ordered JSON list of tagged flags (see schemas.flags);
    flags are only appended until clear_flags() is called.
    """
    __tablename__ = "measurements"

    id = Column(IdType, primary_key=True, autoincrement=True)
    campaign_id = Column(BigInteger, nullable=False, index=True)
    metric_id = Column(BigInteger, ForeignKey("environmental_metrics.id"), nullable=False, index=True)
    user_id = Column(BigInteger, ForeignKey("users.id"), nullable=False, index=True)

    value = Column(Numeric(12, 4), nullable=False)
    latitude = Column(Numeric(10, 7), nullable=True)
    longitude = Column(Numeric(10, 7), nullable=True)
    accuracy = Column(Numeric(8, 2), nullable=True)  # horizontal accuracy in meters
    collected_at = Column(DateTime, nullable=False, default=datetime.utcnow, index=True)

    status = Column(
        Enum(
            MeasurementStatus,
            name="measurement_status",
            values_callable=lambda kinds: [k.value for k in kinds],
        ),
        nullable=False,
        default=MeasurementStatus.PENDING,
        index=True,
    )

    # Review metadata
    reviewed_by = Column(BigInteger, nullable=True)
    reviewed_at = Column(DateTime, nullable=True)
    review_notes = Column(Text, nullable=True)

    quality_flags = Column(JSONType, nullable=True)

    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)
    updated_at = Column(DateTime, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow)

    metric = relationship("EnvironmentalMetric", lazy="raise")

    __table_args__ = (
        CheckConstraint(
            "(latitude IS NULL AND longitude IS NULL) OR (latitude IS NOT NULL AND longitude IS NOT NULL)",
            name="ck_measurement_location_pair",
        ),
        Index("idx_measurement_campaign_metric_status", "campaign_id", "metric_id", "status"),
    )

    def __init__(self, **kwargs):
        if (kwargs.get("latitude") is None) != (kwargs.get("longitude") is None):
            raise ValueError("latitude and longitude must both be set or both be empty")
        kwargs.setdefault("status", MeasurementStatus.PENDING)
        kwargs.setdefault("quality_flags", [])
        super().__init__(**kwargs)

    def __repr__(self):
        return f"<Measurement(id={self.id}, campaign_id={self.campaign_id}, status={self.status})>"

    # ------------------------------------------------------------------
    # Location
    # ------------------------------------------------------------------

    @property
    def has_location(self) -> bool:
        return self.latitude is not None and self.longitude is not None

    # ------------------------------------------------------------------
    # Quality flags
    # ------------------------------------------------------------------

    @property
    def flags(self):
        return parse_flags(self.quality_flags)

    @property
    def flag_types(self):
        return {flag.type for flag in self.flags}

    def add_flags(self, new_flags) -> None:
        """Append flags; the list is reassigned so the JSON column is marked dirty."""
        if not new_flags:
            return
        self.quality_flags = list(self.quality_flags or []) + dump_flags(list(new_flags))

    def clear_flags(self) -> None:
        self.quality_flags = []

    # ------------------------------------------------------------------
    # Status transitions
    # ------------------------------------------------------------------

    def _ensure_pending(self, target: MeasurementStatus) -> None:
        if self.status != MeasurementStatus.PENDING:
            raise InvalidStatusTransition(
                f"Cannot move measurement from {self.status.value} to {target.value}",
                context={
                    "measurement_id": self.id,
                    "from_status": self.status.value,
                    "to_status": target.value,
                },
            )

    def approve(self, reviewer_id: int, notes=None, now=None) -> None:
        self._ensure_pending(MeasurementStatus.APPROVED)
        self.status = MeasurementStatus.APPROVED
        self.reviewed_by = reviewer_id
        self.reviewed_at = now or datetime.utcnow()
        self.review_notes = notes

    def reject(self, reviewer_id: int, notes=None, now=None) -> None:
        self._ensure_pending(MeasurementStatus.REJECTED)
        self.status = MeasurementStatus.REJECTED
        self.reviewed_by = reviewer_id
        self.reviewed_at = now or datetime.utcnow()
        self.review_notes = notes

    def reset_to_pending(self) -> None:
        """Return to pending from any state (also submits a draft)."""
        self.status = MeasurementStatus.PENDING
        self.reviewed_by = None
        self.reviewed_at = None
        self.review_notes = None
