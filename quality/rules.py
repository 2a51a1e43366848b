"""
Quality heuristics.

Each rule inspects one measurement and returns at most one flag of its own
type. Rules never change the measurement; the engine decides what to do with
the flags.

Rules:
    low_accuracy:     horizontal accuracy coarser than the threshold (default 50 m)
    outlier:          |value - mean| > k * stddev of the trailing approved
                      baseline for the same campaign and metric
    outside_zone:     location outside every survey zone of the campaign
                      (campaigns without zones are not checked)
    unexpected_range: value outside the metric's configured expected range
"""

import statistics
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import List, Optional, Sequence

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from core.config import settings
from models.base import MeasurementStatus
from models.measurement import Measurement
from models.metric import EnvironmentalMetric
from models.survey_zone import SurveyZone
from schemas.flags import LowAccuracyFlag, OutlierFlag, OutsideZoneFlag, QualityFlag, UnexpectedRangeFlag


@dataclass(frozen=True)
class Baseline:
    mean: float
    stddev: float
    sample_size: int


def compute_baseline(values: Sequence[float], min_samples: int) -> Optional[Baseline]:
    """Mean and sample standard deviation, or None when the history is too thin or flat."""
    if len(values) < max(min_samples, 2):
        return None
    stddev = statistics.stdev(values)
    if stddev == 0:
        return None
    return Baseline(mean=statistics.fmean(values), stddev=stddev, sample_size=len(values))


class QualityRules:
    def __init__(
        self,
        low_accuracy_meters: Optional[float] = None,
        outlier_stddevs: Optional[float] = None,
        baseline_days: Optional[int] = None,
        min_baseline: Optional[int] = None
    ):
        self.low_accuracy_meters = (
            low_accuracy_meters if low_accuracy_meters is not None else settings.QUALITY_LOW_ACCURACY_METERS
        )
        self.outlier_stddevs = outlier_stddevs if outlier_stddevs is not None else settings.QUALITY_OUTLIER_STDDEVS
        self.baseline_days = baseline_days if baseline_days is not None else settings.QUALITY_BASELINE_DAYS
        self.min_baseline = min_baseline if min_baseline is not None else settings.QUALITY_MIN_BASELINE

    # ------------------------------------------------------------------
    # Individual rules
    # ------------------------------------------------------------------

    def check_low_accuracy(self, measurement: Measurement) -> Optional[LowAccuracyFlag]:
        if measurement.accuracy is None or float(measurement.accuracy) <= self.low_accuracy_meters:
            return None
        return LowAccuracyFlag(
            reason=f"GPS accuracy {float(measurement.accuracy):.1f}m exceeds threshold ({self.low_accuracy_meters:g}m)",
            accuracy_meters=float(measurement.accuracy),
        )

    def check_outlier(self, measurement: Measurement, baseline: Optional[Baseline]) -> Optional[OutlierFlag]:
        if baseline is None:
            return None
        value = float(measurement.value)
        deviation = abs(value - baseline.mean)
        if deviation <= self.outlier_stddevs * baseline.stddev:
            return None
        z_score = deviation / baseline.stddev
        return OutlierFlag(
            reason=(
                f"Value {value:.2f} is {z_score:.1f} standard deviations from the "
                f"{self.baseline_days}-day mean {baseline.mean:.2f}"
            ),
            details={
                "value": value,
                "mean": round(baseline.mean, 4),
                "stddev": round(baseline.stddev, 4),
                "z_score": round(z_score, 2),
                "threshold": self.outlier_stddevs,
                "sample_size": baseline.sample_size,
            },
        )

    def check_outside_zone(
        self,
        measurement: Measurement,
        zones: Sequence[SurveyZone]
    ) -> Optional[OutsideZoneFlag]:
        if not zones or not measurement.has_location:
            return None
        if any(zone.covers_point(measurement.latitude, measurement.longitude) for zone in zones):
            return None
        return OutsideZoneFlag(zone_count=len(zones))

    def check_expected_range(
        self,
        measurement: Measurement,
        metric: Optional[EnvironmentalMetric]
    ) -> Optional[UnexpectedRangeFlag]:
        if metric is None or metric.expected_min is None or metric.expected_max is None:
            return None
        if metric.expected_min <= measurement.value <= metric.expected_max:
            return None
        return UnexpectedRangeFlag(
            reason=(
                f"Value {float(measurement.value):.2f} outside expected range "
                f"[{float(metric.expected_min):.2f} - {float(metric.expected_max):.2f}] for {metric.name}"
            ),
            expected_min=float(metric.expected_min),
            expected_max=float(metric.expected_max),
        )

    # ------------------------------------------------------------------
    # Lookups
    # ------------------------------------------------------------------

    async def load_zones(self, session: AsyncSession, campaign_id: int) -> List[SurveyZone]:
        result = await session.execute(
            select(SurveyZone).where(SurveyZone.campaign_id == campaign_id).order_by(SurveyZone.id)
        )
        return list(result.scalars().all())

    async def load_baseline(self, session: AsyncSession, measurement: Measurement, now: datetime) -> Optional[Baseline]:
        """Approved values of the same campaign and metric in the trailing window, excluding the measurement."""
        result = await session.execute(
            select(Measurement.value).where(
                Measurement.campaign_id == measurement.campaign_id,
                Measurement.metric_id == measurement.metric_id,
                Measurement.status == MeasurementStatus.APPROVED,
                Measurement.id != measurement.id,
                Measurement.collected_at >= now - timedelta(days=self.baseline_days),
                Measurement.collected_at <= now,
            )
        )
        values = [float(value) for value in result.scalars().all()]
        return compute_baseline(values, self.min_baseline)

    async def evaluate(
        self,
        session: AsyncSession,
        measurement: Measurement,
        metric: Optional[EnvironmentalMetric],
        now: datetime,
        zones: Optional[Sequence[SurveyZone]] = None
    ) -> List[QualityFlag]:
        """
        Flags every rule would raise for the measurement, in rule order.

        zones are the campaign's survey zones; loaded when not given.
        """
        baseline = await self.load_baseline(session, measurement, now)
        if zones is None:
            zones = await self.load_zones(session, measurement.campaign_id)
        candidates = [
            self.check_low_accuracy(measurement),
            self.check_outlier(measurement, baseline),
            self.check_outside_zone(measurement, zones),
            self.check_expected_range(measurement, metric),
        ]
        return [flag for flag in candidates if flag is not None]
