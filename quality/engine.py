"""
Quality engine: batch flagging and auto-approval of pending measurements.

Flagging is idempotent per rule type: a rule never appends a second flag of
a type the measurement already carries, so re-running without new data adds
nothing. Auto-approval only touches pending measurements with no flags and a
trusted GPS fix, and re-checks every rule before approving.

Reports: per-campaign quality statistics and per-contributor submission
statistics over a trailing window.
"""

import logging
from datetime import datetime, timedelta
from typing import Callable, Dict, List, Optional

from sqlalchemy import case, select, func
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from core.config import settings
from models.base import MeasurementStatus, SYSTEM_REVIEWER_ID
from models.measurement import Measurement
from models.metric import EnvironmentalMetric
from models.survey_zone import SurveyZone
from models.user import User
from quality.rules import QualityRules
from schemas.quality import CampaignQualityStats, UserContributionStats

logger = logging.getLogger(__name__)

AUTO_APPROVAL_NOTE = "Auto-approved: High GPS accuracy, no quality issues"


class QualityEngine:
    """
    Attributes:
        session_maker: Session factory; each batch runs in one transaction
        rules: Heuristics evaluated per measurement
        clock: Current UTC time (baseline window and review timestamps)
        trusted_accuracy_meters: Maximum accuracy for auto-approval
    """

    def __init__(
        self,
        session_maker: async_sessionmaker,
        rules: Optional[QualityRules] = None,
        clock: Callable[[], datetime] = datetime.utcnow,
        trusted_accuracy_meters: Optional[float] = None
    ):
        self.session_maker = session_maker
        self.rules = rules or QualityRules()
        self.clock = clock
        self.trusted_accuracy_meters = (
            trusted_accuracy_meters if trusted_accuracy_meters is not None
            else settings.QUALITY_TRUSTED_ACCURACY_METERS
        )

    async def _metrics_by_id(self, session: AsyncSession, metric_ids) -> Dict[int, EnvironmentalMetric]:
        if not metric_ids:
            return {}
        result = await session.execute(
            select(EnvironmentalMetric).where(EnvironmentalMetric.id.in_(set(metric_ids)))
        )
        return {metric.id: metric for metric in result.scalars().all()}

    async def _zones_by_campaign(self, session: AsyncSession, campaign_ids) -> Dict[int, List[SurveyZone]]:
        zones: Dict[int, List[SurveyZone]] = {campaign_id: [] for campaign_id in set(campaign_ids)}
        if not zones:
            return zones
        result = await session.execute(
            select(SurveyZone).where(SurveyZone.campaign_id.in_(set(zones))).order_by(SurveyZone.id)
        )
        for zone in result.scalars().all():
            zones[zone.campaign_id].append(zone)
        return zones

    async def flag_suspicious_readings(self) -> int:
        """
        Evaluate every rule against pending measurements and append new flags.

        Returns:
            Number of measurements that received at least one new flag
        """
        now = self.clock()
        flagged = 0

        async with self.session_maker() as session:
            async with session.begin():
                result = await session.execute(
                    select(Measurement)
                    .where(Measurement.status == MeasurementStatus.PENDING)
                    .order_by(Measurement.id)
                )
                pending = result.scalars().all()
                metrics = await self._metrics_by_id(session, [m.metric_id for m in pending])
                zones = await self._zones_by_campaign(session, [m.campaign_id for m in pending])

                for measurement in pending:
                    flags = await self.rules.evaluate(
                        session, measurement, metrics.get(measurement.metric_id), now,
                        zones=zones[measurement.campaign_id],
                    )
                    existing = measurement.flag_types
                    new_flags = [flag for flag in flags if flag.type not in existing]
                    if not new_flags:
                        continue

                    measurement.add_flags(new_flags)
                    flagged += 1
                    logger.info(
                        f"Flagged measurement {measurement.id}: "
                        f"{', '.join(flag.type for flag in new_flags)}"
                    )

        logger.info(f"Quality check flagged {flagged} of {len(pending)} pending measurements")
        return flagged

    async def auto_approve_qualified(self) -> int:
        """
        Approve pending, unflagged measurements with a trusted GPS fix.

        Returns:
            Number of measurements approved
        """
        now = self.clock()
        approved = 0

        async with self.session_maker() as session:
            async with session.begin():
                result = await session.execute(
                    select(Measurement)
                    .where(
                        Measurement.status == MeasurementStatus.PENDING,
                        Measurement.accuracy.is_not(None),
                        Measurement.accuracy <= self.trusted_accuracy_meters,
                    )
                    .order_by(Measurement.id)
                )
                candidates = [m for m in result.scalars().all() if not m.quality_flags]
                metrics = await self._metrics_by_id(session, [m.metric_id for m in candidates])
                zones = await self._zones_by_campaign(session, [m.campaign_id for m in candidates])

                for measurement in candidates:
                    flags = await self.rules.evaluate(
                        session, measurement, metrics.get(measurement.metric_id), now,
                        zones=zones[measurement.campaign_id],
                    )
                    if flags:
                        logger.debug(
                            f"Measurement {measurement.id} not auto-approved: "
                            f"{', '.join(flag.type for flag in flags)}"
                        )
                        continue

                    measurement.approve(SYSTEM_REVIEWER_ID, notes=AUTO_APPROVAL_NOTE, now=now)
                    approved += 1

        logger.info(f"Auto-approved {approved} measurements")
        return approved

    async def campaign_quality_stats(self, campaign_id: int) -> CampaignQualityStats:
        async with self.session_maker() as session:
            status_counts = await session.execute(
                select(Measurement.status, func.count())
                .where(Measurement.campaign_id == campaign_id)
                .group_by(Measurement.status)
            )
            by_status = {status: count for status, count in status_counts.all()}

            high_accuracy = await session.scalar(
                select(func.count()).select_from(Measurement).where(
                    Measurement.campaign_id == campaign_id,
                    Measurement.accuracy.is_not(None),
                    Measurement.accuracy <= self.trusted_accuracy_meters,
                )
            )

            flags = await session.execute(
                select(Measurement.quality_flags).where(Measurement.campaign_id == campaign_id)
            )
            flagged = sum(1 for (raw,) in flags.all() if raw)

        total = sum(by_status.values())
        approved = by_status.get(MeasurementStatus.APPROVED, 0)
        return CampaignQualityStats(
            campaign_id=campaign_id,
            total=total,
            pending=by_status.get(MeasurementStatus.PENDING, 0),
            approved=approved,
            rejected=by_status.get(MeasurementStatus.REJECTED, 0),
            draft=by_status.get(MeasurementStatus.DRAFT, 0),
            flagged=flagged,
            high_accuracy=high_accuracy or 0,
            approval_rate=round(approved / total * 100, 1) if total else 0.0,
            high_accuracy_rate=round((high_accuracy or 0) / total * 100, 1) if total else 0.0,
        )

    async def user_contribution_stats(self, days: int = 30) -> List[UserContributionStats]:
        """
        Per-contributor submission counts for measurements created in the
        last `days` days, busiest contributor first.
        """
        since = self.clock() - timedelta(days=days)
        total = func.count(Measurement.id)

        async with self.session_maker() as session:
            result = await session.execute(
                select(
                    User.id,
                    User.email,
                    total,
                    func.sum(case((Measurement.status == MeasurementStatus.APPROVED, 1), else_=0)),
                    func.sum(case((Measurement.status == MeasurementStatus.REJECTED, 1), else_=0)),
                    func.avg(Measurement.accuracy),
                    func.min(Measurement.created_at),
                    func.max(Measurement.created_at),
                )
                .join(User, User.id == Measurement.user_id)
                .where(Measurement.created_at >= since)
                .group_by(User.id, User.email)
                .order_by(total.desc(), User.id)
            )
            rows = result.all()

        stats = []
        for user_id, email, submissions, approved, rejected, avg_accuracy, first, last in rows:
            approved = int(approved or 0)
            stats.append(UserContributionStats(
                user_id=user_id,
                email=email,
                total_submissions=submissions,
                approved_count=approved,
                rejected_count=int(rejected or 0),
                approval_rate=round(approved / submissions * 100, 1) if submissions else 0.0,
                avg_accuracy=round(float(avg_accuracy or 0), 2),
                first_submission=first,
                last_submission=last,
            ))
        return stats
