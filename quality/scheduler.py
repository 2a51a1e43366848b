import logging
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger
from sqlalchemy.ext.asyncio import async_sessionmaker
from typing import Optional
from core.config import settings
from core.database import async_session_maker
from quality.engine import QualityEngine
from schemas.quality import QualityRunSummary

logger = logging.getLogger(__name__)


class QualityScheduler:
    """Runs flagging then auto-approval on a fixed interval"""

    def __init__(
        self,
        session_maker: Optional[async_sessionmaker] = None,
        interval_minutes: Optional[int] = None
    ):
        self.scheduler = AsyncIOScheduler()
        self.engine = QualityEngine(session_maker or async_session_maker)
        self.interval_minutes = interval_minutes or settings.QUALITY_CHECK_INTERVAL_MINUTES

    async def run_quality_job(self) -> Optional[QualityRunSummary]:
        """Job to run the quality checks"""
        logger.info("Scheduler: Starting quality check job")
        try:
            summary = QualityRunSummary(
                flagged=await self.engine.flag_suspicious_readings(),
                approved=await self.engine.auto_approve_qualified(),
            )
            logger.info(f"Scheduler: Quality check finished ({summary.flagged} flagged, {summary.approved} approved)")
            return summary
        except Exception as e:
            logger.error(f"Scheduler: Quality check job failed - {e}", exc_info=True)
            return None

    def start(self):
        """Start the scheduler"""
        self.scheduler.add_job(
            self.run_quality_job,
            trigger=IntervalTrigger(minutes=self.interval_minutes),
            id="quality_check_job",
            replace_existing=True
        )
        self.scheduler.start()
        logger.info(f"Quality scheduler started (every {self.interval_minutes} minutes)")

    def stop(self):
        if self.scheduler.running:
            self.scheduler.shutdown()
        logger.info("Quality scheduler stopped")
