"""
Enrichment run for a single measurement.

States:
    SCHEDULED -> LOCATION_RESOLVED -> FETCHING -> AGGREGATING -> PERSISTED
    any state before PERSISTED may end in SKIPPED

A run fetches every index concurrently and tolerates individual index
failures. It writes at most one SpectralAnalysis, and only together with its
audit rows and the satellite_analyses quota increment in one transaction.

When no index exists on the collection day and nearest_date_days is set,
the run retries once on the closest day with an acquisition.
"""

import asyncio
import enum
import logging
from dataclasses import dataclass, field, replace
from datetime import date, datetime
from decimal import Decimal
from typing import Dict, List, Optional, Sequence

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from core.config import settings
from core.exceptions import FetchError, PipelineException, QuotaExceededError
from enrichment.imagery_client import ImageryClient
from enrichment.indices import INDEX_SPECS, IndexKind, interpret_moisture, interpret_ndvi
from metering.usage_meter import UsageMeter
from models.api_call import ApiCallRecord
from models.base import CallType, ResourceKind
from models.measurement import Measurement
from models.spectral_analysis import SATELLITE_SOURCE, SpectralAnalysis
from models.user import User
from schemas.imagery import ApiCallContext, ApiCallLog, IndexResult

logger = logging.getLogger(__name__)


class EnrichmentState(str, enum.Enum):
    SCHEDULED = "scheduled"
    LOCATION_RESOLVED = "location_resolved"
    FETCHING = "fetching"
    AGGREGATING = "aggregating"
    PERSISTED = "persisted"
    SKIPPED = "skipped"


class SkipReason(str, enum.Enum):
    MEASUREMENT_MISSING = "measurement_missing"
    USER_MISSING = "user_missing"
    QUOTA_EXCEEDED = "quota_exceeded"
    NO_LOCATION = "no_location"
    NO_INDICES = "no_indices"


@dataclass
class EnrichmentOutcome:
    measurement_id: int
    state: EnrichmentState
    indices_fetched: List[str] = field(default_factory=list)
    analysis_id: Optional[int] = None
    skip_reason: Optional[SkipReason] = None


@dataclass(frozen=True)
class _Target:
    """Values read from the measurement before fetching starts"""
    measurement_id: int
    campaign_id: int
    user: User
    latitude: Decimal
    longitude: Decimal
    day: date
    collection_day: date


class EnrichmentOrchestrator:
    """
    Turns a newly created measurement into a SpectralAnalysis.

    Attributes:
        session_maker: Session factory for reads and the persistence transaction
        imagery_client: Index fetcher
        usage_meter: Quota gate and satellite_analyses counter
        indices: Indices fetched per run (all of them by default)
        nearest_date_days: Days searched either side of the collection date
            when no index exists on it (0 disables the search)
    """

    def __init__(
        self,
        session_maker: async_sessionmaker,
        imagery_client: ImageryClient,
        usage_meter: UsageMeter,
        indices: Sequence[IndexKind] = tuple(IndexKind),
        nearest_date_days: Optional[int] = None
    ):
        self.session_maker = session_maker
        self.imagery_client = imagery_client
        self.usage_meter = usage_meter
        self.indices = tuple(indices)
        self.nearest_date_days = (
            nearest_date_days if nearest_date_days is not None else settings.ENRICHMENT_NEAREST_DATE_DAYS
        )

    async def run(self, measurement_id: int) -> EnrichmentOutcome:
        """
        Enrich one measurement.

        Returns:
            EnrichmentOutcome ending in PERSISTED or SKIPPED

        Raises:
            AuthenticationError: No imagery token could be obtained
            PipelineException / SQLAlchemyError: Persistence failed (rolled back)
        """
        outcome = EnrichmentOutcome(measurement_id=measurement_id, state=EnrichmentState.SCHEDULED)

        try:
            target = await self._resolve(outcome)
            if target is None:
                return outcome

            outcome.state = EnrichmentState.FETCHING
            call_log = ApiCallLog()
            results = await self._fetch_all(target, call_log)
            if not results and self.nearest_date_days > 0:
                target, results = await self._fetch_nearest(target, call_log)

            outcome.state = EnrichmentState.AGGREGATING
            if not results:
                logger.warning(f"No index could be fetched for measurement {measurement_id}")
                await self._persist_calls(call_log)
                return self._skip(outcome, SkipReason.NO_INDICES)

            return await self._persist(outcome, target, results, call_log)

        except PipelineException as e:
            logger.error(
                f"Enrichment failed for measurement {measurement_id} in state {outcome.state.value}: {e.message}",
                extra={"error_context": e.to_dict()}
            )
            raise

        except Exception as e:
            logger.error(
                f"Unexpected enrichment error for measurement {measurement_id} "
                f"in state {outcome.state.value}: {e}",
                exc_info=True
            )
            raise

    # ------------------------------------------------------------------
    # Stages
    # ------------------------------------------------------------------

    def _skip(self, outcome: EnrichmentOutcome, reason: SkipReason) -> EnrichmentOutcome:
        outcome.state = EnrichmentState.SKIPPED
        outcome.skip_reason = reason
        logger.info(f"Enrichment of measurement {outcome.measurement_id} skipped: {reason.value}")
        return outcome

    async def _resolve(self, outcome: EnrichmentOutcome) -> Optional[_Target]:
        async with self.session_maker() as session:
            measurement = await session.get(Measurement, outcome.measurement_id)
            if measurement is None:
                self._skip(outcome, SkipReason.MEASUREMENT_MISSING)
                return None

            user = await session.get(User, measurement.user_id)
            if user is None:
                self._skip(outcome, SkipReason.USER_MISSING)
                return None

            if not await self.usage_meter.can_perform_action(user, ResourceKind.SATELLITE_ANALYSES, session=session):
                logger.warning(f"User {user.id} has no satellite analysis quota left")
                self._skip(outcome, SkipReason.QUOTA_EXCEEDED)
                return None

            if not measurement.has_location:
                self._skip(outcome, SkipReason.NO_LOCATION)
                return None

            outcome.state = EnrichmentState.LOCATION_RESOLVED
            return _Target(
                measurement_id=measurement.id,
                campaign_id=measurement.campaign_id,
                user=user,
                latitude=measurement.latitude,
                longitude=measurement.longitude,
                day=measurement.collected_at.date(),
                collection_day=measurement.collected_at.date(),
            )

    @staticmethod
    def _context(target: _Target) -> ApiCallContext:
        return ApiCallContext(
            measurement_id=target.measurement_id,
            campaign_id=target.campaign_id,
            user_id=target.user.id,
            call_type=CallType.ENRICHMENT.value,
        )

    async def _fetch_one(self, kind: IndexKind, target: _Target, call_log: ApiCallLog) -> Optional[IndexResult]:
        try:
            return await self.imagery_client.fetch_index(
                float(target.latitude),
                float(target.longitude),
                target.day,
                kind,
                context=self._context(target),
                call_log=call_log,
            )
        except FetchError as e:
            logger.warning(
                f"Skipping {kind.value} for measurement {target.measurement_id}: {e.message}",
                extra={"error_context": e.to_dict()}
            )
            return None

    async def _fetch_all(self, target: _Target, call_log: ApiCallLog) -> Dict[IndexKind, IndexResult]:
        results = await asyncio.gather(*(self._fetch_one(kind, target, call_log) for kind in self.indices))
        return {kind: result for kind, result in zip(self.indices, results) if result is not None}

    async def _fetch_nearest(self, target: _Target, call_log: ApiCallLog):
        """Retry the fetch on the closest day with an acquisition, if any."""
        day = await self.imagery_client.find_nearest_available_date(
            float(target.latitude),
            float(target.longitude),
            target.day,
            max_offset_days=self.nearest_date_days,
            context=self._context(target),
            call_log=call_log,
        )
        if day is None or day == target.day:
            return target, {}

        logger.info(f"Measurement {target.measurement_id}: using imagery from {day} instead of {target.day}")
        target = replace(target, day=day)
        return target, await self._fetch_all(target, call_log)

    async def _persist(
        self,
        outcome: EnrichmentOutcome,
        target: _Target,
        results: Dict[IndexKind, IndexResult],
        call_log: ApiCallLog
    ) -> EnrichmentOutcome:
        indices_fetched = [kind.value for kind in self.indices if kind in results]
        values = {INDEX_SPECS[kind].column: result.value for kind, result in results.items()}

        try:
            async with self.session_maker() as session:
                async with session.begin():
                    # Discard the result if the measurement went away while fetching
                    if await session.get(Measurement, target.measurement_id) is None:
                        self._add_calls(session, [
                            entry.model_copy(update={"measurement_id": None}) for entry in call_log.entries
                        ])
                        return self._skip(outcome, SkipReason.MEASUREMENT_MISSING)

                    analysis = SpectralAnalysis(
                        measurement_id=target.measurement_id,
                        campaign_id=target.campaign_id,
                        latitude=target.latitude,
                        longitude=target.longitude,
                        acquisition_date=target.day,
                        satellite_source=SATELLITE_SOURCE,
                        ndvi_interpretation=self._interpret(results, IndexKind.NDVI, interpret_ndvi),
                        moisture_interpretation=self._interpret(results, IndexKind.MOISTURE, interpret_moisture),
                        extra_metadata={
                            "indices_fetched": indices_fetched,
                            "fetch_date": datetime.utcnow().isoformat(),
                            "temporal_offset_days": (target.day - target.collection_day).days,
                            "pixel_counts": {kind.value: result.pixel_count for kind, result in results.items()},
                        },
                        **values,
                    )
                    session.add(analysis)
                    self._add_calls(session, call_log.entries)
                    await self.usage_meter.reserve(session, target.user, ResourceKind.SATELLITE_ANALYSES)
                    await session.flush()
                    analysis_id = analysis.id

        except QuotaExceededError as e:
            logger.warning(
                f"Satellite analysis quota ran out while enriching measurement {target.measurement_id}",
                extra={"error_context": e.to_dict()}
            )
            await self._persist_calls(call_log)
            return self._skip(outcome, SkipReason.QUOTA_EXCEEDED)

        outcome.state = EnrichmentState.PERSISTED
        outcome.analysis_id = analysis_id
        outcome.indices_fetched = indices_fetched
        logger.info(
            f"Stored analysis {analysis_id} for measurement {target.measurement_id} "
            f"with {len(indices_fetched)}/{len(self.indices)} indices"
        )
        return outcome

    @staticmethod
    def _interpret(results: Dict[IndexKind, IndexResult], kind: IndexKind, interpret) -> Optional[str]:
        result = results.get(kind)
        return interpret(result.value) if result is not None else None

    # ------------------------------------------------------------------
    # Audit rows
    # ------------------------------------------------------------------

    @staticmethod
    def _add_calls(session: AsyncSession, entries) -> None:
        session.add_all([ApiCallRecord(**entry.model_dump()) for entry in entries])

    async def _persist_calls(self, call_log: ApiCallLog) -> None:
        entries = call_log.entries
        if not entries:
            return
        async with self.session_maker() as session:
            async with session.begin():
                self._add_calls(session, entries)
        logger.debug(f"Stored {len(entries)} imagery API call records")
