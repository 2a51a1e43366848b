"""
Integration tests for the enrichment orchestrator.

The processing API is the in-memory stub from conftest; everything else
(metering, persistence) runs against the test database.
"""

from datetime import date, datetime
from decimal import Decimal

import pytest
import pytest_asyncio
from sqlalchemy import delete, select

from core.exceptions import AuthenticationError
from enrichment.indices import INDEX_SPECS, IndexKind
from enrichment.orchestrator import EnrichmentOrchestrator, EnrichmentState, SkipReason
from metering.usage_meter import UsageMeter
from models import ApiCallRecord, Measurement, SpectralAnalysis
from models.base import ResourceKind
from models.spectral_analysis import SATELLITE_SOURCE

LAT, LON = Decimal("55.7072000"), Decimal("12.5704000")


@pytest.fixture
def usage_meter(session_maker):
    return UsageMeter(session_maker, clock=lambda: datetime(2025, 8, 20, 12, 0))


@pytest.fixture
def orchestrator(session_maker, imagery_client, usage_meter):
    return EnrichmentOrchestrator(session_maker, imagery_client, usage_meter)


@pytest_asyncio.fixture
async def owner(create_user):
    return await create_user()


@pytest_asyncio.fixture
async def metric(create_metric):
    return await create_metric()


@pytest_asyncio.fixture
async def located_measurement(owner, metric, create_measurement):
    return await create_measurement(
        owner, metric,
        campaign_id=4,
        latitude=LAT,
        longitude=LON,
        collected_at=datetime(2025, 8, 15, 10, 30),
    )


async def analyses(session_maker):
    async with session_maker() as session:
        return (await session.execute(select(SpectralAnalysis))).scalars().all()


async def api_calls(session_maker):
    async with session_maker() as session:
        return (await session.execute(select(ApiCallRecord).order_by(ApiCallRecord.id))).scalars().all()


class TestSuccessfulEnrichment:
    """Test suite for full enrichment runs"""

    @pytest.mark.asyncio
    async def test_all_indices_persisted(self, orchestrator, located_measurement, session_maker):
        outcome = await orchestrator.run(located_measurement.id)

        assert outcome.state == EnrichmentState.PERSISTED
        assert len(outcome.indices_fetched) == 7

        (analysis,) = await analyses(session_maker)
        assert analysis.id == outcome.analysis_id
        assert analysis.measurement_id == located_measurement.id
        assert analysis.campaign_id == 4
        assert analysis.acquisition_date == date(2025, 8, 15)
        assert analysis.satellite_source == SATELLITE_SOURCE == "Sentinel-2 L2A"
        assert float(analysis.latitude) == pytest.approx(55.7072)
        assert float(analysis.longitude) == pytest.approx(12.5704)
        assert analysis.indices_fetched == [kind.value for kind in IndexKind]
        assert analysis.ndvi_value == pytest.approx(191 / 127.5 - 1, abs=1e-6)
        assert analysis.msi_value == pytest.approx(191 / 255 * 3, abs=1e-6)
        assert analysis.extra_metadata["pixel_counts"]["ndvi"] == 2500
        assert analysis.extra_metadata["temporal_offset_days"] == 0
        assert analysis.ndvi_interpretation == "Moderate vegetation"
        assert analysis.moisture_interpretation == "Very wet / Water bodies"
        assert analysis.cloud_coverage_percent is None

    @pytest.mark.asyncio
    async def test_audit_rows_written(self, orchestrator, located_measurement, session_maker):
        await orchestrator.run(located_measurement.id)

        calls = await api_calls(session_maker)
        assert len(calls) == 7
        assert {call.index_type for call in calls} == {kind.value for kind in IndexKind}
        for call in calls:
            assert call.measurement_id == located_measurement.id
            assert call.user_id == located_measurement.user_id
            assert call.campaign_id == 4
            assert call.call_type == "enrichment"
            assert call.cached is False
            assert call.acquisition_date == date(2025, 8, 15)

    @pytest.mark.asyncio
    async def test_quota_counter_incremented(self, orchestrator, located_measurement, usage_meter, owner):
        await orchestrator.run(located_measurement.id)

        assert await usage_meter.get_current_usage(owner, ResourceKind.SATELLITE_ANALYSES) == 1

    @pytest.mark.asyncio
    async def test_second_measurement_at_same_place_uses_cache(
        self, orchestrator, located_measurement, owner, metric, create_measurement, imagery_stub, session_maker
    ):
        twin = await create_measurement(
            owner, metric, campaign_id=4, latitude=LAT, longitude=LON,
            collected_at=datetime(2025, 8, 15, 16, 0),
        )

        await orchestrator.run(located_measurement.id)
        await orchestrator.run(twin.id)

        assert len(imagery_stub.process_requests) == 7
        calls = await api_calls(session_maker)
        cached = [call for call in calls if call.measurement_id == twin.id]
        assert len(cached) == 7
        assert all(call.cached for call in cached)
        assert all(float(call.cost_credits) == 0.0 for call in cached)
        assert len(await analyses(session_maker)) == 2


class TestPartialEnrichment:
    @pytest.mark.asyncio
    async def test_failed_indices_left_null(self, orchestrator, located_measurement, imagery_stub, session_maker):
        """Each index succeeds or fails on its own"""
        imagery_stub.failing.update({IndexKind.EVI, IndexKind.MSI})

        outcome = await orchestrator.run(located_measurement.id)

        assert outcome.state == EnrichmentState.PERSISTED
        assert len(outcome.indices_fetched) == 5
        (analysis,) = await analyses(session_maker)
        assert analysis.evi_value is None
        assert analysis.msi_value is None
        assert analysis.ndvi_value is not None
        assert "evi" not in analysis.indices_fetched
        # Failed attempts are audited too
        assert len(await api_calls(session_maker)) == 7

    @pytest.mark.asyncio
    async def test_no_index_no_analysis(self, orchestrator, located_measurement, imagery_stub, session_maker):
        imagery_stub.failing.update(IndexKind)

        outcome = await orchestrator.run(located_measurement.id)

        assert outcome.state == EnrichmentState.SKIPPED
        assert outcome.skip_reason == SkipReason.NO_INDICES
        assert await analyses(session_maker) == []
        assert len(await api_calls(session_maker)) == 7

    @pytest.mark.asyncio
    async def test_configured_subset(self, session_maker, imagery_client, usage_meter, located_measurement):
        orchestrator = EnrichmentOrchestrator(
            session_maker, imagery_client, usage_meter, indices=[IndexKind.NDVI, IndexKind.GNDVI]
        )
        outcome = await orchestrator.run(located_measurement.id)

        assert outcome.indices_fetched == ["ndvi", "gndvi"]
        (analysis,) = await analyses(session_maker)
        assert analysis.moisture_index is None
        assert analysis.moisture_interpretation is None


class TestSkippedEnrichment:
    """Test suite for runs that end without an analysis"""

    @pytest.mark.asyncio
    async def test_no_location(self, orchestrator, create_user, create_metric, create_measurement, imagery_stub, session_maker):
        user = await create_user()
        metric = await create_metric()
        measurement = await create_measurement(user, metric)

        outcome = await orchestrator.run(measurement.id)

        assert outcome.state == EnrichmentState.SKIPPED
        assert outcome.skip_reason == SkipReason.NO_LOCATION
        assert imagery_stub.process_requests == []
        assert await analyses(session_maker) == []
        assert await api_calls(session_maker) == []

    @pytest.mark.asyncio
    async def test_unknown_measurement(self, orchestrator, imagery_stub):
        outcome = await orchestrator.run(987654)

        assert outcome.skip_reason == SkipReason.MEASUREMENT_MISSING
        assert imagery_stub.token_requests == 0

    @pytest.mark.asyncio
    async def test_quota_exhausted_before_fetch(
        self, orchestrator, create_user, create_metric, create_measurement, usage_meter, imagery_stub, session_maker
    ):
        user = await create_user()
        metric = await create_metric()
        measurement = await create_measurement(user, metric, latitude=LAT, longitude=LON)
        for _ in range(10):
            await usage_meter.record_usage(user, ResourceKind.SATELLITE_ANALYSES)

        outcome = await orchestrator.run(measurement.id)

        assert outcome.skip_reason == SkipReason.QUOTA_EXCEEDED
        assert imagery_stub.process_requests == []
        assert await analyses(session_maker) == []

    @pytest.mark.asyncio
    async def test_quota_exhausted_during_fetch(
        self, session_maker, imagery_client, usage_meter, create_user, create_metric, create_measurement
    ):
        """Quota taken by a concurrent run between the gate and the write"""
        user = await create_user()
        metric = await create_metric()
        measurement = await create_measurement(user, metric, latitude=LAT, longitude=LON)
        for _ in range(9):
            await usage_meter.record_usage(user, ResourceKind.SATELLITE_ANALYSES)

        class CompetingClient:
            def __init__(self):
                self.competed = False

            async def fetch_index(self, *args, **kwargs):
                if not self.competed:
                    self.competed = True
                    await usage_meter.record_usage(user, ResourceKind.SATELLITE_ANALYSES)
                return await imagery_client.fetch_index(*args, **kwargs)

        orchestrator = EnrichmentOrchestrator(session_maker, CompetingClient(), usage_meter)
        outcome = await orchestrator.run(measurement.id)

        assert outcome.skip_reason == SkipReason.QUOTA_EXCEEDED
        assert await analyses(session_maker) == []
        assert len(await api_calls(session_maker)) == 7
        assert await usage_meter.get_current_usage(user, ResourceKind.SATELLITE_ANALYSES) == 10

    @pytest.mark.asyncio
    async def test_measurement_deleted_during_fetch(
        self, session_maker, imagery_client, usage_meter, located_measurement
    ):
        """Results for a measurement deleted mid-run are discarded"""
        measurement_id = located_measurement.id

        class DeletingClient:
            def __init__(self):
                self.deleted = False

            async def fetch_index(self, *args, **kwargs):
                if not self.deleted:
                    self.deleted = True
                    async with session_maker() as session:
                        async with session.begin():
                            await session.execute(delete(Measurement).where(Measurement.id == measurement_id))
                return await imagery_client.fetch_index(*args, **kwargs)

        orchestrator = EnrichmentOrchestrator(session_maker, DeletingClient(), usage_meter)
        outcome = await orchestrator.run(measurement_id)

        assert outcome.skip_reason == SkipReason.MEASUREMENT_MISSING
        assert await analyses(session_maker) == []
        calls = await api_calls(session_maker)
        assert len(calls) == 7
        assert all(call.measurement_id is None for call in calls)

    @pytest.mark.asyncio
    async def test_authentication_failure_propagates(self, orchestrator, located_measurement, imagery_stub, session_maker):
        imagery_stub.token_status = 401

        with pytest.raises(AuthenticationError):
            await orchestrator.run(located_measurement.id)

        assert await analyses(session_maker) == []


class TestNearestDateFallback:
    """Test suite for retrying on the closest acquisition day"""

    @pytest.mark.asyncio
    async def test_uses_nearest_acquisition(
        self, session_maker, imagery_client, usage_meter, located_measurement, imagery_stub
    ):
        imagery_stub.acquisition_days = {"2025-08-13"}
        orchestrator = EnrichmentOrchestrator(session_maker, imagery_client, usage_meter, nearest_date_days=5)

        outcome = await orchestrator.run(located_measurement.id)

        assert outcome.state == EnrichmentState.PERSISTED
        assert len(outcome.indices_fetched) == 7
        (analysis,) = await analyses(session_maker)
        assert analysis.acquisition_date == date(2025, 8, 13)
        assert analysis.extra_metadata["temporal_offset_days"] == -2

        calls = await api_calls(session_maker)
        # 7 failed indices, 4 availability checks (15th, 14th, 16th, 13th), 7 indices on the 13th
        assert len(calls) == 18
        assert all(call.measurement_id == located_measurement.id for call in calls)
        assert [call.acquisition_date for call in calls[-7:]] == [date(2025, 8, 13)] * 7

    @pytest.mark.asyncio
    async def test_disabled_by_default(self, orchestrator, located_measurement, imagery_stub, session_maker):
        imagery_stub.acquisition_days = {"2025-08-13"}

        outcome = await orchestrator.run(located_measurement.id)

        assert outcome.skip_reason == SkipReason.NO_INDICES
        assert len(imagery_stub.process_requests) == 7

    @pytest.mark.asyncio
    async def test_nothing_nearby_skips(
        self, session_maker, imagery_client, usage_meter, located_measurement, imagery_stub
    ):
        imagery_stub.acquisition_days = set()
        orchestrator = EnrichmentOrchestrator(session_maker, imagery_client, usage_meter, nearest_date_days=2)

        outcome = await orchestrator.run(located_measurement.id)

        assert outcome.skip_reason == SkipReason.NO_INDICES
        assert await analyses(session_maker) == []
        assert len(await api_calls(session_maker)) == 7 + 5


def test_every_index_maps_to_a_column():
    assert {spec.column for spec in INDEX_SPECS.values()} <= set(SpectralAnalysis.__table__.columns.keys())
