"""
Tests for the in-process enrichment queue
"""

from datetime import datetime
from decimal import Decimal
from unittest.mock import AsyncMock

import pytest
from sqlalchemy import select

from core.exceptions import EnrichmentError
from enrichment.orchestrator import EnrichmentOrchestrator, EnrichmentOutcome, EnrichmentState
from enrichment.queue import EnrichmentQueue
from metering.usage_meter import UsageMeter
from models import SpectralAnalysis


def fake_orchestrator():
    orchestrator = AsyncMock()
    orchestrator.run.side_effect = lambda measurement_id: EnrichmentOutcome(
        measurement_id=measurement_id, state=EnrichmentState.PERSISTED
    )
    return orchestrator


class TestEnrichmentQueue:
    """Test suite for EnrichmentQueue"""

    @pytest.mark.asyncio
    async def test_enqueue_does_not_run_inline(self):
        orchestrator = fake_orchestrator()
        queue = EnrichmentQueue(orchestrator, workers=2)

        queue.enqueue_enrichment(1)
        queue.enqueue_enrichment(2)

        assert queue.depth == 2
        assert queue.running is False
        orchestrator.run.assert_not_called()

    @pytest.mark.asyncio
    async def test_workers_drain_queue(self):
        orchestrator = fake_orchestrator()
        queue = EnrichmentQueue(orchestrator, workers=2)
        queue.start()
        try:
            for measurement_id in range(1, 6):
                queue.enqueue_enrichment(measurement_id)
            await queue.join()
        finally:
            await queue.stop()

        assert queue.processed == 5
        assert queue.failed == 0
        assert sorted(call.args[0] for call in orchestrator.run.await_args_list) == [1, 2, 3, 4, 5]
        assert queue.running is False

    @pytest.mark.asyncio
    async def test_failures_do_not_stop_workers(self):
        orchestrator = AsyncMock()

        async def run(measurement_id):
            if measurement_id == 2:
                raise EnrichmentError("persistence failed", context={"measurement_id": 2})
            if measurement_id == 3:
                raise RuntimeError("unexpected")
            return EnrichmentOutcome(measurement_id=measurement_id, state=EnrichmentState.PERSISTED)

        orchestrator.run.side_effect = run
        queue = EnrichmentQueue(orchestrator, workers=1)
        queue.start()
        try:
            for measurement_id in (1, 2, 3, 4):
                queue.enqueue_enrichment(measurement_id)
            await queue.join()
        finally:
            await queue.stop()

        assert queue.processed == 2
        assert queue.failed == 2

    @pytest.mark.asyncio
    async def test_start_is_idempotent(self):
        queue = EnrichmentQueue(fake_orchestrator(), workers=3)
        queue.start()
        queue.start()
        try:
            assert len(queue._workers) == 3
        finally:
            await queue.stop()

    @pytest.mark.asyncio
    async def test_end_to_end_enrichment(
        self, session_maker, imagery_client, create_user, create_metric, create_measurement
    ):
        user = await create_user()
        metric = await create_metric()
        measurement = await create_measurement(
            user, metric,
            latitude=Decimal("55.7072"),
            longitude=Decimal("12.5704"),
            collected_at=datetime(2025, 8, 15, 10, 30),
        )
        orchestrator = EnrichmentOrchestrator(session_maker, imagery_client, UsageMeter(session_maker))
        queue = EnrichmentQueue(orchestrator, workers=1)

        queue.start()
        try:
            queue.enqueue_enrichment(measurement.id)
            await queue.join()
        finally:
            await queue.stop()

        async with session_maker() as session:
            analysis = (await session.execute(select(SpectralAnalysis))).scalar_one()
        assert analysis.measurement_id == measurement.id
        assert len(analysis.indices_fetched) == 7
