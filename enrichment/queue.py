"""
In-process enrichment queue.

The measurement creation path calls enqueue_enrichment() after its
transaction commits; worker tasks drain the queue and run the orchestrator.
Enrichment is eventually consistent: a failed run is logged with its
context and not retried here.
"""

import asyncio
import logging
from typing import List, Optional

from core.config import settings
from core.exceptions import PipelineException
from enrichment.orchestrator import EnrichmentOrchestrator

logger = logging.getLogger(__name__)


class EnrichmentQueue:
    def __init__(self, orchestrator: EnrichmentOrchestrator, workers: Optional[int] = None):
        self.orchestrator = orchestrator
        self.worker_count = workers or settings.ENRICHMENT_WORKERS
        self._queue: "asyncio.Queue[int]" = asyncio.Queue()
        self._workers: List[asyncio.Task] = []
        self.processed = 0
        self.failed = 0

    @property
    def running(self) -> bool:
        return bool(self._workers)

    @property
    def depth(self) -> int:
        return self._queue.qsize()

    def enqueue_enrichment(self, measurement_id: int) -> None:
        """Schedule enrichment for a newly created measurement (fire-and-forget)."""
        self._queue.put_nowait(measurement_id)
        logger.debug(f"Queued enrichment for measurement {measurement_id} (depth={self._queue.qsize()})")

    def start(self) -> None:
        if self._workers:
            return
        self._workers = [
            asyncio.create_task(self._worker(n), name=f"enrichment-worker-{n}")
            for n in range(self.worker_count)
        ]
        logger.info(f"Enrichment queue started with {self.worker_count} workers")

    async def stop(self) -> None:
        for task in self._workers:
            task.cancel()
        await asyncio.gather(*self._workers, return_exceptions=True)
        self._workers = []
        logger.info("Enrichment queue stopped")

    async def join(self) -> None:
        """Wait until every queued measurement has been processed."""
        await self._queue.join()

    async def _worker(self, number: int) -> None:
        while True:
            measurement_id = await self._queue.get()
            try:
                outcome = await self.orchestrator.run(measurement_id)
                self.processed += 1
                logger.debug(f"Worker {number}: measurement {measurement_id} -> {outcome.state.value}")
            except PipelineException as e:
                self.failed += 1
                logger.error(
                    f"Worker {number}: enrichment of measurement {measurement_id} failed: {e.message}",
                    extra={"error_context": e.to_dict()}
                )
            except Exception as e:
                self.failed += 1
                logger.error(f"Worker {number}: enrichment of measurement {measurement_id} failed: {e}", exc_info=True)
            finally:
                self._queue.task_done()
