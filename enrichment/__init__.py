"""
Satellite enrichment components.

This package turns newly created measurements into spectral analyses:

Modules:
    indices: Index catalogue (bands, band math, evalscripts, PNG decoding)
    token_cache: Bearer token holder with single-flight refresh
    result_cache: TTL + LRU cache for decoded results
    imagery_client: Processing API client (fetch_index, fetch_overlay)
    orchestrator: Per-measurement enrichment run with partial-failure handling
    queue: In-process queue and workers triggered by measurement creation

Architecture:
    1. The creation path commits the measurement and calls enqueue_enrichment()
    2. A worker runs the orchestrator, which checks the analysis quota
    3. All indices are fetched concurrently; failed indices are left out
    4. One analysis, its API-call audit rows and the quota increment are
       written in a single transaction

Usage:
    from enrichment.imagery_client import ImageryClient
    from enrichment.orchestrator import EnrichmentOrchestrator
    from enrichment.queue import EnrichmentQueue

Example:
    async with ImageryClient() as client:
        orchestrator = EnrichmentOrchestrator(async_session_maker, client, UsageMeter(async_session_maker))
        outcome = await orchestrator.run(measurement_id)
"""

from enrichment.indices import IndexKind, INDEX_SPECS
from enrichment.token_cache import TokenCache
from enrichment.result_cache import ResultCache
from enrichment.imagery_client import ImageryClient
from enrichment.orchestrator import EnrichmentOrchestrator, EnrichmentOutcome, EnrichmentState
from enrichment.queue import EnrichmentQueue

__all__ = [
    "IndexKind",
    "INDEX_SPECS",
    "TokenCache",
    "ResultCache",
    "ImageryClient",
    "EnrichmentOrchestrator",
    "EnrichmentOutcome",
    "EnrichmentState",
    "EnrichmentQueue",
]
