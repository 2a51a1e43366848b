"""
FastAPI application initialization
"""

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from api.routes import health, measurements, usage
from api.middleware import RequestContextMiddleware
from core.config import settings
from core.database import async_session_maker
from core.exceptions import QuotaExceededError, InvalidStatusTransition, ResourceNotFoundError
from core.logging import setup_logging
from enrichment.imagery_client import ImageryClient
from enrichment.orchestrator import EnrichmentOrchestrator
from enrichment.queue import EnrichmentQueue
from metering.usage_meter import UsageMeter
from quality.scheduler import QualityScheduler
from schemas.api import QuotaExceededResponse
import logging

setup_logging()
logger = logging.getLogger(__name__)

# Create FastAPI app
app = FastAPI(
    title="Field Data Enrichment API",
    description="Measurement ingestion with satellite enrichment, usage metering and quality assurance",
    version="1.0.0",
    docs_url="/docs",
    redoc_url="/redoc"
)

app.add_middleware(RequestContextMiddleware)

# Include routers
app.include_router(health.router)
app.include_router(measurements.router)
app.include_router(usage.router)


# ============================================================================
# Error handlers
# ============================================================================

@app.exception_handler(QuotaExceededError)
async def quota_exceeded_handler(request: Request, exc: QuotaExceededError):
    body = QuotaExceededResponse(
        message=exc.message,
        resource=exc.resource,
        limit=exc.limit,
        used=exc.used,
        resets_at=exc.resets_at,
        retry_after_seconds=exc.retry_after_seconds,
    )
    return JSONResponse(
        status_code=429,
        content=body.model_dump(mode="json"),
        headers={"Retry-After": str(exc.retry_after_seconds)},
    )


@app.exception_handler(InvalidStatusTransition)
async def invalid_transition_handler(request: Request, exc: InvalidStatusTransition):
    return JSONResponse(status_code=409, content={"error": "invalid_status_transition", "detail": exc.message})


@app.exception_handler(ResourceNotFoundError)
async def not_found_handler(request: Request, exc: ResourceNotFoundError):
    return JSONResponse(status_code=404, content={"error": "not_found", "detail": exc.message})


# ============================================================================
# Lifecycle
# ============================================================================

@app.on_event("startup")
async def startup_event():
    """Application startup event"""
    logger.info("Starting Field Data Enrichment API")
    logger.info(f"Environment: {settings.ENVIRONMENT}")
    logger.info(f"Database: {settings.DATABASE_URL.split('@')[1] if '@' in settings.DATABASE_URL else 'configured'}")

    if not settings.COPERNICUS_CLIENT_ID:
        logger.warning("COPERNICUS_CLIENT_ID is not set; enrichment runs will fail authentication")

    imagery_client = ImageryClient()
    orchestrator = EnrichmentOrchestrator(async_session_maker, imagery_client, UsageMeter(async_session_maker))
    app.state.imagery_client = imagery_client
    app.state.enrichment_queue = EnrichmentQueue(orchestrator)
    app.state.enrichment_queue.start()

    app.state.quality_scheduler = QualityScheduler(async_session_maker)
    app.state.quality_scheduler.start()


@app.on_event("shutdown")
async def shutdown_event():
    """Application shutdown event"""
    logger.info("Shutting down Field Data Enrichment API")
    app.state.quality_scheduler.stop()
    await app.state.enrichment_queue.stop()
    await app.state.imagery_client.aclose()


@app.get("/")
async def root():
    """Root endpoint"""
    return {
        "message": "Field Data Enrichment API",
        "version": "1.0.0",
        "docs": "/docs",
        "health": "/health",
        "endpoints": {
            "measurements": "/measurements",
            "usage": "/usage/{user_id}",
            "campaign_quality": "/campaigns/{campaign_id}/quality"
        }
    }


if __name__ == "__main__":
    import uvicorn
    uvicorn.run("api.main:app", host=settings.API_HOST, port=settings.API_PORT)
