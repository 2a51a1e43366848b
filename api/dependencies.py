"""
FastAPI dependencies
"""

from typing import AsyncIterator

from fastapi import Request
from sqlalchemy.ext.asyncio import AsyncSession

from core.database import async_session_maker
from enrichment.queue import EnrichmentQueue
from metering.usage_meter import UsageMeter
from quality.engine import QualityEngine


async def get_db() -> AsyncIterator[AsyncSession]:
    """Database session per request"""
    async with async_session_maker() as session:
        yield session


def get_usage_meter() -> UsageMeter:
    return UsageMeter(async_session_maker)


def get_quality_engine() -> QualityEngine:
    return QualityEngine(async_session_maker)


def get_enrichment_queue(request: Request) -> EnrichmentQueue:
    """Queue created at application startup"""
    return request.app.state.enrichment_queue
