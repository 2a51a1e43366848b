"""
Database session management with SQLAlchemy async
"""

from typing import AsyncIterator

from sqlalchemy.ext.asyncio import create_async_engine, AsyncEngine, AsyncSession, async_sessionmaker
from sqlalchemy.pool import NullPool
from core.config import settings
import logging

logger = logging.getLogger(__name__)


def build_engine(database_url: str, echo: bool = False) -> AsyncEngine:
    """Create an async engine; SQLite connections wait on the file lock instead of failing fast."""
    connect_args = {}
    if database_url.startswith("sqlite"):
        connect_args["timeout"] = 30
    return create_async_engine(
        database_url,
        echo=echo,
        poolclass=NullPool,
        connect_args=connect_args,
        future=True
    )


def build_session_maker(bind: AsyncEngine) -> async_sessionmaker:
    return async_sessionmaker(
        bind,
        class_=AsyncSession,
        expire_on_commit=False,
        autocommit=False,
        autoflush=False
    )


# Create async engine
engine = build_engine(settings.DATABASE_URL, echo=settings.ENVIRONMENT == "development")

# Create session factory
async_session_maker = build_session_maker(engine)


async def get_session() -> AsyncIterator[AsyncSession]:
    """Get database session"""
    async with async_session_maker() as session:
        yield session
