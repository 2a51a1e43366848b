"""
Core utilities and configuration for the field-data enrichment service.

This package provides foundational components used throughout the pipeline:

Modules:
    config: Application configuration and environment variable management
    database: Database engine and session management
    exceptions: Custom exception hierarchy for error handling
    logging: Logging configuration and utilities

Usage:
    from core.config import settings
    from core.database import get_session
    from core.exceptions import FetchError, QuotaExceededError
    from core.logging import setup_logging

Example:
    # Initialize logging
    setup_logging()

    # Get database session
    async with async_session_maker() as session:
        # Perform database operations
        pass
"""

from core.config import settings
from core.database import get_session
from core.logging import setup_logging
from core.exceptions import (
    PipelineException,
    RetryableError,
    NonRetryableError,
    ImageryError,
    FetchError,
    AuthenticationError,
    EnrichmentError,
    MeteringError,
    QuotaExceededError,
    MeteringConflictError,
    QualityError,
    InvalidStatusTransition,
    DatabaseError,
    ResourceNotFoundError,
)

__all__ = [
    "settings",
    "get_session",
    "setup_logging",
    # Exceptions
    "PipelineException",
    "RetryableError",
    "NonRetryableError",
    "ImageryError",
    "FetchError",
    "AuthenticationError",
    "EnrichmentError",
    "MeteringError",
    "QuotaExceededError",
    "MeteringConflictError",
    "QualityError",
    "InvalidStatusTransition",
    "DatabaseError",
    "ResourceNotFoundError",
]
