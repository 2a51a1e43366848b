"""
Custom exceptions for the enrichment and data-quality pipeline with structured error context.

This module provides the exception hierarchy used by the imagery client,
the enrichment orchestrator, the usage meter and the quality engine. Each
exception includes context information for debugging and monitoring.

Exception Hierarchy:
    PipelineException (base)
    ├── ImageryError
    │   ├── FetchError                (per-index, absorbed by the orchestrator)
    │   └── AuthenticationError       (fatal to the current enrichment batch)
    ├── EnrichmentError
    ├── MeteringError
    │   ├── QuotaExceededError        (user-visible, carries the reset time)
    │   └── MeteringConflictError     (transaction could not commit)
    ├── QualityError
    │   └── InvalidStatusTransition
    ├── DatabaseError
    ├── ResourceNotFoundError
    └── RetryableError / NonRetryableError (mixins)
"""

from typing import Optional, Dict, Any
from datetime import datetime


class PipelineException(Exception):
    """
    Base exception for all pipeline errors.

    Attributes:
        message: Human-readable error message
        context: Additional context information (measurement, index, user, etc.)
        original_exception: The original exception that was caught (if any)
    """

    def __init__(
        self,
        message: str,
        context: Optional[Dict[str, Any]] = None,
        original_exception: Optional[Exception] = None
    ):
        self.message = message
        self.context = context or {}
        self.original_exception = original_exception
        self.timestamp = datetime.utcnow()

        self.context["error_timestamp"] = self.timestamp.isoformat()

        super().__init__(message)
        if original_exception:
            self.__cause__ = original_exception

    def __str__(self) -> str:
        """Format error message with context."""
        base_msg = f"{self.__class__.__name__}: {self.message}"

        if self.context:
            context_str = ", ".join(f"{k}={v}" for k, v in self.context.items())
            base_msg += f" | Context: {context_str}"

        if self.original_exception:
            base_msg += f" | Caused by: {type(self.original_exception).__name__}: {str(self.original_exception)}"

        return base_msg

    def to_dict(self) -> Dict[str, Any]:
        """Convert exception to dictionary for logging/storage."""
        return {
            "error_type": self.__class__.__name__,
            "message": self.message,
            "context": self.context,
            "timestamp": self.timestamp.isoformat(),
            "original_error": str(self.original_exception) if self.original_exception else None
        }


# ============================================================================
# Retry Strategy Mixins
# ============================================================================

class RetryableError(PipelineException):
    """
    Mixin for errors that the caller may retry.

    Use this for transient errors like:
    - Network timeouts
    - Service unavailable (HTTP 5xx)
    - Lock contention or deadlocks on the usage counters
    """

    def __init__(
        self,
        message: str,
        context: Optional[Dict[str, Any]] = None,
        original_exception: Optional[Exception] = None,
        max_retries: int = 3,
        retry_delay: float = 1.0
    ):
        super().__init__(message, context, original_exception)
        self.max_retries = max_retries
        self.retry_delay = retry_delay


class NonRetryableError(PipelineException):
    """
    Mixin for errors that should NOT trigger retry logic.

    Use this for permanent errors like:
    - Rejected client credentials
    - Quota exhausted for the current billing cycle
    - Invalid lifecycle transitions
    """
    pass


# ============================================================================
# Imagery Errors
# ============================================================================

class ImageryError(PipelineException):
    """Base exception for imagery-processing service failures."""
    pass


class FetchError(RetryableError, ImageryError):
    """
    Exception raised when a single spectral index could not be fetched.

    Context should include:
        - index: The index that failed
        - latitude / longitude / date: The request inputs
        - status_code: HTTP status code (if applicable)
        - response_body: Response body (truncated)
    """
    pass


class AuthenticationError(NonRetryableError, ImageryError):
    """
    Exception raised when a bearer token cannot be obtained.

    Context should include:
        - token_url: The identity endpoint
        - status_code: HTTP status code (if applicable)
    """
    pass


# ============================================================================
# Enrichment Errors
# ============================================================================

class EnrichmentError(PipelineException):
    """Base exception for enrichment run failures."""
    pass


# ============================================================================
# Metering Errors
# ============================================================================

class MeteringError(PipelineException):
    """Base exception for usage metering failures."""
    pass


class QuotaExceededError(NonRetryableError, MeteringError):
    """
    Raised when a user has exhausted a resource for the current billing cycle.

    Context includes resource, limit, used, resets_at (ISO timestamp) and
    retry_after_seconds so the caller can tell the user when the quota resets.
    """

    def __init__(
        self,
        message: str,
        resource: str,
        limit: int,
        used: int,
        resets_at: datetime,
        now: Optional[datetime] = None,
        context: Optional[Dict[str, Any]] = None
    ):
        self.resource = resource
        self.limit = limit
        self.used = used
        self.resets_at = resets_at
        now = now or datetime.utcnow()
        self.retry_after_seconds = max(0, int((resets_at - now).total_seconds()))

        context = dict(context or {})
        context.update({
            "resource": resource,
            "limit": limit,
            "used": used,
            "resets_at": resets_at.isoformat(),
            "retry_after_seconds": self.retry_after_seconds,
        })
        super().__init__(message, context)


class MeteringConflictError(RetryableError, MeteringError):
    """
    Raised when a usage counter transaction could not commit after retries.

    The triggering action must fail with it; the increment is never dropped silently.
    """
    pass


# ============================================================================
# Quality Errors
# ============================================================================

class QualityError(PipelineException):
    """Base exception for quality-engine and review failures."""
    pass


class InvalidStatusTransition(NonRetryableError, QualityError):
    """
    Raised when a measurement lifecycle transition is not allowed.

    Context should include:
        - measurement_id
        - from_status / to_status
    """
    pass


# ============================================================================
# Store Errors
# ============================================================================

class DatabaseError(PipelineException):
    """
    Exception raised when database operations fail.

    Context should include:
        - operation: Type of database operation (INSERT, UPDATE, UPSERT)
        - table_name: Name of the table
    """
    pass


class ResourceNotFoundError(NonRetryableError):
    """Raised when a referenced record (user, measurement) does not exist."""
    pass
