"""
Custom exception classes for the content intelligence pipeline.

This module defines all exception classes used throughout the codebase.
Partial failures (one source down, one topic rejected) are recovered
locally and reported in structured results; only total inability to run
surfaces as a hard error.

Hierarchy:
    Exception
    +-- IntelligenceError (base for all pipeline-specific errors)
    |   +-- SourceUnavailableError
    |   +-- CapabilityUnavailableError
    |   +-- ContentGenerationError
    |   +-- PersistenceConflictError
    |   +-- PipelineFatalError
    +-- ValidationError (ValueError)
    +-- DatabaseError
    +-- ConfigurationError
    +-- RetryExhaustedError
    +-- StageTimeoutError
"""

from typing import Optional


# =============================================================================
# BASE EXCEPTION
# =============================================================================


class IntelligenceError(Exception):
    """Base exception for all content-intelligence errors."""

    pass


# =============================================================================
# CORE EXCEPTIONS
# =============================================================================


class ValidationError(ValueError):
    """Raised when input validation fails."""

    pass


class DatabaseError(Exception):
    """Raised when database operations fail."""

    pass


class ConfigurationError(Exception):
    """Raised when system configuration is invalid."""

    pass


class RetryExhaustedError(Exception):
    """Raised when all retry attempts have been exhausted.

    Attributes:
        operation: Name of the operation that was retried.
        attempts: Total number of attempts made.
        last_error: The last exception raised before giving up.
    """

    def __init__(self, operation: str, attempts: int, last_error: Exception):
        self.operation = operation
        self.attempts = attempts
        self.last_error = last_error
        super().__init__(
            f"{operation} failed after {attempts} attempts. "
            f"Last error: {last_error}"
        )


class StageTimeoutError(Exception):
    """Raised when a pipeline stage exceeds its overall timeout.

    Attributes:
        stage: Name of the stage that timed out.
        timeout: Timeout duration in seconds.
    """

    def __init__(self, stage: str, timeout: float):
        self.stage = stage
        self.timeout = timeout
        super().__init__(f"Stage '{stage}' timed out after {timeout} seconds")


# =============================================================================
# PIPELINE EXCEPTIONS
# =============================================================================


class SourceUnavailableError(IntelligenceError):
    """Raised when a signal fetcher or image provider cannot complete.

    Never propagated past the fetcher / provider boundary: the source
    contributes an empty result set instead.

    Attributes:
        source: Identifier of the failing source.
    """

    def __init__(self, source: str, reason: str):
        self.source = source
        self.reason = reason
        super().__init__(f"Source '{source}' unavailable: {reason}")


class CapabilityUnavailableError(IntelligenceError):
    """Raised when the AI generation capability cannot be used.

    Missing credentials or an unreachable local model are both valid
    "unavailable" states and trigger the template fallback.
    """

    pass


class ContentGenerationError(IntelligenceError):
    """Raised when the AI capability returns a malformed response."""

    pass


class PersistenceConflictError(IntelligenceError):
    """Raised on a unique-constraint violation at the persistence boundary.

    Attributes:
        table: Table where the conflict occurred.
        detail: Database-provided detail message, if any.
    """

    def __init__(self, table: str, detail: Optional[str] = None):
        self.table = table
        self.detail = detail
        message = f"Unique constraint violated on '{table}'"
        if detail:
            message += f": {detail}"
        super().__init__(message)


class PipelineFatalError(IntelligenceError):
    """Raised for unexpected internal errors (e.g. malformed configuration).

    Surfaced to the caller immediately; no partial batch state is assumed
    consistent.
    """

    pass


# =============================================================================
# PUBLIC API
# =============================================================================

__all__ = [
    # Base
    "IntelligenceError",
    # Core
    "ValidationError",
    "DatabaseError",
    "ConfigurationError",
    "RetryExhaustedError",
    "StageTimeoutError",
    # Pipeline
    "SourceUnavailableError",
    "CapabilityUnavailableError",
    "ContentGenerationError",
    "PersistenceConflictError",
    "PipelineFatalError",
]
