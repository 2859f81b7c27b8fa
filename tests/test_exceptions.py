"""Tests for src.exceptions -- custom exception hierarchy.

Validates the hierarchy, attribute storage and message formatting of the
exceptions raised across ingestion, synthesis and persistence.
"""

import pytest

from src.exceptions import (
    CapabilityUnavailableError,
    ConfigurationError,
    ContentGenerationError,
    DatabaseError,
    IntelligenceError,
    PersistenceConflictError,
    PipelineFatalError,
    RetryExhaustedError,
    SourceUnavailableError,
    StageTimeoutError,
    ValidationError,
)


# =============================================================================
# Hierarchy
# =============================================================================


@pytest.mark.parametrize(
    "exc_class",
    [
        SourceUnavailableError,
        CapabilityUnavailableError,
        ContentGenerationError,
        PersistenceConflictError,
        PipelineFatalError,
    ],
)
def test_pipeline_errors_share_base(exc_class):
    assert issubclass(exc_class, IntelligenceError)


def test_validation_error_is_value_error():
    with pytest.raises(ValueError):
        raise ValidationError("bad input")


@pytest.mark.parametrize("exc_class", [DatabaseError, ConfigurationError, StageTimeoutError])
def test_infrastructure_errors_are_not_pipeline_errors(exc_class):
    assert not issubclass(exc_class, IntelligenceError)


# =============================================================================
# Attributes and messages
# =============================================================================


def test_source_unavailable_stores_source_and_reason():
    err = SourceUnavailableError("tmdb", "TMDB_API_KEY not configured")
    assert err.source == "tmdb"
    assert err.reason == "TMDB_API_KEY not configured"
    assert "tmdb" in str(err)


def test_persistence_conflict_with_detail():
    err = PersistenceConflictError("posts", "duplicate slug")
    assert err.table == "posts"
    assert err.detail == "duplicate slug"
    assert str(err) == "Unique constraint violated on 'posts': duplicate slug"


def test_persistence_conflict_without_detail():
    err = PersistenceConflictError("posts")
    assert err.detail is None
    assert str(err) == "Unique constraint violated on 'posts'"


def test_stage_timeout_message():
    err = StageTimeoutError("ingest", 120)
    assert err.stage == "ingest"
    assert err.timeout == 120
    assert "ingest" in str(err) and "120" in str(err)


def test_retry_exhausted_keeps_last_error():
    cause = TimeoutError("slow")
    err = RetryExhaustedError("youtube_search", 3, cause)
    assert err.last_error is cause
    assert err.attempts == 3
    assert "youtube_search failed after 3 attempts" in str(err)
