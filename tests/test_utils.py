"""
Tests for src.utils module.

Covers:
    - utc_now() / days_ago(): timezone-aware reference instants
    - ensure_utc() / parse_timestamp(): normalising API and row timestamps
    - generate_id(): UUID4 string generation
    - with_retry(): exponential backoff, transient-only HTTP retries
"""

from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock, patch
from uuid import UUID

import httpx
import pytest

from src.exceptions import RetryExhaustedError
from src.utils import (
    days_ago,
    ensure_utc,
    generate_id,
    is_transient_http_error,
    parse_timestamp,
    utc_now,
    with_retry,
)


# ===========================================================================
# Time helpers
# ===========================================================================


def test_utc_now_is_aware_utc():
    assert utc_now().tzinfo == timezone.utc


def test_days_ago_uses_reference_instant(sample_utc_now):
    assert days_ago(3, sample_utc_now) == sample_utc_now - timedelta(days=3)


def test_days_ago_accepts_fractional_days(sample_utc_now):
    assert days_ago(0.5, sample_utc_now) == sample_utc_now - timedelta(hours=12)


def test_ensure_utc_treats_naive_as_utc():
    result = ensure_utc(datetime(2025, 6, 15, 12, 0))
    assert result.tzinfo == timezone.utc
    assert result.hour == 12


def test_ensure_utc_converts_offset():
    ist = timezone(timedelta(hours=5, minutes=30))
    result = ensure_utc(datetime(2025, 6, 15, 17, 30, tzinfo=ist))
    assert result == datetime(2025, 6, 15, 12, 0, tzinfo=timezone.utc)


@pytest.mark.parametrize(
    "value",
    ["2025-06-15T12:00:00Z", "2025-06-15T12:00:00+00:00", "2025-06-15T17:30:00+05:30"],
)
def test_parse_timestamp_iso_variants(value):
    assert parse_timestamp(value) == datetime(2025, 6, 15, 12, 0, tzinfo=timezone.utc)


@pytest.mark.parametrize("value", [None, "", "yesterday"])
def test_parse_timestamp_empty_or_garbage_is_none(value):
    assert parse_timestamp(value) is None


def test_generate_id_is_unique_uuid4():
    first, second = generate_id(), generate_id()
    assert UUID(first).version == 4
    assert first != second


# ===========================================================================
# with_retry()
# ===========================================================================


def _status_error(status):
    request = httpx.Request("GET", "https://api.themoviedb.org/3/trending/movie/day")
    response = httpx.Response(status, request=request)
    return httpx.HTTPStatusError(f"{status}", request=request, response=response)


@pytest.mark.parametrize(
    "exc, expected",
    [
        (httpx.ConnectError("refused"), True),
        (httpx.ReadTimeout("slow"), True),
        (_status_error(429), True),
        (_status_error(503), True),
        (_status_error(401), False),
        (_status_error(404), False),
    ],
)
def test_is_transient_http_error(exc, expected):
    assert is_transient_http_error(exc) is expected


@pytest.mark.asyncio
async def test_with_retry_recovers_after_transient_failure():
    calls = []

    with patch("src.utils.asyncio.sleep", new_callable=AsyncMock) as mock_sleep:

        @with_retry(max_attempts=3, base_delay=2.0)
        async def flaky():
            calls.append(1)
            if len(calls) < 2:
                raise ValueError("transient")
            return "ok"

        assert await flaky() == "ok"

    mock_sleep.assert_awaited_once_with(2.0)


@pytest.mark.asyncio
async def test_with_retry_non_retryable_propagates():
    with patch("src.utils.asyncio.sleep", new_callable=AsyncMock) as mock_sleep:

        @with_retry(max_attempts=3, retryable_exceptions=(ValueError,))
        async def boom():
            raise TypeError("not retryable")

        with pytest.raises(TypeError):
            await boom()

    mock_sleep.assert_not_awaited()


@pytest.mark.asyncio
async def test_with_retry_skips_permanent_http_errors():
    calls = []

    with patch("src.utils.asyncio.sleep", new_callable=AsyncMock) as mock_sleep:

        @with_retry(
            max_attempts=3,
            retryable_exceptions=(httpx.HTTPError,),
            retry_if=is_transient_http_error,
        )
        async def bad_key():
            calls.append(1)
            raise _status_error(401)

        with pytest.raises(httpx.HTTPStatusError):
            await bad_key()

    assert len(calls) == 1
    mock_sleep.assert_not_awaited()

@pytest.mark.asyncio
async def test_with_retry_async_exhausts_with_backoff():
    with patch("src.utils.asyncio.sleep", new_callable=AsyncMock) as mock_sleep:

        @with_retry(
            max_attempts=3,
            base_delay=1.0,
            retryable_exceptions=(httpx.HTTPError,),
            operation_name="tmdb_trending",
        )
        async def always_fail():
            raise httpx.ConnectError("refused")

        with pytest.raises(RetryExhaustedError) as exc_info:
            await always_fail()

    err = exc_info.value
    assert err.operation == "tmdb_trending"
    assert err.attempts == 3
    assert isinstance(err.last_error, httpx.ConnectError)
    assert [c.args[0] for c in mock_sleep.call_args_list] == [1.0, 2.0]


def test_with_retry_preserves_async_function_name():
    @with_retry(max_attempts=2)
    async def fetch_trending():
        pass

    assert fetch_trending.__name__ == "fetch_trending"
