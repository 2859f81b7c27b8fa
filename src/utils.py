"""
Shared utility functions used throughout the content intelligence pipeline.

Provides:
    - utc_now(): Timezone-aware UTC datetime (for Supabase TIMESTAMPTZ columns)
    - days_ago(n): Timezone-aware UTC datetime ``n`` days before now
    - generate_id(): UUID4 string generator (for database primary keys)
    - ensure_utc(dt): Convert any datetime to timezone-aware UTC
    - parse_timestamp(value): Parse ISO-8601 strings (``Z`` suffix allowed)
    - @with_retry: Async decorator with exponential backoff for transient failures
    - is_transient_http_error(exc): Retry predicate for HTTP clients
"""

from datetime import datetime, timedelta, timezone
import uuid
import asyncio
import logging
from functools import wraps
from typing import Awaitable, Callable, TypeVar, Any, Tuple, Type, Optional, Union

from src.exceptions import RetryExhaustedError

# ---------------------------------------------------------------------------
# Type variable for generic return types in the retry decorator
# ---------------------------------------------------------------------------
T = TypeVar("T")


# ===========================================================================
# TIMEZONE UTILITIES
# All timestamps stored in Supabase must be timezone-aware (TIMESTAMPTZ)
# ===========================================================================


def utc_now() -> datetime:
    """
    Get current UTC time as timezone-aware datetime.

    ALWAYS use this instead of ``datetime.now()`` or ``datetime.utcnow()``
    for Supabase compatibility (TIMESTAMPTZ columns).

    Returns:
        Timezone-aware datetime in UTC.
    """
    return datetime.now(timezone.utc)


def days_ago(days: float, now: Optional[datetime] = None) -> datetime:
    """
    Return the UTC instant ``days`` days before ``now``.

    Args:
        days: Number of days to go back (fractions allowed).
        now: Reference instant. Defaults to :func:`utc_now`.

    Returns:
        Timezone-aware datetime in UTC.
    """
    reference = ensure_utc(now) if now is not None else utc_now()
    return reference - timedelta(days=days)


def generate_id() -> str:
    """
    Generate a unique ID for database records.

    Returns:
        A unique UUID string (compatible with Supabase UUID type).
    """
    return str(uuid.uuid4())


def ensure_utc(dt: datetime) -> datetime:
    """
    Ensure a datetime is timezone-aware in UTC.

    Args:
        dt: Datetime to convert (naive or aware).

    Returns:
        Timezone-aware datetime in UTC.
    """
    if dt.tzinfo is None:
        # Assume naive datetime is UTC
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def parse_timestamp(value: Union[str, datetime, None]) -> Optional[datetime]:
    """
    Parse a timestamp coming from an external API or a database row.

    Accepts ``datetime`` objects and ISO-8601 strings, including the
    ``Z`` suffix used by most JSON APIs.

    Returns:
        Timezone-aware UTC datetime, or ``None`` when the value is empty
        or unparseable.
    """
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return ensure_utc(value)
    try:
        return ensure_utc(datetime.fromisoformat(str(value).replace("Z", "+00:00")))
    except (ValueError, TypeError):
        return None


# ===========================================================================
# RETRY DECORATOR WITH EXPONENTIAL BACKOFF
# Retries are for transient failures (rate limits, timeouts). Eventually
# raises if all attempts fail.
# ===========================================================================


def is_transient_http_error(exc: BaseException) -> bool:
    """True for transport failures and 429 / 5xx responses.

    Errors that carry a ``response`` (``httpx.HTTPStatusError``) are
    transient only for rate limiting and server errors; a 401 or 404
    will not get better on the next attempt.
    """
    response = getattr(exc, "response", None)
    if response is None:
        return True
    status = getattr(response, "status_code", 0)
    return status == 429 or status >= 500


def with_retry(
    max_attempts: int = 3,
    base_delay: float = 2.0,
    retryable_exceptions: Tuple[Type[Exception], ...] = (Exception,),
    operation_name: Optional[str] = None,
    retry_if: Optional[Callable[[Exception], bool]] = None,
) -> Callable:
    """
    Decorator for async retry logic with exponential backoff.

    - Retries are for transient failures (rate limits, timeouts).
    - Eventually raises ``RetryExhaustedError`` if all attempts fail.
    - Logs each retry attempt for debugging.

    Args:
        max_attempts: Maximum number of attempts (default ``3``).
        base_delay: Initial delay in seconds before the first retry
            (default ``2.0``). Subsequent delays grow exponentially:
            ``base_delay * (2 ** attempt)``.
        retryable_exceptions: Tuple of exception types that should trigger
            a retry. Any exception **not** in this tuple will propagate
            immediately without retrying.
        operation_name: Human-readable name used in log messages. If
            ``None``, the wrapped function's ``__name__`` is used.
        retry_if: Optional predicate narrowing ``retryable_exceptions``;
            a matching exception for which it returns ``False`` propagates
            immediately.

    Raises:
        RetryExhaustedError: When all retry attempts have been exhausted.

    Usage::

        @with_retry(
            max_attempts=3,
            retryable_exceptions=(httpx.HTTPError,),
            retry_if=is_transient_http_error,
        )
        async def trending(window: str) -> dict:
            ...
    """

    def decorator(func: Callable[..., Awaitable[T]]) -> Callable[..., Awaitable[T]]:
        op_name = operation_name or func.__name__

        @wraps(func)
        async def wrapper(*args: Any, **kwargs: Any) -> T:
            last_error: Optional[Exception] = None
            for attempt in range(1, max_attempts + 1):
                try:
                    return await func(*args, **kwargs)
                except retryable_exceptions as e:
                    if retry_if is not None and not retry_if(e):
                        raise
                    last_error = e
                    if attempt < max_attempts:
                        delay = base_delay * (2 ** (attempt - 1))
                        logging.warning(
                            "[RETRY] %s attempt %d/%d failed: %s. "
                            "Retrying in %.1fs...",
                            op_name,
                            attempt,
                            max_attempts,
                            e,
                            delay,
                        )
                        await asyncio.sleep(delay)
                    else:
                        logging.error(
                            "[RETRY EXHAUSTED] %s failed after %d attempts: %s",
                            op_name,
                            max_attempts,
                            e,
                        )
            raise RetryExhaustedError(
                op_name, max_attempts, last_error  # type: ignore[arg-type]
            )

        return wrapper

    return decorator
