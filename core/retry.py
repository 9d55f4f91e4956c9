"""
Retry with exponential backoff for provider HTTP calls.

Only rate limits (429) and server errors (5xx) are retried. A 429 that
carries a ``retry-after`` header waits as long as the server asks; every
other retry waits ``base_delay_ms * 2 ** attempt`` (attempt counted from 0).
When attempts run out, or the error is not retryable, the last error is
re-raised as-is.

Usage:
    result = await retry_with_backoff(lambda: client.get(url))
"""

import asyncio
import logging
from datetime import datetime, timezone
from email.utils import parsedate_to_datetime
from typing import Any, Awaitable, Callable, Iterable, Mapping, Optional, TypeVar

import aiohttp
import httpx
from tenacity import AsyncRetrying, RetryCallState, retry_if_exception, stop_after_attempt

from .errors import ProviderError

logger = logging.getLogger(__name__)

T = TypeVar("T")

DEFAULT_MAX_ATTEMPTS = 3
DEFAULT_BASE_DELAY_MS = 1000


def get_status_code(error: BaseException) -> Optional[int]:
    """Extract the HTTP status code from a client or provider error."""
    if isinstance(error, ProviderError):
        return error.status_code
    if isinstance(error, httpx.HTTPStatusError):
        return error.response.status_code
    if isinstance(error, aiohttp.ClientResponseError):
        return error.status
    return getattr(error, "status_code", None)


def get_headers(error: BaseException) -> Mapping[str, str]:
    """Response headers of a failed call, lower-cased."""
    if isinstance(error, ProviderError):
        return error.headers
    if isinstance(error, httpx.HTTPStatusError):
        return {k.lower(): v for k, v in error.response.headers.items()}
    if isinstance(error, aiohttp.ClientResponseError) and error.headers:
        return {k.lower(): v for k, v in error.headers.items()}
    return {}


def is_retryable_status(status: Optional[int]) -> bool:
    return status is not None and (status == 429 or 500 <= status < 600)


def is_retryable_error(error: BaseException) -> bool:
    return is_retryable_status(get_status_code(error))


def parse_retry_after_ms(value: Any) -> Optional[int]:
    """
    Parse a ``retry-after`` style header into milliseconds.

    Accepts delta-seconds ("5", "1.5") or an HTTP date. Returns None for
    anything else, including dates already in the past.
    """
    if value is None:
        return None
    text = str(value).strip()
    if not text:
        return None

    try:
        seconds = float(text)
    except ValueError:
        seconds = None

    if seconds is not None:
        return int(seconds * 1000) if 0 <= seconds < float("inf") else None

    try:
        when = parsedate_to_datetime(text)
    except (TypeError, ValueError):
        return None
    if when.tzinfo is None:
        when = when.replace(tzinfo=timezone.utc)

    delta_ms = int((when - datetime.now(timezone.utc)).total_seconds() * 1000)
    return delta_ms if delta_ms > 0 else None


class BackoffWait:
    """tenacity wait strategy: server-requested delay on 429, exponential otherwise."""

    def __init__(self, base_delay_ms: int, retry_after_headers: Iterable[str]):
        self.base_delay_ms = base_delay_ms
        self.retry_after_headers = tuple(h.lower() for h in retry_after_headers)

    def __call__(self, retry_state: RetryCallState) -> float:
        error = retry_state.outcome.exception() if retry_state.outcome else None
        # attempt_number is 1-based; the first retry waits base_delay_ms
        delay_ms = self.base_delay_ms * (2 ** (retry_state.attempt_number - 1))

        if error is not None and get_status_code(error) == 429:
            headers = get_headers(error)
            for name in self.retry_after_headers:
                server_delay = parse_retry_after_ms(headers.get(name))
                if server_delay is not None:
                    delay_ms = server_delay
                    break

        return delay_ms / 1000.0


def _log_retry(retry_state: RetryCallState) -> None:
    error = retry_state.outcome.exception()
    logger.warning(
        f"Rate limit or server error ({get_status_code(error)}), retrying in "
        f"{retry_state.next_action.sleep * 1000:.0f}ms "
        f"(attempt {retry_state.attempt_number})"
    )


async def retry_with_backoff(
    operation: Callable[[], Awaitable[T]],
    max_attempts: int = DEFAULT_MAX_ATTEMPTS,
    base_delay_ms: int = DEFAULT_BASE_DELAY_MS,
    *,
    retry_after_headers: Iterable[str] = ("retry-after",),
    sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
) -> T:
    """
    Run ``operation`` with up to ``max_attempts`` attempts.

    Args:
        operation: Zero-argument callable returning an awaitable; called once per attempt
        max_attempts: Total attempts including the first one
        base_delay_ms: Delay before the first retry
        retry_after_headers: Headers consulted (in order) on a 429
        sleep: Awaitable sleep, replaceable in tests

    Returns:
        Whatever ``operation`` returns on its first successful attempt

    Raises:
        The last error from ``operation``, unchanged
    """
    retrying = AsyncRetrying(
        stop=stop_after_attempt(max_attempts),
        wait=BackoffWait(base_delay_ms, retry_after_headers),
        retry=retry_if_exception(is_retryable_error),
        before_sleep=_log_retry,
        sleep=sleep,
        reraise=True,
    )
    # operation may be a plain lambda returning a coroutine
    async for attempt in retrying:
        with attempt:
            return await operation()
