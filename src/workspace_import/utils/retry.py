"""Retry logic using tenacity.

Requests to the external API are retried with exponential backoff and jitter
on transient failures (network errors, 5xx responses, 429 rate limits). A
``Retry-After`` hint from the server takes precedence over the computed
backoff. Permanent failures (401/403/404) are raised immediately.
"""

from collections.abc import Awaitable, Callable
from typing import TypeVar

from tenacity import (
    AsyncRetrying,
    RetryCallState,
    RetryError,
    retry_if_exception_type,
    stop_after_attempt,
    wait_random_exponential,
)

from workspace_import.client.exceptions import (
    NetworkError,
    RateLimitError,
    ServerError,
    SourceUnavailableError,
)
from workspace_import.utils.logging import get_logger

logger = get_logger(__name__)

T = TypeVar("T")

TRANSIENT_ERRORS: tuple[type[Exception], ...] = (NetworkError, ServerError, RateLimitError)


class wait_retry_after:
    """Tenacity wait strategy that honours a server-supplied Retry-After.

    Falls back to ``fallback`` when the last exception carries no hint. The
    hint is capped at ``max_wait`` seconds.
    """

    def __init__(self, fallback: Callable[[RetryCallState], float], max_wait: float):
        self.fallback = fallback
        self.max_wait = max_wait

    def __call__(self, retry_state: RetryCallState) -> float:
        outcome = retry_state.outcome
        if outcome is not None and outcome.failed:
            exc = outcome.exception()
            if isinstance(exc, RateLimitError) and exc.retry_after is not None:
                return min(max(exc.retry_after, 0.0), self.max_wait)
        return self.fallback(retry_state)


def _log_before_sleep(retry_state: RetryCallState) -> None:
    exc = retry_state.outcome.exception() if retry_state.outcome else None
    logger.warning(
        "source_request_retrying",
        attempt=retry_state.attempt_number,
        wait_seconds=round(retry_state.next_action.sleep, 3) if retry_state.next_action else None,
        error=str(exc) if exc else None,
        error_type=type(exc).__name__ if exc else None,
    )


async def call_with_retry(
    func: Callable[[], Awaitable[T]],
    max_attempts: int = 3,
    min_wait: float = 1.0,
    max_wait: float = 30.0,
    retry_on_exceptions: tuple[type[Exception], ...] = TRANSIENT_ERRORS,
    description: str | None = None,
) -> T:
    """Call an async function, retrying transient failures with backoff.

    Args:
        func: Zero-argument coroutine function to call
        max_attempts: Total number of attempts (first call included)
        min_wait: Minimum wait between attempts in seconds
        max_wait: Maximum wait between attempts in seconds
        retry_on_exceptions: Exception types considered transient
        description: Label for log messages (usually the request path)

    Returns:
        Result of ``func``

    Raises:
        SourceUnavailableError: If every attempt failed with a transient error
    """
    retrying = AsyncRetrying(
        stop=stop_after_attempt(max_attempts),
        wait=wait_retry_after(
            wait_random_exponential(multiplier=min_wait, min=min_wait, max=max_wait),
            max_wait=max_wait,
        ),
        retry=retry_if_exception_type(retry_on_exceptions),
        before_sleep=_log_before_sleep,
        reraise=False,
    )

    try:
        async for attempt in retrying:
            with attempt:
                return await func()
    except RetryError as e:
        last = e.last_attempt.exception()
        logger.error(
            "source_request_retry_exhausted",
            request=description,
            attempts=max_attempts,
            error=str(last),
        )
        raise SourceUnavailableError(
            f"External API unavailable after {max_attempts} attempts: {last}",
            attempts=max_attempts,
        ) from last

    # AsyncRetrying either returns from inside the loop or raises
    raise RuntimeError("Unexpected retry loop exit")


def retry_after_seconds(header_value: str | None) -> float | None:
    """Parse a Retry-After header given in seconds.

    HTTP-date values are not used by the supported providers and yield None.
    """
    if not header_value:
        return None
    try:
        return float(header_value)
    except ValueError:
        return None
