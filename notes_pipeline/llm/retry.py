# notes_pipeline/llm/retry.py
"""Rate-limited retry wrapper for external API calls with exponential backoff."""

import asyncio
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import TypeVar

from openai import APIStatusError
from tenacity import (
    AsyncRetrying,
    RetryCallState,
    RetryError,
    before_sleep_log,
    retry_if_exception,
    stop_after_attempt,
)

from notes_pipeline.errors import Cancelled, ExhaustedRetries, PipelineError

from .rate_limit import TokenRateLimiter

logger = logging.getLogger(__name__)

T = TypeVar("T")

# Client errors that will not succeed on a second try
NON_RETRYABLE_STATUSES = {400, 401, 403, 404, 422}


def is_retryable(exception: BaseException) -> bool:
    """
    Returns True if the exception should be retried.

    Not retried:
    - Pipeline errors (oversized requests, cancellation, fatal errors)
    - APIStatusError with a client-side status (400, 401, 403, 404, 422)

    Everything else (rate limits, timeouts, connection errors, 5xx) is retried.
    """
    if isinstance(exception, PipelineError):
        return False

    if isinstance(exception, APIStatusError):
        return exception.status_code not in NON_RETRYABLE_STATUSES

    return True


@dataclass(frozen=True)
class RetryPolicy:
    """
    Deterministic exponential backoff.

    Attributes:
        max_retries: Retries after the first attempt
        initial_delay: Delay before the first retry (seconds)
        backoff_factor: Multiplier per retry
        max_delay: Upper bound for any single delay (seconds)
    """

    max_retries: int = 3
    initial_delay: float = 1.0
    backoff_factor: float = 2.0
    max_delay: float = 8.0

    def delay_for(self, attempt: int) -> float:
        """Delay after failed attempt number `attempt` (counted from 0)."""
        return min(self.initial_delay * self.backoff_factor**attempt, self.max_delay)


class RateLimitedRetryClient:
    """
    Wraps one type of fallible external call (e.g. completions or embeddings).

    Every attempt, including each retry, first reserves its estimated tokens
    from the rate limiter. Failed attempts are retried with deterministic
    exponential backoff; when retries run out the last error surfaces as
    ExhaustedRetries.
    """

    def __init__(
        self,
        limiter: TokenRateLimiter,
        policy: RetryPolicy | None = None,
        *,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        cancel_event: asyncio.Event | None = None,
        retry_if: Callable[[BaseException], bool] = is_retryable,
    ) -> None:
        """
        Initialize retry client.

        Args:
            limiter: Token budget shared by every call of this type
            policy: Backoff settings (defaults to RetryPolicy())
            sleep: Async sleep used between attempts (injectable for tests)
            cancel_event: When set, no new attempt is issued
            retry_if: Predicate deciding whether an exception is retried
        """
        self._limiter = limiter
        self._policy = policy or RetryPolicy()
        self._sleep = sleep
        self._cancel_event = cancel_event
        self._retry_if = retry_if

    @property
    def limiter(self) -> TokenRateLimiter:
        return self._limiter

    @property
    def policy(self) -> RetryPolicy:
        return self._policy

    def _wait(self, retry_state: RetryCallState) -> float:
        return self._policy.delay_for(retry_state.attempt_number - 1)

    def _check_cancelled(self) -> None:
        if self._cancel_event is not None and self._cancel_event.is_set():
            raise Cancelled("Shutdown requested; not issuing new external calls")

    async def call(
        self,
        operation: Callable[[], Awaitable[T]],
        estimated_tokens: int,
        description: str = "external call",
    ) -> T:
        """
        Run operation under the rate limit with retries.

        Args:
            operation: Zero-argument coroutine function performing the call
            estimated_tokens: Token cost reserved before each attempt
            description: Label for logs and errors

        Returns:
            The operation's result

        Raises:
            ExhaustedRetries: If every attempt failed with a retryable error
            RequestTooLarge: If estimated_tokens exceeds the budget
            Cancelled: If shutdown was requested before an attempt or while
                waiting for tokens
            Exception: Non-retryable errors propagate unchanged
        """
        retrying = AsyncRetrying(
            stop=stop_after_attempt(self._policy.max_retries + 1),
            wait=self._wait,
            retry=retry_if_exception(self._retry_if),
            sleep=self._sleep,
            before_sleep=before_sleep_log(logger, logging.WARNING),
        )

        try:
            async for attempt in retrying:
                with attempt:
                    self._check_cancelled()
                    await self._limiter.acquire(estimated_tokens)
                    # The limiter may have waited a whole window
                    self._check_cancelled()
                    return await operation()
        except RetryError as e:
            last_error = e.last_attempt.exception()
            raise ExhaustedRetries(
                description, e.last_attempt.attempt_number, last_error
            ) from last_error

        # AsyncRetrying either returns from the loop or raises
        raise AssertionError("unreachable")
