# notes_pipeline/llm/rate_limit.py
"""Token-per-window rate limiting for external API calls."""

import asyncio
import logging
import time
from collections.abc import Awaitable, Callable

from notes_pipeline.errors import Cancelled, RequestTooLarge

logger = logging.getLogger(__name__)


class TokenRateLimiter:
    """
    Token budget per time window (default: one minute).

    The window opens with the first call after a reset. When a call would
    push the window's consumed tokens past the budget, the caller sleeps
    until the window ends, the counter resets to zero and the call proceeds.
    Acquisition is serialized, so concurrent callers cannot oversubscribe a
    window. Once the cancel event is set, waiting and queued callers get
    Cancelled instead of tokens.
    """

    def __init__(
        self,
        tokens_per_minute: int,
        window_seconds: float = 60.0,
        *,
        name: str = "api",
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        cancel_event: asyncio.Event | None = None,
    ) -> None:
        """
        Initialize rate limiter.

        Args:
            tokens_per_minute: Token budget per window
            window_seconds: Window length in seconds
            name: Label used in log messages (e.g. "completions")
            clock: Monotonic clock (injectable for tests)
            sleep: Async sleep (injectable for tests)
            cancel_event: When set, interrupts window waits
        """
        if tokens_per_minute < 1:
            raise ValueError(f"tokens_per_minute must be >= 1, got {tokens_per_minute}")
        self._budget = tokens_per_minute
        self._window = window_seconds
        self._name = name
        self._clock = clock
        self._sleep = sleep
        self._cancel_event = cancel_event
        self._used = 0
        self._window_start: float | None = None
        self._lock = asyncio.Lock()

    @property
    def budget(self) -> int:
        return self._budget

    @property
    def used(self) -> int:
        """Tokens consumed in the current window."""
        return self._used

    def _check_cancelled(self) -> None:
        if self._cancel_event is not None and self._cancel_event.is_set():
            raise Cancelled(f"[{self._name}] Shutdown requested while waiting for tokens")

    async def _wait(self, seconds: float) -> None:
        """Sleep until the window ends or the cancel event is set."""
        if self._cancel_event is None:
            await self._sleep(seconds)
            return

        sleeper = asyncio.ensure_future(self._sleep(seconds))
        stopper = asyncio.ensure_future(self._cancel_event.wait())
        try:
            await asyncio.wait({sleeper, stopper}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            sleeper.cancel()
            stopper.cancel()
        self._check_cancelled()

    async def acquire(self, tokens: int) -> float:
        """
        Reserve tokens for one call, waiting for the next window if needed.

        Args:
            tokens: Estimated cost of the call

        Returns:
            Seconds spent waiting (0.0 if the call fit the current window)

        Raises:
            RequestTooLarge: If tokens exceeds the whole budget
            Cancelled: If shutdown was requested before or during the wait
        """
        if tokens > self._budget:
            raise RequestTooLarge(tokens, self._budget)

        async with self._lock:
            self._check_cancelled()
            now = self._clock()
            if self._window_start is None or now - self._window_start >= self._window:
                self._used = 0
                self._window_start = now

            waited = 0.0
            if self._used + tokens > self._budget:
                waited = max(self._window - (now - self._window_start), 0.0)
                logger.info(
                    f"[{self._name}] {self._used}+{tokens} tokens exceeds budget "
                    f"{self._budget}; waiting {waited:.1f}s for the next window"
                )
                await self._wait(waited)
                self._used = 0
                self._window_start = self._clock()

            self._used += tokens
            return waited
