"""
Retrying Caller - paced, bounded-retry execution of remote operations.

Every platform request goes through a single RetryingCaller so that:

    ┌─────────────────────────────────────────────────────────────┐
    │  1. Only one operation is in flight at a time (asyncio.Lock) │
    │  2. Two attempt starts are at least `interval` apart         │
    │  3. Retryable failures back off exponentially (tenacity)     │
    │  4. A reported rate-limit reset inside max_delay is honoured │
    │  5. Non-retryable failures propagate immediately             │
    │  6. Exhaustion raises RetryExhaustedError(last cause)        │
    └─────────────────────────────────────────────────────────────┘

The pacing interval comes from the API plan tier (see
``rate_limiter.calculate_request_delay``): basic tiers get the longest gap.

Usage:
    caller = RetryingCaller(interval=75.0, max_attempts=3)
    payload = await caller.call(lambda: client.get_mentions(...), "fetch mentions")
"""

import asyncio
import logging
import time
from datetime import datetime
from typing import Any, Awaitable, Callable, Optional, TypeVar

from tenacity import (
    AsyncRetrying,
    RetryCallState,
    RetryError,
    retry_if_exception,
    stop_after_attempt,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")


class RetryExhaustedError(Exception):
    """Raised when every attempt of a retryable operation failed."""

    def __init__(
        self,
        description: str,
        attempts: int,
        cause: BaseException,
        reset_at: Optional[datetime] = None,
    ):
        self.description = description
        self.attempts = attempts
        self.cause = cause
        self.reset_at = reset_at
        message = f"{description} failed after {attempts} attempt(s): {cause}"
        if reset_at is not None:
            message += f" (rate limit resets at {reset_at.isoformat()})"
        super().__init__(message)


def reset_time_of(error: BaseException) -> Optional[datetime]:
    """Extract a rate-limit reset time carried by an error, if any."""
    reset_at = getattr(error, "reset_at", None)
    if isinstance(reset_at, datetime):
        return reset_at
    rate_limit = getattr(error, "rate_limit", None)
    reset = getattr(rate_limit, "reset", None)
    return reset if isinstance(reset, datetime) else None


def is_retryable_error(error: BaseException) -> bool:
    """
    Check if an exception is worth another attempt.

    Errors raised by our clients carry a ``retryable`` flag (rate limits,
    5xx, timeouts, connection failures). Builtin timeouts and connection
    errors are retryable too; everything else is not.
    """
    flag = getattr(error, "retryable", None)
    if flag is not None:
        return bool(flag)
    return isinstance(error, (TimeoutError, ConnectionError))


class RetryingCaller:
    """
    Single-flight, paced executor with bounded retry.

    The clock and sleep functions are injectable so pacing and backoff can
    be verified without real waiting.
    """

    def __init__(
        self,
        interval: float = 0.0,
        max_attempts: int = 3,
        base_delay: float = 1.0,
        max_delay: float = 60.0,
        is_retryable: Callable[[BaseException], bool] = is_retryable_error,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        """
        Initialize the caller.

        Args:
            interval: Minimum seconds between two attempt starts.
            max_attempts: Attempts per operation, including the first.
            base_delay: First backoff delay in seconds (doubles each retry).
            max_delay: Upper bound for a single backoff delay.
            is_retryable: Classifier for failures.
            clock: Monotonic clock in seconds.
            sleep: Awaitable sleep used for pacing and backoff.
        """
        if max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        self.interval = interval
        self.max_attempts = max_attempts
        self.base_delay = base_delay
        self.max_delay = max_delay
        self.is_retryable = is_retryable
        self._clock = clock
        self._sleep = sleep

        self._lock = asyncio.Lock()
        self._last_start: Optional[float] = None

        logger.info(
            f"Retrying caller initialized: interval={interval:.2f}s, "
            f"max_attempts={max_attempts}"
        )

    async def _pace(self) -> None:
        """Wait until `interval` has passed since the previous start."""
        if self._last_start is not None and self.interval > 0:
            remaining = self.interval - (self._clock() - self._last_start)
            if remaining > 0:
                logger.debug(f"Pacing gate: waiting {remaining:.2f}s")
                await self._sleep(remaining)
        self._last_start = self._clock()

    def _backoff(self, retry_state: RetryCallState) -> float:
        delay = min(
            self.max_delay,
            self.base_delay * (2 ** (retry_state.attempt_number - 1)),
        )
        error = retry_state.outcome.exception() if retry_state.outcome else None
        reset_at = reset_time_of(error) if error else None
        if reset_at is not None:
            until_reset = (reset_at - datetime.now()).total_seconds()
            if 0 < until_reset <= self.max_delay:
                delay = max(delay, until_reset)
        return delay

    async def call(
        self,
        operation: Callable[[], Awaitable[T]],
        description: str = "remote call",
    ) -> T:
        """
        Execute an operation through the pacing gate with bounded retry.

        Args:
            operation: Zero-argument coroutine function performing one attempt.
            description: Human-readable name used in logs and errors.

        Returns:
            The operation's result.

        Raises:
            RetryExhaustedError: If every attempt failed with a retryable error.
            Exception: The original error if it is not retryable.
        """

        def log_retry(retry_state: RetryCallState) -> None:
            error = retry_state.outcome.exception()
            wait = retry_state.next_action.sleep if retry_state.next_action else 0
            logger.warning(
                f"{description} failed (attempt {retry_state.attempt_number}/"
                f"{self.max_attempts}): {error}. Retrying in {wait:.1f}s"
            )

        async with self._lock:
            retrying = AsyncRetrying(
                stop=stop_after_attempt(self.max_attempts),
                wait=self._backoff,
                retry=retry_if_exception(self.is_retryable),
                before_sleep=log_retry,
                sleep=self._sleep,
                reraise=False,
            )
            try:
                async for attempt in retrying:
                    with attempt:
                        await self._pace()
                        logger.debug(
                            f"{description}: attempt "
                            f"{attempt.retry_state.attempt_number}/{self.max_attempts}"
                        )
                        result = await operation()
            except RetryError as e:
                cause = e.last_attempt.exception()
                attempts = e.last_attempt.attempt_number
                logger.error(
                    f"{description} gave up after {attempts}/{self.max_attempts} attempts: {cause}"
                )
                raise RetryExhaustedError(
                    description, attempts, cause, reset_time_of(cause)
                ) from cause

            return result
