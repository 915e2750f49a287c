#!/usr/bin/env python3
"""Retry policy for database round trips.

Every read and write in ConnectionManager goes through one combinator,
RetryPolicy.run(), so the attempt loop lives in exactly one place.

Policy:
    - Bounded attempts (default 3), each call gets its own budget
    - Linear backoff: after failed attempt k, wait base_delay * k
    - No jitter, no circuit breaker, no state shared between calls
    - A classifier decides which failures are worth another attempt;
      permanent failures (bad SQL, constraint violations) fail at once

Example:
    policy = RetryPolicy(max_retries=3, base_delay=1.0)
    rows = await policy.run(lambda: conn.fetch("SELECT 1"), label="select-one")
"""
import asyncio
import logging
from dataclasses import dataclass, field
from typing import Awaitable, Callable, TypeVar

from asyncpg import exceptions as pg_errors

from ..exceptions import ConnectivityError, QueryExecutionError

logger = logging.getLogger(__name__)

T = TypeVar("T")


# ============================================
# Error classification
# ============================================

# Failures where the statement may succeed if simply tried again
TRANSIENT_EXCEPTIONS: tuple[type[BaseException], ...] = (
    pg_errors.PostgresConnectionError,
    pg_errors.ConnectionDoesNotExistError,
    pg_errors.CannotConnectNowError,
    pg_errors.TooManyConnectionsError,
    pg_errors.DeadlockDetectedError,
    pg_errors.SerializationError,
    pg_errors.QueryCanceledError,
    pg_errors.AdminShutdownError,
    asyncio.TimeoutError,
    ConnectionError,
    OSError,
)


def is_transient(error: BaseException) -> bool:
    """Default classifier: retry connectivity, timeout and lock conflicts only."""
    if isinstance(error, ConnectivityError):
        return error.recoverable
    return isinstance(error, TRANSIENT_EXCEPTIONS)


def retry_everything(error: BaseException) -> bool:
    """Classifier that treats every failure as transient."""
    return True


# ============================================
# Retry policy
# ============================================

@dataclass(frozen=True)
class RetryPolicy:
    """Bounded linear-backoff retry for a single unit of work.

    Attributes:
        max_retries: Maximum number of attempts (including the first)
        base_delay: Seconds to wait after the first failure
        classifier: Returns True when an error may be retried
        sleep: Awaitable sleep used between attempts
    """

    max_retries: int = 3
    base_delay: float = 1.0
    classifier: Callable[[BaseException], bool] = is_transient
    sleep: Callable[[float], Awaitable[None]] = field(default=asyncio.sleep, repr=False)

    def __post_init__(self):
        if self.max_retries < 1:
            raise ValueError(f"max_retries must be at least 1, got {self.max_retries}")
        if self.base_delay < 0:
            raise ValueError(f"base_delay must not be negative, got {self.base_delay}")

    def delay_for(self, attempt: int) -> float:
        """Seconds to wait after failed attempt ``attempt`` (1-based)."""
        return self.base_delay * attempt

    async def run(
        self,
        operation: Callable[[], Awaitable[T]],
        label: str = "operation",
    ) -> T:
        """Run ``operation`` until it succeeds or the budget is spent.

        Args:
            operation: Zero-argument coroutine factory; called once per attempt
            label: Short description used in log lines

        Returns:
            Whatever ``operation`` returns

        Raises:
            QueryExecutionError: With the attempt count and the last error
        """
        for attempt in range(1, self.max_retries + 1):
            try:
                return await operation()
            except Exception as e:
                retryable = self.classifier(e)
                if not retryable or attempt >= self.max_retries:
                    logger.error(
                        f"{label} failed (attempt {attempt}/{self.max_retries}): {e}"
                    )
                    raise QueryExecutionError(
                        f"{label} failed after {attempt} attempt(s): {e}",
                        attempts=attempt,
                        cause=e,
                        recoverable=retryable,
                    ) from e

                delay = self.delay_for(attempt)
                logger.warning(
                    f"{label} failed (attempt {attempt}/{self.max_retries}): {e}. "
                    f"Retrying in {delay:.1f}s"
                )
                await self.sleep(delay)

        # max_retries >= 1 guarantees the loop returns or raises
        raise RuntimeError("Retry logic error")


DEFAULT_RETRY_POLICY = RetryPolicy()


__all__ = [
    "DEFAULT_RETRY_POLICY",
    "RetryPolicy",
    "TRANSIENT_EXCEPTIONS",
    "is_transient",
    "retry_everything",
]
