"""Retrying executor: run an async operation with retries and backoff.

Example:
    >>> from taskcore.execution.retry import RetryingExecutor
    >>> from taskcore.execution.backoff import ExponentialBackoff
    >>>
    >>> executor = RetryingExecutor(ExponentialBackoff(base_delay=0.2), max_attempts=4)
    >>> payload = await executor.execute(lambda: client.get("/quotes"))

Semantics:
    - ``max_attempts`` counts the first try.
    - A non-retryable error is re-raised untouched on the attempt that raised it.
    - Exhausting every attempt raises ``RetriesExhausted(last_cause, attempts_made)``.
    - Cancellation (token or task) aborts immediately, between or during
      attempts, and is never retried.
"""

from __future__ import annotations

import asyncio
import functools
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any, TypeVar

from taskcore.core.cancellation import CancellationToken, guarded
from taskcore.core.errors import Cancelled, OperationFailed, RetriesExhausted, is_retryable
from taskcore.core.logging import get_logger
from taskcore.execution.backoff import BackoffPolicy, ExponentialBackoff

logger = get_logger(__name__)

T = TypeVar("T")

Operation = Callable[[], Awaitable[T]]
RetryObserver = Callable[[int, Exception, float], None]


def utcnow() -> datetime:
    """Return timezone-aware UTC datetime."""
    return datetime.now(UTC)


@dataclass
class RetryState:
    """Per-invocation retry bookkeeping.

    ``attempt`` is the number of attempts that have finished so far, which
    is also the 0-based index of the attempt about to run.
    """

    max_attempts: int
    attempt: int = field(default=0, init=False)
    last_error: Exception | None = field(default=None, init=False)
    failures: list[OperationFailed] = field(default_factory=list, init=False)
    started_at: datetime = field(default_factory=utcnow, init=False)

    def record_failure(self, error: Exception) -> OperationFailed:
        """Record a failed attempt."""
        self.attempt += 1
        self.last_error = error
        failure = OperationFailed(error, attempt=self.attempt)
        self.failures.append(failure)
        return failure

    @property
    def attempts_made(self) -> int:
        return self.attempt

    @property
    def exhausted(self) -> bool:
        return self.attempt >= self.max_attempts

    @property
    def elapsed_seconds(self) -> float:
        """Total elapsed time since the state was created."""
        return (utcnow() - self.started_at).total_seconds()


class RetryingExecutor:
    """Runs one operation with retry, backoff and cancellation.

    Holds no state between calls; every :meth:`execute` builds its own
    :class:`RetryState`.

    Parameters
    ----------
    policy : BackoffPolicy | None
        Delay policy (default: ``ExponentialBackoff()``).
    max_attempts : int
        Attempts including the first try.
    is_retryable : callable | None
        Error classifier (default: :func:`taskcore.core.errors.is_retryable`).
    on_retry : callable | None
        Observer called before each retry as ``on_retry(attempt, error, delay)``
        where ``attempt`` is the 1-based number of the attempt that failed.
    sleep : callable
        Async sleep used between attempts; injectable for tests.
    """

    def __init__(
        self,
        policy: BackoffPolicy | None = None,
        *,
        max_attempts: int = 3,
        is_retryable: Callable[[Exception], bool] | None = None,
        on_retry: RetryObserver | None = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ) -> None:
        if max_attempts < 1:
            raise ValueError(f"max_attempts must be >= 1, got {max_attempts}")
        self.policy = policy or ExponentialBackoff()
        self.max_attempts = max_attempts
        self.is_retryable = is_retryable or _default_is_retryable
        self.on_retry = on_retry
        self._sleep = sleep

    async def execute(
        self,
        operation: Operation[T],
        *,
        token: CancellationToken | None = None,
    ) -> T:
        """Run ``operation`` until it succeeds, fails permanently, or runs out of attempts.

        Raises:
            Cancelled: The token fired before or during an attempt or a backoff.
            RetriesExhausted: Every attempt failed with a retryable error.
            Exception: The first non-retryable error, untouched.
        """
        state = RetryState(max_attempts=self.max_attempts)

        while True:
            if token is not None:
                token.raise_if_cancelled()

            try:
                result = await guarded(operation(), token)
            except Cancelled:
                logger.debug("retry.cancelled", attempt=state.attempt + 1)
                raise
            except Exception as e:
                failure = state.record_failure(e)

                if not self.is_retryable(e):
                    logger.info(
                        "retry.non_retryable",
                        attempt=state.attempt,
                        error=repr(e),
                    )
                    raise

                if state.exhausted:
                    logger.error(
                        "retry.exhausted",
                        attempts=state.attempts_made,
                        error=repr(e),
                        elapsed_seconds=state.elapsed_seconds,
                    )
                    raise RetriesExhausted(e, state.attempts_made) from e

                delay = self.policy.next_delay(state.attempt - 1)
                logger.warning(
                    "retry.attempt_failed",
                    attempt=failure.attempt,
                    max_attempts=self.max_attempts,
                    error=repr(e),
                    delay=delay,
                )
                if self.on_retry:
                    self.on_retry(state.attempt, e, delay)

                await guarded(self._sleep(delay), token)
                continue

            if state.failures:
                logger.info("retry.recovered", attempts=state.attempt + 1)
            return result


def _default_is_retryable(error: Exception) -> bool:
    return is_retryable(error)


async def execute(
    operation: Operation[T],
    policy: BackoffPolicy | None = None,
    max_attempts: int = 3,
    is_retryable: Callable[[Exception], bool] | None = None,
    signal: CancellationToken | None = None,
) -> T:
    """Functional form of :meth:`RetryingExecutor.execute`."""
    executor = RetryingExecutor(policy, max_attempts=max_attempts, is_retryable=is_retryable)
    return await executor.execute(operation, token=signal)


def with_retry(
    policy: BackoffPolicy | None = None,
    *,
    max_attempts: int = 3,
    is_retryable: Callable[[Exception], bool] | None = None,
    on_retry: RetryObserver | None = None,
) -> Callable[[Callable[..., Awaitable[T]]], Callable[..., Awaitable[T]]]:
    """Decorator factory adding retry logic to an async function.

    Example:
        >>> @with_retry(ExponentialBackoff(base_delay=0.5), max_attempts=5)
        ... async def fetch_quote(symbol: str) -> dict:
        ...     return await client.get(f"/quotes/{symbol}")
    """

    def decorator(func: Callable[..., Awaitable[T]]) -> Callable[..., Awaitable[T]]:
        @functools.wraps(func)
        async def wrapper(*args: Any, **kwargs: Any) -> T:
            executor = RetryingExecutor(
                policy,
                max_attempts=max_attempts,
                is_retryable=is_retryable,
                on_retry=on_retry,
            )
            return await executor.execute(lambda: func(*args, **kwargs))

        return wrapper

    return decorator


__all__ = [
    "RetryState",
    "RetryingExecutor",
    "execute",
    "with_retry",
]
