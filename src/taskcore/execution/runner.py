"""TaskRunner: one call surface over cache, queue and retrying executor.

WHY
───
Callers want "give me the value for this key" without wiring three
components each time. ``TaskRunner.run`` looks in the cache first (cheapest
path, hits never queue), joins an in-flight computation when one exists, and
only on a real miss admits the work to the shared queue, where a fresh
``RetryingExecutor`` runs it under the retry policy.

ARCHITECTURE
────────────
::

    TaskRunner.run(key, operation, ttl=..., max_attempts=...)
      │
      ▼
    TTLCache.get_or_compute(key)      hit → value │ PENDING → join
      │ miss
      ▼
    TaskQueue.submit(Task(key, ...))  QueueFull / QueueClosed
      │ admitted
      ▼
    RetryingExecutor.execute(operation)  RetriesExhausted / untouched error
      │
      ▼
    value stored in cache, returned to every joined caller

    The cache and the queue are long-lived and shared across calls; the
    runner itself holds only references to them.

Example::

    async with TaskRunner.from_settings(get_settings()) as runner:
        quote = await runner.run("quote:AAPL", lambda: api.quote("AAPL"), ttl=5)
        outcomes = await runner.run_many({
            "quote:MSFT": lambda: api.quote("MSFT"),
            "quote:NVDA": lambda: api.quote("NVDA"),
        })
"""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable, Mapping
from typing import Any, TypeVar

from taskcore.core.cache import TTLCache
from taskcore.core.cancellation import CancellationToken
from taskcore.core.logging import LogContext, get_logger
from taskcore.core.result import Result, partition_results, try_result_async
from taskcore.core.settings import TaskCoreSettings, get_settings
from taskcore.execution.backoff import BackoffPolicy, ExponentialBackoff
from taskcore.execution.queue import Task, TaskQueue
from taskcore.execution.retry import RetryingExecutor, RetryObserver

logger = get_logger(__name__)

T = TypeVar("T")


class TaskRunner:
    """Composes :class:`TTLCache`, :class:`TaskQueue` and :class:`RetryingExecutor`.

    Parameters
    ----------
    cache : TTLCache | None
        Shared result cache (built from settings when omitted).
    queue : TaskQueue | None
        Shared bounded queue (built from settings when omitted).
    policy : BackoffPolicy | None
        Backoff policy handed to every executor.
    settings : TaskCoreSettings | None
        Defaults for anything not passed explicitly.
    """

    def __init__(
        self,
        *,
        cache: TTLCache | None = None,
        queue: TaskQueue | None = None,
        policy: BackoffPolicy | None = None,
        settings: TaskCoreSettings | None = None,
    ) -> None:
        self.settings = settings if settings is not None else get_settings()
        # TTLCache defines __len__, so an empty injected cache is falsy.
        self.cache = cache if cache is not None else TTLCache.from_settings(self.settings)
        self.queue = queue if queue is not None else TaskQueue.from_settings(self.settings)
        self.policy = policy if policy is not None else ExponentialBackoff.from_settings(self.settings)

    @classmethod
    def from_settings(cls, settings: TaskCoreSettings) -> TaskRunner:
        return cls(settings=settings)

    async def run(
        self,
        key: str,
        operation: Callable[[], Awaitable[T]],
        *,
        ttl: float | None = None,
        max_attempts: int | None = None,
        max_concurrency: int | None = None,
        max_queue_length: int | None = None,
        is_retryable: Callable[[Exception], bool] | None = None,
        priority: int = 0,
        token: CancellationToken | None = None,
        on_retry: RetryObserver | None = None,
    ) -> T:
        """Return the value for ``key``, computing it through the queue on a miss.

        Args:
            key: Cache and task key.
            operation: Zero-argument async callable producing the value.
            ttl: Seconds the value stays cached (default from settings).
            max_attempts: Attempts including the first (default from settings).
            max_concurrency: When given, resizes the shared queue's running bound.
            max_queue_length: When given, resizes the shared queue's backlog bound.
            is_retryable: Error classifier for this call.
            priority: Queue priority (higher first).
            token: Cancellation token observed at every suspension point.
            on_retry: Observer for intermediate attempt failures.

        Raises:
            QueueFull, QueueClosed, Cancelled, RetriesExhausted, or the
            operation's own non-retryable error.
        """
        if max_concurrency is not None or max_queue_length is not None:
            self.queue.resize(max_concurrency=max_concurrency, max_queue_length=max_queue_length)

        attempts = max_attempts if max_attempts is not None else self.settings.max_attempts

        async def compute() -> T:
            executor = RetryingExecutor(
                self.policy,
                max_attempts=attempts,
                is_retryable=is_retryable,
                on_retry=on_retry,
            )
            task = Task(
                key=key,
                operation=lambda: executor.execute(operation, token=token),
                priority=priority,
                token=token,
            )
            return await self.queue.submit(task)

        async with LogContext(task_key=key):
            return await self.cache.get_or_compute(key, ttl, compute, token=token)

    async def run_many(
        self,
        operations: Mapping[str, Callable[[], Awaitable[Any]]],
        **options: Any,
    ) -> dict[str, Result[Any]]:
        """Run several keyed operations concurrently and collect every outcome.

        Each key goes through :meth:`run` with the same ``options``. Failures
        come back as ``Err`` instead of aborting the batch.
        """
        keys = list(operations)

        async def _one(key: str) -> Result[Any]:
            return await try_result_async(lambda: self.run(key, operations[key], **options))

        results = await asyncio.gather(*[_one(key) for key in keys])
        outcomes = dict(zip(keys, results))

        for key, outcome in outcomes.items():
            if outcome.is_err():
                logger.warning("runner.task_failed", key=key, **outcome.to_dict()["error"])

        values, errors = partition_results(results)
        logger.info(
            "runner.batch_complete",
            total=len(keys),
            succeeded=len(values),
            failed=len(errors),
        )
        return outcomes

    def invalidate(self, key: str) -> bool:
        """Drop the cached value for ``key`` so the next run recomputes."""
        return self.cache.invalidate(key)

    async def shutdown(self, drain: bool = True) -> None:
        await self.queue.shutdown(drain=drain)

    async def __aenter__(self) -> TaskRunner:
        return self

    async def __aexit__(self, *args: Any) -> None:
        await self.shutdown(drain=True)


__all__ = ["TaskRunner"]
