"""
taskcore - asynchronous task execution core.

Retry-with-backoff execution, a bounded concurrent task queue and a TTL
result cache with single-flight semantics, composed behind ``TaskRunner``.

Example::

    from taskcore import TaskRunner

    async with TaskRunner() as runner:
        profile = await runner.run("user:42", lambda: fetch_user(42), ttl=30)
"""

__version__ = "0.1.0"

from taskcore.core.cache import CacheEntry, CacheStats, EntryState, TTLCache
from taskcore.core.cancellation import CancellationToken
from taskcore.core.errors import (
    Cancelled,
    ErrorCategory,
    NetworkError,
    OperationFailed,
    QueueClosed,
    QueueFull,
    RetriesExhausted,
    TaskCoreError,
    TransientError,
    ValidationError,
    is_retryable,
)
from taskcore.core.result import Err, Ok, Result
from taskcore.core.settings import TaskCoreSettings, get_settings
from taskcore.execution.backoff import (
    BackoffPolicy,
    ConstantBackoff,
    ExponentialBackoff,
    LinearBackoff,
)
from taskcore.execution.queue import QueueState, Task, TaskHandle, TaskQueue, TaskState
from taskcore.execution.retry import RetryingExecutor, RetryState, execute, with_retry
from taskcore.execution.runner import TaskRunner

__all__ = [
    "__version__",
    # Facade
    "TaskRunner",
    # Cache
    "TTLCache",
    "CacheEntry",
    "CacheStats",
    "EntryState",
    # Queue
    "TaskQueue",
    "Task",
    "TaskHandle",
    "TaskState",
    "QueueState",
    # Retry
    "RetryingExecutor",
    "RetryState",
    "execute",
    "with_retry",
    "BackoffPolicy",
    "ExponentialBackoff",
    "LinearBackoff",
    "ConstantBackoff",
    # Cancellation
    "CancellationToken",
    # Errors
    "TaskCoreError",
    "ErrorCategory",
    "OperationFailed",
    "RetriesExhausted",
    "Cancelled",
    "QueueFull",
    "QueueClosed",
    "TransientError",
    "NetworkError",
    "ValidationError",
    "is_retryable",
    # Result / settings
    "Ok",
    "Err",
    "Result",
    "TaskCoreSettings",
    "get_settings",
]
