"""
Structured error types for taskcore.

Every failure a caller can observe from the execution core is one of a small,
typed set of errors. Each carries a category, an explicit retry flag, optional
context (task key, task id, attempt number) and the underlying cause.

Manifesto:
    - **Typed taxonomy:** Callers see exactly one of a resolved value or one
      error from this module (or the untouched non-retryable error raised by
      their own operation)
    - **Explicit retry semantics:** Each error knows if it's retryable
    - **Rich context:** Errors carry metadata for logging
    - **Error chaining:** The original exception is kept as ``cause`` and
      ``__cause__``

Architecture:
    ::

        ┌─────────────────────────────────────────────────────────────────┐
        │                       TaskCoreError                              │
        │  (category, retryable, context, cause)                          │
        ├─────────────────────────────────────────────────────────────────┤
        │                                                                  │
        │  Execution            Cancellation       Capacity               │
        │  ─────────            ────────────       ────────               │
        │  OperationFailed      Cancelled          QueueFull              │
        │  RetriesExhausted                        QueueClosed            │
        │                                                                  │
        │  Helpers for operations                                          │
        │  ──────────────────────                                          │
        │  TransientError (retryable) ── NetworkError                      │
        │  ValidationError (never retryable)                               │
        └─────────────────────────────────────────────────────────────────┘

Examples:
    >>> error = RetriesExhausted(ConnectionError("reset"), attempts_made=3)
    >>> error.attempts_made
    3
    >>> error.retryable
    False
    >>> is_retryable(TransientError("upstream 503"))
    True
    >>> is_retryable(Cancelled())
    False

Guardrails:
    ❌ DON'T: Retry a Cancelled error
    ✅ DO: Treat cancellation as neither success nor failure

    ❌ DON'T: Swallow the original exception
    ✅ DO: Pass it as cause= for error chaining

Tags:
    error-handling, exception-hierarchy, retry-logic, taskcore
"""

from __future__ import annotations

import socket
from dataclasses import dataclass, field
from enum import Enum
from typing import Any


class ErrorCategory(str, Enum):
    """Standard error categories for classification and routing."""

    # Infrastructure errors (usually transient)
    NETWORK = "NETWORK"               # Connection resets, timeouts, DNS

    # Caller errors
    VALIDATION = "VALIDATION"         # Bad input, never retryable
    CONFIG = "CONFIG"                 # Invalid settings

    # Execution core
    EXECUTION = "EXECUTION"           # Operation attempts and retries
    CANCELLATION = "CANCELLATION"     # Token or task cancellation
    CAPACITY = "CAPACITY"             # Queue backpressure and shutdown

    INTERNAL = "INTERNAL"             # Bugs, unexpected state
    UNKNOWN = "UNKNOWN"               # Uncategorized errors


@dataclass
class ErrorContext:
    """
    Structured metadata attached to an error.

    Attributes:
        key: Cache / task key the error relates to
        task_id: Queue task identifier
        attempt: 1-based attempt number when the error happened
        metadata: Additional key-value pairs
    """

    key: str | None = None
    task_id: str | None = None
    attempt: int | None = None
    metadata: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for logging."""
        result: dict[str, Any] = {}
        for name in ["key", "task_id", "attempt"]:
            value = getattr(self, name)
            if value is not None:
                result[name] = value
        if self.metadata:
            result.update(self.metadata)
        return result


class TaskCoreError(Exception):
    """
    Base exception for all taskcore errors.

    Subclasses set ``default_category`` and ``default_retryable`` to provide
    sensible defaults for their domain.

    Examples:
        >>> error = TaskCoreError("Something went wrong")
        >>> error.category
        <ErrorCategory.INTERNAL: 'INTERNAL'>
        >>> error.with_context(key="user:42").context.key
        'user:42'
    """

    default_category: ErrorCategory = ErrorCategory.INTERNAL
    default_retryable: bool = False

    def __init__(
        self,
        message: str,
        *,
        category: ErrorCategory | None = None,
        retryable: bool | None = None,
        context: ErrorContext | None = None,
        cause: BaseException | None = None,
    ):
        super().__init__(message)
        self.message = message
        self.category = category or self.default_category
        self.retryable = retryable if retryable is not None else self.default_retryable
        self.context = context or ErrorContext()
        self.cause = cause

        if cause is not None:
            self.__cause__ = cause

    def with_context(self, **kwargs: Any) -> TaskCoreError:
        """
        Add context to this error (fluent API).

        Usage:
            raise QueueFull(8).with_context(key="report:2024-01")
        """
        for name, value in kwargs.items():
            if hasattr(self.context, name) and name != "metadata":
                setattr(self.context, name, value)
            else:
                self.context.metadata[name] = value
        return self

    def to_dict(self) -> dict[str, Any]:
        """Convert error to dictionary for logging/serialization."""
        result: dict[str, Any] = {
            "error_type": self.__class__.__name__,
            "message": self.message,
            "category": self.category.value,
            "retryable": self.retryable,
        }
        context_dict = self.context.to_dict()
        if context_dict:
            result["context"] = context_dict
        if self.cause is not None:
            result["cause"] = repr(self.cause)
        return result

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}({self.message!r}, category={self.category.value})"


# =============================================================================
# HELPERS FOR OPERATIONS
# =============================================================================


class TransientError(TaskCoreError):
    """Temporary error that may succeed on retry."""

    default_category = ErrorCategory.NETWORK
    default_retryable = True


class NetworkError(TransientError):
    """Network-related transient error."""


class ValidationError(TaskCoreError):
    """Invalid input. Retrying the same call cannot succeed."""

    default_category = ErrorCategory.VALIDATION
    default_retryable = False


# =============================================================================
# EXECUTION ERRORS
# =============================================================================


class OperationFailed(TaskCoreError):
    """
    A single attempt's underlying failure, before any retry decision.

    Recorded in the retry history and handed to observers. Its retry flag
    mirrors :func:`is_retryable` on the cause unless given explicitly.
    """

    default_category = ErrorCategory.EXECUTION

    def __init__(
        self,
        cause: BaseException,
        attempt: int | None = None,
        *,
        retryable: bool | None = None,
    ):
        if retryable is None:
            retryable = isinstance(cause, Exception) and is_retryable(cause)
        label = f"attempt {attempt}" if attempt is not None else "operation"
        super().__init__(
            f"{label} failed: {cause!r}",
            retryable=retryable,
            context=ErrorContext(attempt=attempt),
            cause=cause,
        )
        self.attempt = attempt


class RetriesExhausted(TaskCoreError):
    """The retrying executor gave up after ``attempts_made`` attempts."""

    default_category = ErrorCategory.EXECUTION
    default_retryable = False

    def __init__(self, last_cause: BaseException, attempts_made: int):
        super().__init__(
            f"gave up after {attempts_made} attempt(s): {last_cause!r}",
            context=ErrorContext(attempt=attempts_made),
            cause=last_cause,
        )
        self.last_cause = last_cause
        self.attempts_made = attempts_made


class Cancelled(TaskCoreError):
    """Execution aborted via cancellation. Never retried, never cached."""

    default_category = ErrorCategory.CANCELLATION
    default_retryable = False

    def __init__(self, reason: str | None = None):
        super().__init__(f"cancelled: {reason}" if reason else "cancelled")
        self.reason = reason


# =============================================================================
# CAPACITY ERRORS
# =============================================================================


class QueueFull(TaskCoreError):
    """``submit`` rejected because the queue is at ``max_queue_length``."""

    default_category = ErrorCategory.CAPACITY
    default_retryable = False

    def __init__(self, max_queue_length: int, queue: str = "default"):
        super().__init__(f"queue {queue!r} is full ({max_queue_length} waiting)")
        self.max_queue_length = max_queue_length
        self.queue = queue


class QueueClosed(TaskCoreError):
    """``submit`` rejected because the queue is draining or closed."""

    default_category = ErrorCategory.CAPACITY
    default_retryable = False

    def __init__(self, queue: str = "default", state: str = "closed"):
        super().__init__(f"queue {queue!r} is not accepting work ({state})")
        self.queue = queue
        self.state = state


# =============================================================================
# UTILITY FUNCTIONS
# =============================================================================

# Builtin errors from the network layer. Other OSError subclasses
# (FileNotFoundError, PermissionError, ...) are permanent.
TRANSIENT_BUILTIN_ERRORS: tuple[type[BaseException], ...] = (
    ConnectionError,
    TimeoutError,
    socket.gaierror,
    socket.herror,
)


def is_retryable(error: BaseException) -> bool:
    """Check if an error is retryable.

    Cancellation is never retryable. ``TaskCoreError`` subclasses answer
    through their ``retryable`` flag; of the builtin exceptions, only
    connection problems, timeouts and name resolution failures are retryable.
    """
    if isinstance(error, Cancelled):
        return False
    if isinstance(error, TaskCoreError):
        return error.retryable
    return isinstance(error, TRANSIENT_BUILTIN_ERRORS)


def categorize_error(error: BaseException) -> ErrorCategory:
    """Get the category of an error."""
    if isinstance(error, TaskCoreError):
        return error.category
    if isinstance(error, TRANSIENT_BUILTIN_ERRORS):
        return ErrorCategory.NETWORK
    if isinstance(error, (ValueError, TypeError)):
        return ErrorCategory.VALIDATION
    return ErrorCategory.UNKNOWN


__all__ = [
    "ErrorCategory",
    "ErrorContext",
    "TaskCoreError",
    # Helpers
    "TransientError",
    "NetworkError",
    "ValidationError",
    # Taxonomy
    "OperationFailed",
    "RetriesExhausted",
    "Cancelled",
    "QueueFull",
    "QueueClosed",
    # Utilities
    "TRANSIENT_BUILTIN_ERRORS",
    "is_retryable",
    "categorize_error",
]
