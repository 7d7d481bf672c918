"""
Result envelope for consistent success/failure handling.

``TaskRunner.run`` raises on failure, which is the right shape for a single
call. When many keyed operations are fanned out together, one failure should
not hide the other outcomes, so ``TaskRunner.run_many`` collects each outcome
as ``Ok[T]`` or ``Err[T]`` instead.

Architecture:
    ::

        ┌─────────────────────────────────────────────────────────────┐
        │                     Result[T]                                │
        ├─────────────────┬─────────────────┬─────────────────────────┤
        │     Ok[T]       │     Err[T]      │     Utilities           │
        ├─────────────────┼─────────────────┼─────────────────────────┤
        │ • value: T      │ • error: Exc    │ • try_result_async()    │
        │ • unwrap()      │ • unwrap_or()   │ • partition_results()   │
        │ • to_dict()     │ • to_dict()     │                         │
        └─────────────────┴─────────────────┴─────────────────────────┘

Examples:
    >>> from taskcore.core.result import Ok, Err
    >>> Ok(10).unwrap()
    10
    >>> Err(ValueError("oops")).unwrap_or(0)
    0

Guardrails:
    ❌ DON'T: Use unwrap() without checking is_ok() first
    ✅ DO: Use unwrap_or() or pattern matching for safe extraction
"""

from __future__ import annotations

from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Any, Generic, TypeVar

from taskcore.core.errors import TaskCoreError

T = TypeVar("T")


@dataclass(frozen=True, slots=True)
class Ok(Generic[T]):
    """Successful result containing a value."""

    value: T

    def is_ok(self) -> bool:
        return True

    def is_err(self) -> bool:
        return False

    def unwrap(self) -> T:
        """Get the value. Safe for Ok."""
        return self.value

    def unwrap_or(self, default: T) -> T:
        """Get value or default (always returns value for Ok)."""
        return self.value

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for serialization."""
        return {"ok": True, "value": self.value}

    def __repr__(self) -> str:
        return f"Ok({self.value!r})"


@dataclass(frozen=True, slots=True)
class Err(Generic[T]):
    """Failed result containing an error."""

    error: Exception

    def is_ok(self) -> bool:
        return False

    def is_err(self) -> bool:
        return True

    def unwrap(self) -> T:
        """Raise the error. Use only when you're sure it's Ok."""
        raise self.error

    def unwrap_or(self, default: T) -> T:
        """Get default since this is Err."""
        return default

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for serialization."""
        if isinstance(self.error, TaskCoreError):
            return {"ok": False, "error": self.error.to_dict()}
        return {
            "ok": False,
            "error": {
                "error_type": type(self.error).__name__,
                "message": str(self.error),
            },
        }

    def __repr__(self) -> str:
        return f"Err({self.error!r})"


Result = Ok[T] | Err[T]


async def try_result_async(f: Callable[[], Awaitable[T]]) -> Result[T]:
    """Await ``f()`` and capture the outcome as a Result.

    ``asyncio.CancelledError`` is a ``BaseException`` and is not captured;
    task cancellation keeps propagating.
    """
    try:
        return Ok(await f())
    except Exception as e:
        return Err(e)


def partition_results(
    results: list[Result[T]],
) -> tuple[list[T], list[Exception]]:
    """Partition results into successful values and errors."""
    values: list[T] = []
    errors: list[Exception] = []
    for result in results:
        if isinstance(result, Ok):
            values.append(result.value)
        else:
            errors.append(result.error)
    return values, errors


__all__ = [
    "Ok",
    "Err",
    "Result",
    "try_result_async",
    "partition_results",
]
