"""Backoff policies: delay sequences between retry attempts.

Example:
    >>> from taskcore.execution.backoff import ExponentialBackoff
    >>>
    >>> policy = ExponentialBackoff(base_delay=0.5, max_delay=30.0, seed=7)
    >>> for attempt in range(4):
    ...     delay = policy.next_delay(attempt)
    ...     print(f"Retry {attempt}: wait {delay:.2f}s")
"""

from __future__ import annotations

import random
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any


class BackoffPolicy(ABC):
    """Abstract base for backoff policies."""

    @abstractmethod
    def next_delay(self, attempt: int) -> float:
        """Calculate delay before the next retry.

        Args:
            attempt: Zero-based retry number (0 = first retry)

        Returns:
            Non-negative delay in seconds
        """
        ...


def _check_attempt(attempt: int) -> None:
    if attempt < 0:
        raise ValueError(f"attempt must be >= 0, got {attempt}")


@dataclass
class ExponentialBackoff(BackoffPolicy):
    """Exponential backoff with multiplicative jitter.

    Delay = min(base_delay * (multiplier ** attempt), max_delay) * U(0.5, 1.0)

    The jitter factor spreads retries from many callers so they do not hit a
    recovering upstream at the same instant. Passing ``seed`` (or an explicit
    ``rng``) makes the sequence reproducible.

    Attributes:
        base_delay: Delay for the first retry, before jitter
        max_delay: Cap applied before jitter
        multiplier: Exponential growth factor (default: 2)
        jitter: Apply the U(0.5, 1.0) factor
        seed: Seed for a private ``random.Random``
        rng: Explicit random source; wins over ``seed``
    """

    base_delay: float = 0.1
    max_delay: float = 10.0
    multiplier: float = 2.0
    jitter: bool = True
    seed: int | None = None
    rng: random.Random | None = field(default=None, repr=False)

    def __post_init__(self) -> None:
        if self.base_delay < 0 or self.max_delay < 0:
            raise ValueError("delays must be non-negative")
        if self.rng is None:
            self.rng = random.Random(self.seed)

    @classmethod
    def from_settings(cls, settings: Any) -> ExponentialBackoff:
        return cls(
            base_delay=settings.backoff_base_delay,
            max_delay=settings.backoff_max_delay,
            seed=settings.backoff_seed,
        )

    def next_delay(self, attempt: int) -> float:
        """Calculate exponential backoff delay."""
        _check_attempt(attempt)
        delay = min(self.base_delay * (self.multiplier ** attempt), self.max_delay)
        if self.jitter:
            delay *= self.rng.uniform(0.5, 1.0)
        return max(0.0, delay)


@dataclass
class LinearBackoff(BackoffPolicy):
    """Linear backoff.

    Delay = min(base_delay + (increment * attempt), max_delay)
    """

    base_delay: float = 0.1
    increment: float = 0.1
    max_delay: float = 5.0

    def next_delay(self, attempt: int) -> float:
        """Calculate linear backoff delay."""
        _check_attempt(attempt)
        return min(self.base_delay + (self.increment * attempt), self.max_delay)


@dataclass
class ConstantBackoff(BackoffPolicy):
    """Constant delay between retries."""

    delay: float = 0.1

    def next_delay(self, attempt: int) -> float:
        """Return constant delay."""
        _check_attempt(attempt)
        return self.delay


__all__ = [
    "BackoffPolicy",
    "ExponentialBackoff",
    "LinearBackoff",
    "ConstantBackoff",
]
