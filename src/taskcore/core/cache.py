"""
TTL result cache with single-flight deduplication.

Stores the outcome of keyed asynchronous computations for a time-to-live and
guarantees at most one in-flight computation per key: concurrent callers for
the same key join the pending computation instead of starting their own.

Manifesto:
    A cache in front of slow I/O is only half the job. Without in-flight
    deduplication, N concurrent misses for the same key fire N identical
    requests at the upstream (the thundering herd). ``TTLCache`` makes the
    first caller compute and everyone else wait for that result.

    - **Single-flight:** One PENDING entry per key, joined by later callers
    - **Lazy expiry:** Checked on read, no background sweeper
    - **No negative caching:** Failures and cancellations leave the key
      re-computable
    - **Optional LRU bound:** Only FRESH entries are eviction candidates

Architecture:
    ::

        get_or_compute(key, ttl, compute)
          │
          ├── FRESH and now < expires_at ──► return value        (hit)
          ├── PENDING ─────────────────────► await waiter future (join)
          └── absent / expired ───────────► new PENDING entry   (miss)
                                               │
                                        compute() once
                                               │
                      ┌────────────────────────┼──────────────────────┐
                   success                  failure              cancellation
                 FRESH, expires_at       remove entry            remove entry
                 resolve waiters         reject waiters          waiters get Cancelled

        Entry states:  PENDING ──► FRESH ──(now >= expires_at)──► STALE
                          └──► removed (failure / cancellation)

Concurrency:
    All mutation of the entry map happens in synchronous code between
    ``await`` points on one event loop, so the "one PENDING entry per key"
    check and the insert are atomic with respect to other coroutines.

Examples:
    >>> cache = TTLCache(default_ttl_seconds=30, capacity=1000)
    >>> profile = await cache.get_or_compute("user:42", 30, lambda: fetch_user(42))
    >>> cache.get("user:42")
    {'id': 42, ...}

Performance:
    - Hit: O(1), no suspension
    - Eviction: O(n) worst case scan for the least-recently-used FRESH entry

Tags:
    cache, ttl, single-flight, lru, asyncio, taskcore
"""

from __future__ import annotations

import asyncio
import time
from collections import OrderedDict
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Generic, TypeVar

from taskcore.core.cancellation import CancellationToken, guarded
from taskcore.core.errors import Cancelled
from taskcore.core.logging import get_logger

logger = get_logger(__name__)

T = TypeVar("T")


class EntryState(str, Enum):
    """Lifecycle of a cache entry."""

    PENDING = "pending"    # compute() in flight
    FRESH = "fresh"        # value stored, not yet expired
    STALE = "stale"        # expired, about to be replaced


@dataclass
class CacheEntry(Generic[T]):
    """A keyed slot in the cache.

    ``value`` and ``expires_at`` are only meaningful once the entry is FRESH.
    ``waiters`` holds one future per caller that joined a PENDING entry.
    """

    key: str
    state: EntryState = EntryState.PENDING
    value: T | None = None
    expires_at: float | None = None
    created_at: float = 0.0
    waiters: list[asyncio.Future[Any]] = field(default_factory=list)

    def is_fresh(self, now: float) -> bool:
        return (
            self.state == EntryState.FRESH
            and self.expires_at is not None
            and now < self.expires_at
        )


@dataclass
class CacheStats:
    """Counters for cache monitoring."""

    hits: int = 0
    misses: int = 0
    joins: int = 0
    failures: int = 0
    cancellations: int = 0
    expirations: int = 0
    evictions: int = 0

    @property
    def hit_rate(self) -> float:
        """Share of lookups served without computing (hits + joins), in percent."""
        total = self.hits + self.joins + self.misses
        if total == 0:
            return 0.0
        return (self.hits + self.joins) / total * 100


class TTLCache:
    """In-memory TTL cache with single-flight ``get_or_compute``.

    Attributes:
        default_ttl_seconds: TTL used when a call passes ``ttl=None``.
        capacity: Maximum number of FRESH entries (``None`` → unbounded).

    Example:
        cache = TTLCache(default_ttl_seconds=60)
        rates = await cache.get_or_compute("fx:EURUSD", 5.0, fetch_rates)
    """

    def __init__(
        self,
        *,
        default_ttl_seconds: float = 60.0,
        capacity: int | None = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        """Initialize the cache.

        Args:
            default_ttl_seconds: Default TTL for entries.
            capacity: Max FRESH entries before LRU eviction.
            clock: Monotonic time source in seconds; injectable for tests.
        """
        if capacity is not None and capacity < 1:
            raise ValueError(f"capacity must be >= 1, got {capacity}")
        if default_ttl_seconds < 0:
            raise ValueError(f"default_ttl_seconds must be >= 0, got {default_ttl_seconds}")
        self._entries: OrderedDict[str, CacheEntry[Any]] = OrderedDict()
        self._default_ttl = default_ttl_seconds
        self._capacity = capacity
        self._clock = clock
        self._stats = CacheStats()

    @classmethod
    def from_settings(cls, settings: Any) -> TTLCache:
        return cls(
            default_ttl_seconds=settings.default_ttl_seconds,
            capacity=settings.cache_capacity,
        )

    @property
    def stats(self) -> CacheStats:
        return self._stats

    @property
    def capacity(self) -> int | None:
        return self._capacity

    # ── Single-flight lookup ─────────────────────────────────────────

    async def get_or_compute(
        self,
        key: str,
        ttl: float | None,
        compute: Callable[[], Awaitable[T]],
        *,
        token: CancellationToken | None = None,
    ) -> T:
        """Return the cached value for ``key`` or compute it exactly once.

        Args:
            key: Cache key.
            ttl: Seconds the computed value stays fresh (``None`` → default).
            compute: Zero-argument async callable producing the value.
            token: Optional cancellation token for this caller.

        Returns:
            The fresh cached value, the joined in-flight result, or the newly
            computed value.

        Raises:
            Whatever ``compute`` raised (also delivered to every joined caller),
            or :class:`Cancelled`.
        """
        ttl = self._default_ttl if ttl is None else ttl
        if ttl < 0:
            raise ValueError(f"ttl must be >= 0, got {ttl}")
        if token is not None:
            token.raise_if_cancelled()

        now = self._clock()
        entry = self._entries.get(key)

        if entry is not None and entry.state == EntryState.FRESH:
            if entry.is_fresh(now):
                self._entries.move_to_end(key)
                self._stats.hits += 1
                return entry.value
            # Logical transition only; the entry is replaced below.
            entry.state = EntryState.STALE
            self._stats.expirations += 1
            logger.debug("cache.expired", key=key)

        if entry is not None and entry.state == EntryState.PENDING:
            return await self._join(entry, token)

        return await self._compute(key, ttl, compute, token)

    async def _join(self, entry: CacheEntry[Any], token: CancellationToken | None) -> Any:
        waiter: asyncio.Future[Any] = asyncio.get_running_loop().create_future()
        entry.waiters.append(waiter)
        self._stats.joins += 1
        logger.debug("cache.joined", key=entry.key, waiters=len(entry.waiters))
        try:
            return await guarded(waiter, token)
        finally:
            if waiter in entry.waiters:
                entry.waiters.remove(waiter)

    async def _compute(
        self,
        key: str,
        ttl: float,
        compute: Callable[[], Awaitable[T]],
        token: CancellationToken | None,
    ) -> T:
        entry: CacheEntry[T] = CacheEntry(key=key, created_at=self._clock())
        self._entries[key] = entry
        self._entries.move_to_end(key)
        self._stats.misses += 1

        try:
            value = await guarded(compute(), token)
        except (Cancelled, asyncio.CancelledError) as exc:
            self._stats.cancellations += 1
            reason = exc.reason if isinstance(exc, Cancelled) else "computing caller cancelled"
            self._discard(entry, Cancelled(reason))
            logger.info("cache.compute_cancelled", key=key, waiters=len(entry.waiters))
            raise
        except Exception as exc:
            self._stats.failures += 1
            self._discard(entry, exc)
            logger.info(
                "cache.compute_failed",
                key=key,
                error=repr(exc),
                waiters=len(entry.waiters),
            )
            raise

        entry.value = value
        entry.expires_at = self._clock() + ttl
        entry.state = EntryState.FRESH
        waiters, entry.waiters = entry.waiters, []
        for waiter in waiters:
            if not waiter.done():
                waiter.set_result(value)
        self._enforce_capacity(keep=key)
        logger.debug("cache.stored", key=key, ttl=ttl, waiters=len(waiters))
        return value

    def _discard(self, entry: CacheEntry[Any], error: BaseException) -> None:
        """Remove a PENDING entry and reject its waiters."""
        if self._entries.get(entry.key) is entry:
            del self._entries[entry.key]
        waiters, entry.waiters = entry.waiters, []
        for waiter in waiters:
            if not waiter.done():
                waiter.set_exception(error)

    def _enforce_capacity(self, keep: str) -> None:
        if self._capacity is None:
            return
        fresh = [k for k, e in self._entries.items() if e.state == EntryState.FRESH]
        excess = len(fresh) - self._capacity
        # OrderedDict order is least-recently-used first.
        for lru_key in fresh:
            if excess <= 0:
                break
            if lru_key == keep:
                continue
            del self._entries[lru_key]
            self._stats.evictions += 1
            excess -= 1
            logger.debug("cache.evicted", key=lru_key)

    # ── Plain accessors ──────────────────────────────────────────────

    def get(self, key: str) -> Any | None:
        """Fresh value for ``key`` or ``None``. Never computes or suspends."""
        entry = self._entries.get(key)
        if entry is None or not entry.is_fresh(self._clock()):
            return None
        self._entries.move_to_end(key)
        return entry.value

    def exists(self, key: str) -> bool:
        """True if ``key`` holds a fresh value."""
        entry = self._entries.get(key)
        return entry is not None and entry.is_fresh(self._clock())

    def state_of(self, key: str) -> EntryState | None:
        """Current state of ``key`` with expiry applied, or ``None`` if absent."""
        entry = self._entries.get(key)
        if entry is None:
            return None
        if entry.state == EntryState.FRESH and not entry.is_fresh(self._clock()):
            return EntryState.STALE
        return entry.state

    def invalidate(self, key: str) -> bool:
        """Drop a stored value. A PENDING computation is left to finish."""
        entry = self._entries.get(key)
        if entry is None or entry.state == EntryState.PENDING:
            return False
        del self._entries[key]
        return True

    def clear(self) -> None:
        """Drop every stored value. PENDING computations are untouched."""
        for key in [k for k, e in self._entries.items() if e.state != EntryState.PENDING]:
            del self._entries[key]

    def pending_keys(self) -> list[str]:
        """Keys with a computation in flight."""
        return [k for k, e in self._entries.items() if e.state == EntryState.PENDING]

    def size(self) -> int:
        """Number of entries, PENDING ones included."""
        return len(self._entries)

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, key: object) -> bool:
        return isinstance(key, str) and self.exists(key)


__all__ = [
    "EntryState",
    "CacheEntry",
    "CacheStats",
    "TTLCache",
]
