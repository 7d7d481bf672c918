"""
Tests for taskcore.core.cache module.

Covers:
- TTL hits and lazy expiry (manual clock)
- Single-flight joining of in-flight computations
- Failures and cancellations are never cached
- LRU capacity bound (FRESH entries only)
- Plain accessors: get / exists / invalidate / clear / stats
"""

import asyncio

import pytest

from taskcore.core.cache import EntryState, TTLCache
from taskcore.core.cancellation import CancellationToken
from taskcore.core.errors import Cancelled


class Counter:
    """Async compute function that counts calls and can be held on a gate."""

    def __init__(self, value="v", gate: asyncio.Event | None = None, error: Exception | None = None):
        self.calls = 0
        self.value = value
        self.gate = gate
        self.error = error

    async def __call__(self):
        self.calls += 1
        if self.gate is not None:
            await self.gate.wait()
        if self.error is not None:
            raise self.error
        return f"{self.value}{self.calls}"


class TestTTL:
    """TTL hits and expiry."""

    @pytest.mark.asyncio
    async def test_hit_before_ttl(self, clock):
        cache = TTLCache(clock=clock)
        compute = Counter()
        assert await cache.get_or_compute("k", 10, compute) == "v1"
        clock.advance(9.999)
        assert await cache.get_or_compute("k", 10, compute) == "v1"
        assert compute.calls == 1
        assert cache.stats.hits == 1

    @pytest.mark.asyncio
    async def test_recompute_at_ttl(self, clock):
        cache = TTLCache(clock=clock)
        compute = Counter()
        await cache.get_or_compute("k", 10, compute)
        clock.advance(10)
        assert await cache.get_or_compute("k", 10, compute) == "v2"
        assert compute.calls == 2
        assert cache.stats.expirations == 1

    @pytest.mark.asyncio
    async def test_expired_entry_reads_as_stale(self, clock):
        cache = TTLCache(clock=clock)
        await cache.get_or_compute("k", 5, Counter())
        assert cache.state_of("k") == EntryState.FRESH
        clock.advance(6)
        assert cache.state_of("k") == EntryState.STALE
        assert cache.get("k") is None
        assert not cache.exists("k")

    @pytest.mark.asyncio
    async def test_default_ttl_used_when_none(self, clock):
        cache = TTLCache(default_ttl_seconds=2, clock=clock)
        compute = Counter()
        await cache.get_or_compute("k", None, compute)
        clock.advance(1)
        await cache.get_or_compute("k", None, compute)
        clock.advance(1)
        await cache.get_or_compute("k", None, compute)
        assert compute.calls == 2

    @pytest.mark.asyncio
    async def test_zero_ttl_is_immediately_stale(self, clock):
        cache = TTLCache(clock=clock)
        compute = Counter()
        assert await cache.get_or_compute("k", 0, compute) == "v1"
        assert await cache.get_or_compute("k", 0, compute) == "v2"

    @pytest.mark.asyncio
    async def test_negative_ttl_rejected(self):
        cache = TTLCache()
        with pytest.raises(ValueError):
            await cache.get_or_compute("k", -1, Counter())

    def test_invalid_construction(self):
        with pytest.raises(ValueError):
            TTLCache(capacity=0)
        with pytest.raises(ValueError):
            TTLCache(default_ttl_seconds=-5)


class TestSingleFlight:
    """At most one computation per key."""

    @pytest.mark.asyncio
    async def test_concurrent_callers_share_one_computation(self, settle):
        cache = TTLCache()
        gate = asyncio.Event()
        compute = Counter(gate=gate)

        callers = [asyncio.create_task(cache.get_or_compute("k", 60, compute)) for _ in range(5)]
        await settle()
        assert cache.pending_keys() == ["k"]
        gate.set()
        results = await asyncio.gather(*callers)

        assert compute.calls == 1
        assert results == ["v1"] * 5
        assert cache.stats.misses == 1
        assert cache.stats.joins == 4

    @pytest.mark.asyncio
    async def test_second_call_joins_in_flight(self, clock, settle):
        """get_or_compute('x', 100ms) at t=0 and t=50ms with a 20ms compute."""
        cache = TTLCache(clock=clock)
        gate = asyncio.Event()
        compute = Counter(gate=gate)

        first = asyncio.create_task(cache.get_or_compute("x", 0.1, compute))
        await settle()
        clock.advance(0.005)
        second = asyncio.create_task(cache.get_or_compute("x", 0.1, compute))
        await settle()
        clock.advance(0.015)
        gate.set()
        assert await first == await second == "v1"

        clock.advance(0.030)  # t = 50ms
        assert await cache.get_or_compute("x", 0.1, compute) == "v1"
        assert compute.calls == 1

    @pytest.mark.asyncio
    async def test_failure_rejects_all_waiters_and_is_not_cached(self, settle):
        cache = TTLCache()
        gate = asyncio.Event()
        error = ConnectionError("upstream down")
        failing = Counter(gate=gate, error=error)

        callers = [asyncio.create_task(cache.get_or_compute("k", 60, failing)) for _ in range(3)]
        await settle()
        gate.set()
        outcomes = await asyncio.gather(*callers, return_exceptions=True)

        assert failing.calls == 1
        assert all(o is error for o in outcomes)
        assert cache.state_of("k") is None
        assert cache.stats.failures == 1

        assert await cache.get_or_compute("k", 60, Counter()) == "v1"

    @pytest.mark.asyncio
    async def test_distinct_keys_compute_independently(self):
        cache = TTLCache()
        a, b = Counter("a"), Counter("b")
        assert await cache.get_or_compute("a", 60, a) == "a1"
        assert await cache.get_or_compute("b", 60, b) == "b1"
        assert a.calls == b.calls == 1


class TestCancellation:
    """Cancelled computations never leave an entry behind."""

    @pytest.mark.asyncio
    async def test_leader_token_cancel_discards_entry(self, settle):
        cache = TTLCache()
        token = CancellationToken()
        compute = Counter(gate=asyncio.Event())

        leader = asyncio.create_task(cache.get_or_compute("k", 60, compute, token=token))
        await settle()
        waiter = asyncio.create_task(cache.get_or_compute("k", 60, compute))
        await settle()

        token.cancel("caller gave up")
        with pytest.raises(Cancelled):
            await leader
        with pytest.raises(Cancelled):
            await waiter

        assert cache.state_of("k") is None
        assert cache.stats.cancellations == 1
        assert await cache.get_or_compute("k", 60, Counter("fresh")) == "fresh1"

    @pytest.mark.asyncio
    async def test_leader_task_cancel_discards_entry(self, settle):
        cache = TTLCache()
        compute = Counter(gate=asyncio.Event())

        leader = asyncio.create_task(cache.get_or_compute("k", 60, compute))
        await settle()
        leader.cancel()
        with pytest.raises(asyncio.CancelledError):
            await leader

        assert cache.state_of("k") is None
        assert cache.pending_keys() == []

    @pytest.mark.asyncio
    async def test_waiter_cancel_detaches_only_the_waiter(self, settle):
        cache = TTLCache()
        gate = asyncio.Event()
        compute = Counter(gate=gate)
        token = CancellationToken()

        leader = asyncio.create_task(cache.get_or_compute("k", 60, compute))
        await settle()
        waiter = asyncio.create_task(cache.get_or_compute("k", 60, compute, token=token))
        await settle()

        token.cancel()
        with pytest.raises(Cancelled):
            await waiter

        gate.set()
        assert await leader == "v1"
        assert cache.get("k") == "v1"

    @pytest.mark.asyncio
    async def test_pre_cancelled_token_never_computes(self):
        cache = TTLCache()
        token = CancellationToken()
        token.cancel()
        compute = Counter()
        with pytest.raises(Cancelled):
            await cache.get_or_compute("k", 60, compute, token=token)
        assert compute.calls == 0
        assert len(cache) == 0


class TestCapacity:
    """LRU bound over FRESH entries."""

    @pytest.mark.asyncio
    async def test_evicts_least_recently_used(self):
        cache = TTLCache(capacity=2)
        await cache.get_or_compute("a", 60, Counter("a"))
        await cache.get_or_compute("b", 60, Counter("b"))
        await cache.get_or_compute("a", 60, Counter("never"))  # touch a
        await cache.get_or_compute("c", 60, Counter("c"))

        assert cache.exists("a")
        assert not cache.exists("b")
        assert cache.exists("c")
        assert cache.stats.evictions == 1

    @pytest.mark.asyncio
    async def test_pending_entries_are_never_evicted(self, settle):
        cache = TTLCache(capacity=1)
        gate = asyncio.Event()
        pending = asyncio.create_task(cache.get_or_compute("p", 60, Counter("p", gate=gate)))
        await settle()

        await cache.get_or_compute("a", 60, Counter("a"))
        await cache.get_or_compute("b", 60, Counter("b"))

        assert cache.pending_keys() == ["p"]
        assert not cache.exists("a")
        assert cache.exists("b")

        gate.set()
        assert await pending == "p1"
        assert cache.exists("p")
        assert not cache.exists("b")


class TestAccessors:
    @pytest.mark.asyncio
    async def test_get_and_exists(self):
        cache = TTLCache()
        assert cache.get("k") is None
        await cache.get_or_compute("k", 60, Counter())
        assert cache.get("k") == "v1"
        assert "k" in cache
        assert cache.size() == 1

    @pytest.mark.asyncio
    async def test_invalidate_forces_recompute(self):
        cache = TTLCache()
        compute = Counter()
        await cache.get_or_compute("k", 60, compute)
        assert cache.invalidate("k") is True
        assert cache.invalidate("k") is False
        assert await cache.get_or_compute("k", 60, compute) == "v2"

    @pytest.mark.asyncio
    async def test_invalidate_and_clear_leave_pending_alone(self, settle):
        cache = TTLCache()
        gate = asyncio.Event()
        pending = asyncio.create_task(cache.get_or_compute("p", 60, Counter(gate=gate)))
        await cache.get_or_compute("a", 60, Counter())
        await settle()

        assert cache.invalidate("p") is False
        cache.clear()
        assert cache.pending_keys() == ["p"]
        assert not cache.exists("a")

        gate.set()
        await pending
        assert cache.exists("p")

    @pytest.mark.asyncio
    async def test_hit_rate(self):
        cache = TTLCache()
        assert cache.stats.hit_rate == 0.0
        await cache.get_or_compute("k", 60, Counter())
        await cache.get_or_compute("k", 60, Counter())
        assert cache.stats.hit_rate == 50.0
