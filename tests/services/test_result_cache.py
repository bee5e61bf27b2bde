"""
Tests for the result cache.

Covers:
- Idempotence (compute invoked at most once per key)
- Single-flight under concurrency
- Caller cancellation does not cancel a shared computation
- Failures are not cached
- LRU bound, TTL expiry, eviction, invalidation and statistics
- Invalidation racing an in-flight computation
"""

import asyncio
from decimal import Decimal

import pytest

from formula_kernel.domain.clock import DeterministicClock
from formula_kernel.domain.results import ErrorKind, EvaluationResult
from formula_services.result_cache import CacheKey, ResultCache


def _key(entity_id="acme", fiscal_year=2024, version=None, formula_key="f" * 32):
    return CacheKey(entity_id, fiscal_year, version, formula_key)


class _CountingCompute:
    """Compute function that counts its invocations."""

    def __init__(self, value="100", delay=0.0, error=None):
        self.calls = 0
        self.value = Decimal(value)
        self.delay = delay
        self.error = error

    async def __call__(self) -> EvaluationResult:
        self.calls += 1
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error is not None:
            raise self.error
        return EvaluationResult.ok(self.value)


class TestIdempotence:
    """The same key computes once and returns the identical result."""

    def test_second_call_is_cached(self):
        cache = ResultCache()
        compute = _CountingCompute()

        async def run():
            first = await cache.get_or_compute(_key(), compute)
            second = await cache.get_or_compute(_key(), compute)
            return first, second

        first, second = asyncio.run(run())

        assert compute.calls == 1
        assert first is second

    def test_distinct_keys_compute_separately(self):
        cache = ResultCache()
        compute = _CountingCompute()

        async def run():
            await cache.get_or_compute(_key(fiscal_year=2023), compute)
            await cache.get_or_compute(_key(fiscal_year=2024), compute)
            await cache.get_or_compute(_key(version="v2"), compute)

        asyncio.run(run())

        assert compute.calls == 3
        assert len(cache) == 3

    def test_invalid_results_are_cached(self):
        cache = ResultCache()
        calls = 0

        async def compute():
            nonlocal calls
            calls += 1
            return EvaluationResult.invalid(ErrorKind.DIVISION_BY_ZERO)

        async def run():
            await cache.get_or_compute(_key(), compute)
            await cache.get_or_compute(_key(), compute)

        asyncio.run(run())

        assert calls == 1


class TestSingleFlight:
    """Concurrent callers share one computation."""

    def test_concurrent_callers_share_one_computation(self):
        cache = ResultCache()
        compute = _CountingCompute(delay=0.05)

        async def run():
            return await asyncio.gather(
                cache.get_or_compute(_key(), compute),
                cache.get_or_compute(_key(), compute),
            )

        first, second = asyncio.run(run())

        assert compute.calls == 1
        assert first is second
        assert cache.stats().coalesced == 1

    def test_cancelled_caller_does_not_cancel_computation(self):
        cache = ResultCache()
        compute = _CountingCompute(delay=0.05)

        async def run():
            abandoned = asyncio.ensure_future(cache.get_or_compute(_key(), compute))
            survivor = asyncio.ensure_future(cache.get_or_compute(_key(), compute))
            await asyncio.sleep(0.01)
            abandoned.cancel()
            result = await survivor
            return abandoned, result

        abandoned, result = asyncio.run(run())

        assert abandoned.cancelled()
        assert result.value == Decimal("100")
        assert compute.calls == 1

    def test_abandoned_computation_still_populates_cache(self):
        cache = ResultCache()
        compute = _CountingCompute(delay=0.02)

        async def run():
            caller = asyncio.ensure_future(cache.get_or_compute(_key(), compute))
            await asyncio.sleep(0.005)
            caller.cancel()
            await asyncio.sleep(0.05)

        asyncio.run(run())

        assert cache.get(_key()) is not None
        assert cache.stats().in_flight == 0


class TestFailures:
    """Failed computations reach every waiter and are not cached."""

    def test_failure_reaches_all_waiters(self):
        cache = ResultCache()
        compute = _CountingCompute(delay=0.02, error=RuntimeError("ledger offline"))

        async def run():
            return await asyncio.gather(
                cache.get_or_compute(_key(), compute),
                cache.get_or_compute(_key(), compute),
                return_exceptions=True,
            )

        outcomes = asyncio.run(run())

        assert all(isinstance(o, RuntimeError) for o in outcomes)
        assert compute.calls == 1

    def test_failure_not_cached(self):
        cache = ResultCache()
        failing = _CountingCompute(error=RuntimeError("boom"))
        succeeding = _CountingCompute(value="7")

        async def run():
            with pytest.raises(RuntimeError):
                await cache.get_or_compute(_key(), failing)
            return await cache.get_or_compute(_key(), succeeding)

        result = asyncio.run(run())

        assert result.value == Decimal("7")
        assert len(cache) == 1


class TestBounds:
    """LRU, TTL and explicit eviction."""

    def test_lru_evicts_least_recently_used(self):
        cache = ResultCache(max_entries=2)
        compute = _CountingCompute()

        async def run():
            await cache.get_or_compute(_key(fiscal_year=2021), compute)
            await cache.get_or_compute(_key(fiscal_year=2022), compute)
            await cache.get_or_compute(_key(fiscal_year=2021), compute)
            await cache.get_or_compute(_key(fiscal_year=2023), compute)

        asyncio.run(run())

        assert _key(fiscal_year=2021) in cache
        assert _key(fiscal_year=2022) not in cache
        assert _key(fiscal_year=2023) in cache
        assert cache.stats().evictions == 1

    def test_ttl_expiry(self):
        clock = DeterministicClock()
        cache = ResultCache(ttl_seconds=60, clock=clock)
        compute = _CountingCompute()

        async def run():
            await cache.get_or_compute(_key(), compute)
            clock.advance(59)
            await cache.get_or_compute(_key(), compute)
            clock.advance(1)
            await cache.get_or_compute(_key(), compute)

        asyncio.run(run())

        assert compute.calls == 2

    def test_computed_at_from_clock(self):
        clock = DeterministicClock()
        cache = ResultCache(clock=clock)

        asyncio.run(cache.get_or_compute(_key(), _CountingCompute()))

        assert cache.get(_key()).computed_at == clock.now()

    def test_evict_and_clear(self):
        cache = ResultCache()
        compute = _CountingCompute()

        async def run():
            await cache.get_or_compute(_key(fiscal_year=2023), compute)
            await cache.get_or_compute(_key(fiscal_year=2024), compute)

        asyncio.run(run())

        assert cache.evict(_key(fiscal_year=2023))
        assert not cache.evict(_key(fiscal_year=2023))
        cache.clear()
        assert len(cache) == 0

    def test_invalidate_by_entity(self):
        cache = ResultCache()
        compute = _CountingCompute()

        async def run():
            await cache.get_or_compute(_key(entity_id="a"), compute)
            await cache.get_or_compute(_key(entity_id="a", fiscal_year=2023), compute)
            await cache.get_or_compute(_key(entity_id="b"), compute)

        asyncio.run(run())

        assert cache.invalidate(entity_id="a") == 2
        assert len(cache) == 1

    def test_invalidate_detaches_running_flight(self):
        """A computation started before invalidation is not served afterwards."""
        cache = ResultCache()
        stale = _CountingCompute("1", delay=0.05)
        fresh = _CountingCompute("2")

        async def run():
            before = asyncio.ensure_future(cache.get_or_compute(_key(), stale))
            await asyncio.sleep(0)
            cache.invalidate(entity_id="acme")
            after = await cache.get_or_compute(_key(), fresh)
            return await before, after

        before, after = asyncio.run(run())

        assert before.value == Decimal("1")
        assert after.value == Decimal("2")
        assert fresh.calls == 1
        assert cache.get(_key()).result.value == Decimal("2")

    def test_detached_flight_does_not_overwrite(self):
        """A stale flight finishing last leaves the fresh entry in place."""
        cache = ResultCache()
        stale = _CountingCompute("1", delay=0.05)

        async def run():
            before = asyncio.ensure_future(cache.get_or_compute(_key(), stale))
            await asyncio.sleep(0)
            cache.evict(_key())
            await cache.get_or_compute(_key(), _CountingCompute("2"))
            await before

        asyncio.run(run())

        assert cache.get(_key()).result.value == Decimal("2")
        assert cache.stats().in_flight == 0

    def test_clear_detaches_flights(self):
        cache = ResultCache()

        async def run():
            pending = asyncio.ensure_future(
                cache.get_or_compute(_key(), _CountingCompute(delay=0.02))
            )
            await asyncio.sleep(0)
            cache.clear()
            assert cache.stats().in_flight == 0
            await pending

        asyncio.run(run())

        assert len(cache) == 0

    def test_invalid_bounds_rejected(self):
        with pytest.raises(ValueError):
            ResultCache(max_entries=0)
        with pytest.raises(ValueError):
            ResultCache(ttl_seconds=0)


class TestStats:
    def test_hits_and_misses(self):
        cache = ResultCache()
        compute = _CountingCompute()

        async def run():
            for _ in range(3):
                await cache.get_or_compute(_key(), compute)

        asyncio.run(run())
        stats = cache.stats()

        assert stats.misses == 1
        assert stats.hits == 2
        assert stats.size == 1
        assert stats.hit_rate == pytest.approx(2 / 3)

    def test_empty_hit_rate(self):
        assert ResultCache().stats().hit_rate == 0.0
