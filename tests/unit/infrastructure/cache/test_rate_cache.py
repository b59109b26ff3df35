import asyncio
from unittest.mock import AsyncMock

import pytest

from domain.models.rates import FetchExhausted, FetchSuccess, RateCategory
from infrastructure.cache.rate_cache import FALLBACK_SOURCE, RateCache

FALLBACK = {
    RateCategory.FIAT: {"USD": 1.0, "EUR": 0.92},
    RateCategory.CRYPTO: {"BTC": 85000.0},
}


class FakeClock:
    def __init__(self, now=1000.0):
        self.now = now

    def __call__(self):
        return self.now

    def advance(self, seconds):
        self.now += seconds


def success(rates, source="primary", category=RateCategory.FIAT):
    return FetchSuccess(category=category, rates=rates, source=source)


def exhausted(category=RateCategory.FIAT):
    return FetchExhausted(category=category, attempted=("primary", "secondary"), last_error=RuntimeError("down"))


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def cache(clock):
    return RateCache(FALLBACK, clock=clock)


class TestRateCacheHits:

    @pytest.mark.asyncio
    async def test_second_read_within_ttl_does_not_fetch(self, cache, clock):
        fetch_fn = AsyncMock(return_value=success({"EUR": 0.9, "USD": 1.0}))

        first = await cache.get_or_fetch(RateCategory.FIAT, 30, fetch_fn)
        clock.advance(29)
        second = await cache.get_or_fetch(RateCategory.FIAT, 30, fetch_fn)

        assert fetch_fn.await_count == 1
        assert second is first
        assert second.rates["EUR"] == 0.9
        assert second.source == "primary"
        assert not second.stale

    @pytest.mark.asyncio
    async def test_expired_entry_is_refetched(self, cache, clock):
        fetch_fn = AsyncMock(side_effect=[
            success({"EUR": 0.9}),
            success({"EUR": 0.95}, source="secondary"),
        ])

        await cache.get_or_fetch(RateCategory.FIAT, 30, fetch_fn)
        clock.advance(30)
        entry = await cache.get_or_fetch(RateCategory.FIAT, 30, fetch_fn)

        assert fetch_fn.await_count == 2
        assert entry.rates["EUR"] == 0.95
        assert entry.source == "secondary"

    @pytest.mark.asyncio
    async def test_force_bypasses_fresh_entry(self, cache):
        fetch_fn = AsyncMock(return_value=success({"EUR": 0.9}))

        await cache.get_or_fetch(RateCategory.FIAT, 30, fetch_fn)
        await cache.get_or_fetch(RateCategory.FIAT, 30, fetch_fn, force=True)

        assert fetch_fn.await_count == 2

    @pytest.mark.asyncio
    async def test_categories_are_cached_independently(self, cache):
        fiat_fn = AsyncMock(return_value=success({"EUR": 0.9}))
        crypto_fn = AsyncMock(return_value=success({"BTC": 90000.0}, category=RateCategory.CRYPTO))

        await cache.get_or_fetch(RateCategory.FIAT, 30, fiat_fn)
        entry = await cache.get_or_fetch(RateCategory.CRYPTO, 30, crypto_fn)

        assert crypto_fn.await_count == 1
        assert entry.rates == {"BTC": 90000.0}

    @pytest.mark.asyncio
    async def test_concurrent_misses_share_one_fetch(self, cache):
        async def slow_fetch():
            await asyncio.sleep(0.01)
            return success({"EUR": 0.9})

        fetch_fn = AsyncMock(side_effect=slow_fetch)

        entries = await asyncio.gather(*[
            cache.get_or_fetch(RateCategory.FIAT, 30, fetch_fn) for _ in range(5)
        ])

        assert fetch_fn.await_count == 1
        assert all(entry.rates["EUR"] == 0.9 for entry in entries)

    @pytest.mark.asyncio
    async def test_cached_rates_are_read_only(self, cache):
        fetch_fn = AsyncMock(return_value=success({"EUR": 0.9}))

        entry = await cache.get_or_fetch(RateCategory.FIAT, 30, fetch_fn)

        with pytest.raises(TypeError):
            entry.rates["EUR"] = 1.0

    @pytest.mark.asyncio
    async def test_entry_keeps_24h_changes(self, cache):
        result = FetchSuccess(
            category=RateCategory.CRYPTO, rates={"BTC": 90000.0}, source="coingecko", changes={"BTC": -0.4}
        )

        entry = await cache.get_or_fetch(RateCategory.CRYPTO, 30, AsyncMock(return_value=result))

        assert entry.changes == {"BTC": -0.4}

    def test_is_expired_uses_store_time(self, cache, clock):
        entry = cache.fallback_entry(RateCategory.FIAT)

        clock.advance(29)
        assert not cache.is_expired(entry, 30)
        clock.advance(1)
        assert cache.is_expired(entry, 30)


class TestRateCacheDegraded:

    @pytest.mark.asyncio
    async def test_failure_without_history_serves_fallback_table(self, cache):
        fetch_fn = AsyncMock(return_value=exhausted())

        entry = await cache.get_or_fetch(RateCategory.FIAT, 30, fetch_fn)

        assert entry.stale
        assert entry.source == FALLBACK_SOURCE
        assert dict(entry.rates) == FALLBACK[RateCategory.FIAT]

    @pytest.mark.asyncio
    async def test_failure_serves_previous_entry_marked_stale(self, cache, clock):
        fetch_fn = AsyncMock(side_effect=[success({"EUR": 0.9}), exhausted()])

        await cache.get_or_fetch(RateCategory.FIAT, 30, fetch_fn)
        clock.advance(31)
        entry = await cache.get_or_fetch(RateCategory.FIAT, 30, fetch_fn)

        assert entry.stale
        assert entry.source == "primary"
        assert entry.rates["EUR"] == 0.9

    @pytest.mark.asyncio
    async def test_failed_category_not_retried_within_ttl(self, cache, clock):
        fetch_fn = AsyncMock(return_value=exhausted())

        await cache.get_or_fetch(RateCategory.FIAT, 30, fetch_fn)
        clock.advance(10)
        await cache.get_or_fetch(RateCategory.FIAT, 30, fetch_fn)
        clock.advance(10)
        await cache.get_or_fetch(RateCategory.FIAT, 30, fetch_fn)

        assert fetch_fn.await_count == 1

        clock.advance(10)
        await cache.get_or_fetch(RateCategory.FIAT, 30, fetch_fn)

        assert fetch_fn.await_count == 2

    @pytest.mark.asyncio
    async def test_unexpected_exception_is_degraded(self, cache):
        fetch_fn = AsyncMock(side_effect=RuntimeError("boom"))

        entry = await cache.get_or_fetch(RateCategory.CRYPTO, 30, fetch_fn)

        assert entry.stale
        assert entry.rates["BTC"] == 85000.0

    @pytest.mark.asyncio
    async def test_invalidate_forgets_entry_and_failure(self, cache):
        fetch_fn = AsyncMock(side_effect=[exhausted(), success({"EUR": 0.9})])

        await cache.get_or_fetch(RateCategory.FIAT, 30, fetch_fn)
        cache.invalidate(RateCategory.FIAT)
        entry = await cache.get_or_fetch(RateCategory.FIAT, 30, fetch_fn)

        assert fetch_fn.await_count == 2
        assert not entry.stale
        assert cache.peek(RateCategory.FIAT) is entry

    def test_fallback_crypto_reports_flat_changes(self, cache):
        crypto = cache.fallback_entry(RateCategory.CRYPTO)
        fiat = cache.fallback_entry(RateCategory.FIAT)

        assert crypto.source == FALLBACK_SOURCE
        assert dict(crypto.changes) == {"BTC": 0.0}
        assert dict(fiat.changes) == {}
