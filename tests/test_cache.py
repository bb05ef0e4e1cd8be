import pytest

from zyra.cache import TTLCache
from zyra.errors import FetchError


def counting_producer(values):
    calls = {"n": 0}

    async def produce():
        calls["n"] += 1
        value = values[min(calls["n"], len(values)) - 1]
        if isinstance(value, Exception):
            raise value
        return value

    return produce, calls


@pytest.mark.asyncio
async def test_fresh_entry_is_served_without_calling_producer(clock):
    cache = TTLCache(ttl_sec=60, clock=clock)
    produce, calls = counting_producer(["v1", "v2"])

    assert await cache.fetch_with_cache("k", produce) == "v1"
    clock.advance(59)
    assert await cache.fetch_with_cache("k", produce) == "v1"
    assert calls["n"] == 1


@pytest.mark.asyncio
async def test_entry_expires_at_exactly_ttl(clock):
    cache = TTLCache(ttl_sec=60, clock=clock)
    produce, calls = counting_producer(["v1", "v2"])

    await cache.fetch_with_cache("k", produce)
    clock.advance(60)
    assert await cache.fetch_with_cache("k", produce) == "v2"
    assert calls["n"] == 2


@pytest.mark.asyncio
async def test_failed_refresh_serves_stale_entry(clock):
    cache = TTLCache(ttl_sec=60, clock=clock)
    produce, _ = counting_producer(["v1", FetchError("k", "boom")])

    first = await cache.lookup("k", produce)
    clock.advance(120)
    second = await cache.lookup("k", produce)

    assert second.value == "v1"
    assert second.stale is True
    assert second.stored_at == first.stored_at


@pytest.mark.asyncio
async def test_failure_without_entry_propagates(clock):
    cache = TTLCache(ttl_sec=60, clock=clock)
    produce, _ = counting_producer([FetchError("k", "boom")])

    with pytest.raises(FetchError):
        await cache.fetch_with_cache("k", produce)
    assert "k" not in cache


@pytest.mark.asyncio
async def test_unexpected_producer_error_is_wrapped(clock):
    cache = TTLCache(ttl_sec=60, clock=clock)
    produce, _ = counting_producer([KeyError("data")])

    with pytest.raises(FetchError) as info:
        await cache.fetch_with_cache("protocols", produce)
    assert info.value.resource == "protocols"
    assert isinstance(info.value.__cause__, KeyError)


@pytest.mark.asyncio
async def test_clear_forces_refetch(clock):
    cache = TTLCache(ttl_sec=60, clock=clock)
    produce, calls = counting_producer(["v1", "v2"])

    await cache.fetch_with_cache("k", produce)
    cache.clear()
    assert len(cache) == 0
    assert await cache.fetch_with_cache("k", produce) == "v2"
    assert calls["n"] == 2


@pytest.mark.asyncio
async def test_per_resource_ttl_applies_to_key_prefix(clock):
    cache = TTLCache(ttl_sec=60, ttls={"gas-prices": 10, "token-prices": 300}, clock=clock)

    assert cache.ttl_for("gas-prices") == 10
    assert cache.ttl_for("token-prices:bitcoin,ethereum") == 300
    assert cache.ttl_for("protocols") == 60
    assert cache.ttl_for("protocols", ttl=5) == 5

    produce, calls = counting_producer(["g1", "g2"])
    await cache.fetch_with_cache("gas-prices", produce)
    clock.advance(11)
    assert not cache.is_fresh("gas-prices")
    assert await cache.fetch_with_cache("gas-prices", produce) == "g2"


def test_ttl_must_be_positive():
    with pytest.raises(ValueError):
        TTLCache(ttl_sec=0)
