import asyncio
from datetime import date

import pytest

from lottery_forecast.ml.inference.cache import PredictionCache, make_key


class FakeClock:
    def __init__(self):
        self.now = 1000.0

    def __call__(self):
        return self.now


@pytest.fixture
def clock():
    return FakeClock()


def test_key_is_stable_and_prefixed():
    a = make_key("ssq", 3, date(2024, 5, 1), {"b": 1, "a": [1, 2]})
    b = make_key("ssq", 3, date(2024, 5, 1), {"a": [1, 2], "b": 1})
    assert a == b
    assert a.startswith("ssq:3:2024-05-01:")
    assert make_key("ssq", 3, None).startswith("ssq:3:-:")
    assert a != make_key("ssq", 3, date(2024, 5, 1), {"a": [1, 2], "b": 2})


def test_ttl_per_cache_type(clock):
    cache = PredictionCache(ttl_by_type={"prediction": 10.0, "model": 100.0}, clock=clock)
    cache.set("p", 1, cache_type="prediction")
    cache.set("m", 2, cache_type="model")
    clock.now += 50
    assert cache.get("p") is None
    assert cache.get("m") == 2
    assert cache.stats()["expirations"] == 1


def test_eviction_prefers_low_priority_then_lru(clock):
    cache = PredictionCache(max_entries=2, clock=clock)
    cache.set("model", "m", cache_type="model", priority=1)
    clock.now += 1
    cache.set("old", "o")
    clock.now += 1
    cache.set("new", "n")
    assert "model" in cache
    assert "old" not in cache
    assert "new" in cache
    assert cache.stats()["evictions"] == 1


async def test_single_flight(clock):
    cache = PredictionCache(clock=clock)
    calls = 0
    release = asyncio.Event()

    async def compute():
        nonlocal calls
        calls += 1
        await release.wait()
        return "value"

    waiters = [asyncio.create_task(cache.get_or_compute("k", compute)) for _ in range(5)]
    await asyncio.sleep(0)
    assert cache.stats()["inflight"] == 1
    release.set()
    assert await asyncio.gather(*waiters) == ["value"] * 5
    assert calls == 1
    assert await cache.get_or_compute("k", compute) == "value"
    assert calls == 1


async def test_failures_are_not_cached(clock):
    cache = PredictionCache(clock=clock)
    attempts = 0

    async def flaky():
        nonlocal attempts
        attempts += 1
        if attempts == 1:
            raise RuntimeError("boom")
        return 42

    with pytest.raises(RuntimeError):
        await cache.get_or_compute("k", flaky)
    assert "k" not in cache
    assert await cache.get_or_compute("k", flaky) == 42
    assert attempts == 2


async def test_waiters_share_the_failure(clock):
    cache = PredictionCache(clock=clock)
    release = asyncio.Event()

    async def failing():
        await release.wait()
        raise ValueError("bad")

    first = asyncio.create_task(cache.get_or_compute("k", failing))
    await asyncio.sleep(0)
    second = asyncio.create_task(cache.get_or_compute("k", failing))
    await asyncio.sleep(0)
    release.set()
    results = await asyncio.gather(first, second, return_exceptions=True)
    assert all(isinstance(r, ValueError) for r in results)


def test_invalidate_lottery(clock):
    cache = PredictionCache(clock=clock)
    cache.set(make_key("ssq", 1, None), 1)
    cache.set(make_key("ssq", 2, None), 2)
    cache.set(make_key("dlt", 1, None), 3)
    assert cache.invalidate_lottery("ssq") == 2
    assert cache.stats()["size"] == 1


def test_purge_expired_and_stats(clock):
    cache = PredictionCache(default_ttl=5.0, ttl_by_type={}, clock=clock)
    cache.set("a", 1)
    cache.set("b", 2, ttl=100.0)
    assert cache.get("a") == 1
    assert cache.get("missing") is None
    clock.now += 10
    assert cache.purge_expired() == 1
    stats = cache.stats()
    assert stats["size"] == 1
    assert stats["hits"] == 1
    assert stats["misses"] == 1
    assert stats["hit_rate"] == 0.5


async def test_cancelling_the_first_caller_keeps_the_computation(clock):
    cache = PredictionCache(clock=clock)
    calls = 0
    release = asyncio.Event()

    async def compute():
        nonlocal calls
        calls += 1
        await release.wait()
        return "value"

    first = asyncio.create_task(cache.get_or_compute("k", compute))
    await asyncio.sleep(0)
    second = asyncio.create_task(cache.get_or_compute("k", compute))
    await asyncio.sleep(0)

    first.cancel()
    with pytest.raises(asyncio.CancelledError):
        await first
    release.set()

    assert await second == "value"
    assert calls == 1
    assert "k" in cache
    assert cache.stats()["inflight"] == 0
