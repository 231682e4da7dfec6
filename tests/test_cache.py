import asyncio
from datetime import timedelta

import pytest
from redis.exceptions import ConnectionError as RedisConnectionError

from livescan.config.constants import RefreshConstants
from livescan.core.error_handling import StoreError
from livescan.models.snapshot import CachedSnapshot, RefreshMeta
from livescan.services.cache import CacheStore, InMemoryStore, RedisStore
from tests.factories import FakeClock


class ManualTime:
    def __init__(self):
        self.value = 1000.0

    def __call__(self):
        return self.value


def _snapshot(clock):
    now = clock()
    meta = RefreshMeta(started_at=now, next_refresh=now + timedelta(seconds=60), match_count=0)
    return CachedSnapshot(events=[], meta=meta, stored_at=now)


def test_lock_is_mutually_exclusive_and_token_checked():
    store = InMemoryStore()

    async def run():
        first = await store.try_acquire_lock("lock", ttl=30)
        second = await store.try_acquire_lock("lock", ttl=30)
        wrong_release = await store.release_lock("lock", "not-the-token")
        still_held = await store.try_acquire_lock("lock", ttl=30)
        released = await store.release_lock("lock", first)
        third = await store.try_acquire_lock("lock", ttl=30)
        return first, second, wrong_release, still_held, released, third

    first, second, wrong_release, still_held, released, third = asyncio.run(run())

    assert first is not None
    assert second is None
    assert not wrong_release
    assert still_held is None
    assert released
    assert third is not None and third != first


def test_concurrent_acquire_has_single_winner():
    store = InMemoryStore()

    async def run():
        return await asyncio.gather(*(store.try_acquire_lock("lock", ttl=30) for _ in range(20)))

    tokens = asyncio.run(run())

    assert sum(token is not None for token in tokens) == 1


def test_lock_expires_after_ttl():
    clock = ManualTime()
    store = InMemoryStore(clock=clock)

    async def run():
        token = await store.try_acquire_lock("lock", ttl=45)
        clock.value += 46
        retaken = await store.try_acquire_lock("lock", ttl=45)
        stale_release = await store.release_lock("lock", token)
        return retaken, stale_release

    retaken, stale_release = asyncio.run(run())

    assert retaken is not None
    # 만료된 소유자는 새 소유자의 락을 해제할 수 없다
    assert not stale_release


def test_snapshot_round_trip_and_age():
    clock = FakeClock()
    cache = CacheStore(InMemoryStore(), clock=clock)

    async def run():
        assert await cache.read_snapshot() is None
        await cache.write_snapshot(_snapshot(clock))
        return await cache.read_snapshot()

    snapshot = asyncio.run(run())
    clock.advance(20)

    assert snapshot.meta.match_count == 0
    assert snapshot.age_seconds(clock()) == 20


def test_unreadable_snapshot_is_treated_as_missing():
    store = InMemoryStore()
    cache = CacheStore(store)

    async def run():
        await store.set(RefreshConstants.SNAPSHOT_KEY, "{not json")
        return await cache.read_snapshot()

    assert asyncio.run(run()) is None


def test_daily_api_call_counter_is_keyed_by_utc_date():
    clock = FakeClock()
    cache = CacheStore(InMemoryStore(), clock=clock)

    async def run():
        await cache.increment_api_calls(3)
        await cache.increment_api_calls(0)
        await cache.increment_api_calls(4)
        today = await cache.get_api_calls_today()
        clock.advance(86400)
        tomorrow = await cache.get_api_calls_today()
        return today, tomorrow

    assert asyncio.run(run()) == (7, 0)


def test_health_reports_store_state():
    clock = FakeClock()
    cache = CacheStore(InMemoryStore(), clock=clock)

    async def run():
        await cache.write_snapshot(_snapshot(clock))
        return await cache.health()

    health = asyncio.run(run())

    assert health["connected"] is True
    assert health["store"]["type"] == "in_memory"
    assert health["last_refresh"] == clock().isoformat()


class _DownRedis:
    async def ping(self):
        raise RedisConnectionError("connection refused")

    async def get(self, key):
        raise RedisConnectionError("connection refused")

    async def set(self, key, value, **kwargs):
        raise RedisConnectionError("connection refused")


def test_unreachable_redis_is_degraded_health_and_store_error_on_write():
    cache = CacheStore(RedisStore("redis://localhost:6379/0", client=_DownRedis()))

    async def run():
        health = await cache.health()
        with pytest.raises(StoreError):
            await cache.write_snapshot(_snapshot(FakeClock()))
        return health

    health = asyncio.run(run())

    assert health["connected"] is False
    assert health["match_count"] == 0
    assert health["api_calls_today"] is None
