from __future__ import annotations

import fnmatch
from dataclasses import replace
from datetime import date, datetime, timezone

import pytest
from redis.exceptions import ConnectionError as RedisConnectionError
from redis.exceptions import LockNotOwnedError

from backend.domain.errors import BackendUnavailableError, LockLostError
from backend.domain.models import DateRange
from backend.domain.occupancy import RoomLoad
from backend.repository.availability_cache import AvailabilityCache
from backend.repository.kv_store import (
    InMemoryKeyValueStore,
    RedisKeyValueStore,
    build_key_value_store,
)
from backend.utils.clock import ManualClock
from backend.utils.config import Settings


START = datetime(2027, 4, 7, 3, 0, tzinfo=timezone.utc)


class FakeRedis:
    """Just enough of redis.Redis for the store adapter."""

    def __init__(self) -> None:
        self.data: dict[str, str] = {}
        self.last_px: int | None = None

    def set(self, key, value, nx=False, px=None):
        self.last_px = px
        if nx and key in self.data:
            return None
        self.data[key] = value
        return True

    def get(self, key):
        return self.data.get(key)

    def delete(self, key):
        return 1 if self.data.pop(key, None) is not None else 0

    def scan_iter(self, match=None):
        return iter([key for key in self.data if match is None or fnmatch.fnmatch(key, match)])

    def incr(self, key):
        self.data[key] = str(int(self.data.get(key, "0")) + 1)
        return int(self.data[key])

    def lock(self, name, **kwargs):
        self.lock_kwargs = kwargs
        return LostLock()


class LostLock:
    """A redis-py lock whose key was taken over by another holder."""

    def acquire(self):
        return True

    def reacquire(self):
        raise LockNotOwnedError("Cannot reacquire a lock that's no longer owned")

    def release(self):
        raise LockNotOwnedError("Cannot release a lock that's no longer owned")


class BrokenRedis:
    def set(self, *args, **kwargs):
        raise RedisConnectionError("connection refused")

    def get(self, key):
        raise RedisConnectionError("connection refused")

    def delete(self, key):
        raise RedisConnectionError("connection refused")

    def scan_iter(self, match=None):
        raise RedisConnectionError("connection refused")


def test_in_memory_set_if_absent_is_exclusive() -> None:
    store = InMemoryKeyValueStore(clock=ManualClock(START))

    assert store.set_if_absent("lock:room:a", "one", 5) is True
    assert store.set_if_absent("lock:room:a", "two", 5) is False
    assert store.get("lock:room:a") == "one"


def test_in_memory_entries_expire_against_clock() -> None:
    clock = ManualClock(START)
    store = InMemoryKeyValueStore(clock=clock)
    store.set("hold:1", "payload", ttl_seconds=10)
    store.set("hold:2", "forever")

    clock.advance(seconds=9)
    assert store.get("hold:1") == "payload"

    clock.advance(seconds=1)
    assert store.get("hold:1") is None
    assert store.keys_matching("hold:") == ["hold:2"]
    assert store.set_if_absent("hold:1", "again", 10) is True


def test_in_memory_delete_reports_presence() -> None:
    store = InMemoryKeyValueStore(clock=ManualClock(START))
    store.set("a", "1")
    assert store.delete("a") is True
    assert store.delete("a") is False


def test_redis_store_uses_nx_and_millisecond_ttl() -> None:
    client = FakeRedis()
    store = RedisKeyValueStore(client=client, settings=Settings())

    assert store.set_if_absent("lock:room:a", "token", 1.5) is True
    assert client.last_px == 1500
    assert store.set_if_absent("lock:room:a", "other", 1.5) is False
    assert store.get("lock:room:a") == "token"

    store.set("hold:1", "x")
    assert client.last_px is None
    assert store.keys_matching("hold:") == ["hold:1"]
    assert store.delete("hold:1") is True
    assert store.delete("hold:1") is False


def test_in_memory_counter_increments_from_zero() -> None:
    store = InMemoryKeyValueStore(clock=ManualClock(START))

    assert store.incr("availability-generation") == 1
    assert store.incr("availability-generation") == 2
    assert store.get("availability-generation") == "2"


def test_in_memory_lock_release_is_token_checked() -> None:
    clock = ManualClock(START)
    store = InMemoryKeyValueStore(clock=clock)
    first = store.lock("lock:room:a", timeout=5, sleep=0.001, blocking_timeout=0.05)
    second = store.lock("lock:room:a", timeout=5, sleep=0.001, blocking_timeout=0.05)

    assert first.acquire() is True
    assert second.acquire() is False

    clock.advance(seconds=6)
    assert second.acquire() is True

    with pytest.raises(LockLostError):
        first.reacquire()
    with pytest.raises(LockLostError):
        first.release()
    assert store.get("lock:room:a") is not None

    second.release()
    assert store.get("lock:room:a") is None


def test_in_memory_lock_reacquire_resets_the_lease() -> None:
    clock = ManualClock(START)
    store = InMemoryKeyValueStore(clock=clock)
    lock = store.lock("lock:room:a", timeout=5, sleep=0.001, blocking_timeout=0.05)
    assert lock.acquire() is True

    clock.advance(seconds=4)
    lock.reacquire()
    clock.advance(seconds=4)

    assert store.set_if_absent("lock:room:a", "intruder", 5) is False
    lock.release()


def test_redis_lock_uses_client_lock_and_maps_ownership_loss() -> None:
    client = FakeRedis()
    store = RedisKeyValueStore(client=client, settings=Settings())

    lock = store.lock("lock:room:a", timeout=5, sleep=0.01, blocking_timeout=2.0)

    assert client.lock_kwargs == {
        "timeout": 5,
        "sleep": 0.01,
        "blocking_timeout": 2.0,
        "thread_local": False,
    }
    assert lock.acquire() is True
    with pytest.raises(LockLostError):
        lock.reacquire()
    with pytest.raises(LockLostError):
        lock.release()
    assert store.incr("availability-generation") == 1


def test_redis_errors_become_backend_unavailable() -> None:
    store = RedisKeyValueStore(client=BrokenRedis(), settings=Settings())

    with pytest.raises(BackendUnavailableError):
        store.set_if_absent("k", "v", 1)
    with pytest.raises(BackendUnavailableError):
        store.get("k")
    with pytest.raises(BackendUnavailableError):
        store.keys_matching("hold:")


def test_redis_store_requires_url_without_client() -> None:
    with pytest.raises(ValueError):
        RedisKeyValueStore(settings=replace(Settings(), redis_url=None))


def test_build_store_defaults_to_in_memory() -> None:
    store = build_key_value_store(replace(Settings(), redis_url=None), ManualClock(START))
    assert isinstance(store, InMemoryKeyValueStore)


def test_availability_cache_round_trip_and_overlap_invalidation() -> None:
    store = InMemoryKeyValueStore(clock=ManualClock(START))
    cache = AvailabilityCache(store, Settings())
    april = DateRange(check_in=date(2027, 4, 10), check_out=date(2027, 4, 13))
    may = DateRange(check_in=date(2027, 5, 1), check_out=date(2027, 5, 2))
    loads = {"room_mixto_7": RoomLoad(occupied=3, occupants=1)}

    cache.put(april, loads)
    cache.put(april, loads, exclude_reservation_id="RES-1")
    cache.put(may, loads)

    assert cache.get(april) == loads
    assert AvailabilityCache.key_for(april, "RES-1") == "availability:0:2027-04-10:2027-04-13:exclude:RES-1"

    removed = cache.invalidate_overlapping(
        DateRange(check_in=date(2027, 4, 12), check_out=date(2027, 4, 14))
    )

    assert removed == 2
    assert cache.generation() == 1
    assert cache.get(april, generation=0) is None
    assert cache.get(may, generation=0) == loads
    assert cache.get(may) is None
    assert cache.invalidate_all() == 1
    assert cache.generation() == 2


def test_loads_read_before_an_invalidation_are_never_served() -> None:
    store = InMemoryKeyValueStore(clock=ManualClock(START))
    cache = AvailabilityCache(store, Settings())
    stay = DateRange(check_in=date(2027, 4, 10), check_out=date(2027, 4, 13))
    before_claim = {"room_mixto_12a": RoomLoad(occupied=0, occupants=0)}

    generation = cache.generation()
    cache.invalidate_overlapping(stay)
    cache.put(stay, before_claim, generation=generation)

    assert cache.get(stay) is None
    after_claim = {"room_mixto_12a": RoomLoad(occupied=12, occupants=1)}
    cache.put(stay, after_claim)
    assert cache.get(stay) == after_claim


def test_availability_cache_entries_expire() -> None:
    clock = ManualClock(START)
    store = InMemoryKeyValueStore(clock=clock)
    cache = AvailabilityCache(store, replace(Settings(), availability_cache_ttl_seconds=60))
    stay = DateRange(check_in=date(2027, 4, 10), check_out=date(2027, 4, 13))
    cache.put(stay, {"room_mixto_7": RoomLoad(occupied=1, occupants=1)})

    clock.advance(seconds=60)

    assert cache.get(stay) is None
