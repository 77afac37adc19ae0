"""Shared atomic key-value primitive backing holds, locks, and the cache."""

from __future__ import annotations

import time
from datetime import datetime, timedelta
from threading import RLock
from typing import Optional, Protocol
from uuid import uuid4

import redis
from redis.exceptions import LockNotOwnedError, RedisError
from redis.lock import Lock

from backend.domain.errors import BackendUnavailableError, LockLostError
from backend.utils.clock import Clock, SystemClock
from backend.utils.config import Settings, get_settings
from backend.utils.logger import get_logger


logger = get_logger(__name__)


class StoreLock(Protocol):
    """Token-checked lease on one key.

    ``reacquire`` resets the lease to its full timeout and ``release``
    deletes the key; both raise ``LockLostError`` when the key no longer
    carries this holder's token.
    """

    name: str

    def acquire(self) -> bool:
        ...

    def reacquire(self) -> None:
        ...

    def release(self) -> None:
        ...


class KeyValueStore(Protocol):
    def set_if_absent(self, key: str, value: str, ttl_seconds: float) -> bool:
        """Atomically store ``value`` only when ``key`` is absent."""

    def set(self, key: str, value: str, ttl_seconds: Optional[float] = None) -> None:
        ...

    def get(self, key: str) -> Optional[str]:
        ...

    def delete(self, key: str) -> bool:
        ...

    def incr(self, key: str) -> int:
        """Atomically add one to an integer counter, starting from zero."""

    def keys_matching(self, prefix: str) -> list[str]:
        ...

    def lock(
        self,
        name: str,
        timeout: float,
        sleep: float,
        blocking_timeout: float,
    ) -> StoreLock:
        ...


class InMemoryLock:
    """Mirrors redis-py's ``Lock`` over an ``InMemoryKeyValueStore``."""

    def __init__(
        self,
        store: InMemoryKeyValueStore,
        name: str,
        timeout: float,
        sleep: float,
        blocking_timeout: float,
    ) -> None:
        self.name = name
        self._store = store
        self._timeout = timeout
        self._sleep = sleep
        self._blocking_timeout = blocking_timeout
        self._token: Optional[str] = None

    def acquire(self) -> bool:
        token = uuid4().hex
        deadline = time.monotonic() + self._blocking_timeout
        while not self._store.set_if_absent(self.name, token, self._timeout):
            if time.monotonic() >= deadline:
                return False
            time.sleep(self._sleep)
        self._token = token
        return True

    def reacquire(self) -> None:
        if self._token is None or not self._store.expire_if_equal(
            self.name, self._token, self._timeout
        ):
            raise LockLostError(f"Lock {self.name} is no longer owned")

    def release(self) -> None:
        token, self._token = self._token, None
        if token is None or not self._store.delete_if_equal(self.name, token):
            raise LockLostError(f"Lock {self.name} is no longer owned")


class RedisLock:
    """Wraps redis-py's ``Lock``; release and reacquire are token-checked scripts."""

    def __init__(self, lock: Lock, name: str) -> None:
        self.name = name
        self._lock = lock

    def acquire(self) -> bool:
        try:
            return bool(self._lock.acquire())
        except RedisError as exc:
            logger.exception("Redis lock acquire failed | name=%s", self.name)
            raise BackendUnavailableError(f"Shared store unavailable: {exc}") from exc

    def reacquire(self) -> None:
        try:
            self._lock.reacquire()
        except LockNotOwnedError as exc:
            raise LockLostError(f"Lock {self.name} is no longer owned") from exc
        except RedisError as exc:
            logger.exception("Redis lock reacquire failed | name=%s", self.name)
            raise BackendUnavailableError(f"Shared store unavailable: {exc}") from exc

    def release(self) -> None:
        try:
            self._lock.release()
        except LockNotOwnedError as exc:
            raise LockLostError(f"Lock {self.name} is no longer owned") from exc
        except RedisError as exc:
            logger.exception("Redis lock release failed | name=%s", self.name)
            raise BackendUnavailableError(f"Shared store unavailable: {exc}") from exc


class InMemoryKeyValueStore:
    """Single-process store; TTLs are evaluated against the injected clock."""

    def __init__(self, clock: Optional[Clock] = None) -> None:
        self._clock = clock or SystemClock()
        self._lock = RLock()
        self._entries: dict[str, tuple[str, Optional[datetime]]] = {}

    def _expiry(self, ttl_seconds: Optional[float]) -> Optional[datetime]:
        if ttl_seconds is None:
            return None
        return self._clock.now() + timedelta(seconds=ttl_seconds)

    def _live_value(self, key: str) -> Optional[str]:
        entry = self._entries.get(key)
        if entry is None:
            return None
        value, expires_at = entry
        if expires_at is not None and self._clock.now() >= expires_at:
            del self._entries[key]
            return None
        return value

    def set_if_absent(self, key: str, value: str, ttl_seconds: float) -> bool:
        with self._lock:
            if self._live_value(key) is not None:
                return False
            self._entries[key] = (value, self._expiry(ttl_seconds))
            return True

    def set(self, key: str, value: str, ttl_seconds: Optional[float] = None) -> None:
        with self._lock:
            self._entries[key] = (value, self._expiry(ttl_seconds))

    def get(self, key: str) -> Optional[str]:
        with self._lock:
            return self._live_value(key)

    def delete(self, key: str) -> bool:
        with self._lock:
            existed = self._live_value(key) is not None
            self._entries.pop(key, None)
            return existed

    def delete_if_equal(self, key: str, value: str) -> bool:
        with self._lock:
            if self._live_value(key) != value:
                return False
            del self._entries[key]
            return True

    def expire_if_equal(self, key: str, value: str, ttl_seconds: float) -> bool:
        with self._lock:
            if self._live_value(key) != value:
                return False
            self._entries[key] = (value, self._expiry(ttl_seconds))
            return True

    def incr(self, key: str) -> int:
        with self._lock:
            current = self._live_value(key)
            value = int(current) + 1 if current is not None else 1
            expires_at = self._entries[key][1] if current is not None else None
            self._entries[key] = (str(value), expires_at)
            return value

    def keys_matching(self, prefix: str) -> list[str]:
        with self._lock:
            candidates = [key for key in self._entries if key.startswith(prefix)]
            return sorted(key for key in candidates if self._live_value(key) is not None)

    def lock(
        self,
        name: str,
        timeout: float,
        sleep: float,
        blocking_timeout: float,
    ) -> InMemoryLock:
        return InMemoryLock(self, name, timeout, sleep, blocking_timeout)


class RedisKeyValueStore:
    """Multi-process store on Redis ``SET NX PX`` semantics."""

    def __init__(
        self,
        client: Optional[redis.Redis] = None,
        settings: Optional[Settings] = None,
    ) -> None:
        self._settings = settings or get_settings()
        if client is None:
            if not self._settings.redis_url:
                raise ValueError("REDIS_URL is not configured")
            client = redis.Redis.from_url(
                self._settings.redis_url,
                socket_timeout=self._settings.backend_timeout_seconds,
                socket_connect_timeout=self._settings.backend_timeout_seconds,
                decode_responses=True,
            )
        self._client = client

    @staticmethod
    def _ttl_ms(ttl_seconds: Optional[float]) -> Optional[int]:
        if ttl_seconds is None:
            return None
        return max(1, int(ttl_seconds * 1000))

    def set_if_absent(self, key: str, value: str, ttl_seconds: float) -> bool:
        try:
            return bool(self._client.set(key, value, nx=True, px=self._ttl_ms(ttl_seconds)))
        except RedisError as exc:
            logger.exception("Redis set_if_absent failed | key=%s", key)
            raise BackendUnavailableError(f"Shared store unavailable: {exc}") from exc

    def set(self, key: str, value: str, ttl_seconds: Optional[float] = None) -> None:
        try:
            self._client.set(key, value, px=self._ttl_ms(ttl_seconds))
        except RedisError as exc:
            logger.exception("Redis set failed | key=%s", key)
            raise BackendUnavailableError(f"Shared store unavailable: {exc}") from exc

    def get(self, key: str) -> Optional[str]:
        try:
            return self._client.get(key)
        except RedisError as exc:
            logger.exception("Redis get failed | key=%s", key)
            raise BackendUnavailableError(f"Shared store unavailable: {exc}") from exc

    def delete(self, key: str) -> bool:
        try:
            return bool(self._client.delete(key))
        except RedisError as exc:
            logger.exception("Redis delete failed | key=%s", key)
            raise BackendUnavailableError(f"Shared store unavailable: {exc}") from exc

    def incr(self, key: str) -> int:
        try:
            return int(self._client.incr(key))
        except RedisError as exc:
            logger.exception("Redis incr failed | key=%s", key)
            raise BackendUnavailableError(f"Shared store unavailable: {exc}") from exc

    def keys_matching(self, prefix: str) -> list[str]:
        try:
            return sorted(self._client.scan_iter(match=f"{prefix}*"))
        except RedisError as exc:
            logger.exception("Redis scan failed | prefix=%s", prefix)
            raise BackendUnavailableError(f"Shared store unavailable: {exc}") from exc

    def lock(
        self,
        name: str,
        timeout: float,
        sleep: float,
        blocking_timeout: float,
    ) -> RedisLock:
        lock = self._client.lock(
            name,
            timeout=timeout,
            sleep=sleep,
            blocking_timeout=blocking_timeout,
            thread_local=False,
        )
        return RedisLock(lock, name)


def build_key_value_store(
    settings: Optional[Settings] = None,
    clock: Optional[Clock] = None,
) -> KeyValueStore:
    """Pick Redis when ``REDIS_URL`` is configured, otherwise the in-process store."""
    resolved = settings or get_settings()
    if resolved.redis_url:
        logger.info("Using Redis key-value store")
        return RedisKeyValueStore(settings=resolved)
    logger.info("Using in-process key-value store")
    return InMemoryKeyValueStore(clock=clock)
