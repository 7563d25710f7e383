"""
ORACLE WATCHER — Key-Value Backends
Redis for production, an in-memory TTL cache for local runs and tests.
Both expose the same small async subset of Redis commands.
"""
import time
from abc import ABC, abstractmethod
from typing import Any, Callable, List, Optional, Tuple

from cachetools import TLRUCache
from redis.asyncio import Redis

from oracle_watcher.utils.logger import get_logger

logger = get_logger("state_backends")


class KeyValueBackend(ABC):
    """Abstract base class for state store transports."""

    @abstractmethod
    async def get(self, key: str) -> Optional[str]:
        pass

    @abstractmethod
    async def set(self, key: str, value: str) -> None:
        pass

    @abstractmethod
    async def setex(self, key: str, ttl_seconds: int, value: str) -> None:
        pass

    @abstractmethod
    async def delete(self, *keys: str) -> None:
        pass

    @abstractmethod
    async def incr(self, key: str) -> int:
        pass

    @abstractmethod
    async def lpush(self, key: str, value: str) -> None:
        pass

    @abstractmethod
    async def ltrim(self, key: str, start: int, stop: int) -> None:
        pass

    @abstractmethod
    async def lrange(self, key: str, start: int, stop: int) -> List[str]:
        pass

    async def close(self) -> None:
        pass


class RedisBackend(KeyValueBackend):
    """redis-py asyncio client with explicit socket timeouts."""

    def __init__(self, url: str, timeout_seconds: float = 5.0):
        self._client = Redis.from_url(
            url,
            decode_responses=True,
            socket_timeout=timeout_seconds,
            socket_connect_timeout=timeout_seconds,
        )

    async def get(self, key: str) -> Optional[str]:
        return await self._client.get(key)

    async def set(self, key: str, value: str) -> None:
        await self._client.set(key, value)

    async def setex(self, key: str, ttl_seconds: int, value: str) -> None:
        await self._client.setex(key, ttl_seconds, value)

    async def delete(self, *keys: str) -> None:
        if keys:
            await self._client.delete(*keys)

    async def incr(self, key: str) -> int:
        return int(await self._client.incr(key))

    async def lpush(self, key: str, value: str) -> None:
        await self._client.lpush(key, value)

    async def ltrim(self, key: str, start: int, stop: int) -> None:
        await self._client.ltrim(key, start, stop)

    async def lrange(self, key: str, start: int, stop: int) -> List[str]:
        return list(await self._client.lrange(key, start, stop))

    async def close(self) -> None:
        await self._client.aclose()
        logger.info("redis_backend_closed")


def _time_to_use(key: str, entry: Tuple[Any, Optional[float]], now: float) -> float:
    _, ttl = entry
    if ttl is None:
        return float("inf")
    return now + ttl


def _redis_slice(items: List[str], start: int, stop: int) -> List[str]:
    """Apply Redis LRANGE/LTRIM index semantics (inclusive stop, negatives from the end)."""
    n = len(items)
    if start < 0:
        start = max(0, n + start)
    if stop < 0:
        stop = n + stop
    if start > stop or start >= n:
        return []
    return items[start:stop + 1]


class MemoryBackend(KeyValueBackend):
    """
    In-process backend with per-key expiry.
    Entries are (value, ttl_seconds) pairs in a cachetools TLRUCache whose
    timer can be injected so tests control expiry without waiting.
    """

    def __init__(self, timer: Callable[[], float] = time.monotonic, maxsize: int = 10_000):
        self._data: TLRUCache = TLRUCache(maxsize=maxsize, ttu=_time_to_use, timer=timer)

    def _value(self, key: str) -> Any:
        entry = self._data.get(key)
        return entry[0] if entry is not None else None

    async def get(self, key: str) -> Optional[str]:
        value = self._value(key)
        if isinstance(value, list):
            raise TypeError(f"WRONGTYPE {key} holds a list")
        return value

    async def set(self, key: str, value: str) -> None:
        self._data[key] = (str(value), None)

    async def setex(self, key: str, ttl_seconds: int, value: str) -> None:
        self._data[key] = (str(value), float(ttl_seconds))

    async def delete(self, *keys: str) -> None:
        for key in keys:
            self._data.pop(key, None)

    async def incr(self, key: str) -> int:
        current = self._value(key)
        count = int(current or 0) + 1
        self._data[key] = (str(count), None)
        return count

    async def lpush(self, key: str, value: str) -> None:
        items = self._value(key) or []
        self._data[key] = ([str(value)] + items, None)

    async def ltrim(self, key: str, start: int, stop: int) -> None:
        items = self._value(key) or []
        self._data[key] = (_redis_slice(items, start, stop), None)

    async def lrange(self, key: str, start: int, stop: int) -> List[str]:
        return _redis_slice(self._value(key) or [], start, stop)
