"""
Persistent key/value storage used by the cache layer.

Two interchangeable backends are selected when the cache is constructed:
redis for deployments, an in-process dict for tests and single-process runs.
"""

import asyncio
from typing import Awaitable, Dict, Iterable, List, Optional, Protocol, TypeVar

from app.errors import StorageTimeoutError
from app.services.redis_client import RedisClient

T = TypeVar("T")


class KeyValueStore(Protocol):
    async def get(self, key: str) -> Optional[str]: ...

    async def set(self, key: str, value: str) -> None: ...

    async def delete(self, key: str) -> None: ...

    async def delete_many(self, keys: Iterable[str]) -> None: ...

    async def keys(self, prefix: str) -> List[str]: ...


async def with_timeout(awaitable: Awaitable[T], timeout_seconds: float) -> T:
    """Await a storage call, raising StorageTimeoutError past the deadline."""
    try:
        return await asyncio.wait_for(awaitable, timeout=timeout_seconds)
    except asyncio.TimeoutError as exc:
        raise StorageTimeoutError(timeout_seconds) from exc


class RedisKeyValueStore:
    """Key/value store backed by redis."""

    def __init__(self, client: RedisClient):
        self.client = client

    async def get(self, key: str) -> Optional[str]:
        return await self.client.get(key)

    async def set(self, key: str, value: str) -> None:
        await self.client.set(key, value)

    async def delete(self, key: str) -> None:
        await self.client.delete(key)

    async def delete_many(self, keys: Iterable[str]) -> None:
        await self.client.delete(*list(keys))

    async def keys(self, prefix: str) -> List[str]:
        return await self.client.scan_keys(prefix)


class InMemoryKeyValueStore:
    """Process-local key/value store. Keys enumerate in insertion order."""

    def __init__(self):
        self._data: Dict[str, str] = {}
        self._lock = asyncio.Lock()

    async def get(self, key: str) -> Optional[str]:
        async with self._lock:
            return self._data.get(key)

    async def set(self, key: str, value: str) -> None:
        async with self._lock:
            self._data.pop(key, None)
            self._data[key] = value

    async def delete(self, key: str) -> None:
        async with self._lock:
            self._data.pop(key, None)

    async def delete_many(self, keys: Iterable[str]) -> None:
        async with self._lock:
            for key in keys:
                self._data.pop(key, None)

    async def keys(self, prefix: str) -> List[str]:
        async with self._lock:
            return [key for key in self._data if key.startswith(prefix)]

    def __len__(self) -> int:
        return len(self._data)
