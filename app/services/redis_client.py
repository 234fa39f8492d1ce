import redis.asyncio as redis
from typing import List, Optional


class RedisClient:
    def __init__(self, url: str, max_connections: int = 20):
        self.url = url
        self.max_connections = max_connections
        self.redis: Optional[redis.Redis] = None

    async def connect(self):
        self.redis = redis.from_url(
            self.url,
            encoding="utf-8",
            decode_responses=True,
            max_connections=self.max_connections
        )

    async def disconnect(self):
        if self.redis:
            await self.redis.close()
            self.redis = None

    async def get(self, key: str) -> Optional[str]:
        if not self.redis:
            await self.connect()
        return await self.redis.get(key)

    async def set(self, key: str, value: str, expire: Optional[int] = None):
        if not self.redis:
            await self.connect()
        await self.redis.set(key, value, ex=expire)

    async def delete(self, *keys: str):
        if not keys:
            return
        if not self.redis:
            await self.connect()
        await self.redis.delete(*keys)

    async def exists(self, key: str) -> bool:
        if not self.redis:
            await self.connect()
        return bool(await self.redis.exists(key))

    async def scan_keys(self, prefix: str) -> List[str]:
        if not self.redis:
            await self.connect()
        return [key async for key in self.redis.scan_iter(match=f"{prefix}*", count=500)]
