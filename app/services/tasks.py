import asyncio
from typing import Any, Dict

from app.celery_app import celery_app
from app.config import settings
from app.services.redis_client import RedisClient
from app.services.search_cache import FuzzySearchCache
from app.services.storage import RedisKeyValueStore
from app.utils.logging import cache_logger


async def run_search_cache_sweep(cache: FuzzySearchCache) -> Dict[str, Any]:
    """Drop hard-expired search entries, then enforce the size bound."""
    expired = await cache.sweep_expired()
    evicted = await cache.enforce_max_entries()
    return {
        'expired': expired,
        'evicted': evicted,
        'status': 'completed'
    }


async def _sweep_with_redis() -> Dict[str, Any]:
    client = RedisClient(settings.redis_url)
    await client.connect()
    try:
        cache = FuzzySearchCache.from_settings(RedisKeyValueStore(client), settings)
        return await run_search_cache_sweep(cache)
    finally:
        await client.disconnect()


@celery_app.task
def sweep_search_cache():
    """
    Periodic task to remove expired and overflowing search cache entries
    """
    try:
        return asyncio.run(_sweep_with_redis())
    except Exception as exc:
        cache_logger.log_error(exc, "sweep_search_cache")
        return {
            'error': str(exc),
            'status': 'failed'
        }
