"""
Cache Administration API Endpoints
Diagnostics and manual clearing for the search cache and TTL cache namespaces.
"""

from fastapi import APIRouter, Depends, HTTPException, status

from app.schemas.cache import CacheStatus, SearchCacheStats
from app.services.container import ServiceContainer
from app.services.search_cache import FuzzySearchCache
from app.utils.dependencies import get_container, get_search_cache, get_user_id

router = APIRouter()


@router.get("/search/stats", response_model=SearchCacheStats)
async def get_search_cache_stats(cache: FuzzySearchCache = Depends(get_search_cache)):
    return await cache.get_stats()


@router.delete("/search")
async def clear_search_cache(cache: FuzzySearchCache = Depends(get_search_cache)):
    removed = await cache.clear()
    return {"removed": removed}


@router.get("/{namespace}/{key}", response_model=CacheStatus)
async def get_cache_status(
    namespace: str,
    key: str,
    user_id: str = Depends(get_user_id),
    container: ServiceContainer = Depends(get_container)
):
    """Describe one cache entry without touching it."""
    cache = container.caches.get(namespace)
    if cache is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Unknown cache namespace: {namespace}"
        )
    return await cache.get_status(key, owner_id=user_id)


@router.delete("/{namespace}")
async def clear_cache_namespace(
    namespace: str,
    container: ServiceContainer = Depends(get_container)
):
    cache = container.caches.get(namespace)
    if cache is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Unknown cache namespace: {namespace}"
        )
    removed = await cache.clear_all()
    return {"namespace": namespace, "removed": removed}
