"""
Service container
Builds the process-wide services once from Settings. The FastAPI lifespan owns
one instance; tests build their own over in-memory backends.
"""

import logging
from typing import Dict, Optional

from app.config import (
    LIST_DETAILS_CACHE, LISTS_CACHE, LOCATION_CACHE, PLACE_DETAILS_CACHE, Settings
)
from app.database import create_engine_for, create_session_factory, init_db
from app.services.availability_service import PlaceAvailabilityService
from app.services.background import BackgroundTaskQueue
from app.services.cache_service import TTLCache
from app.services.place_store import InMemoryPlaceStore, PlaceStore, SpatialPlaceStore
from app.services.recommendation_service import RecommendationService
from app.services.redis_client import RedisClient
from app.services.search_cache import FuzzySearchCache
from app.services.storage import InMemoryKeyValueStore, KeyValueStore, RedisKeyValueStore

logger = logging.getLogger(__name__)

CACHE_PRESETS = {
    "place_details": PLACE_DETAILS_CACHE,
    "lists": LISTS_CACHE,
    "list_details": LIST_DETAILS_CACHE,
    "location": LOCATION_CACHE,
}


class ServiceContainer:
    def __init__(
        self,
        settings: Settings,
        store: KeyValueStore,
        place_store: PlaceStore,
        redis_client: Optional[RedisClient] = None,
        engine=None
    ):
        self.settings = settings
        self.store = store
        self.place_store = place_store
        self.redis_client = redis_client
        self.engine = engine

        self.tasks = BackgroundTaskQueue(settings.background_max_concurrency)
        self.caches: Dict[str, TTLCache] = {
            name: TTLCache(store, config, task_queue=self.tasks, name=name)
            for name, config in CACHE_PRESETS.items()
        }
        self.search_cache = FuzzySearchCache.from_settings(store, settings, task_queue=self.tasks)
        self.availability_service = PlaceAvailabilityService(
            place_store,
            default_radius_meters=settings.recommendation_radius_km * 1000,
            default_minimum_places=settings.recommendation_minimum_places
        )
        self.recommendation_service = RecommendationService.from_settings(
            place_store, self.availability_service, settings
        )

    @classmethod
    def from_settings(cls, settings: Settings) -> "ServiceContainer":
        redis_client = None
        if settings.cache_backend == "redis":
            redis_client = RedisClient(settings.redis_url)
            store: KeyValueStore = RedisKeyValueStore(redis_client)
        else:
            store = InMemoryKeyValueStore()

        engine = None
        if settings.place_store_backend == "postgres":
            engine = create_engine_for(settings.database_url, echo=settings.debug)
            place_store: PlaceStore = SpatialPlaceStore(create_session_factory(engine))
        else:
            place_store = InMemoryPlaceStore()

        logger.info(
            f"Services configured (cache={settings.cache_backend}, places={settings.place_store_backend})"
        )
        return cls(settings, store, place_store, redis_client=redis_client, engine=engine)

    async def startup(self):
        if self.redis_client:
            await self.redis_client.connect()
        if self.engine is not None:
            await init_db(self.engine)

    async def shutdown(self):
        await self.tasks.drain()
        if self.redis_client:
            await self.redis_client.disconnect()
        if self.engine is not None:
            await self.engine.dispose()
