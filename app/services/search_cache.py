"""
Fuzzy Search Cache
Two-tier cache for nearby and text place searches. Reads check a small
in-process tier before the persistent tier and fall back to fuzzy matching:
a nearby search reuses results cached for a close-enough center and radius,
and a text search reuses results cached for a short prefix of the query.
"""

import threading
import time
from collections import OrderedDict
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Callable, List, Optional

from pydantic import ValidationError

from app.config import CacheConfig, Settings
from app.schemas.cache import CacheRecord, NearbyPlaceResult, SearchCacheStats, SearchKind, SearchRecord
from app.schemas.recommendations import Location
from app.services.background import BackgroundTaskQueue
from app.services.cache_service import TTLCache, location_key
from app.services.storage import KeyValueStore, with_timeout
from app.utils.geo import haversine_m
from app.utils.logging import cache_logger, log_operation

SEARCH_KEY_PREFIX = "checkin_search_"
MIN_PREFIX_LENGTH = 3
MAX_PREFIX_EXTENSION = 3


def normalize_query(query: str) -> str:
    return " ".join(query.lower().split())


def nearby_key(latitude: float, longitude: float, radius_meters: float) -> str:
    return f"{SearchKind.NEARBY.value}_{location_key(latitude, longitude)}_{radius_meters:g}"


def text_key(query: str, latitude: float, longitude: float) -> str:
    clean_query = normalize_query(query).replace(" ", "_")
    return f"{SearchKind.TEXT.value}_{clean_query}_{location_key(latitude, longitude)}"


def is_prefix_match(cached_query: str, query: str) -> bool:
    """True when ``query`` extends ``cached_query`` by a few characters."""
    return (
        query.startswith(cached_query) and
        len(cached_query) >= MIN_PREFIX_LENGTH and
        len(query) - len(cached_query) <= MAX_PREFIX_EXTENSION
    )


@dataclass
class _MemoryEntry:
    record: SearchRecord
    created_at: float
    stored_at: float


class MemorySearchTier:
    """Bounded LRU of recent search records, safe to share between threads."""

    def __init__(self, max_entries: int, ttl_seconds: float, clock: Callable[[], float] = time.time):
        self.max_entries = max_entries
        self.ttl_seconds = ttl_seconds
        self.clock = clock
        self._entries: "OrderedDict[str, _MemoryEntry]" = OrderedDict()
        self._lock = threading.Lock()

    def _is_live(self, entry: _MemoryEntry, now: float, max_record_age: float) -> bool:
        return now - entry.stored_at <= self.ttl_seconds and now - entry.created_at <= max_record_age

    def get(self, key: str, max_record_age: float) -> Optional[SearchRecord]:
        now = self.clock()
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return None
            if not self._is_live(entry, now, max_record_age):
                del self._entries[key]
                return None
            self._entries.move_to_end(key)
            return entry.record.model_copy(deep=True)

    def find(self, predicate: Callable[[SearchRecord], bool], max_record_age: float) -> Optional[SearchRecord]:
        now = self.clock()
        with self._lock:
            for entry in list(self._entries.values()):
                if self._is_live(entry, now, max_record_age) and predicate(entry.record):
                    return entry.record.model_copy(deep=True)
        return None

    def put(self, key: str, record: SearchRecord, created_at: float) -> None:
        now = self.clock()
        with self._lock:
            self._entries.pop(key, None)
            self._entries[key] = _MemoryEntry(record=record.model_copy(deep=True), created_at=created_at, stored_at=now)
            if len(self._entries) > self.max_entries:
                for stale_key in [k for k, e in self._entries.items() if now - e.stored_at > self.ttl_seconds]:
                    del self._entries[stale_key]
            while len(self._entries) > self.max_entries:
                self._entries.popitem(last=False)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)


class FuzzySearchCache:
    """Search result cache with proximity and query-prefix matching."""

    def __init__(
        self,
        store: KeyValueStore,
        expiry_seconds: float = 15 * 60,
        memory_ttl_seconds: float = 5 * 60,
        memory_max_entries: int = 20,
        max_entries: int = 50,
        location_threshold_meters: float = 100.0,
        radius_tolerance_meters: float = 100.0,
        storage_timeout_seconds: float = 2.0,
        clock: Callable[[], float] = time.time,
        task_queue: Optional[BackgroundTaskQueue] = None
    ):
        self.expiry_seconds = expiry_seconds
        self.max_entries = max_entries
        self.location_threshold_meters = location_threshold_meters
        self.radius_tolerance_meters = radius_tolerance_meters
        self.clock = clock
        self.tasks = task_queue or BackgroundTaskQueue()
        self.memory = MemorySearchTier(memory_max_entries, memory_ttl_seconds, clock)
        self.storage: TTLCache[SearchRecord] = TTLCache(
            store,
            CacheConfig(
                key_prefix=SEARCH_KEY_PREFIX,
                validity_seconds=expiry_seconds,
                storage_timeout_seconds=storage_timeout_seconds,
            ),
            payload_type=SearchRecord,
            clock=clock,
            task_queue=self.tasks,
            name="search",
        )

    @classmethod
    def from_settings(
        cls,
        store: KeyValueStore,
        settings: Settings,
        task_queue: Optional[BackgroundTaskQueue] = None,
        clock: Callable[[], float] = time.time
    ) -> "FuzzySearchCache":
        return cls(
            store,
            expiry_seconds=settings.search_cache_expiry_seconds,
            memory_ttl_seconds=settings.search_memory_ttl_seconds,
            memory_max_entries=settings.search_memory_max_entries,
            max_entries=settings.search_cache_max_entries,
            location_threshold_meters=settings.search_location_threshold_meters,
            radius_tolerance_meters=settings.search_radius_tolerance_meters,
            storage_timeout_seconds=settings.cache_storage_timeout_seconds,
            clock=clock,
            task_queue=task_queue,
        )

    @property
    def store(self) -> KeyValueStore:
        return self.storage.store

    # Writes

    async def cache_nearby_search(
        self,
        latitude: float,
        longitude: float,
        radius_meters: float,
        places: List[NearbyPlaceResult]
    ) -> None:
        record = SearchRecord(
            kind=SearchKind.NEARBY,
            location=Location(latitude=latitude, longitude=longitude),
            radius_meters=radius_meters,
            places=places,
        )
        await self._write(nearby_key(latitude, longitude, radius_meters), record)

    async def cache_text_search(
        self,
        query: str,
        latitude: float,
        longitude: float,
        places: List[NearbyPlaceResult]
    ) -> None:
        record = SearchRecord(
            kind=SearchKind.TEXT,
            location=Location(latitude=latitude, longitude=longitude),
            query=normalize_query(query),
            places=places,
        )
        await self._write(text_key(query, latitude, longitude), record)

    async def _write(self, key: str, record: SearchRecord) -> None:
        self.memory.put(key, record, self.clock())
        await self.storage.save(key, record)
        self.tasks.submit(self.enforce_max_entries, name="search:enforce_max_entries")

    # Reads

    async def get_cached_nearby_search(
        self,
        latitude: float,
        longitude: float,
        radius_meters: float
    ) -> Optional[List[NearbyPlaceResult]]:
        def is_close(record: SearchRecord) -> bool:
            return (
                record.kind is SearchKind.NEARBY and
                record.radius_meters is not None and
                self._within_threshold(record, latitude, longitude) and
                abs(radius_meters - record.radius_meters) <= self.radius_tolerance_meters
            )

        try:
            record = await self._lookup(nearby_key(latitude, longitude, radius_meters), SearchKind.NEARBY, is_close)
        except Exception as e:
            cache_logger.logger.warning(f"Failed to get cached nearby search results: {e}")
            return None
        return record.places if record else None

    async def get_cached_text_search(
        self,
        query: str,
        latitude: float,
        longitude: float
    ) -> Optional[List[NearbyPlaceResult]]:
        normalized = normalize_query(query)

        def is_similar(record: SearchRecord) -> bool:
            return (
                record.kind is SearchKind.TEXT and
                record.query is not None and
                self._within_threshold(record, latitude, longitude) and
                is_prefix_match(record.query, normalized)
            )

        try:
            record = await self._lookup(text_key(query, latitude, longitude), SearchKind.TEXT, is_similar)
        except Exception as e:
            cache_logger.logger.warning(f"Failed to get cached text search results: {e}")
            return None
        return record.places if record else None

    def _within_threshold(self, record: SearchRecord, latitude: float, longitude: float) -> bool:
        distance = haversine_m(latitude, longitude, record.location.latitude, record.location.longitude)
        return distance <= self.location_threshold_meters

    async def _lookup(
        self,
        key: str,
        kind: SearchKind,
        matches: Callable[[SearchRecord], bool]
    ) -> Optional[SearchRecord]:
        record = self.memory.get(key, self.expiry_seconds)
        if record is not None:
            cache_logger.log_cache_operation("hit", "search.memory", {"key": key})
            return record

        cached = await self.storage.load(key)
        if cached is not None:
            self.memory.put(key, cached.payload, cached.created_at)
            return cached.payload

        record = self.memory.find(matches, self.expiry_seconds)
        if record is not None:
            cache_logger.log_cache_operation("hit", "search.memory", {"key": key, "match": "fuzzy"})
            return record

        return await self._scan_storage(key, kind, matches)

    async def _scan_storage(
        self,
        key: str,
        kind: SearchKind,
        matches: Callable[[SearchRecord], bool]
    ) -> Optional[SearchRecord]:
        prefix = f"{SEARCH_KEY_PREFIX}{kind.value}_"
        storage_keys = await with_timeout(self.store.keys(prefix), self.storage.config.storage_timeout_seconds)

        for storage_key in storage_keys:
            candidate_key = storage_key[len(SEARCH_KEY_PREFIX):]
            if candidate_key == key:
                continue
            cached = await self.storage.load(candidate_key)
            if cached is None or not matches(cached.payload):
                continue

            cache_logger.log_cache_operation(
                "hit", "search", {"key": key, "matched_key": candidate_key, "match": "fuzzy"}
            )
            self.memory.put(key, cached.payload, cached.created_at)
            return cached.payload

        return None

    # Maintenance

    async def _entry_timestamps(self):
        """Pairs of (storage key, created_at) for persistent entries.

        created_at is None only for entries that were read and failed to parse.
        Entries that could not be read are left out.
        """
        timeout = self.storage.config.storage_timeout_seconds
        storage_keys = await with_timeout(self.store.keys(SEARCH_KEY_PREFIX), timeout)
        entries = []
        for storage_key in storage_keys:
            try:
                raw = await with_timeout(self.store.get(storage_key), timeout)
            except Exception as e:
                cache_logger.logger.warning(f"Skipping unreadable search cache entry {storage_key}: {e}")
                continue
            if not raw:
                continue
            try:
                entries.append((storage_key, CacheRecord.model_validate_json(raw).created_at))
            except ValidationError:
                entries.append((storage_key, None))
        return entries

    @log_operation("search_cache.enforce_max_entries")
    async def enforce_max_entries(self) -> int:
        """Evict oldest persistent entries beyond ``max_entries``. Returns evicted count."""
        entries = await self._entry_timestamps()
        if len(entries) <= self.max_entries:
            return 0

        malformed = [key for key, created_at in entries if created_at is None]
        dated = sorted(
            ((key, created_at) for key, created_at in entries if created_at is not None),
            key=lambda item: item[1]
        )
        overflow = max(0, len(dated) - self.max_entries)
        to_remove = malformed + [key for key, _ in dated[:overflow]]

        if to_remove:
            await with_timeout(self.store.delete_many(to_remove), self.storage.config.storage_timeout_seconds)
            cache_logger.log_cache_operation("evict", "search", {"removed": len(to_remove)})
        return len(to_remove)

    @log_operation("search_cache.sweep_expired")
    async def sweep_expired(self) -> int:
        """Delete persistent entries past the hard expiry. Returns removed count."""
        now = self.clock()
        entries = await self._entry_timestamps()
        to_remove = [
            key for key, created_at in entries
            if created_at is None or now - created_at > self.expiry_seconds
        ]
        if to_remove:
            await with_timeout(self.store.delete_many(to_remove), self.storage.config.storage_timeout_seconds)
            cache_logger.log_cache_operation("evict", "search", {"removed": len(to_remove), "reason": "expired"})
        return len(to_remove)

    async def clear(self) -> int:
        self.memory.clear()
        return await self.storage.clear_all()

    async def get_stats(self) -> SearchCacheStats:
        stats = SearchCacheStats(memory_entries=len(self.memory))
        try:
            timeout = self.storage.config.storage_timeout_seconds
            storage_keys = await with_timeout(self.store.keys(SEARCH_KEY_PREFIX), timeout)
            total_size = 0
            timestamps = []
            for storage_key in storage_keys:
                raw = await with_timeout(self.store.get(storage_key), timeout)
                if not raw:
                    continue
                total_size += len(raw)
                if storage_key.startswith(f"{SEARCH_KEY_PREFIX}{SearchKind.NEARBY.value}_"):
                    stats.nearby_searches += 1
                elif storage_key.startswith(f"{SEARCH_KEY_PREFIX}{SearchKind.TEXT.value}_"):
                    stats.text_searches += 1
                record = await self.storage.read_record(storage_key[len(SEARCH_KEY_PREFIX):])
                if record is not None:
                    timestamps.append(record.created_at)
        except Exception as e:
            cache_logger.logger.warning(f"Failed to get cache stats: {e}")
            return stats

        stats.total_size_kb = round(total_size / 1024)
        if timestamps:
            stats.oldest_entry = datetime.fromtimestamp(min(timestamps), tz=timezone.utc)
            stats.newest_entry = datetime.fromtimestamp(max(timestamps), tz=timezone.utc)
        return stats
