"""
Generic TTL Cache Service
User-scoped, JSON-serialized cache over a persistent key/value store with a
validity window, an optional stale-but-usable window and safe update helpers.

The cache is best-effort: storage failures and timeouts are logged and turn
into misses, never into exceptions for the caller.
"""

import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, Generic, Optional, Tuple, Type, TypeVar

from pydantic import TypeAdapter, ValidationError

from app.config import CacheConfig
from app.schemas.cache import CacheRecord, CacheStatus
from app.services.background import BackgroundTaskQueue
from app.services.storage import KeyValueStore, with_timeout
from app.utils.logging import cache_logger

T = TypeVar("T")


class Freshness(str, Enum):
    FRESH = "fresh"
    STALE = "stale"
    EXPIRED = "expired"


@dataclass
class CachedValue(Generic[T]):
    """A payload read from the cache. ``is_stale`` marks soft-expired data."""
    payload: T
    is_stale: bool
    created_at: float
    age_seconds: float
    metadata: Dict[str, Any] = field(default_factory=dict)
    owner_id: Optional[str] = None


def location_key(latitude: float, longitude: float, precision: int = 3) -> str:
    """Quantize a coordinate into a key fragment. Precision 3 is roughly 100m."""
    return f"{round(latitude, precision)}_{round(longitude, precision)}"


def owners_conflict(stored_owner: Optional[str], requested_owner: Optional[str]) -> bool:
    return bool(stored_owner) and bool(requested_owner) and stored_owner != requested_owner


class TTLCache(Generic[T]):
    """Persistent cache for one namespace (``config.key_prefix``)."""

    def __init__(
        self,
        store: KeyValueStore,
        config: CacheConfig,
        payload_type: Type[T] = Any,
        clock: Callable[[], float] = time.time,
        task_queue: Optional[BackgroundTaskQueue] = None,
        name: Optional[str] = None
    ):
        self.store = store
        self.config = config
        self.clock = clock
        self.tasks = task_queue or BackgroundTaskQueue()
        self.name = name or config.key_prefix.rstrip("_") or type(self).__name__
        self._adapter = TypeAdapter(payload_type)

    def storage_key(self, key: str) -> str:
        return f"{self.config.key_prefix}{key}"

    def make_key(self, *parts: Any) -> str:
        return "_".join(str(part) for part in parts if part is not None and part != "")

    # Freshness

    def classify(self, created_at: float) -> Tuple[Freshness, float]:
        age = max(0.0, self.clock() - created_at)
        if age <= self.config.validity_seconds:
            return Freshness.FRESH, age
        if self.config.soft_expiry_seconds is not None and age <= self.config.soft_expiry_seconds:
            return Freshness.STALE, age
        return Freshness.EXPIRED, age

    # Storage primitives

    async def read_record(self, key: str) -> Optional[CacheRecord]:
        try:
            raw = await with_timeout(self.store.get(self.storage_key(key)), self.config.storage_timeout_seconds)
        except Exception as e:
            cache_logger.logger.warning(f"Failed to read from cache ({self.name}): {e}")
            return None

        if not raw:
            return None

        try:
            return CacheRecord.model_validate_json(raw)
        except ValidationError:
            cache_logger.logger.warning(f"Malformed cache entry ({self.name}): {key}")
            return None

    async def _write_record(self, key: str, record: CacheRecord) -> bool:
        try:
            await with_timeout(
                self.store.set(self.storage_key(key), record.model_dump_json()),
                self.config.storage_timeout_seconds
            )
            return True
        except Exception as e:
            cache_logger.logger.warning(f"Failed to save to cache ({self.name}): {e}")
            return False

    def _decode(self, key: str, record: CacheRecord) -> Optional[T]:
        try:
            return self._adapter.validate_python(record.payload)
        except ValidationError:
            cache_logger.logger.warning(f"Cached payload does not match expected type ({self.name}): {key}")
            return None

    def _log(self, operation: str, details: Optional[Dict[str, Any]] = None):
        if self.config.enable_logging:
            cache_logger.log_cache_operation(operation, self.name, details)

    def _schedule_invalidate(self, key: str, reason: str):
        self._log("clear", {"key": key, "reason": reason})
        self.tasks.submit(lambda: self.invalidate(key), name=f"{self.name}:invalidate")

    # Public surface

    async def save(
        self,
        key: str,
        payload: T,
        owner_id: Optional[str] = None,
        metadata: Optional[Dict[str, Any]] = None,
        created_at: Optional[float] = None
    ) -> bool:
        """Write ``payload`` under ``key``, replacing any previous entry."""
        try:
            serialized = self._adapter.dump_python(payload, mode="json")
        except Exception as e:
            cache_logger.logger.warning(f"Payload is not serializable ({self.name}): {e}")
            return False

        record = CacheRecord(
            payload=serialized,
            owner_id=owner_id,
            created_at=self.clock() if created_at is None else created_at,
            metadata=metadata or {}
        )
        saved = await self._write_record(key, record)
        if saved:
            self._log("save", {"key": key})
        return saved

    async def load(
        self,
        key: str,
        owner_id: Optional[str] = None,
        allow_stale: bool = False
    ) -> Optional[CachedValue[T]]:
        record = await self.read_record(key)
        if record is None:
            self._log("miss", {"key": key})
            return None

        if owners_conflict(record.owner_id, owner_id):
            self._schedule_invalidate(key, "owner_mismatch")
            return None

        freshness, age = self.classify(record.created_at)

        if freshness is Freshness.EXPIRED:
            self._schedule_invalidate(key, "expired")
            self._log("miss", {"key": key, "reason": "expired"})
            return None

        if freshness is Freshness.STALE and not allow_stale:
            self._log("miss", {"key": key, "reason": "stale"})
            return None

        payload = self._decode(key, record)
        if payload is None and record.payload is not None:
            return None

        is_stale = freshness is Freshness.STALE
        self._log("stale" if is_stale else "hit", {"key": key, "age_seconds": round(age, 1)})
        return CachedValue(
            payload=payload,
            is_stale=is_stale,
            created_at=record.created_at,
            age_seconds=age,
            metadata=dict(record.metadata),
            owner_id=record.owner_id
        )

    async def update(
        self,
        key: str,
        owner_id: Optional[str],
        mutate_fn: Callable[[T], T],
        allow_stale: bool = True,
        preserve_timestamp: bool = False
    ) -> bool:
        """Copy-and-replace an existing entry. Never creates an entry from nothing.

        The stored owner is kept when the caller does not name one.
        """
        cached = await self.load(key, owner_id=owner_id, allow_stale=allow_stale)
        if cached is None:
            return False

        try:
            updated = mutate_fn(cached.payload)
        except Exception as e:
            cache_logger.logger.warning(f"Failed to update cache ({self.name}): {e}")
            return False

        return await self.save(
            key,
            updated,
            owner_id=owner_id or cached.owner_id,
            metadata=cached.metadata,
            created_at=cached.created_at if preserve_timestamp else None
        )

    async def invalidate(self, key: str) -> None:
        try:
            await with_timeout(self.store.delete(self.storage_key(key)), self.config.storage_timeout_seconds)
        except Exception as e:
            cache_logger.logger.warning(f"Failed to clear cache ({self.name}): {e}")

    async def clear_all(self) -> int:
        """Remove every entry under this namespace. Returns the number of keys removed."""
        try:
            keys = await with_timeout(self.store.keys(self.config.key_prefix), self.config.storage_timeout_seconds)
            if keys:
                await with_timeout(self.store.delete_many(keys), self.config.storage_timeout_seconds)
        except Exception as e:
            cache_logger.logger.warning(f"Failed to clear all caches ({self.name}): {e}")
            return 0

        self._log("clear", {"action": "clear_all", "removed": len(keys)})
        return len(keys)

    async def has_valid(self, key: str, owner_id: Optional[str] = None) -> bool:
        """True exactly when ``load(key, owner_id, allow_stale=False)`` would return a value.

        Unlike ``load`` this never schedules an invalidation.
        """
        record = await self.read_record(key)
        if record is None or owners_conflict(record.owner_id, owner_id):
            return False
        freshness, _ = self.classify(record.created_at)
        if freshness is not Freshness.FRESH:
            return False
        return self._decode(key, record) is not None or record.payload is None

    async def get_status(self, key: str, owner_id: Optional[str] = None) -> CacheStatus:
        """Describe an entry without mutating it."""
        record = await self.read_record(key)
        if record is None:
            return CacheStatus(has_cache=False)

        freshness, age = self.classify(record.created_at)
        return CacheStatus(
            has_cache=True,
            is_valid=freshness is Freshness.FRESH,
            is_stale=freshness is Freshness.STALE,
            age_minutes=age / 60,
            metadata={
                **record.metadata,
                "is_correct_user": not owners_conflict(record.owner_id, owner_id)
            }
        )
