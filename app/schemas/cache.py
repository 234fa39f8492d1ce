"""
Cache Schemas
Persisted cache records and diagnostics for the TTL and search caches.
"""

from typing import Any, Dict, List, Optional
from datetime import datetime
from pydantic import BaseModel, Field
from enum import Enum

from app.schemas.recommendations import Location


class CacheRecord(BaseModel):
    """Serialized form of a single cache entry."""
    payload: Any = None
    owner_id: Optional[str] = None
    created_at: float = Field(..., description="Unix timestamp of the write")
    metadata: Dict[str, Any] = Field(default_factory=dict)


class CacheStatus(BaseModel):
    has_cache: bool
    is_valid: bool = False
    is_stale: bool = False
    age_minutes: float = 0
    metadata: Dict[str, Any] = Field(default_factory=dict)


class SearchKind(str, Enum):
    NEARBY = "nearby"
    TEXT = "text"


class NearbyPlaceResult(BaseModel):
    """Place returned by a nearby or text search."""
    place_id: str
    name: str
    address: Optional[str] = None
    types: List[str] = Field(default_factory=list)
    distance_meters: Optional[float] = None
    latitude: float
    longitude: float
    business_status: Optional[str] = None


class SearchRecord(BaseModel):
    """Cached result set of one search."""
    kind: SearchKind
    location: Location
    radius_meters: Optional[float] = None
    query: Optional[str] = None
    places: List[NearbyPlaceResult] = Field(default_factory=list)


class SearchCacheStats(BaseModel):
    nearby_searches: int = 0
    text_searches: int = 0
    memory_entries: int = 0
    total_size_kb: int = 0
    oldest_entry: Optional[datetime] = None
    newest_entry: Optional[datetime] = None
