"""
Test configuration and shared fixtures for the placemarks test suite.
"""

import pytest
from typing import List
from unittest.mock import AsyncMock
from httpx import ASGITransport, AsyncClient

from app.config import Settings
from app.main import create_app
from app.schemas.recommendations import CandidatePlace, Location
from app.services.background import BackgroundTaskQueue
from app.services.container import ServiceContainer
from app.services.place_store import InMemoryPlaceStore
from app.services.storage import InMemoryKeyValueStore


BANGKOK_CENTER = (13.7563, 100.5018)


class FakeClock:
    """Controllable replacement for time.time."""

    def __init__(self, start: float = 1_700_000_000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float):
        self.now += seconds


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def kv_store():
    return InMemoryKeyValueStore()


@pytest.fixture
def task_queue():
    return BackgroundTaskQueue(max_concurrency=2)


@pytest.fixture
def mock_redis():
    """Mock redis.asyncio client for testing."""
    mock = AsyncMock()
    mock.get.return_value = None
    mock.set.return_value = True
    mock.delete.return_value = 1
    mock.exists.return_value = 0
    return mock


def make_place(
    place_id: str,
    latitude: float,
    longitude: float,
    rating: float = 4.0,
    user_ratings_total: int = 100,
    price_level: int = 2,
    types: List[str] = None,
    business_status: str = "OPERATIONAL",
    name: str = None,
    opening_hours: List[dict] = None
) -> CandidatePlace:
    return CandidatePlace(
        place_id=place_id,
        name=name or f"Place {place_id}",
        address=f"{place_id} Sukhumvit Rd, Bangkok",
        rating=rating,
        user_ratings_total=user_ratings_total,
        price_level=price_level,
        types=types if types is not None else ["restaurant"],
        business_status=business_status,
        location=Location(latitude=latitude, longitude=longitude),
        opening_hours=opening_hours
    )


@pytest.fixture
def bangkok_places():
    """Eight operational places within a few kilometers of central Bangkok."""
    lat, lng = BANGKOK_CENTER
    return [
        make_place("p1", lat + 0.001, lng + 0.001, rating=4.5, user_ratings_total=1200, types=["cafe"]),
        make_place("p2", lat + 0.010, lng, rating=4.2, user_ratings_total=300, types=["restaurant", "food"]),
        make_place("p3", lat - 0.005, lng + 0.004, rating=3.9, user_ratings_total=50, types=["bar"]),
        make_place("p4", lat, lng - 0.020, rating=4.8, user_ratings_total=5000, types=["restaurant"]),
        make_place("p5", lat + 0.030, lng + 0.030, rating=4.0, user_ratings_total=10, types=["bakery"]),
        make_place("p6", lat - 0.040, lng, rating=3.5, user_ratings_total=0, price_level=None,
                   types=["night_club"]),
        make_place("p7", lat + 0.002, lng - 0.002, rating=4.1, user_ratings_total=800,
                   types=["cafe", "coffee_shop"]),
        make_place("p8", lat - 0.001, lng + 0.015, rating=4.4, user_ratings_total=2500,
                   types=["meal_takeaway"]),
    ]


@pytest.fixture
def place_store(bangkok_places):
    return InMemoryPlaceStore(bangkok_places)


@pytest.fixture
def test_settings():
    return Settings(
        cache_backend="memory",
        place_store_backend="memory",
        log_format="plain",
        _env_file=None
    )


@pytest.fixture
def container(test_settings, kv_store, place_store):
    return ServiceContainer(test_settings, kv_store, place_store)


@pytest.fixture
async def test_client(test_settings, container):
    """Create test client over in-memory services."""
    app = create_app(test_settings, container)
    app.state.container = container

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
        yield client

    await container.shutdown()
