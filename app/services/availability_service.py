"""
Place Availability Service
Answers "are there enough places near this point" using the store's
short-circuiting radius primitive, and reports exact counts for display.
"""

import asyncio
from typing import Iterable, List, Optional, Sequence

from app.schemas.recommendations import (
    AvailabilityReport, AvailabilityResult, AvailabilityStat, Location, PlaceCountResult
)
from app.services.place_store import PlaceStore
from app.utils.geo import (
    meters_to_km, validate_coordinates, validate_minimum_places, validate_radius
)
from app.utils.logging import GeospatialLogger

logger = GeospatialLogger(__name__)

DEFAULT_RADIUS_METERS = 15000
DEFAULT_MINIMUM_PLACES = 5
DEFAULT_STATS_RADII = (5000, 10000, 15000, 20000, 25000)
MAX_SUGGESTED_RADIUS_KM = 50
RADIUS_SUGGESTION_STEP_KM = 10

# Rough bounds of the launch market (Thailand), generous to avoid false negatives
SUPPORTED_AREA = {"north": 21, "south": 5, "east": 106, "west": 97}


class PlaceAvailabilityService:
    """Service for checking place availability in geographic areas."""

    def __init__(
        self,
        store: PlaceStore,
        default_radius_meters: float = DEFAULT_RADIUS_METERS,
        default_minimum_places: int = DEFAULT_MINIMUM_PLACES
    ):
        self.store = store
        self.default_radius_meters = default_radius_meters
        self.default_minimum_places = default_minimum_places

    async def check_place_availability(
        self,
        latitude: float,
        longitude: float,
        radius_meters: Optional[float] = None,
        minimum_places: Optional[int] = None
    ) -> AvailabilityResult:
        """Check if there are enough places in an area for recommendations.

        ``has_enough`` comes from the short-circuiting primitive. ``count`` is
        fetched separately and may disagree with it under concurrent writes.
        """
        radius_meters = self.default_radius_meters if radius_meters is None else radius_meters
        minimum_places = self.default_minimum_places if minimum_places is None else minimum_places

        validate_coordinates(latitude, longitude)
        validate_radius(radius_meters)
        validate_minimum_places(minimum_places)

        has_enough = await self.store.has_minimum_within_radius(
            latitude, longitude, radius_meters, minimum_places
        )
        count = await self.store.count_within_radius(latitude, longitude, radius_meters)

        logger.log_availability_check(latitude, longitude, radius_meters, minimum_places, has_enough, count)

        return AvailabilityResult(
            has_enough=bool(has_enough),
            count=count,
            radius_meters=radius_meters,
            minimum=minimum_places,
            center=Location(latitude=latitude, longitude=longitude)
        )

    async def get_place_count(
        self,
        latitude: float,
        longitude: float,
        radius_meters: Optional[float] = None
    ) -> PlaceCountResult:
        """Get the exact count of places within a radius."""
        radius_meters = self.default_radius_meters if radius_meters is None else radius_meters
        validate_coordinates(latitude, longitude)
        validate_radius(radius_meters)

        count = await self.store.count_within_radius(latitude, longitude, radius_meters)
        return PlaceCountResult(
            count=count,
            center=Location(latitude=latitude, longitude=longitude),
            radius_meters=radius_meters
        )

    async def check_multiple_locations(
        self,
        locations: Iterable[Location],
        radius_meters: Optional[float] = None,
        minimum_places: Optional[int] = None
    ) -> List[AvailabilityResult]:
        return list(await asyncio.gather(*[
            self.check_place_availability(loc.latitude, loc.longitude, radius_meters, minimum_places)
            for loc in locations
        ]))

    async def get_availability_stats(
        self,
        latitude: float,
        longitude: float,
        radii: Sequence[float] = DEFAULT_STATS_RADII
    ) -> List[AvailabilityStat]:
        """Place counts for several radii around one point."""
        validate_coordinates(latitude, longitude)

        results = await asyncio.gather(*[
            self.get_place_count(latitude, longitude, radius) for radius in radii
        ])
        return [
            AvailabilityStat(
                radius_meters=result.radius_meters,
                radius_km=meters_to_km(result.radius_meters),
                count=result.count
            )
            for result in results
        ]

    async def build_report(
        self,
        latitude: float,
        longitude: float,
        radius_meters: Optional[float] = None,
        minimum_places: Optional[int] = None
    ) -> AvailabilityReport:
        result = await self.check_place_availability(latitude, longitude, radius_meters, minimum_places)
        return AvailabilityReport(
            **result.model_dump(),
            message=format_availability_message(result),
            radius_suggestion=get_radius_recommendation(result)
        )


def format_availability_message(result: AvailabilityResult) -> str:
    radius_km = meters_to_km(result.radius_meters)
    if result.has_enough:
        return f"Found {result.count} places within {radius_km}km - recommendations available!"
    return f"Only {result.count} places within {radius_km}km - need {result.minimum} for recommendations"


def get_radius_recommendation(result: AvailabilityResult) -> Optional[str]:
    if result.has_enough:
        return None
    suggested_km = min(meters_to_km(result.radius_meters) + RADIUS_SUGGESTION_STEP_KM, MAX_SUGGESTED_RADIUS_KM)
    return f"Try expanding search radius to {suggested_km}km"


def is_in_supported_area(latitude: float, longitude: float) -> bool:
    return (
        SUPPORTED_AREA["south"] <= latitude <= SUPPORTED_AREA["north"] and
        SUPPORTED_AREA["west"] <= longitude <= SUPPORTED_AREA["east"]
    )

