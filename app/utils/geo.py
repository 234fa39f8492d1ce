"""
Geo math helpers: great-circle distance, unit conversion and input validation.
"""

import math

from app.errors import GeoValidationError

EARTH_RADIUS_KM = 6371.0
MAX_RADIUS_METERS = 100_000


def to_radians(degrees: float) -> float:
    return degrees * (math.pi / 180)


def haversine_km(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    """Calculate haversine distance between two points in kilometers.

    NaN inputs propagate to a NaN result; validate coordinates first.
    """
    delta_lat = to_radians(lat2 - lat1)
    delta_lon = to_radians(lon2 - lon1)

    a = (math.sin(delta_lat / 2) ** 2 +
         math.cos(to_radians(lat1)) * math.cos(to_radians(lat2)) * math.sin(delta_lon / 2) ** 2)
    c = 2 * math.atan2(math.sqrt(a), math.sqrt(1 - a))

    return EARTH_RADIUS_KM * c


def haversine_m(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    return haversine_km(lat1, lon1, lat2, lon2) * 1000


def meters_to_km(meters: float) -> int:
    """Whole kilometers, for display."""
    return round(meters / 1000)


def km_to_meters(km: float) -> float:
    return km * 1000


def validate_coordinates(latitude: float, longitude: float) -> None:
    if isinstance(latitude, bool) or isinstance(longitude, bool) or \
            not isinstance(latitude, (int, float)) or not isinstance(longitude, (int, float)):
        raise GeoValidationError("Latitude and longitude must be numbers")

    if not math.isfinite(latitude) or latitude < -90 or latitude > 90:
        raise GeoValidationError("Latitude must be between -90 and 90 degrees")

    if not math.isfinite(longitude) or longitude < -180 or longitude > 180:
        raise GeoValidationError("Longitude must be between -180 and 180 degrees")


def validate_radius(radius_meters: float) -> None:
    if not isinstance(radius_meters, (int, float)) or not math.isfinite(radius_meters) or radius_meters <= 0:
        raise GeoValidationError("Radius must be a positive number")

    if radius_meters > MAX_RADIUS_METERS:
        raise GeoValidationError("Radius cannot exceed 100km")


def validate_minimum_places(minimum_places: int) -> None:
    if not isinstance(minimum_places, int) or isinstance(minimum_places, bool) or minimum_places < 1:
        raise GeoValidationError("Minimum places must be a positive integer")
