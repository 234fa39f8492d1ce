"""
Location-based Recommendation Schemas
Defines data models for candidate places, scored recommendations and area availability.
"""

from typing import List, Optional
from datetime import datetime, timezone
from pydantic import BaseModel, ConfigDict, Field
from enum import Enum


OPERATIONAL = "OPERATIONAL"


class TimeOfDay(str, Enum):
    """Part of day used to bias scoring toward time-appropriate categories."""
    MORNING = "morning"
    LUNCH = "lunch"
    AFTERNOON = "afternoon"
    DINNER = "dinner"
    EVENING = "evening"


class UserPreference(str, Enum):
    """What the user is in the mood for."""
    ANY = "any"
    EAT = "eat"
    DRINK = "drink"


class Location(BaseModel):
    """Basic location with coordinates."""
    model_config = ConfigDict(frozen=True)

    latitude: float = Field(..., ge=-90, le=90, description="Latitude in decimal degrees")
    longitude: float = Field(..., ge=-180, le=180, description="Longitude in decimal degrees")


class TimeContext(BaseModel):
    """Derived part-of-day and weekend classification of an instant."""
    model_config = ConfigDict(frozen=True)

    time_of_day: TimeOfDay
    hour: int = Field(..., ge=0, le=23)
    is_weekend: bool
    instant: datetime


class OpeningTime(BaseModel):
    """Day and wall-clock time of an opening or closing. Day 0 is Sunday."""
    model_config = ConfigDict(frozen=True)

    day: int = Field(..., ge=0, le=6)
    time: str = Field(..., pattern=r"^([01]\d|2[0-3])[0-5]\d$", description="HHMM")

    @property
    def minutes(self) -> int:
        return int(self.time[:2]) * 60 + int(self.time[2:])


class OpeningPeriod(BaseModel):
    """One weekly opening period. A period without ``close`` never closes that day."""
    model_config = ConfigDict(frozen=True)

    open: OpeningTime
    close: Optional[OpeningTime] = None


class CandidatePlace(BaseModel):
    """A place eligible for scoring, read from the spatial store."""
    model_config = ConfigDict(frozen=True)

    place_id: str = Field(..., description="Unique place identifier")
    name: str
    address: Optional[str] = None
    rating: Optional[float] = Field(None, ge=0, le=5)
    user_ratings_total: int = Field(0, ge=0)
    price_level: Optional[int] = Field(None, ge=0, le=4)
    types: List[str] = Field(default_factory=list, description="Category tags")
    business_status: str = OPERATIONAL
    location: Location
    opening_hours: Optional[List[OpeningPeriod]] = Field(None, description="Weekly opening periods, if known")

    @property
    def is_operational(self) -> bool:
        return self.business_status == OPERATIONAL


class ScoredPlace(CandidatePlace):
    """Candidate place with per-request distance and score."""
    distance_km: float = Field(..., ge=0)
    recommendation_score: float = Field(..., ge=0, le=100)
    is_open: Optional[bool] = Field(None, description="None when opening hours are unknown")
    minutes_until_open: Optional[int] = None
    is_saved: bool = Field(False, description="Place is in one of the user's saved lists")


class RecommendationResponse(BaseModel):
    """Ranked recommendations plus area metadata."""
    places: List[ScoredPlace] = Field(default_factory=list)
    has_more: bool = False
    total_available: int = 0
    radius_km: float
    excluded_count: int = 0
    generated_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


class AvailabilityResult(BaseModel):
    """Whether an area holds enough places for recommendations."""
    has_enough: bool
    count: int = Field(..., ge=0, description="Exact count, informational")
    radius_meters: float
    minimum: int
    center: Location


class AvailabilityReport(AvailabilityResult):
    """Availability result with human-readable hints."""
    message: str
    radius_suggestion: Optional[str] = None


class PlaceCountResult(BaseModel):
    count: int = Field(..., ge=0)
    center: Location
    radius_meters: float


class AvailabilityStat(BaseModel):
    radius_meters: float
    radius_km: int
    count: int
