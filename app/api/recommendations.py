"""
Recommendation and Place Availability API Endpoints
Provides REST API for ranked place recommendations and area coverage checks.
"""

from datetime import datetime
from typing import List, Optional
from fastapi import APIRouter, Depends, Query

from app.schemas.recommendations import (
    AvailabilityReport, AvailabilityStat, RecommendationResponse, UserPreference
)
from app.services.availability_service import PlaceAvailabilityService
from app.services.recommendation_service import RecommendationService, get_time_context
from app.utils.dependencies import get_availability_service, get_recommendation_service, get_user_id

router = APIRouter()


@router.get("/recommendations", response_model=RecommendationResponse)
async def get_recommendations(
    latitude: float = Query(..., description="User latitude"),
    longitude: float = Query(..., description="User longitude"),
    limit: Optional[int] = Query(None, description="Maximum recommendations to return"),
    at: Optional[datetime] = Query(None, description="Local time used for time-of-day and opening hours"),
    use_time_context: bool = Query(True, description="Bias scoring by time of day"),
    preference: UserPreference = Query(UserPreference.ANY, description="Food or drink preference"),
    include_closed: bool = Query(False, description="Keep places that are closed right now"),
    user_id: str = Depends(get_user_id),
    service: RecommendationService = Depends(get_recommendation_service)
):
    """
    Get ranked recommendations near a location, excluding places the user
    has already checked in to.

    - **latitude** / **longitude**: User position
    - **limit**: Maximum results (defaults to the configured limit)
    - **at**: Local time for time-of-day scoring and opening hours (defaults to now)
    - **use_time_context**: Disable to score without time-of-day bias
    - **preference**: `any`, `eat` or `drink`
    - **include_closed**: Keep closed places and skip the closed penalty

    An area without enough places returns an empty list with the observed count.
    """
    time_context = get_time_context(at) if use_time_context else None
    return await service.get_recommendations(
        user_id=user_id,
        latitude=latitude,
        longitude=longitude,
        limit=limit,
        time_context=time_context,
        user_preference=preference,
        include_closed=include_closed,
        at=at
    )


@router.get("/places/availability", response_model=AvailabilityReport)
async def check_place_availability(
    latitude: float = Query(..., description="Center latitude"),
    longitude: float = Query(..., description="Center longitude"),
    radius_meters: Optional[float] = Query(None, description="Search radius in meters"),
    minimum: Optional[int] = Query(None, description="Places required for recommendations"),
    service: PlaceAvailabilityService = Depends(get_availability_service)
):
    """Check whether an area holds enough places for recommendations."""
    return await service.build_report(latitude, longitude, radius_meters, minimum)


@router.get("/places/availability/stats", response_model=List[AvailabilityStat])
async def get_availability_stats(
    latitude: float = Query(..., description="Center latitude"),
    longitude: float = Query(..., description="Center longitude"),
    service: PlaceAvailabilityService = Depends(get_availability_service)
):
    """Place counts at 5, 10, 15, 20 and 25 km around a point."""
    return await service.get_availability_stats(latitude, longitude)
