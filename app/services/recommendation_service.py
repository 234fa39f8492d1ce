"""
Location-based Recommendation Service
Ranks nearby, not-yet-visited food and drink places for a user by rating,
popularity, distance, time of day, opening hours and saved lists. Internal
failures degrade to an empty result; only invalid input is raised to the caller.
"""

import math
import time
from datetime import datetime
from typing import Collection, Dict, FrozenSet, List, Optional, Sequence

from app.errors import GeoValidationError
from app.schemas.recommendations import (
    CandidatePlace, RecommendationResponse, ScoredPlace, TimeContext, TimeOfDay, UserPreference
)
from app.services.availability_service import PlaceAvailabilityService
from app.services.place_store import PlaceStore
from app.utils.geo import haversine_km, km_to_meters, validate_coordinates
from app.utils.logging import recommendation_logger
from app.utils.opening_hours import is_open_at, minutes_until_open

BASE_SCORE = 50.0
MAX_RATING_BONUS = 40.0
MAX_REVIEW_BONUS = 20.0
MAX_DISTANCE_PENALTY = 15.0
PRICE_KNOWN_BONUS = 2.0
NOT_OPERATIONAL_PENALTY = 20.0
MAX_DISTANCE_KM = 15.0
SAVED_PLACE_BONUS = 25.0
CLOSED_PENALTY = 50.0
OPENING_SOON_PENALTY = 10.0
OPENING_SOON_MINUTES = 60

# only food and drink places are recommended
RECOMMENDABLE_TYPES = frozenset({
    "restaurant", "cafe", "bar", "bakery", "coffee_shop", "meal_takeaway", "meal_delivery",
    "food", "brewery", "wine_bar", "night_club", "bistro", "pub", "fast_food",
})

# preferred types get the bonus once, avoided types get the penalty once
TIME_PREFERENCES: Dict[TimeOfDay, Dict] = {
    TimeOfDay.MORNING: {
        "preferred": frozenset({"cafe", "bakery", "breakfast_restaurant"}),
        "bonus": 10,
        "avoided": frozenset({"bar", "night_club"}),
        "penalty": -15,
    },
    TimeOfDay.LUNCH: {
        "preferred": frozenset({"restaurant", "meal_takeaway", "food"}),
        "bonus": 8,
        "avoided": frozenset({"bar", "night_club"}),
        "penalty": -10,
    },
    TimeOfDay.AFTERNOON: {
        "preferred": frozenset({"cafe", "shopping_mall", "tourist_attraction"}),
        "bonus": 5,
        "avoided": frozenset({"night_club"}),
        "penalty": -10,
    },
    TimeOfDay.DINNER: {
        "preferred": frozenset({"restaurant", "meal_delivery", "meal_takeaway"}),
        "bonus": 10,
        "avoided": frozenset(),
        "penalty": 0,
    },
    TimeOfDay.EVENING: {
        "preferred": frozenset({"bar", "night_club", "restaurant"}),
        "bonus": 8,
        "avoided": frozenset(),
        "penalty": 0,
    },
}

# (primary, secondary, adjacent) type sets per preference
PREFERENCE_TIERS: Dict[UserPreference, Sequence[FrozenSet[str]]] = {
    UserPreference.EAT: (
        frozenset({"restaurant", "meal_takeaway", "meal_delivery", "bistro", "fast_food"}),
        frozenset({"food", "bakery"}),
        frozenset({"cafe", "coffee_shop"}),
    ),
    UserPreference.DRINK: (
        frozenset({"cafe", "coffee_shop", "bar", "wine_bar", "brewery", "pub"}),
        frozenset({"night_club"}),
        frozenset({"restaurant"}),
    ),
}
PREFERENCE_BONUSES = (15, 10, 3)

FOOD_TYPES = frozenset({"restaurant", "meal_takeaway", "meal_delivery", "food", "bakery", "bistro", "fast_food"})
PURE_DRINK_TYPES = frozenset({"bar", "wine_bar", "brewery"})
DRINK_TYPES = frozenset({"cafe", "coffee_shop", "bar", "night_club", "brewery", "wine_bar", "pub"})


def clamp_score(score: float) -> float:
    return max(0.0, min(100.0, score))


def get_time_context(instant: Optional[datetime] = None) -> TimeContext:
    """Classify an instant (local time) into a part of day."""
    instant = instant or datetime.now()
    hour = instant.hour

    if 6 <= hour < 11:
        time_of_day = TimeOfDay.MORNING
    elif 11 <= hour < 15:
        time_of_day = TimeOfDay.LUNCH
    elif 15 <= hour < 17:
        time_of_day = TimeOfDay.AFTERNOON
    elif 17 <= hour < 21:
        time_of_day = TimeOfDay.DINNER
    else:
        time_of_day = TimeOfDay.EVENING

    return TimeContext(
        time_of_day=time_of_day,
        hour=hour,
        is_weekend=instant.weekday() >= 5,
        instant=instant
    )


def calculate_base_score(place: CandidatePlace, distance_km: float, max_distance_km: float = MAX_DISTANCE_KM) -> float:
    """Score a place from its own attributes and its distance to the user."""
    score = BASE_SCORE

    if place.rating:
        score += (place.rating / 5) * MAX_RATING_BONUS

    if place.user_ratings_total > 0:
        score += min(MAX_REVIEW_BONUS, math.log10(place.user_ratings_total + 1) * 5)

    score -= (distance_km / max_distance_km) * MAX_DISTANCE_PENALTY

    if place.price_level is not None:
        score += PRICE_KNOWN_BONUS

    if not place.is_operational:
        score -= NOT_OPERATIONAL_PENALTY

    return clamp_score(score)


def apply_time_scoring(score: float, types: Sequence[str], time_of_day: TimeOfDay) -> float:
    preferences = TIME_PREFERENCES[time_of_day]
    tags = set(types)

    if tags & preferences["preferred"]:
        score += preferences["bonus"]
    if tags & preferences["avoided"]:
        score += preferences["penalty"]

    return clamp_score(score)


def apply_user_preference_scoring(score: float, types: Sequence[str], preference: UserPreference) -> float:
    if preference is UserPreference.ANY:
        return score

    tags = set(types)
    for tier, bonus in zip(PREFERENCE_TIERS[preference], PREFERENCE_BONUSES):
        if tags & tier:
            score += bonus
            break

    return clamp_score(score)


def matches_user_preference(types: Sequence[str], preference: UserPreference) -> bool:
    tags = set(types)
    if preference is UserPreference.EAT:
        return bool(tags & FOOD_TYPES) and not tags & PURE_DRINK_TYPES
    if preference is UserPreference.DRINK:
        return bool(tags & DRINK_TYPES)
    return True


def is_recommendable(types: Sequence[str]) -> bool:
    return bool(set(types) & RECOMMENDABLE_TYPES)


def apply_opening_hours_scoring(score: float, is_open: Optional[bool], opening_soon: bool = False) -> float:
    """Penalize a place known to be closed. Unknown hours change nothing."""
    if is_open is False:
        score -= OPENING_SOON_PENALTY if opening_soon else CLOSED_PENALTY
    return clamp_score(score)


def apply_saved_place_boost(score: float, is_saved: bool) -> float:
    if is_saved:
        score += SAVED_PLACE_BONUS
    return clamp_score(score)


class RecommendationService:
    """Service for personalized place recommendations around a location."""

    def __init__(
        self,
        store: PlaceStore,
        availability_service: PlaceAvailabilityService,
        radius_km: float = 15.0,
        minimum_places: int = 5,
        default_limit: int = 10,
        max_limit: int = 50,
        candidate_multiplier: int = 2
    ):
        self.store = store
        self.availability_service = availability_service
        self.radius_km = radius_km
        self.minimum_places = minimum_places
        self.default_limit = default_limit
        self.max_limit = max_limit
        self.candidate_multiplier = candidate_multiplier

    @classmethod
    def from_settings(cls, store: PlaceStore, availability_service: PlaceAvailabilityService, settings):
        return cls(
            store,
            availability_service,
            radius_km=settings.recommendation_radius_km,
            minimum_places=settings.recommendation_minimum_places,
            default_limit=settings.recommendation_default_limit,
            max_limit=settings.recommendation_max_limit,
            candidate_multiplier=settings.recommendation_candidate_multiplier
        )

    def _empty(self, total_available: int = 0, excluded_count: int = 0) -> RecommendationResponse:
        return RecommendationResponse(
            places=[],
            has_more=False,
            total_available=total_available,
            radius_km=self.radius_km,
            excluded_count=excluded_count
        )

    def _validate_limit(self, limit: Optional[int]) -> int:
        limit = self.default_limit if limit is None else limit
        if isinstance(limit, bool) or not isinstance(limit, int) or limit < 1 or limit > self.max_limit:
            raise GeoValidationError(f"Limit must be an integer between 1 and {self.max_limit}")
        return limit

    async def get_recommendations(
        self,
        user_id: str,
        latitude: float,
        longitude: float,
        limit: Optional[int] = None,
        time_context: Optional[TimeContext] = None,
        user_preference: UserPreference = UserPreference.ANY,
        include_closed: bool = False,
        at: Optional[datetime] = None
    ) -> RecommendationResponse:
        """Get ranked recommendations for a user at a location.

        Only food and drink places are recommended. Places in the user's saved
        lists are boosted. Unless ``include_closed`` is set, places known to be
        closed at ``at`` are dropped, except those opening within the hour.

        Raises GeoValidationError for invalid coordinates or limit. Any other
        failure yields an empty response carrying the configured radius.
        """
        validate_coordinates(latitude, longitude)
        limit = self._validate_limit(limit)
        start_time = time.time()
        if at is None:
            at = time_context.instant if time_context is not None else datetime.now()

        try:
            availability = await self.availability_service.check_place_availability(
                latitude, longitude, km_to_meters(self.radius_km), self.minimum_places
            )
            if not availability.has_enough:
                return self._empty(total_available=availability.count)

            visited_ids = await self._get_visited_ids(user_id)
            saved_ids = set(await self._get_saved_ids(user_id))
            candidates = await self._get_candidates(latitude, longitude, limit, visited_ids)

            visited = set(visited_ids)
            scored = [
                self.score_place(
                    place, latitude, longitude, time_context, user_preference,
                    saved_ids=saved_ids, at=at, include_closed=include_closed
                )
                for place in candidates
                if place.place_id not in visited and is_recommendable(place.types)
            ]
            if not include_closed:
                scored = [
                    place for place in scored
                    if place.is_open is not False or place.minutes_until_open is not None
                ]
            if user_preference is not UserPreference.ANY:
                scored = [place for place in scored if matches_user_preference(place.types, user_preference)]

            # sorted() is stable with reverse=True, ties keep store order
            ranked = sorted(scored, key=lambda p: p.recommendation_score, reverse=True)

            response = RecommendationResponse(
                places=ranked[:limit],
                has_more=len(ranked) > limit,
                total_available=availability.count,
                radius_km=self.radius_km,
                excluded_count=len(visited)
            )
        except GeoValidationError:
            raise
        except Exception as e:
            recommendation_logger.log_error(e, "get_recommendations", {
                'user_id': user_id, 'latitude': latitude, 'longitude': longitude
            })
            return self._empty()

        recommendation_logger.log_recommendation_request(
            user_id, latitude, longitude, len(response.places), response.total_available,
            (time.time() - start_time) * 1000
        )
        return response

    async def _get_visited_ids(self, user_id: str) -> List[str]:
        try:
            return list(await self.store.list_visited_ids(user_id))
        except Exception as e:
            recommendation_logger.logger.warning(f"Could not load visited places for {user_id}: {e}")
            return []

    async def _get_saved_ids(self, user_id: str) -> List[str]:
        try:
            return list(await self.store.list_saved_ids(user_id))
        except Exception as e:
            recommendation_logger.logger.warning(f"Could not load saved places for {user_id}: {e}")
            return []

    async def _get_candidates(
        self,
        latitude: float,
        longitude: float,
        limit: int,
        visited_ids: Sequence[str]
    ) -> List[CandidatePlace]:
        fetch_limit = limit * self.candidate_multiplier
        try:
            return await self.store.list_within_radius(
                latitude, longitude, self.radius_km, fetch_limit, visited_ids
            )
        except Exception as e:
            recommendation_logger.logger.warning(f"Radius query failed, falling back to place list: {e}")

        places = await self.store.list_places(fetch_limit, visited_ids)
        return list(places)[:fetch_limit]

    def score_place(
        self,
        place: CandidatePlace,
        latitude: float,
        longitude: float,
        time_context: Optional[TimeContext] = None,
        user_preference: UserPreference = UserPreference.ANY,
        saved_ids: Collection[str] = (),
        at: Optional[datetime] = None,
        include_closed: bool = False
    ) -> ScoredPlace:
        distance_km = haversine_km(latitude, longitude, place.location.latitude, place.location.longitude)
        at = at or datetime.now()

        is_open = is_open_at(place.opening_hours, at)
        wait = minutes_until_open(place.opening_hours, at) if is_open is False else None
        opening_soon = wait is not None and wait <= OPENING_SOON_MINUTES
        is_saved = place.place_id in saved_ids

        score = calculate_base_score(place, distance_km, self.radius_km)
        if time_context is not None:
            score = apply_time_scoring(score, place.types, time_context.time_of_day)
        score = apply_user_preference_scoring(score, place.types, user_preference)
        if not include_closed:
            score = apply_opening_hours_scoring(score, is_open, opening_soon)
        score = apply_saved_place_boost(score, is_saved)

        return ScoredPlace(
            **place.model_dump(),
            distance_km=round(distance_km, 2),
            recommendation_score=round(score, 2),
            is_open=is_open,
            minutes_until_open=wait if opening_soon else None,
            is_saved=is_saved
        )
