"""
Unit tests for the recommendation service.
"""

import pytest
from datetime import datetime
from unittest.mock import AsyncMock

from app.errors import GeoValidationError, UpstreamUnavailableError
from app.schemas.recommendations import TimeOfDay, UserPreference
from app.services.availability_service import PlaceAvailabilityService
from app.services.place_store import InMemoryPlaceStore
from app.services.recommendation_service import (
    RecommendationService, apply_opening_hours_scoring, apply_saved_place_boost, apply_time_scoring,
    apply_user_preference_scoring, calculate_base_score, get_time_context, is_recommendable,
    matches_user_preference
)
from tests.conftest import BANGKOK_CENTER, make_place


def build_service(store) -> RecommendationService:
    return RecommendationService(store, PlaceAvailabilityService(store))


class TestScoring:
    """Test the scoring formula and its adjustments."""

    def test_rating_only(self):
        place = make_place("a", 0, 0, rating=5.0, user_ratings_total=0, price_level=None)
        assert calculate_base_score(place, 0) == 90

    def test_all_components(self):
        place = make_place("a", 0, 0, rating=4.0, user_ratings_total=99, price_level=2)
        # 50 + 32 (rating) + 10 (reviews) + 2 (price) - 7.5 (distance)
        assert calculate_base_score(place, 7.5) == pytest.approx(86.5)

    def test_free_price_tier_counts_as_known(self):
        place = make_place("a", 0, 0, rating=None, user_ratings_total=0, price_level=0)
        assert calculate_base_score(place, 0) == 52

    def test_review_bonus_is_capped(self):
        place = make_place("a", 0, 0, rating=None, user_ratings_total=10_000_000, price_level=None)
        assert calculate_base_score(place, 0) == 70

    def test_non_operational_penalty(self):
        place = make_place("a", 0, 0, rating=None, user_ratings_total=0, price_level=None,
                           business_status="CLOSED_TEMPORARILY")
        assert calculate_base_score(place, 15) == 15

    @pytest.mark.parametrize("rating, reviews, distance", [
        (5.0, 10_000_000, 0),
        (0.0, 0, 0),
        (0.0, 0, 500),
        (5.0, 0, 20000),
        (2.5, 42, 3.3),
    ])
    def test_score_is_clamped(self, rating, reviews, distance):
        place = make_place("a", 0, 0, rating=rating, user_ratings_total=reviews, business_status="CLOSED_PERMANENTLY")
        score = calculate_base_score(place, distance)
        assert 0 <= score <= 100
        assert 0 <= apply_time_scoring(score, ["cafe", "bar"], TimeOfDay.MORNING) <= 100
        assert 0 <= apply_time_scoring(score, ["bar"], TimeOfDay.EVENING) <= 100

    def test_time_bonus_applies_once(self):
        assert apply_time_scoring(50, ["cafe", "bakery", "breakfast_restaurant"], TimeOfDay.MORNING) == 60

    def test_time_bonus_and_penalty_both_apply(self):
        assert apply_time_scoring(50, ["cafe", "bar", "night_club"], TimeOfDay.MORNING) == 45

    def test_dinner_has_no_penalty(self):
        assert apply_time_scoring(50, ["bar"], TimeOfDay.DINNER) == 50
        assert apply_time_scoring(50, ["restaurant"], TimeOfDay.DINNER) == 60

    def test_time_scoring_is_clamped(self):
        assert apply_time_scoring(95, ["cafe"], TimeOfDay.MORNING) == 100
        assert apply_time_scoring(5, ["bar"], TimeOfDay.MORNING) == 0

    @pytest.mark.parametrize("types, preference, expected", [
        (["restaurant"], UserPreference.EAT, 65),
        (["bakery"], UserPreference.EAT, 60),
        (["cafe"], UserPreference.EAT, 53),
        (["bar"], UserPreference.DRINK, 65),
        (["night_club"], UserPreference.DRINK, 60),
        (["restaurant"], UserPreference.DRINK, 53),
        (["restaurant"], UserPreference.ANY, 50),
    ])
    def test_user_preference_bonus(self, types, preference, expected):
        assert apply_user_preference_scoring(50, types, preference) == expected

    @pytest.mark.parametrize("types, preference, expected", [
        (["restaurant"], UserPreference.EAT, True),
        (["restaurant", "bar"], UserPreference.EAT, False),
        (["cafe"], UserPreference.EAT, False),
        (["cafe"], UserPreference.DRINK, True),
        (["bakery"], UserPreference.DRINK, False),
        (["museum"], UserPreference.ANY, True),
    ])
    def test_matches_user_preference(self, types, preference, expected):
        assert matches_user_preference(types, preference) is expected

    @pytest.mark.parametrize("types, expected", [
        (["restaurant"], True),
        (["pub", "point_of_interest"], True),
        (["museum", "tourist_attraction"], False),
        ([], False),
    ])
    def test_is_recommendable(self, types, expected):
        assert is_recommendable(types) is expected

    @pytest.mark.parametrize("is_open, opening_soon, expected", [
        (True, False, 70),
        (None, False, 70),
        (False, True, 60),
        (False, False, 20),
    ])
    def test_opening_hours_scoring(self, is_open, opening_soon, expected):
        assert apply_opening_hours_scoring(70, is_open, opening_soon) == expected

    def test_opening_hours_scoring_is_clamped(self):
        assert apply_opening_hours_scoring(30, False) == 0

    def test_saved_place_boost(self):
        assert apply_saved_place_boost(60, True) == 85
        assert apply_saved_place_boost(60, False) == 60
        assert apply_saved_place_boost(90, True) == 100


class TestTimeContext:
    """Test time-of-day derivation."""

    @pytest.mark.parametrize("hour, expected", [
        (6, TimeOfDay.MORNING), (10, TimeOfDay.MORNING),
        (11, TimeOfDay.LUNCH), (14, TimeOfDay.LUNCH),
        (15, TimeOfDay.AFTERNOON), (16, TimeOfDay.AFTERNOON),
        (17, TimeOfDay.DINNER), (20, TimeOfDay.DINNER),
        (21, TimeOfDay.EVENING), (0, TimeOfDay.EVENING), (5, TimeOfDay.EVENING),
    ])
    def test_time_of_day(self, hour, expected):
        context = get_time_context(datetime(2024, 6, 3, hour, 30))
        assert context.time_of_day is expected
        assert context.hour == hour

    def test_weekend(self):
        assert get_time_context(datetime(2024, 6, 1, 12)).is_weekend is True   # Saturday
        assert get_time_context(datetime(2024, 6, 2, 12)).is_weekend is True   # Sunday
        assert get_time_context(datetime(2024, 6, 3, 12)).is_weekend is False  # Monday

    def test_defaults_to_now(self):
        assert get_time_context().instant <= datetime.now()


class TestRecommendationService:
    """Test cases for RecommendationService."""

    @pytest.fixture
    def service(self, place_store):
        return build_service(place_store)

    async def test_results_are_sorted_and_limited(self, service):
        response = await service.get_recommendations("user-1", *BANGKOK_CENTER, limit=3)

        scores = [p.recommendation_score for p in response.places]
        assert len(scores) == 3
        assert scores == sorted(scores, reverse=True)
        assert response.has_more is True
        assert response.total_available == 8
        assert response.radius_km == 15
        assert response.excluded_count == 0

    async def test_scores_and_distances_are_rounded(self, service):
        response = await service.get_recommendations("user-1", *BANGKOK_CENTER)

        for place in response.places:
            assert place.recommendation_score == round(place.recommendation_score, 2)
            assert place.distance_km == round(place.distance_km, 2)
            assert 0 <= place.recommendation_score <= 100

    async def test_has_more_false_when_everything_fits(self, service):
        response = await service.get_recommendations("user-1", *BANGKOK_CENTER, limit=10)

        assert len(response.places) == 8
        assert response.has_more is False

    async def test_visited_places_are_excluded(self, place_store):
        place_store.add_check_in("user-1", "p1")
        place_store.add_check_in("user-1", "p1")
        place_store.add_check_in("user-1", "p4")
        service = build_service(place_store)

        response = await service.get_recommendations("user-1", *BANGKOK_CENTER, limit=10)

        ids = {p.place_id for p in response.places}
        assert "p1" not in ids
        assert "p4" not in ids
        assert response.excluded_count == 2

    async def test_visited_places_excluded_even_if_store_returns_them(self, bangkok_places):
        store = AsyncMock()
        store.has_minimum_within_radius.return_value = True
        store.count_within_radius.return_value = 8
        store.list_visited_ids.return_value = ["p1"]
        store.list_within_radius.return_value = bangkok_places
        service = build_service(store)

        response = await service.get_recommendations("user-1", *BANGKOK_CENTER, limit=4)

        store.list_within_radius.assert_awaited_once_with(BANGKOK_CENTER[0], BANGKOK_CENTER[1], 15.0, 8, ["p1"])
        assert "p1" not in {p.place_id for p in response.places}

    async def test_not_enough_places_returns_empty_result(self):
        """Four places near central Bangkok are below the minimum of five."""
        lat, lng = BANGKOK_CENTER
        store = InMemoryPlaceStore([make_place(f"p{i}", lat + i * 0.002, lng) for i in range(4)])
        service = build_service(store)

        response = await service.get_recommendations("user-1", lat, lng)

        assert response.places == []
        assert response.total_available == 4
        assert response.has_more is False

    async def test_ties_keep_store_order(self):
        lat, lng = BANGKOK_CENTER
        store = InMemoryPlaceStore([make_place(f"t{i}", lat + 0.001, lng) for i in range(6)])
        service = build_service(store)

        response = await service.get_recommendations("user-1", lat, lng, limit=6)

        assert [p.place_id for p in response.places] == [f"t{i}" for i in range(6)]

    async def test_time_context_changes_ranking(self, service):
        lat, lng = BANGKOK_CENTER
        morning = await service.get_recommendations("u", lat, lng, time_context=get_time_context(datetime(2024, 6, 3, 8)))
        evening = await service.get_recommendations("u", lat, lng, time_context=get_time_context(datetime(2024, 6, 3, 22)))

        morning_scores = {p.place_id: p.recommendation_score for p in morning.places}
        evening_scores = {p.place_id: p.recommendation_score for p in evening.places}
        assert morning_scores["p3"] < evening_scores["p3"]  # bar
        assert morning_scores["p5"] > evening_scores["p5"]  # bakery

    async def test_user_preference_filters_results(self, service):
        response = await service.get_recommendations("u", *BANGKOK_CENTER, user_preference=UserPreference.DRINK)

        assert {p.place_id for p in response.places} == {"p1", "p3", "p6", "p7"}

    async def test_radius_query_failure_falls_back_to_place_list(self, bangkok_places):
        class FlakyStore(InMemoryPlaceStore):
            async def list_within_radius(self, *args, **kwargs):
                raise UpstreamUnavailableError("PostGIS unavailable")

        store = FlakyStore(bangkok_places)
        store.add_check_in("user-1", "p2")
        service = build_service(store)

        response = await service.get_recommendations("user-1", *BANGKOK_CENTER, limit=2)

        assert len(response.places) == 2
        assert response.has_more is True
        assert "p2" not in {p.place_id for p in response.places}

    async def test_visited_lookup_failure_is_ignored(self, bangkok_places):
        class NoHistoryStore(InMemoryPlaceStore):
            async def list_visited_ids(self, user_id):
                raise UpstreamUnavailableError("check-ins unavailable")

        service = build_service(NoHistoryStore(bangkok_places))

        response = await service.get_recommendations("user-1", *BANGKOK_CENTER)

        assert len(response.places) == 8
        assert response.excluded_count == 0

    async def test_internal_failure_returns_empty_result(self):
        store = AsyncMock()
        store.has_minimum_within_radius.side_effect = UpstreamUnavailableError("database down")
        service = build_service(store)

        response = await service.get_recommendations("user-1", *BANGKOK_CENTER)

        assert response.places == []
        assert response.has_more is False
        assert response.total_available == 0
        assert response.radius_km == 15

    async def test_generated_at_is_timezone_aware(self, service):
        response = await service.get_recommendations("user-1", *BANGKOK_CENTER)
        assert response.generated_at.tzinfo is not None

    async def test_only_food_and_drink_places_are_recommended(self, bangkok_places):
        lat, lng = BANGKOK_CENTER
        museum = make_place("m1", lat + 0.001, lng, rating=5.0, user_ratings_total=9000, types=["museum"])
        service = build_service(InMemoryPlaceStore(bangkok_places + [museum]))

        response = await service.get_recommendations("user-1", lat, lng, limit=20)

        assert "m1" not in {p.place_id for p in response.places}
        assert len(response.places) == 8

    async def test_saved_places_are_boosted(self, place_store):
        service = build_service(place_store)
        before = await service.get_recommendations("user-1", *BANGKOK_CENTER)

        place_store.add_saved_place("user-1", "p6")
        after = await service.get_recommendations("user-1", *BANGKOK_CENTER)

        saved_before = next(p for p in before.places if p.place_id == "p6")
        saved_after = next(p for p in after.places if p.place_id == "p6")
        assert saved_before.is_saved is False
        assert saved_after.is_saved is True
        assert saved_after.recommendation_score == pytest.approx(saved_before.recommendation_score + 25, abs=0.01)

    async def test_saved_lookup_failure_is_ignored(self, bangkok_places):
        class NoListsStore(InMemoryPlaceStore):
            async def list_saved_ids(self, user_id):
                raise UpstreamUnavailableError("lists unavailable")

        service = build_service(NoListsStore(bangkok_places))

        response = await service.get_recommendations("user-1", *BANGKOK_CENTER)

        assert len(response.places) == 8
        assert not any(p.is_saved for p in response.places)


class TestOpeningHoursRanking:
    """Test how opening hours affect recommendations.

    Requests are made on Monday 2024-06-03 at 08:00; Monday is day 1.
    """

    AT = datetime(2024, 6, 3, 8, 0)

    @pytest.fixture
    def store(self, bangkok_places):
        lat, lng = BANGKOK_CENTER
        return InMemoryPlaceStore(bangkok_places + [
            make_place("open", lat + 0.001, lng, opening_hours=[
                {"open": {"day": 1, "time": "0700"}, "close": {"day": 1, "time": "2200"}}
            ]),
            make_place("soon", lat + 0.001, lng, opening_hours=[
                {"open": {"day": 1, "time": "0830"}, "close": {"day": 1, "time": "2200"}}
            ]),
            make_place("later", lat + 0.001, lng, opening_hours=[
                {"open": {"day": 1, "time": "0930"}, "close": {"day": 1, "time": "2200"}}
            ]),
        ])

    async def test_closed_places_are_dropped_unless_opening_soon(self, store):
        service = build_service(store)

        response = await service.get_recommendations("user-1", *BANGKOK_CENTER, limit=20, at=self.AT)

        places = {p.place_id: p for p in response.places}
        assert "later" not in places
        assert places["open"].is_open is True
        assert places["soon"].is_open is False
        assert places["soon"].minutes_until_open == 30
        assert places["p1"].is_open is None
        assert places["soon"].recommendation_score == pytest.approx(places["open"].recommendation_score - 10, abs=0.01)

    async def test_include_closed_keeps_places_without_penalty(self, store):
        service = build_service(store)

        response = await service.get_recommendations(
            "user-1", *BANGKOK_CENTER, limit=20, at=self.AT, include_closed=True
        )

        places = {p.place_id: p for p in response.places}
        assert places["later"].is_open is False
        assert places["later"].recommendation_score == places["open"].recommendation_score
        assert places["soon"].recommendation_score == places["open"].recommendation_score

    async def test_time_context_instant_is_used_for_hours(self, store):
        service = build_service(store)

        response = await service.get_recommendations(
            "user-1", *BANGKOK_CENTER, limit=20, time_context=get_time_context(datetime(2024, 6, 3, 10, 0))
        )

        assert "later" in {p.place_id for p in response.places}


class TestRecommendationInputValidation:
    """Test input validation."""

    @pytest.fixture
    def service(self, place_store):
        return build_service(place_store)

    @pytest.mark.parametrize("lat, lng, limit", [
        (91, 100.5, None),
        (13.7, 181, None),
        (13.7, 100.5, 0),
        (13.7, 100.5, 51),
    ])
    async def test_invalid_input_raises(self, service, lat, lng, limit):
        with pytest.raises(GeoValidationError):
            await service.get_recommendations("user-1", lat, lng, limit=limit)
