"""
Place Store
Spatial primitives the recommendation engine consumes: radius counts, radius
listing, the user's visit history and saved lists. The PostGIS-backed store
is used in deployments; the in-memory store serves tests and local runs.
"""

from contextlib import asynccontextmanager
from typing import Dict, Iterable, List, Optional, Protocol, Sequence

from geoalchemy2 import Geography, Geometry
from geoalchemy2.functions import ST_DWithin, ST_Distance, ST_MakePoint, ST_SetSRID, ST_X, ST_Y
from sqlalchemy import cast, func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import async_sessionmaker

from app.errors import UpstreamUnavailableError
from app.models import CheckIn, Place, SavedPlace
from app.schemas.recommendations import OPERATIONAL, CandidatePlace, Location
from app.utils.geo import haversine_km, haversine_m
from app.utils.logging import log_operation


class PlaceStore(Protocol):
    async def has_minimum_within_radius(
        self, latitude: float, longitude: float, radius_meters: float, minimum: int
    ) -> bool: ...

    async def count_within_radius(self, latitude: float, longitude: float, radius_meters: float) -> int: ...

    async def list_within_radius(
        self,
        latitude: float,
        longitude: float,
        radius_km: float,
        limit: int,
        exclude_ids: Sequence[str] = ()
    ) -> List[CandidatePlace]: ...

    async def list_places(self, limit: int, exclude_ids: Sequence[str] = ()) -> List[CandidatePlace]: ...

    async def list_visited_ids(self, user_id: str) -> List[str]: ...

    async def list_saved_ids(self, user_id: str) -> List[str]: ...


def _point(latitude: float, longitude: float):
    return cast(ST_SetSRID(ST_MakePoint(longitude, latitude), 4326), Geography)


class SpatialPlaceStore:
    """PostGIS-backed place store."""

    def __init__(self, session_factory: async_sessionmaker):
        self.session_factory = session_factory

    @asynccontextmanager
    async def _session(self, operation: str):
        try:
            async with self.session_factory() as session:
                yield session
        except SQLAlchemyError as e:
            raise UpstreamUnavailableError(f"Place store failed during {operation}: {e}") from e

    def _candidate_query(self):
        return select(
            Place,
            ST_Y(cast(Place.location, Geometry)).label("latitude"),
            ST_X(cast(Place.location, Geometry)).label("longitude"),
        ).where(
            Place.business_status == OPERATIONAL,
            Place.name.isnot(None),
        )

    @staticmethod
    def _to_candidate(place: Place, latitude: float, longitude: float) -> CandidatePlace:
        return CandidatePlace(
            place_id=place.id,
            name=place.name,
            address=place.formatted_address,
            rating=place.rating,
            user_ratings_total=place.user_ratings_total or 0,
            price_level=place.price_level,
            types=list(place.types or []),
            business_status=place.business_status or OPERATIONAL,
            location=Location(latitude=latitude, longitude=longitude),
            opening_hours=place.opening_hours or None,
        )

    @log_operation("place_store.has_minimum_within_radius")
    async def has_minimum_within_radius(
        self, latitude: float, longitude: float, radius_meters: float, minimum: int
    ) -> bool:
        # LIMIT lets the database stop scanning once the minimum is reached
        limited = (
            select(Place.id)
            .where(ST_DWithin(Place.location, _point(latitude, longitude), radius_meters))
            .limit(minimum)
            .subquery()
        )
        async with self._session("has_minimum_within_radius") as session:
            result = await session.execute(select(func.count()).select_from(limited))
            return result.scalar_one() >= minimum

    @log_operation("place_store.count_within_radius")
    async def count_within_radius(self, latitude: float, longitude: float, radius_meters: float) -> int:
        stmt = select(func.count(Place.id)).where(
            ST_DWithin(Place.location, _point(latitude, longitude), radius_meters)
        )
        async with self._session("count_within_radius") as session:
            result = await session.execute(stmt)
            return int(result.scalar_one())

    @log_operation("place_store.list_within_radius")
    async def list_within_radius(
        self,
        latitude: float,
        longitude: float,
        radius_km: float,
        limit: int,
        exclude_ids: Sequence[str] = ()
    ) -> List[CandidatePlace]:
        center = _point(latitude, longitude)
        stmt = self._candidate_query().where(ST_DWithin(Place.location, center, radius_km * 1000))
        if exclude_ids:
            stmt = stmt.where(Place.id.notin_(list(exclude_ids)))
        stmt = stmt.order_by(ST_Distance(Place.location, center)).limit(limit)

        async with self._session("list_within_radius") as session:
            rows = (await session.execute(stmt)).all()
        return [self._to_candidate(row.Place, row.latitude, row.longitude) for row in rows]

    @log_operation("place_store.list_places")
    async def list_places(self, limit: int, exclude_ids: Sequence[str] = ()) -> List[CandidatePlace]:
        stmt = self._candidate_query()
        if exclude_ids:
            stmt = stmt.where(Place.id.notin_(list(exclude_ids)))
        stmt = stmt.limit(limit)

        async with self._session("list_places") as session:
            rows = (await session.execute(stmt)).all()
        return [self._to_candidate(row.Place, row.latitude, row.longitude) for row in rows]

    @log_operation("place_store.list_visited_ids")
    async def list_visited_ids(self, user_id: str) -> List[str]:
        stmt = (
            select(CheckIn.place_id)
            .where(CheckIn.user_id == user_id, CheckIn.place_id.isnot(None))
            .distinct()
        )
        async with self._session("list_visited_ids") as session:
            result = await session.execute(stmt)
            return [place_id for place_id in result.scalars().all() if place_id]

    @log_operation("place_store.list_saved_ids")
    async def list_saved_ids(self, user_id: str) -> List[str]:
        stmt = select(SavedPlace.place_id).where(SavedPlace.user_id == user_id).distinct()
        async with self._session("list_saved_ids") as session:
            result = await session.execute(stmt)
            return list(result.scalars().all())


class InMemoryPlaceStore:
    """Place store over in-process lists, using haversine distance."""

    def __init__(
        self,
        places: Optional[Iterable[CandidatePlace]] = None,
        check_ins: Optional[Dict[str, List[str]]] = None,
        saved: Optional[Dict[str, List[str]]] = None
    ):
        self.places: List[CandidatePlace] = list(places or [])
        self.check_ins: Dict[str, List[str]] = {user: list(ids) for user, ids in (check_ins or {}).items()}
        self.saved: Dict[str, List[str]] = {user: list(ids) for user, ids in (saved or {}).items()}

    def add_place(self, place: CandidatePlace) -> None:
        self.places.append(place)

    def add_check_in(self, user_id: str, place_id: str) -> None:
        self.check_ins.setdefault(user_id, []).append(place_id)

    def add_saved_place(self, user_id: str, place_id: str) -> None:
        self.saved.setdefault(user_id, []).append(place_id)

    def _within(self, latitude: float, longitude: float, radius_meters: float) -> List[CandidatePlace]:
        return [
            place for place in self.places
            if haversine_m(latitude, longitude, place.location.latitude, place.location.longitude) <= radius_meters
        ]

    async def has_minimum_within_radius(
        self, latitude: float, longitude: float, radius_meters: float, minimum: int
    ) -> bool:
        found = 0
        for place in self.places:
            if haversine_m(latitude, longitude, place.location.latitude, place.location.longitude) <= radius_meters:
                found += 1
                if found >= minimum:
                    return True
        return False

    async def count_within_radius(self, latitude: float, longitude: float, radius_meters: float) -> int:
        return len(self._within(latitude, longitude, radius_meters))

    async def list_within_radius(
        self,
        latitude: float,
        longitude: float,
        radius_km: float,
        limit: int,
        exclude_ids: Sequence[str] = ()
    ) -> List[CandidatePlace]:
        excluded = set(exclude_ids)
        candidates = [
            place for place in self._within(latitude, longitude, radius_km * 1000)
            if place.is_operational and place.place_id not in excluded
        ]
        candidates.sort(
            key=lambda p: haversine_km(latitude, longitude, p.location.latitude, p.location.longitude)
        )
        return candidates[:limit]

    async def list_places(self, limit: int, exclude_ids: Sequence[str] = ()) -> List[CandidatePlace]:
        excluded = set(exclude_ids)
        return [p for p in self.places if p.is_operational and p.place_id not in excluded][:limit]

    async def list_visited_ids(self, user_id: str) -> List[str]:
        return list(dict.fromkeys(self.check_ins.get(user_id, [])))

    async def list_saved_ids(self, user_id: str) -> List[str]:
        return list(dict.fromkeys(self.saved.get(user_id, [])))
