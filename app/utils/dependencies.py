from fastapi import Depends, Header, HTTPException, Request, status

from app.services.availability_service import PlaceAvailabilityService
from app.services.container import ServiceContainer
from app.services.recommendation_service import RecommendationService
from app.services.search_cache import FuzzySearchCache


def get_container(request: Request) -> ServiceContainer:
    """Get the service container built by the application lifespan"""
    container = getattr(request.app.state, "container", None)
    if container is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Services are not initialized"
        )
    return container


def get_recommendation_service(
    container: ServiceContainer = Depends(get_container)
) -> RecommendationService:
    return container.recommendation_service


def get_availability_service(
    container: ServiceContainer = Depends(get_container)
) -> PlaceAvailabilityService:
    return container.availability_service


def get_search_cache(
    container: ServiceContainer = Depends(get_container)
) -> FuzzySearchCache:
    return container.search_cache


async def get_user_id(x_user_id: str = Header(..., alias="X-User-ID")) -> str:
    """Get the calling user's id from the X-User-ID header"""
    user_id = x_user_id.strip()
    if not user_id:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Missing user id"
        )
    return user_id
