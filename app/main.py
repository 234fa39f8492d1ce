from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from app.config import Settings, settings as default_settings
from app.api.cache import router as cache_router
from app.api.recommendations import router as recommendations_router
from app.errors import register_error_handlers
from app.services.container import ServiceContainer
from app.utils.logging import RequestLoggingMiddleware, setup_logging


def create_app(
    settings: Optional[Settings] = None,
    container: Optional[ServiceContainer] = None
) -> FastAPI:
    settings = settings or default_settings

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        setup_logging(settings.log_level, settings.log_format, settings.log_file)
        services = container or ServiceContainer.from_settings(settings)
        await services.startup()
        app.state.container = services
        try:
            yield
        finally:
            await services.shutdown()

    app = FastAPI(
        title=settings.app_name,
        version=settings.app_version,
        description="Geospatial place recommendations with fuzzy search caching",
        docs_url="/docs",
        redoc_url="/redoc",
        lifespan=lifespan,
    )

    # CORS middleware
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.backend_cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.add_middleware(RequestLoggingMiddleware)
    register_error_handlers(app)

    # Include routers
    app.include_router(recommendations_router, prefix="/api/v1")
    app.include_router(cache_router, prefix="/api/v1/cache")

    @app.get("/")
    async def root():
        return {
            "message": "Welcome to Placemarks Geo API",
            "version": settings.app_version,
            "docs": "/docs"
        }

    @app.get("/health")
    async def health_check():
        return {
            "status": "healthy",
            "environment": settings.environment,
            "version": settings.app_version
        }

    return app


app = create_app()
