from sqlalchemy import MetaData
from sqlalchemy.orm import declarative_base
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine

# Naming convention for constraints
convention = {
    "ix": "ix_%(column_0_label)s",
    "uq": "uq_%(table_name)s_%(column_0_name)s",
    "ck": "ck_%(table_name)s_%(constraint_name)s",
    "fk": "fk_%(table_name)s_%(column_0_name)s_%(referred_table_name)s",
    "pk": "pk_%(table_name)s"
}

# Base class for models
Base = declarative_base(metadata=MetaData(naming_convention=convention))


def to_async_url(database_url: str) -> str:
    """Convert a PostgreSQL URL to its asyncpg form."""
    if database_url.startswith("postgresql://"):
        return database_url.replace("postgresql://", "postgresql+asyncpg://", 1)
    return database_url


def create_engine_for(database_url: str, echo: bool = False) -> AsyncEngine:
    return create_async_engine(
        to_async_url(database_url),
        echo=echo,
        future=True,
        pool_pre_ping=True,
        pool_size=20,
        max_overflow=0,
    )


def create_session_factory(engine: AsyncEngine) -> async_sessionmaker:
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


async def init_db(engine: AsyncEngine):
    """Initialize database tables"""
    async with engine.begin() as conn:
        # Import all models to ensure they are registered
        from app.models import Place, CheckIn, SavedPlace  # noqa: F401
        await conn.run_sync(Base.metadata.create_all)
