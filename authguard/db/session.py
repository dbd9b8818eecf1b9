"""Database session configuration with connection pooling."""

from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine

from authguard.core.config import settings


def create_engine(database_url: str | None = None) -> AsyncEngine:
    """Create the async engine; pool settings only apply to server databases."""
    url = database_url or settings.DATABASE_URL
    if url.startswith("sqlite"):
        return create_async_engine(url, echo=settings.DEBUG)

    return create_async_engine(
        url,
        echo=settings.DEBUG,
        pool_size=settings.DATABASE_POOL_SIZE,  # Number of connections to maintain
        max_overflow=settings.DATABASE_MAX_OVERFLOW,  # Additional connections beyond pool_size
        pool_timeout=30,  # Seconds to wait before giving up on getting a connection
        pool_recycle=3600,  # Recycle connections after 1 hour (prevents stale connections)
        pool_pre_ping=True,  # Verify connections before using them
    )


engine = create_engine()

async_session_maker = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
