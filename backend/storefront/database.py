"""
SQLAlchemy Async Database Configuration.
"""

from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession, async_sessionmaker

from storefront.config import get_settings
from storefront.models.base import Base  # Import from models package

settings = get_settings()


def _pool_options(url: str) -> dict:
    """SQLite (tests, local dev) does not take queue pool sizing arguments."""
    if url.startswith("sqlite"):
        return {}
    return {
        "pool_size": 20,
        "max_overflow": 80,
        "pool_timeout": 10,    # Fail fast instead of blocking for 30s
        "pool_recycle": 900,
        "pool_pre_ping": True,
    }


# Async Engine with connection pool configuration
engine = create_async_engine(
    settings.DATABASE_URL,
    echo=settings.DEBUG,
    future=True,
    **_pool_options(settings.DATABASE_URL),
)

# Async Session Factory
async_session_maker = async_sessionmaker(
    engine,
    class_=AsyncSession,
    expire_on_commit=False,
)


async def get_db() -> AsyncSession:
    """Dependency for FastAPI routes to get database session."""
    async with async_session_maker() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise
        finally:
            await session.close()
