"""
Database engine and session factory for the booking registry.

PostgreSQL (asyncpg) in deployment; tests swap in SQLite through the
``get_db`` dependency.
"""

from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession, async_sessionmaker
from sqlalchemy.orm import declarative_base
from trikeride.app.core.config import settings


def _engine_options(database_url: str) -> dict:
    options = {"echo": settings.db_echo}
    # SQLite has no connection pool to size
    if not database_url.startswith("sqlite"):
        options.update(
            pool_size=settings.db_pool_size,
            max_overflow=settings.db_max_overflow,
            pool_pre_ping=True,
        )
    return options


engine = create_async_engine(settings.database_url, **_engine_options(settings.database_url))

# Claim handlers re-read bookings after commit, so keep loaded state
AsyncSessionLocal = async_sessionmaker(
    engine,
    class_=AsyncSession,
    expire_on_commit=False,
    autoflush=False,
)

Base = declarative_base()


async def get_db():
    """
    FastAPI dependency yielding one session per request.

    Handlers commit explicitly; anything left uncommitted is rolled back
    when the session closes.
    """
    async with AsyncSessionLocal() as session:
        yield session
