import logging
from typing import Optional, Tuple

from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.orm import declarative_base

from config.settings import IS_PRODUCTION, PLACEHOLDER_DATABASE_URLS

logger = logging.getLogger(__name__)

# Create declarative base for models
Base = declarative_base()


def is_database_configured(database_url: Optional[str]) -> bool:
    """
    Check whether a usable database URL was supplied.
    Missing, blank and placeholder URLs all count as "not configured".
    """
    if not database_url or not database_url.strip():
        return False
    return database_url.strip() not in PLACEHOLDER_DATABASE_URLS


def normalize_database_url(database_url: str) -> str:
    """Map plain driver URLs onto their asyncio drivers."""
    if database_url.startswith("postgres://"):
        database_url = "postgresql://" + database_url[len("postgres://"):]
    if database_url.startswith("postgresql://"):
        return database_url.replace("postgresql://", "postgresql+asyncpg://", 1)
    if database_url.startswith("sqlite:///"):
        return database_url.replace("sqlite:///", "sqlite+aiosqlite:///", 1)
    return database_url


def create_session_factory(database_url: str) -> Tuple[AsyncEngine, async_sessionmaker]:
    """
    Create the async engine and session factory for a configured database.

    Args:
        database_url: Database URL (plain or asyncio driver form)

    Returns:
        Tuple of (engine, session factory)
    """
    url = normalize_database_url(database_url)

    # Validate production database configuration
    if IS_PRODUCTION and "sqlite" in url.lower():
        raise RuntimeError("SQLite is forbidden in production. Use a PostgreSQL DATABASE_URL.")

    engine = create_async_engine(url, echo=False, future=True)
    session_factory = async_sessionmaker(
        engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autocommit=False,
        autoflush=False,
    )
    return engine, session_factory


async def init_db(engine: AsyncEngine):
    """
    Initialize the database by creating all tables.
    This should be called on application startup.
    """
    async with engine.begin() as conn:
        # Import models here to ensure they're registered with Base
        import database_models  # noqa: F401
        await conn.run_sync(Base.metadata.create_all)
