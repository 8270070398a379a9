import logging
from contextlib import asynccontextmanager
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, create_async_engine, async_sessionmaker
from sqlalchemy.orm import DeclarativeBase

from commission_engine.config import Settings, settings

logger = logging.getLogger(__name__)


def build_database_url(url: str) -> str:
    """Convert database URL for the async driver."""
    if url.startswith("postgresql+asyncpg://"):
        # Switch to psycopg for async PostgreSQL
        return url.replace("postgresql+asyncpg://", "postgresql+psycopg://")
    if url.startswith("postgresql://"):
        return url.replace("postgresql://", "postgresql+psycopg://")
    if url.startswith("sqlite://"):
        return url.replace("sqlite://", "sqlite+aiosqlite://")
    return url


def build_sync_database_url(url: str) -> str:
    """Convert database URL for a blocking driver (used by alembic)."""
    if url.startswith("postgresql+asyncpg://"):
        return url.replace("postgresql+asyncpg://", "postgresql+psycopg://")
    if url.startswith("postgresql://"):
        return url.replace("postgresql://", "postgresql+psycopg://")
    if url.startswith("sqlite+aiosqlite://"):
        return url.replace("sqlite+aiosqlite://", "sqlite://")
    return url


def create_engine_from_settings(config: Settings) -> AsyncEngine:
    """Create async engine with appropriate settings."""
    database_url = build_database_url(config.DATABASE_URL)

    # SQLite doesn't support pool settings
    if database_url.startswith("sqlite"):
        return create_async_engine(
            database_url,
            echo=config.DEBUG,
            future=True,
            connect_args={"check_same_thread": False},
        )

    return create_async_engine(
        database_url,
        echo=config.DEBUG,
        future=True,
        pool_pre_ping=True,  # Check connection health before use
        pool_size=config.DB_POOL_SIZE,
        max_overflow=config.DB_MAX_OVERFLOW,
        pool_timeout=config.DB_POOL_TIMEOUT,
        pool_recycle=config.DB_POOL_RECYCLE,
        connect_args={
            "connect_timeout": 30,
        },
    )


engine = create_engine_from_settings(settings)

async_session_factory = async_sessionmaker(
    engine,
    class_=AsyncSession,
    expire_on_commit=False,
    autocommit=False,
    autoflush=False,
)


class Base(DeclarativeBase):
    """Base class for all SQLAlchemy models."""
    pass


@asynccontextmanager
async def get_db_session():
    """Context manager for getting database session (for background jobs)."""
    async with async_session_factory() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise


async def init_db(bind: AsyncEngine = None) -> None:
    """Initialize database tables."""
    # Import all models to register them with Base.metadata
    from commission_engine import models  # noqa: F401

    logger.info(f"Registered {len(Base.metadata.tables)} tables")

    async with (bind or engine).begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    logger.info("Database tables created")
