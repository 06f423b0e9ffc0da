"""Database connection and session management using SQLAlchemy async ORM"""
from typing import AsyncGenerator, Optional
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine, async_sessionmaker
from sqlalchemy.orm import declarative_base
from sqlalchemy.pool import StaticPool
from redis import asyncio as aioredis

from classroom.config import DATABASE_URL, REDIS_URL


def _engine_options(url: str) -> dict:
    """Pool settings per backend; SQLite shares one connection so :memory: works."""
    if url.startswith("sqlite"):
        return {
            "poolclass": StaticPool,
            "connect_args": {"check_same_thread": False},
        }
    # pool_size=20: Keep 20 connections alive in the pool
    # max_overflow=30: Allow 30 additional connections under load (total 50 max)
    # pool_recycle=3600: Recycle connections every hour to prevent stale connections
    return {
        "pool_size": 20,
        "max_overflow": 30,
        "pool_recycle": 3600,
        "pool_pre_ping": True,  # Verify connection health before using
    }


# Create async SQLAlchemy engine
engine = create_async_engine(
    DATABASE_URL,
    echo=False,  # Set to True for SQL query logging during development
    **_engine_options(DATABASE_URL),
)

# Create async session factory
AsyncSessionLocal = async_sessionmaker(
    engine,
    class_=AsyncSession,
    expire_on_commit=False,
    autocommit=False,
    autoflush=False,
)

# Base class for declarative models
Base = declarative_base()

# Redis client (initialized on app startup when REDIS_URL is set)
redis_client: Optional[aioredis.Redis] = None


async def init_db() -> None:
    """Create all tables. Schema migrations are managed outside this service."""
    # Import models so they register on Base.metadata
    import classroom.models  # noqa: F401

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


async def drop_db() -> None:
    """Drop all tables (test teardown)"""
    import classroom.models  # noqa: F401

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)


async def init_redis() -> Optional[aioredis.Redis]:
    """Initialize Redis connection with async client"""
    global redis_client
    if not REDIS_URL:
        return None
    redis_client = aioredis.from_url(
        REDIS_URL,
        encoding="utf-8",
        decode_responses=True,
        max_connections=50,
    )
    return redis_client


async def close_redis():
    """Close Redis connection"""
    global redis_client
    if redis_client:
        await redis_client.close()
        redis_client = None


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """
    Dependency for FastAPI endpoints to get database session.

    Usage in FastAPI:
        @router.get("/items")
        async def read_items(db: AsyncSession = Depends(get_db)):
            result = await db.execute(select(Item))
            return result.scalars().all()
    """
    async with AsyncSessionLocal() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise
        finally:
            await session.close()


def get_redis() -> Optional[aioredis.Redis]:
    """Dependency for FastAPI endpoints to get the Redis client (None when disabled)"""
    return redis_client
