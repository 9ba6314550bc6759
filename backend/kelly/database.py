import os
import logging
from typing import AsyncGenerator
from fastapi import HTTPException
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession, async_sessionmaker
from sqlalchemy.pool import StaticPool
from kelly.core.config import settings

logger = logging.getLogger(__name__)

engine = None
async_session_maker = None


def build_engine(database_url: str):
    """Create the async engine for a SQLite or PostgreSQL URL"""
    if database_url.startswith("sqlite"):
        # SQLite configuration for local development
        return create_async_engine(
            database_url,
            poolclass=StaticPool,
            connect_args={"check_same_thread": False},
            echo=settings.DEBUG
        )

    # PostgreSQL configuration for production
    connect_args = {}

    # Add SSL for RDS connections in Lambda
    if os.environ.get("AWS_LAMBDA_FUNCTION_NAME"):
        from kelly.core.database_url import create_ssl_context
        connect_args["ssl"] = create_ssl_context()

    return create_async_engine(
        database_url,
        pool_pre_ping=True,
        pool_recycle=300,  # 5 minutes
        echo=settings.DEBUG,
        connect_args=connect_args
    )


async def create_tables(db_engine) -> None:
    from kelly.models.base import Base
    from kelly.models.insight import InsightDB  # noqa: F401
    from kelly.models.inventory import ArticleDB, LotDB, LotItemDB, SellingSuggestionDB  # noqa: F401

    async with db_engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


async def init_db():
    """Initialize database connection and create tables"""
    global engine, async_session_maker

    # Get database URL dynamically
    from kelly.core.database_url import get_database_url
    database_url = get_database_url()

    engine = build_engine(database_url)
    async_session_maker = async_sessionmaker(
        engine, class_=AsyncSession, expire_on_commit=False
    )

    await create_tables(engine)


async def close_db():
    """Close database connection"""
    global engine
    if engine:
        await engine.dispose()


async def get_session_maker() -> async_sessionmaker:
    """Session factory for services that manage their own sessions"""
    if async_session_maker is None:
        await init_db()
    return async_session_maker


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """Dependency to get database session"""
    # If engine not initialized (e.g., due to startup failure), try to initialize now
    if engine is None or async_session_maker is None:
        try:
            await init_db()
        except (SQLAlchemyError, OSError) as e:
            logger.error(f"Failed to initialize database in get_db: {e}")
            # Raise HTTPException which FastAPI will handle with CORS headers
            raise HTTPException(status_code=503, detail="Database connection unavailable")

    async with async_session_maker() as session:
        try:
            yield session
        finally:
            await session.close()
