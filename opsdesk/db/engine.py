"""Shared connections: the async PostgreSQL engine and the Redis client.

PostgreSQL holds the audit log and, with the sql backend, the record
collections themselves. Redis only backs drafts, so losing it degrades
draft restore but never stops the service.
"""

from __future__ import annotations

import contextlib
import logging
from collections.abc import AsyncGenerator

import redis.asyncio as aioredis
from redis.exceptions import RedisError
from sqlalchemy.ext.asyncio import AsyncEngine, async_sessionmaker, create_async_engine

from opsdesk.config import settings

logger = logging.getLogger(__name__)

engine: AsyncEngine = create_async_engine(
    settings.db.database_url,
    echo=settings.log_level == "DEBUG",
    pool_size=settings.db.db_pool_size,
    max_overflow=settings.db.db_max_overflow,
    pool_pre_ping=True,
)

# One short-lived session per store call or audit write
async_session_factory = async_sessionmaker(engine, expire_on_commit=False)

redis_client: aioredis.Redis = aioredis.from_url(settings.db.redis_url, decode_responses=True)


async def _create_schema() -> None:
    from opsdesk.models import Base

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    logger.info("Created %d tables for %s", len(Base.metadata.tables), settings.environment)


async def _check_redis() -> bool:
    try:
        await redis_client.ping()
    except RedisError as exc:
        logger.warning("Redis unreachable, drafts will not survive restarts: %s", exc)
        return False
    return True


@contextlib.asynccontextmanager
async def db_lifespan() -> AsyncGenerator[None, None]:
    """Open shared connections for the app's lifetime.

    Outside production the schema is created on startup; in production the
    Alembic migrations own it.
    """
    if not settings.is_production:
        await _create_schema()
    await _check_redis()
    try:
        yield
    finally:
        await engine.dispose()
        await redis_client.aclose()
        logger.info("Database and Redis connections closed")
