"""
Postgres connection pool management.

Uses SQLAlchemy's asyncio engine over asyncpg for non-blocking database
access. The engine owns the connection pool; it is created once at startup
and handed to the application explicitly.
"""

import asyncio
import logging

from fastapi import Request
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncEngine, create_async_engine

from newsletter.config import DatabaseSettings

logger = logging.getLogger(__name__)

# Retry configuration for startup resilience
_MAX_RETRIES = 5
_RETRY_BASE_DELAY = 2  # seconds (exponential backoff: 2, 4, 8, 16)


def create_pool(settings: DatabaseSettings) -> AsyncEngine:
    """
    Build the connection pool for *settings*.

    ``timeout_seconds`` bounds connecting, pool checkout and every command,
    so a stalled database call fails instead of blocking its request forever.
    """
    return create_async_engine(
        settings.connection_url(),
        pool_pre_ping=True,
        pool_timeout=settings.timeout_seconds,
        connect_args={
            "timeout": settings.timeout_seconds,
            "command_timeout": settings.timeout_seconds,
        },
    )


async def wait_for_database(pool: AsyncEngine) -> None:
    """
    Block until the database answers ``SELECT 1``.

    Retries up to ``_MAX_RETRIES`` times with exponential backoff so the
    service survives database startup delays. Re-raises after the last attempt.
    """
    logger.info("Connecting to Postgres at %s ...", pool.url)

    for attempt in range(1, _MAX_RETRIES + 1):
        try:
            async with pool.connect() as connection:
                await connection.execute(text("SELECT 1"))
            logger.info("Successfully connected to Postgres (attempt %d).", attempt)
            return
        except (SQLAlchemyError, OSError) as exc:
            if attempt == _MAX_RETRIES:
                logger.error("Failed to connect to Postgres after %d attempts.", _MAX_RETRIES)
                raise
            delay = _RETRY_BASE_DELAY ** attempt
            logger.warning(
                "Postgres not ready (attempt %d/%d): %s, retrying in %ds",
                attempt,
                _MAX_RETRIES,
                type(exc).__name__,
                delay,
            )
            await asyncio.sleep(delay)


def get_pool(request: Request) -> AsyncEngine:
    """FastAPI dependency returning the pool attached to the application."""
    return request.app.state.pool
