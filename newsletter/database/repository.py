"""
Subscriber repository: data-access layer.

Encapsulates all direct SQL for the ``subscriptions`` table. Statements are
built with SQLAlchemy Core so every value is sent as a bound parameter.
"""

import logging

from sqlalchemy import insert
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncEngine

from newsletter.database.schema import SubscriptionRecord
from newsletter.models.subscription import Subscriber
from newsletter.telemetry import span

logger = logging.getLogger(__name__)


async def insert_subscriber(pool: AsyncEngine, subscriber: Subscriber) -> None:
    """
    Insert *subscriber* in its own transaction.

    Args:
        pool: The application connection pool.
        subscriber: The subscriber to persist.

    Raises:
        SQLAlchemyError: On any execution failure (connectivity, constraint).
        OSError: On connection-level failures, including timeouts.
            Errors are logged and re-raised unchanged; nothing is retried here.
    """
    with span("Saving new subscriber details in the database"):
        try:
            async with pool.begin() as connection:
                await connection.execute(
                    insert(SubscriptionRecord).values(
                        id=subscriber.id,
                        email=subscriber.email,
                        name=subscriber.name,
                        subscribed_at=subscriber.subscribed_at,
                    )
                )
        except (SQLAlchemyError, OSError) as exc:
            logger.error(
                "Failed to execute query: %s",
                exc,
                extra={"operation": "insert_subscriber", "error_type": type(exc).__name__},
            )
            raise
