"""
Subscription business-logic service.

Turns an extracted form into a persisted subscriber and reports the
outcome, keeping the route layer thin. Database access is delegated to
the repository layer.
"""

import logging
from datetime import datetime, timezone
from uuid import uuid4

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncEngine

from newsletter.database.repository import insert_subscriber
from newsletter.models.subscription import Subscriber, SubscriptionForm, SubscriptionOutcome
from newsletter.telemetry import span

logger = logging.getLogger(__name__)


async def add_subscriber(pool: AsyncEngine, form: SubscriptionForm) -> SubscriptionOutcome:
    """
    Persist a new subscriber built from *form*.

    Everything logged while handling the request carries a fresh
    ``request_id`` together with the subscriber's email and name.

    Args:
        pool: The application connection pool.
        form: The already-validated form data.

    Returns:
        PERSISTED on success, FAILED if the database call failed.
    """
    request_id = uuid4()

    with span(
        "Adding a new subscriber",
        request_id=str(request_id),
        subscriber_email=form.email,
        subscriber_name=form.name,
    ):
        subscriber = Subscriber(
            id=uuid4(),
            email=form.email,
            name=form.name,
            subscribed_at=datetime.now(timezone.utc),
        )

        try:
            await insert_subscriber(pool, subscriber)
        except (SQLAlchemyError, OSError):
            # Already logged by the repository; the client only sees the status
            return SubscriptionOutcome.FAILED

        logger.info("New subscriber details have been saved")
        return SubscriptionOutcome.PERSISTED
