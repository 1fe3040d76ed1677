"""
Subscription route.

Endpoints:
    POST /subscription  : validate a form-urlencoded subscriber and store it

Extraction happens before the handler runs: a missing or empty field makes
FastAPI raise ``RequestValidationError``, which the application maps to
``SubscriptionOutcome.REJECTED`` (400) without touching the database.
"""

from typing import Annotated

from fastapi import APIRouter, Depends, Form, Response
from sqlalchemy.ext.asyncio import AsyncEngine

from newsletter.database.postgres import get_pool
from newsletter.models.subscription import SubscriptionForm, SubscriptionOutcome
from newsletter.services.subscription_service import add_subscriber

router = APIRouter(prefix="/subscription", tags=["Subscriptions"])


def outcome_response(outcome: SubscriptionOutcome) -> Response:
    """Empty-body response carrying the outcome's status code."""
    return Response(status_code=outcome.status_code)


@router.post(
    "",
    response_class=Response,
    responses={
        400: {"description": "Form data missing or malformed."},
        500: {"description": "The subscriber could not be stored."},
    },
    summary="Subscribe to the newsletter",
)
async def subscribe(
    form: Annotated[SubscriptionForm, Form()],
    pool: Annotated[AsyncEngine, Depends(get_pool)],
) -> Response:
    """Store a new subscriber."""
    outcome = await add_subscriber(pool, form)
    return outcome_response(outcome)
