"""
Pydantic models for request extraction and the internal representation
of subscribers, plus the closed set of subscription outcomes.
"""

from datetime import datetime
from enum import Enum
from uuid import UUID

from pydantic import BaseModel, Field


# ---------------------------------------------------------------------------
# Request models
# ---------------------------------------------------------------------------

class SubscriptionForm(BaseModel):
    """Form-urlencoded body of ``POST /subscription``."""

    email: str = Field(..., min_length=1, description="Subscriber email address.")
    name: str = Field(..., min_length=1, description="Subscriber display name.")


# ---------------------------------------------------------------------------
# Internal / DB model
# ---------------------------------------------------------------------------

class Subscriber(BaseModel):
    """A subscriber ready to be persisted."""

    model_config = {"frozen": True}

    id: UUID
    email: str
    name: str
    subscribed_at: datetime


# ---------------------------------------------------------------------------
# Outcomes
# ---------------------------------------------------------------------------

class SubscriptionOutcome(str, Enum):
    """Terminal states of a subscription request."""

    REJECTED = "rejected"
    PERSISTED = "persisted"
    FAILED = "failed"

    @property
    def status_code(self) -> int:
        return _STATUS_CODES[self]


_STATUS_CODES = {
    SubscriptionOutcome.REJECTED: 400,
    SubscriptionOutcome.PERSISTED: 200,
    SubscriptionOutcome.FAILED: 500,
}
