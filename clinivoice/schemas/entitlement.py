"""
Clinivoice Backend: Entitlement Schemas
========================================

What:  The decision value produced by the entitlement gate, and the API
       response wrapping it for GET /api/subscription-status.
"""

from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field


class DenialReason(str, Enum):
    NO_SUBSCRIPTION = "no_subscription"
    INACTIVE_SUBSCRIPTION = "inactive_subscription"
    SUBSCRIPTION_EXPIRED = "subscription_expired"
    LIMIT_EXCEEDED = "limit_exceeded"
    LOCKED = "locked"


class EntitlementDecision(BaseModel):
    """
    Outcome of an entitlement check.

    Denial is a normal value, not an exception. usage and limit are populated
    whenever the gate looked at the plan, so clients can render
    "37 of 50 used" alongside an upgrade prompt.
    """

    allowed: bool
    reason: Optional[DenialReason] = None
    usage: Optional[int] = None
    limit: Optional[int] = None
    plan: Optional[str] = None
    bypass: Optional[str] = Field(
        default=None, description="admin or whitelist when the limit check was skipped"
    )
    month: Optional[str] = Field(
        default=None, description="Usage bucket (YYYY-MM, UTC) a reserved slot was taken from"
    )

    model_config = {"frozen": True}


class SubscriptionStatusResponse(BaseModel):
    """Body of GET /api/subscription-status."""

    user_id: str
    role: str
    decision: EntitlementDecision
    message: Optional[str] = Field(
        default=None, description="Client-facing explanation when not allowed"
    )
