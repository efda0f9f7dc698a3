"""
Clinivoice Backend: Subscription Status Route
==============================================

What:  GET /api/subscription-status, the caller's current entitlement.
How:   Read-only check_entitlement(); usage is not changed.
Who:   Clients render "37 of 50 used" and the upgrade/locked messaging from it.
"""

import logging

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from clinivoice.auth import get_current_user
from clinivoice.database import get_db_session
from clinivoice.models.user import User
from clinivoice.schemas.entitlement import SubscriptionStatusResponse
from clinivoice.schemas.note import ErrorResponse
from clinivoice.services.entitlement_service import denial_message, entitlement_gate

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["Subscription"])


@router.get(
    "/subscription-status",
    response_model=SubscriptionStatusResponse,
    responses={401: {"description": "Missing or invalid token", "model": ErrorResponse}},
    summary="Current entitlement decision for the caller",
)
async def subscription_status(
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
) -> SubscriptionStatusResponse:
    decision = await entitlement_gate.check_entitlement(db, user.id)
    return SubscriptionStatusResponse(
        user_id=user.user_id,
        role=user.role,
        decision=decision,
        message=denial_message(decision),
    )
