"""
Clinivoice Backend: Note Generation Route Handlers
===================================================

What:  POST /api/generate-note (gated generation) and GET /api/sessions
       (the caller's encounter sessions).
How:   Resolve the user from the bearer token, reserve a usage slot and
       commit it, run the generation pipeline outside any transaction,
       persist the draft, return it.
Who:   Called by the desktop and mobile clients.

Generation Flow:
    ┌──────────┐    ┌──────────────┐    ┌──────────────┐    ┌──────────┐
    │   Auth   │───▶│ reserve_slot │───▶│   Pipeline   │───▶│  Store   │
    │  (JWT)   │    │  (gate)      │    │  (providers) │    │ (draft)  │
    └──────────┘    └──────────────┘    └──────────────┘    └──────────┘
                     denied → 403        offline note →
                                         release_slot, billable=false
"""

import logging

from fastapi import APIRouter, Depends, Query, Response
from sqlalchemy.ext.asyncio import AsyncSession

from clinivoice.auth import get_current_user
from clinivoice.database import get_db_session
from clinivoice.exceptions import EntitlementDeniedError
from clinivoice.models.user import User
from clinivoice.schemas.note import (
    ErrorResponse,
    GenerateNoteRequest,
    GenerateNoteResponse,
    SessionListResponse,
)
from clinivoice.services.entitlement_service import denial_message, entitlement_gate
from clinivoice.services.generation_service import (
    NoteGenerationPipeline,
    get_generation_pipeline,
)
from clinivoice.services.session_service import session_service

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["Notes"])


@router.post(
    "/generate-note",
    response_model=GenerateNoteResponse,
    responses={
        400: {"description": "Blank transcription or invalid domain", "model": ErrorResponse},
        401: {"description": "Missing or invalid token", "model": ErrorResponse},
        403: {"description": "Entitlement denied (reason-coded)", "model": ErrorResponse},
        500: {"description": "Server error", "model": ErrorResponse},
    },
    summary="Generate a structured clinical note from a transcript",
)
async def generate_note(
    body: GenerateNoteRequest,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
    pipeline: NoteGenerationPipeline = Depends(get_generation_pipeline),
) -> GenerateNoteResponse:
    """
    Generate a SOAP (medical) or dental examination note.

    A usage slot is reserved before any provider is called. When every
    provider fails and the offline template is returned, the slot is released
    again (in the month it was taken from) and the response is marked
    billable=false.
    """
    decision = await entitlement_gate.reserve_slot(db, user.id)
    if not decision.allowed:
        logger.info(
            "Generation denied for user %s: %s (usage=%s, limit=%s)",
            user.id,
            decision.reason.value if decision.reason else None,
            decision.usage,
            decision.limit,
        )
        raise EntitlementDeniedError(
            reason=decision.reason.value,
            message=denial_message(decision),
            usage=decision.usage,
            limit=decision.limit,
        )

    # Provider calls can take a minute; the usage row lock must not span them.
    await db.commit()

    outcome = await pipeline.run(body.transcription, body.domain)

    usage = decision.usage
    billable = not outcome.is_fallback
    if not billable:
        await entitlement_gate.release_slot(db, user.id, decision.month)
        if usage:
            usage -= 1

    session = await session_service.save_draft(
        db,
        user_id=user.id,
        domain=body.domain,
        transcription=body.transcription,
        note=outcome.note,
        provider=outcome.provider,
        patient_name=body.patient_name,
    )

    return GenerateNoteResponse(
        note=outcome.note,
        session_id=session.id,
        billable=billable,
        usage=usage,
        limit=decision.limit,
    )


@router.get(
    "/sessions",
    response_model=SessionListResponse,
    responses={
        401: {"description": "Missing or invalid token", "model": ErrorResponse},
        500: {"description": "Server error", "model": ErrorResponse},
    },
    summary="List the caller's encounter sessions, newest first",
)
async def list_sessions(
    response: Response,
    limit: int = Query(default=20, ge=1, le=100, description="Items to return (max 100)"),
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
) -> SessionListResponse:
    result = await session_service.list_sessions(db, user.id, limit=limit)
    response.headers["X-Total-Count"] = str(result.total_count)
    return result
