"""
Clinivoice Backend: Encounter Session Service
==============================================

What:  Persists generated drafts as encounter sessions and lists them.
How:   Plain SQLAlchemy inserts and selects on the request's AsyncSession;
       flush (not commit) so the id is available while get_db_session owns
       the transaction.
Who:   routes/notes.py.
"""

import logging
from typing import Any, Dict, Optional

from sqlalchemy import desc, func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from clinivoice.exceptions import DatabaseError
from clinivoice.models.session import EncounterSession
from clinivoice.schemas.note import Domain, SessionItem, SessionListResponse

logger = logging.getLogger(__name__)


class SessionService:
    async def save_draft(
        self,
        db: AsyncSession,
        user_id: int,
        domain: Domain,
        transcription: str,
        note: Dict[str, Any],
        provider: Optional[str] = None,
        patient_name: Optional[str] = None,
    ) -> EncounterSession:
        """
        Stores `note` as a draft encounter session for `user_id`.

        Raises:
            DatabaseError: the insert failed
        """
        session = EncounterSession(
            user_id=user_id,
            patient_name=patient_name,
            domain=Domain(domain).value,
            transcription=transcription,
            ai_notes=note,
            status="draft",
            provider=provider,
        )
        try:
            db.add(session)
            await db.flush()
        except SQLAlchemyError as e:
            logger.error("Failed to save draft for user %s: %s", user_id, e)
            raise DatabaseError(
                message="Could not save the generated note. Please try again.",
                context={"user_id": user_id},
            )

        logger.info(
            "Saved %s draft session %s for user %s (provider=%s)",
            session.domain,
            session.id,
            user_id,
            provider,
        )
        return session

    async def list_sessions(
        self, db: AsyncSession, user_id: int, limit: int = 20
    ) -> SessionListResponse:
        """
        Lists the user's sessions, newest first.

        Query plan:
            SELECT ... WHERE user_id = :id ORDER BY created_at DESC, id DESC LIMIT :n
            → idx_encounter_sessions_user_created
        """
        try:
            result = await db.execute(
                select(EncounterSession)
                .where(EncounterSession.user_id == user_id)
                .order_by(desc(EncounterSession.created_at), desc(EncounterSession.id))
                .limit(limit)
            )
            sessions = result.scalars().all()

            total_count = await db.scalar(
                select(func.count())
                .select_from(EncounterSession)
                .where(EncounterSession.user_id == user_id)
            )
        except SQLAlchemyError as e:
            logger.error("Failed to list sessions for user %s: %s", user_id, e)
            raise DatabaseError(
                message="Could not retrieve sessions. Please try again.",
                context={"user_id": user_id},
            )

        return SessionListResponse(
            sessions=[SessionItem.model_validate(s) for s in sessions],
            total_count=total_count or 0,
        )


# ── Singleton Instance ────────────────────────────────────────────────────
session_service = SessionService()
