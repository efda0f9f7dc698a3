"""
Clinivoice Backend: Session Service Unit Tests
===============================================

What we test:
    ✅ save_draft stores the note as a draft session
    ✅ list_sessions orders newest first and counts all rows
    ✅ Database failures surface as DatabaseError
"""

import pytest
from sqlalchemy.exc import OperationalError

from clinivoice.exceptions import DatabaseError
from clinivoice.schemas.note import Domain
from clinivoice.services.session_service import session_service

from conftest import MEDICAL_NOTE


class TestSaveDraft:
    @pytest.mark.asyncio
    async def test_saves_draft(self, seed, db_session):
        user = await seed.user()

        session = await session_service.save_draft(
            db_session,
            user_id=user.id,
            domain=Domain.MEDICAL,
            transcription="Headache for three days.",
            note=MEDICAL_NOTE,
            provider="gemini",
        )

        assert session.id is not None
        assert session.status == "draft"
        assert session.domain == "medical"
        assert session.ai_notes["plan"] == MEDICAL_NOTE["plan"]

    @pytest.mark.asyncio
    async def test_flush_failure_raises_database_error(self, mock_db_session):
        mock_db_session.flush.side_effect = OperationalError("INSERT", {}, Exception("disk full"))

        with pytest.raises(DatabaseError) as exc_info:
            await session_service.save_draft(
                mock_db_session,
                user_id=1,
                domain=Domain.DENTAL,
                transcription="text",
                note={},
            )

        assert exc_info.value.context["user_id"] == 1
        mock_db_session.add.assert_called_once()


class TestListSessions:
    @pytest.mark.asyncio
    async def test_newest_first_with_limit(self, seed, db_session):
        user = await seed.user()
        other = await seed.user("someone.else")
        for text in ("first", "second", "third"):
            await session_service.save_draft(
                db_session, user.id, Domain.MEDICAL, text, MEDICAL_NOTE
            )
        await session_service.save_draft(
            db_session, other.id, Domain.MEDICAL, "not mine", MEDICAL_NOTE
        )

        result = await session_service.list_sessions(db_session, user.id, limit=2)

        assert result.total_count == 3
        assert len(result.sessions) == 2
        assert result.sessions[0].id > result.sessions[1].id

    @pytest.mark.asyncio
    async def test_query_failure_raises_database_error(self, mock_db_session):
        mock_db_session.execute.side_effect = OperationalError("SELECT", {}, Exception("gone"))

        with pytest.raises(DatabaseError):
            await session_service.list_sessions(mock_db_session, user_id=1)
