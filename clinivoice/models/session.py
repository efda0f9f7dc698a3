"""
Clinivoice Backend: Encounter Session SQLAlchemy Model
=======================================================

What:  ORM model for `encounter_sessions`, one row per generated draft.
How:   The generated NoteDraft is stored verbatim in a JSON column, including
       the `_error` marker when the offline fallback produced it.
Who:   Written by SessionService after a gated generation; listed by
       GET /api/sessions.
"""

from datetime import datetime, timezone
from typing import Any, Dict, Optional

from sqlalchemy import JSON, DateTime, ForeignKey, Index, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from clinivoice.database import Base


class EncounterSession(Base):
    __tablename__ = "encounter_sessions"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[int] = mapped_column(
        ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )
    patient_name: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    domain: Mapped[str] = mapped_column(String(50), nullable=False)
    transcription: Mapped[str] = mapped_column(Text, nullable=False, default="")
    ai_notes: Mapped[Dict[str, Any]] = mapped_column(JSON, nullable=False, default=dict)

    # draft → finalized (finalization happens in the clinician UI)
    status: Mapped[str] = mapped_column(String(50), nullable=False, default="draft")

    # "openai" / "gemini" / "offline"; useful for cost and quality review
    provider: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
    )

    __table_args__ = (
        Index("idx_encounter_sessions_user_created", "user_id", "created_at"),
    )

    def __repr__(self) -> str:
        return (
            f"<EncounterSession(id={self.id}, user_id={self.user_id}, "
            f"domain='{self.domain}', status='{self.status}')>"
        )
