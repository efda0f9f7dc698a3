"""
Clinivoice Backend: Note Request/Response Schemas
==================================================

What:  Pydantic models defining the API contract for note generation and
       encounter sessions, plus the Domain enum shared with the services.
How:   FastAPI validates request bodies against these models and serializes
       responses through them. NoteDraft itself stays a plain dict because its
       key set depends on the domain and may carry extra provider keys.
"""

from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field, field_validator


class Domain(str, Enum):
    """Clinical context; selects the prompt template and the field schema."""

    MEDICAL = "medical"
    DENTAL = "dental"


# ══════════════════════════════════════════════════════════════════════════
# Request Models
# ══════════════════════════════════════════════════════════════════════════


class GenerateNoteRequest(BaseModel):
    """
    Body of POST /api/generate-note.

    patient_name is stored with the encounter session only; the note's own
    `patient` field comes from the provider or the offline extractor.
    """

    transcription: str = Field(description="Dictated encounter text")
    domain: Domain = Field(default=Domain.MEDICAL, description="medical or dental")
    patient_name: Optional[str] = Field(default=None, max_length=255)

    @field_validator("transcription")
    @classmethod
    def transcription_not_blank(cls, v: str) -> str:
        if not v or not v.strip():
            raise ValueError("Transcription is empty")
        return v


# ══════════════════════════════════════════════════════════════════════════
# Response Models
# ══════════════════════════════════════════════════════════════════════════


class GenerateNoteResponse(BaseModel):
    """
    Result of a gated generation.

    billable is False when the offline fallback produced the note; in that
    case the reserved usage slot has been released again.
    """

    note: Dict[str, Any] = Field(description="NoteDraft for the requested domain")
    session_id: int = Field(description="Encounter session that stores this draft")
    billable: bool
    usage: Optional[int] = Field(default=None, description="Usage count this month")
    limit: Optional[int] = Field(default=None, description="Monthly limit; null = unlimited")


class SessionItem(BaseModel):
    """Encounter session as listed in GET /api/sessions."""

    id: int
    patient_name: Optional[str] = None
    domain: Domain
    status: str
    provider: Optional[str] = None
    ai_notes: Dict[str, Any] = Field(default_factory=dict)
    created_at: datetime

    model_config = {"from_attributes": True}


class SessionListResponse(BaseModel):
    sessions: List[SessionItem]
    total_count: int


class ErrorResponse(BaseModel):
    """
    Standardized error response format for all API errors.

    Example:
        {
            "error": "entitlement_denied",
            "message": "You have reached your monthly transcription limit (50). ...",
            "details": {"reason": "limit_exceeded", "usage": 50, "limit": 50},
            "request_id": "a1b2c3d4"
        }
    """

    error: str = Field(description="Machine-readable error code")
    message: str = Field(description="Human-readable error description")
    details: Optional[dict] = Field(default=None, description="Additional error context")
    request_id: Optional[str] = Field(default=None, description="Request correlation ID")


class HealthResponse(BaseModel):
    """Health check response showing service and dependency status."""

    status: str = Field(description="Overall service status: healthy, degraded, unhealthy")
    version: str = Field(description="Application version")
    database: str = Field(description="Database connectivity: connected, disconnected")
    providers: Dict[str, str] = Field(
        description="Per-provider status: available, not_configured, circuit_open"
    )
    uptime_seconds: float = Field(description="Seconds since service started")
