"""
Clinivoice Backend: Offline Fallback Notes
===========================================

What:  Builds a deterministic NoteDraft when no provider produced one.
How:   Dental notes get a best-effort patient and dentist name pulled from the
       transcript, the opening of the transcript as chief complaint, and fixed
       placeholder text elsewhere. Medical notes are a fixed four-field
       placeholder. Both carry `_error` naming the failure that led here.
Who:   NoteGenerationPipeline, on blank transcripts and when every provider is
       exhausted or unconfigured.

Name extraction is approximate and English-only. It annotates the draft for
the clinician to correct; it does not identify anyone.
"""

import re
from datetime import date
from typing import Any, Dict, Optional

from clinivoice.schemas.note import Domain
from clinivoice.services.note_schema import normalize_note

CHIEF_COMPLAINT_MAX_CHARS = 500

PATIENT_PLACEHOLDER = "[Patient Name]"
DENTIST_PLACEHOLDER = "[Dentist Name]"

_NAME = r"([A-Z][a-z]+(?:\s+[A-Z][a-z]+)?)"
_PATIENT_NAME = re.compile(
    r"(?i:\bmy name is|\bname is|\bi am|\bi['\u2019]m|\bpatient(?: name)?(?: is)?)\s+" + _NAME
)
_DENTIST_NAME = re.compile(r"\bDr\.?\s+" + _NAME)

_DENTAL_PLACEHOLDERS: Dict[str, str] = {
    "visitType": "Routine Dental Examination & Consultation",
    "historyOfPresentIllness": (
        "Symptoms have been present for an unspecified duration. "
        "Patient expresses concern and seeks evaluation."
    ),
    "medicalHistory": "Not discussed/No concerns mentioned. (Update if applicable)",
    "dentalHistory": "Inconsistent oral hygiene and irregular flossing habits reported.",
    "intraOralExamination": (
        "Teeth and gums generally healthy with signs of gingival inflammation. "
        "Plaque accumulation likely contributing to bleeding."
    ),
    "diagnosticProcedures": (
        "Dental X-rays ordered to assess teeth, roots, and possible underlying pathology. "
        "Awaiting radiographic evaluation."
    ),
    "assessment": (
        "Gingival inflammation likely due to inadequate plaque control. Possible localized "
        "sensitivity at lower right molar (diagnosis pending X-ray)."
    ),
    "educationRecommendations": (
        "Reinforced twice-daily brushing with a soft-bristle toothbrush; demonstrated gentle "
        "circular technique; emphasized daily flossing; recommended toothbrush replacement "
        "every 3 months; encouraged routine dental visits."
    ),
    "patientResponse": "Patient understood instructions and plans to improve oral hygiene habits.",
    "plan": (
        "Review X-ray results at next visit; consider scaling/periodontal cleaning if "
        "indicated; follow-up based on radiographic findings and response to hygiene "
        "improvements."
    ),
}

DEFAULT_CHIEF_COMPLAINT = "Patient reports sensitivity and gum bleeding during brushing."

_MEDICAL_PLACEHOLDERS: Dict[str, str] = {
    "subjective": (
        "AI generation error - using fallback note. "
        "Patient reports symptoms as described in transcription."
    ),
    "objective": "Clinical findings as documented.",
    "assessment": "Requires further evaluation.",
    "plan": "Continue monitoring and follow-up as needed.",
}


def extract_patient_name(transcript: str) -> Optional[str]:
    match = _PATIENT_NAME.search(transcript or "")
    return match.group(1) if match else None


def extract_dentist_name(transcript: str) -> Optional[str]:
    """Returns "Dr. <Name>" for the first doctor mentioned, if any."""
    match = _DENTIST_NAME.search(transcript or "")
    return f"Dr. {match.group(1)}" if match else None


def format_note_date(day: date) -> str:
    return day.strftime("%b %d, %Y")


def build_offline_note(
    transcript: Optional[str],
    domain: Domain,
    error: str,
    today: Optional[date] = None,
) -> Dict[str, Any]:
    """
    Builds the fallback NoteDraft for `domain`.

    Args:
        transcript: The uncapped dictation; may be empty.
        domain:     Selects the dental or medical template.
        error:      Description of the failure, stored under `_error`.
        today:      Date stamped on dental notes; defaults to the local date.

    Returns:
        A NoteDraft with every schema key present, every required key
        non-blank, empty code lists, and `_error` set.
    """
    text = (transcript or "").strip()

    if Domain(domain) is Domain.DENTAL:
        note: Dict[str, Any] = {
            "patient": extract_patient_name(text) or PATIENT_PLACEHOLDER,
            "date": format_note_date(today or date.today()),
            "dentist": extract_dentist_name(text) or DENTIST_PLACEHOLDER,
            "chiefComplaint": text[:CHIEF_COMPLAINT_MAX_CHARS] or DEFAULT_CHIEF_COMPLAINT,
            **_DENTAL_PLACEHOLDERS,
        }
    else:
        note = dict(_MEDICAL_PLACEHOLDERS)

    note["icdCodes"] = []
    note["cptCodes"] = []
    note = normalize_note(note, domain)
    note["_error"] = error or "Note generation failed"
    return note
