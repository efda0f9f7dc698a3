"""
Clinivoice Backend: NoteDraft Field Schema
===========================================

What:  The per-domain key sets of a NoteDraft, required-field validation and
       normalization.
How:   Plain tuples and frozensets; validate_note raises NoteValidationError,
       normalize_note fills every schema key so callers never see a partial
       note.
Who:   Used by every provider after parsing, and by the offline fallback.
"""

from typing import Any, Dict, FrozenSet, List, Optional, Tuple

from clinivoice.exceptions import NoteValidationError
from clinivoice.schemas.note import Domain

MEDICAL_FIELDS: Tuple[str, ...] = ("subjective", "objective", "assessment", "plan")

DENTAL_FIELDS: Tuple[str, ...] = (
    "patient",
    "date",
    "dentist",
    "visitType",
    "chiefComplaint",
    "historyOfPresentIllness",
    "medicalHistory",
    "dentalHistory",
    "intraOralExamination",
    "diagnosticProcedures",
    "assessment",
    "educationRecommendations",
    "patientResponse",
    "plan",
)

MEDICAL_REQUIRED: FrozenSet[str] = frozenset(MEDICAL_FIELDS)

DENTAL_REQUIRED: FrozenSet[str] = frozenset(
    {
        "patient",
        "date",
        "dentist",
        "visitType",
        "chiefComplaint",
        "historyOfPresentIllness",
        "assessment",
        "plan",
    }
)

# Legacy billing-code lists, carried by both domains.
CODE_FIELDS: Tuple[str, ...] = ("icdCodes", "cptCodes")


def schema_fields(domain: Domain) -> Tuple[str, ...]:
    return DENTAL_FIELDS if Domain(domain) is Domain.DENTAL else MEDICAL_FIELDS


def required_fields(domain: Domain) -> Tuple[str, ...]:
    """Required keys of `domain`, in schema order."""
    required = DENTAL_REQUIRED if Domain(domain) is Domain.DENTAL else MEDICAL_REQUIRED
    return tuple(name for name in schema_fields(domain) if name in required)


def missing_required(note: Dict[str, Any], domain: Domain) -> List[str]:
    """
    Lists required keys that are absent, not a string, or blank.

    Returns them in schema order so error messages are stable.
    """
    missing = []
    for name in required_fields(domain):
        value = note.get(name)
        if not isinstance(value, str) or not value.strip():
            missing.append(name)
    return missing


def validate_note(
    note: Dict[str, Any],
    domain: Domain,
    provider: Optional[str] = None,
    model: Optional[str] = None,
) -> None:
    missing = missing_required(note, domain)
    if missing:
        raise NoteValidationError(
            missing=missing,
            domain=Domain(domain).value,
            provider=provider,
            model=model,
        )


def normalize_note(note: Dict[str, Any], domain: Domain) -> Dict[str, Any]:
    """
    Returns a copy of `note` with every schema key present.

    Missing or null schema keys become "" and missing or empty code lists
    default to [].
    Extra keys the provider returned are kept as-is.
    """
    normalized = dict(note)
    for name in schema_fields(domain):
        if normalized.get(name) is None:
            normalized[name] = ""
    for name in CODE_FIELDS:
        value = normalized.get(name)
        if not value:
            normalized[name] = []
        elif not isinstance(value, list):
            normalized[name] = [value]
    return normalized
