"""
Clinivoice Backend: Note Generation Prompts
============================================

What:  Domain prompt templates and the structured-output schema sent to
       Gemini.
How:   The transcript is capped before it is embedded in the prompt; the
       offline fallback works on the uncapped text instead.
Who:   Shared by the Gemini and OpenAI providers so both ask the same question.
"""

from typing import Any, Dict

from clinivoice.schemas.note import Domain
from clinivoice.services.note_schema import CODE_FIELDS, required_fields, schema_fields

DEFAULT_TRANSCRIPT_MAX_CHARS = 2000

OPENAI_SYSTEM_MESSAGE = "You are a clinical documentation scribe. Return ONLY valid JSON."

_DENTAL_TEMPLATE = """You are a professional dental scribe AI assistant. Based on the following clinical transcription, generate a detailed dental examination report in JSON format.

Transcription: "{transcript}"

Generate a comprehensive dental examination report with these exact fields:
- patient: Patient name (or "[Patient Name]" if not mentioned)
- date: "[Insert Date]"
- dentist: Dentist name (or "Dr. [Name]" if mentioned, else "[Dentist Name]")
- visitType: Type of visit (e.g., "Routine Dental Examination & Consultation")
- chiefComplaint: Main reason for visit (2-3 sentences)
- historyOfPresentIllness: Detailed history of current issues (3-4 sentences)
- medicalHistory: Relevant medical history (2-3 sentences or "Not discussed")
- dentalHistory: Previous dental visits and habits (2-3 sentences)
- intraOralExamination: Findings from mouth examination (3-4 sentences)
- diagnosticProcedures: Tests ordered or performed (2-3 sentences)
- assessment: Clinical assessment and diagnosis (2-3 sentences)
- educationRecommendations: Patient education and recommendations (3-4 sentences)
- patientResponse: How patient responded to instructions (1-2 sentences)
- plan: Treatment plan and follow-up (2-3 sentences)
- icdCodes: Array of relevant ICD-10 codes (2-3 codes)
- cptCodes: Array of relevant CPT codes (2-3 codes)

Return ONLY valid JSON with these exact keys. Do not include any markdown formatting or code blocks."""

_MEDICAL_TEMPLATE = """You are a professional medical scribe AI assistant. Based on the following clinical transcription, generate a structured SOAP note in JSON format.

Transcription: "{transcript}"

Generate a comprehensive SOAP note for medical examination and diagnosis with these exact fields:
- subjective: The patient's reported symptoms and history (2-3 sentences)
- objective: Observable clinical findings and vital signs (2-3 sentences)
- assessment: Clinical diagnosis or assessment (1-2 sentences)
- plan: Treatment plan and recommendations (2-3 sentences)
- icdCodes: Array of relevant ICD-10 codes (2-3 codes)
- cptCodes: Array of relevant CPT codes (2-3 codes)

Return ONLY valid JSON with these exact keys. Do not include any markdown formatting or code blocks."""


def cap_transcript(transcript: str, max_chars: int = DEFAULT_TRANSCRIPT_MAX_CHARS) -> str:
    return transcript[:max_chars]


def build_prompt(
    transcript: str,
    domain: Domain,
    max_chars: int = DEFAULT_TRANSCRIPT_MAX_CHARS,
) -> str:
    template = _DENTAL_TEMPLATE if Domain(domain) is Domain.DENTAL else _MEDICAL_TEMPLATE
    # str.format would choke on braces inside the transcript.
    return template.replace("{transcript}", cap_transcript(transcript, max_chars))


def response_schema(domain: Domain) -> Dict[str, Any]:
    """OpenAPI-style object schema passed as Gemini's `response_schema`."""
    properties: Dict[str, Any] = {name: {"type": "string"} for name in schema_fields(domain)}
    for name in CODE_FIELDS:
        properties[name] = {"type": "array", "items": {"type": "string"}}
    return {
        "type": "object",
        "properties": properties,
        "required": list(required_fields(domain)),
    }
