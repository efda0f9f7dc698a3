"""
Clinivoice Backend: Note Generation Pipeline
=============================================

What:  Turns a transcript into a NoteDraft for a domain. Never raises.
How:   Builds an ordered provider plan from the configured providers and the
       operator preference, asks each provider in turn, and returns the first
       validated note. When the plan is empty or exhausted (or the transcript
       is blank) the deterministic offline template is returned instead.
Who:   POST /api/generate-note through the get_generation_pipeline dependency.

Provider plan (secondary = OpenAI, primary = Gemini):
    preference     configured          plan
    auto           both                openai, gemini, openai
    auto           gemini only         gemini
    auto           openai only         openai, openai
    gemini         both                gemini
    gemini         openai only         openai
    openai*        both / openai only  openai
    any            neither             (offline template)
"""

import logging
from dataclasses import dataclass
from datetime import date
from functools import lru_cache
from typing import Any, Callable, Dict, List, Optional

from clinivoice.config import GenerationConfig, Settings, settings
from clinivoice.schemas.note import Domain
from clinivoice.services.llm_base import NoteProvider, ProviderSuccess
from clinivoice.services.offline_fallback import build_offline_note

logger = logging.getLogger(__name__)

OFFLINE_PROVIDER = "offline"


@dataclass(frozen=True)
class GenerationOutcome:
    """A NoteDraft plus where it came from."""

    note: Dict[str, Any]
    provider: str
    model: Optional[str] = None

    @property
    def is_fallback(self) -> bool:
        return self.provider == OFFLINE_PROVIDER


def coerce_domain(domain: Any) -> Domain:
    """Unknown domains are treated as medical."""
    try:
        return Domain(domain)
    except ValueError:
        return Domain.MEDICAL


class NoteGenerationPipeline:
    """
    Provider fallback chain ending in the offline template.

    Providers and configuration are passed in explicitly; nothing here reads
    the environment.
    """

    def __init__(
        self,
        generation: GenerationConfig,
        primary: Optional[NoteProvider] = None,
        secondary: Optional[NoteProvider] = None,
        today: Callable[[], date] = date.today,
    ):
        self.generation = generation
        self.primary = primary
        self.secondary = secondary
        self._today = today

    def provider_plan(self) -> List[NoteProvider]:
        preference = self.generation.preference
        plan: List[NoteProvider] = []

        use_secondary = self.secondary is not None and preference != "gemini"
        if use_secondary:
            plan.append(self.secondary)
            if preference.startswith("openai"):
                return plan

        if self.primary is not None:
            plan.append(self.primary)
            if use_secondary:
                plan.append(self.secondary)
        elif self.secondary is not None:
            plan.append(self.secondary)

        return plan

    def provider_statuses(self) -> Dict[str, str]:
        """Per-provider status for the health endpoint."""
        statuses = {"gemini": "not_configured", "openai": "not_configured"}
        for provider in (self.primary, self.secondary):
            if provider is not None:
                statuses[provider.name] = provider.status()
        return statuses

    async def generate(self, transcript: str, domain: Domain) -> Dict[str, Any]:
        """Returns a NoteDraft for `domain`; see run() for provenance."""
        outcome = await self.run(transcript, domain)
        return outcome.note

    async def run(self, transcript: str, domain: Domain) -> GenerationOutcome:
        domain = coerce_domain(domain)
        try:
            return await self._run(transcript, domain)
        except Exception as exc:
            logger.error("Note generation failed unexpectedly: %s", exc, exc_info=True)
            return self._fallback(transcript, domain, f"Unexpected generation error: {exc}")

    async def _run(self, transcript: str, domain: Domain) -> GenerationOutcome:
        if not transcript or not transcript.strip():
            return self._fallback(transcript, domain, "Transcript is empty")

        plan = self.provider_plan()
        if not plan:
            return self._fallback(transcript, domain, "No AI provider configured")

        logger.info(
            "Generating %s note via plan=%s (preference=%s)",
            domain.value,
            [provider.name for provider in plan],
            self.generation.preference,
        )

        errors: List[str] = []
        for provider in plan:
            result = await provider.generate(transcript, domain)
            if isinstance(result, ProviderSuccess):
                return GenerationOutcome(
                    note=result.note, provider=result.provider, model=result.model
                )
            errors.append(f"{result.provider}: {result.error.message}")

        return self._fallback(transcript, domain, "; ".join(errors))

    def _fallback(self, transcript: str, domain: Domain, error: str) -> GenerationOutcome:
        logger.warning("Using offline %s note: %s", domain.value, error)
        note = build_offline_note(transcript, domain, error=error, today=self._today())
        return GenerationOutcome(note=note, provider=OFFLINE_PROVIDER)


def build_generation_pipeline(app_settings: Settings) -> NoteGenerationPipeline:
    """Assembles providers from settings; unconfigured providers are left out."""
    # Imported here so the SDKs are only loaded when a pipeline is built.
    from clinivoice.services.gemini_service import GeminiProvider
    from clinivoice.services.openai_service import OpenAIProvider

    generation = app_settings.generation_config()
    gemini_config = app_settings.gemini_config()
    openai_config = app_settings.openai_config()

    return NoteGenerationPipeline(
        generation=generation,
        primary=GeminiProvider(gemini_config, generation) if gemini_config else None,
        secondary=OpenAIProvider(openai_config, generation) if openai_config else None,
    )


@lru_cache(maxsize=1)
def get_generation_pipeline() -> NoteGenerationPipeline:
    """
    FastAPI dependency returning the process-wide pipeline.

    Cached so circuit breaker state is shared by every request; tests replace
    it through app.dependency_overrides.
    """
    return build_generation_pipeline(settings)
