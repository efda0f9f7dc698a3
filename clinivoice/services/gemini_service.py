"""
Clinivoice Backend: Google Gemini Provider
===========================================

What:  Primary note provider backed by Google Gemini.
How:   Two rounds over the candidate model list:
           1. SDK round: google-generativeai with JSON mime type and a response
              schema; if the SDK rejects the structured config, one plain
              prompt call to the same model.
           2. REST round: if every SDK attempt failed, the same candidates are
              tried against the v1 REST endpoint with httpx.
       Every response goes through the shared clean → parse → validate step.
Who:   Built by build_generation_pipeline() when GEMINI_API_KEY is set; called
       by NoteGenerationPipeline.

Candidate models:
    GEMINI_MODEL (operator override) first, then gemini-1.5-flash-latest and
    gemini-1.5-pro-latest; duplicates removed, order kept.

SDK configuration:
    genai.configure() sets the API key on module-level SDK state, so one
    process talks to Gemini with one key. The REST round sends the key of this
    provider's own GeminiConfig.
"""

import logging
from typing import Any, Dict, Optional, Sequence
from urllib.parse import quote

import google.generativeai as genai
import httpx

from clinivoice.config import GeminiConfig, GenerationConfig
from clinivoice.exceptions import (
    ProviderEmptyResponse,
    ProviderTransportError,
    ResponseParseError,
)
from clinivoice.schemas.note import Domain
from clinivoice.services.llm_base import NoteProvider, ProviderExhausted, ProviderResult
from clinivoice.services.prompts import response_schema

logger = logging.getLogger(__name__)


class GeminiProvider(NoteProvider):
    """
    Google Gemini implementation of NoteProvider.

    Error Handling Chain:
        SDK call fails → plain-prompt call to the same model
        → still failing → next candidate model
        → all candidates fail → REST round over the same candidates
        → REST round fails → ProviderExhausted (breaker records a failure)
    """

    name = "gemini"

    def __init__(
        self,
        config: GeminiConfig,
        generation: GenerationConfig,
        http_client: Optional[httpx.AsyncClient] = None,
    ):
        """
        Args:
            config: API key, candidate models and REST endpoint
            generation: Shared timeout / retry / breaker settings
            http_client: Optional client for the REST round; when omitted a
                         short-lived client is opened per call
        """
        super().__init__(generation)
        self.config = config
        self._http_client = http_client

        genai.configure(api_key=config.api_key)

        logger.info(
            "GeminiProvider initialized with models=%s, rest_fallback=%s, "
            "circuit_breaker(threshold=%d, recovery=%ds)",
            ",".join(config.models),
            config.rest_fallback,
            generation.cb_failure_threshold,
            generation.cb_recovery_timeout,
        )

    def candidate_models(self) -> Sequence[str]:
        return self.config.models

    async def _generate_from_prompt(self, prompt: str, domain: Domain) -> ProviderResult:
        result = await self._try_candidates(prompt, domain, self._request)
        if isinstance(result, ProviderExhausted) and self.config.rest_fallback:
            logger.info("Gemini SDK attempts exhausted; trying REST endpoint")
            result = await self._try_candidates(prompt, domain, self._request_rest)
        return result

    # ── SDK round ─────────────────────────────────────────────────────────

    async def _request(self, model: str, prompt: str, domain: Domain) -> str:
        generative_model = genai.GenerativeModel(model)
        request_options = {"timeout": self.generation.request_timeout}

        try:
            response = await generative_model.generate_content_async(
                prompt,
                generation_config={
                    "response_mime_type": "application/json",
                    "response_schema": response_schema(domain),
                },
                request_options=request_options,
            )
        except Exception as structured_error:
            logger.warning(
                "Gemini %s rejected structured config, retrying with plain prompt: %s",
                model,
                structured_error,
            )
            try:
                response = await generative_model.generate_content_async(
                    prompt, request_options=request_options
                )
            except Exception as exc:
                raise ProviderTransportError(
                    f"Gemini SDK call failed: {exc}",
                    provider=self.name,
                    model=model,
                    context={"error_type": type(exc).__name__},
                ) from exc

        return _sdk_response_text(response, model)

    # ── REST round ────────────────────────────────────────────────────────

    async def _request_rest(self, model: str, prompt: str, domain: Domain) -> str:
        url = f"{self.config.rest_base_url}/v1/models/{quote(model, safe='')}:generateContent"
        body = {
            "contents": [{"role": "user", "parts": [{"text": prompt}]}],
            "generationConfig": {"responseMimeType": "application/json"},
        }
        params = {"key": self.config.api_key}

        try:
            if self._http_client is not None:
                response = await self._http_client.post(url, params=params, json=body)
            else:
                async with httpx.AsyncClient(timeout=self.generation.request_timeout) as client:
                    response = await client.post(url, params=params, json=body)
        except httpx.HTTPError as exc:
            raise ProviderTransportError(
                f"Gemini REST request failed: {type(exc).__name__}",
                provider=self.name,
                model=model,
            ) from exc

        if not response.is_success:
            raise ProviderTransportError(
                f"HTTP {response.status_code}: {response.text[:200]}",
                provider=self.name,
                model=model,
                context={"status_code": response.status_code},
            )

        try:
            data = response.json()
        except ValueError as exc:
            raise ResponseParseError(
                "Gemini REST response body is not JSON", provider=self.name, model=model
            ) from exc

        text = _rest_response_text(data)
        if not text:
            raise ProviderEmptyResponse(
                "Empty response text", provider=self.name, model=model
            )
        logger.debug("Gemini REST %s returned %d chars", model, len(text))
        return text


def _sdk_response_text(response: Any, model: str) -> str:
    # response.text raises ValueError when the candidate has no text parts
    # (safety block, empty candidate list).
    try:
        text = response.text
    except ValueError as exc:
        raise ProviderEmptyResponse(
            f"Gemini returned no text: {exc}", provider="gemini", model=model
        ) from exc
    return text or ""


def _rest_response_text(data: Dict[str, Any]) -> str:
    if not isinstance(data, dict):
        return ""
    candidates = data.get("candidates") or []
    if not candidates:
        return ""
    parts = ((candidates[0] or {}).get("content") or {}).get("parts") or []
    return "".join(part.get("text", "") for part in parts if isinstance(part, dict))
