"""
Clinivoice Backend: OpenAI Provider
====================================

What:  Secondary note provider using an OpenAI-compatible chat completions API.
How:   One model (OPENAI_MODEL, default gpt-4o-mini), JSON mode enforced via
       response_format, a system message demanding JSON and the same domain
       prompt the Gemini provider sends.
Who:   Built by build_generation_pipeline() when OPENAI_API_KEY is set.

The SDK's own retries are disabled (max_retries=0); retrying is governed by
PROVIDER_RETRY_ATTEMPTS like every other provider call.
"""

import logging
from typing import Optional, Sequence

from openai import AsyncOpenAI, OpenAIError

from clinivoice.config import GenerationConfig, OpenAIConfig
from clinivoice.exceptions import ProviderEmptyResponse, ProviderTransportError
from clinivoice.schemas.note import Domain
from clinivoice.services.llm_base import NoteProvider
from clinivoice.services.prompts import OPENAI_SYSTEM_MESSAGE

logger = logging.getLogger(__name__)


class OpenAIProvider(NoteProvider):
    name = "openai"

    def __init__(
        self,
        config: OpenAIConfig,
        generation: GenerationConfig,
        client: Optional[AsyncOpenAI] = None,
    ):
        super().__init__(generation)
        self.config = config
        self.client = client or AsyncOpenAI(
            api_key=config.api_key,
            base_url=config.base_url,
            timeout=generation.request_timeout,
            max_retries=0,
        )
        logger.info("OpenAIProvider initialized with model=%s", config.model)

    def candidate_models(self) -> Sequence[str]:
        return (self.config.model,)

    async def _request(self, model: str, prompt: str, domain: Domain) -> str:
        try:
            completion = await self.client.chat.completions.create(
                model=model,
                response_format={"type": "json_object"},
                messages=[
                    {"role": "system", "content": OPENAI_SYSTEM_MESSAGE},
                    {"role": "user", "content": prompt},
                ],
            )
        except OpenAIError as exc:
            raise ProviderTransportError(
                f"OpenAI API error: {exc}",
                provider=self.name,
                model=model,
                context={"error_type": type(exc).__name__},
            ) from exc

        if not completion.choices:
            raise ProviderEmptyResponse(
                "OpenAI returned no choices", provider=self.name, model=model
            )
        return completion.choices[0].message.content or ""
