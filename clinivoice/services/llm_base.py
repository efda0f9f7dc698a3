"""
Clinivoice Backend: Note Provider Interface
============================================

What:  Abstract base class for AI providers that turn a transcript into a
       NoteDraft, plus the discriminated result type they return.
How:   Concrete providers implement candidate_models() and _request(); the
       base class runs the candidate loop (call → parse → validate), wraps
       each call in a tenacity retry, and keeps the provider's circuit breaker
       up to date.
Who:   GeminiProvider and OpenAIProvider inherit from NoteProvider; the
       NoteGenerationPipeline calls generate() on each provider in its plan.

Result contract:
    generate() never raises. It returns either
        ProviderSuccess(note, provider, model)    validated, normalized note
        ProviderExhausted(provider, error)        last error seen
    so the pipeline can move to the next provider with a plain isinstance
    check.
"""

import logging
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, Optional, Sequence, Union

from tenacity import (
    AsyncRetrying,
    before_sleep_log,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential_jitter,
)

from clinivoice.config import GenerationConfig
from clinivoice.exceptions import (
    CircuitBreakerOpenError,
    GenerationError,
    ProviderTransportError,
)
from clinivoice.schemas.note import Domain
from clinivoice.services.circuit_breaker import CircuitBreaker
from clinivoice.services.note_schema import normalize_note, validate_note
from clinivoice.services.prompts import build_prompt
from clinivoice.services.response_parser import parse_note_json

logger = logging.getLogger(__name__)

# (model, prompt, domain) -> raw response text
RequestFn = Callable[[str, str, Domain], Awaitable[str]]


@dataclass(frozen=True)
class ProviderSuccess:
    note: Dict[str, Any]
    provider: str
    model: str


@dataclass(frozen=True)
class ProviderExhausted:
    provider: str
    error: GenerationError


ProviderResult = Union[ProviderSuccess, ProviderExhausted]


class NoteProvider(ABC):
    """
    Base class for note generation providers.

    Contract:
        - generate() returns a ProviderResult and never raises
        - _request() returns raw model text; transport failures are raised as
          ProviderTransportError so the retry policy can see them
        - parse and validation failures advance to the next candidate model
          without a retry
    """

    name: str = "provider"

    def __init__(self, generation: GenerationConfig):
        self.generation = generation
        self.circuit_breaker = CircuitBreaker(
            name=self.name,
            failure_threshold=generation.cb_failure_threshold,
            recovery_timeout=generation.cb_recovery_timeout,
        )

    @abstractmethod
    def candidate_models(self) -> Sequence[str]:
        """Model identifiers to try, in order."""
        ...

    @abstractmethod
    async def _request(self, model: str, prompt: str, domain: Domain) -> str:
        """
        Issues one generation call and returns the raw response text.

        Raises:
            ProviderTransportError: network, HTTP or SDK failure
            ProviderEmptyResponse: the provider answered without text
        """
        ...

    def status(self) -> str:
        return "circuit_open" if self.circuit_breaker.is_open else "available"

    async def generate(self, transcript: str, domain: Domain) -> ProviderResult:
        """
        Produces a validated NoteDraft from `transcript`, or reports exhaustion.

        Flow:
            1. Circuit breaker check (open → exhausted, no network call)
            2. Build the domain prompt from the capped transcript
            3. Run the candidate loop (subclasses may add extra rounds)
            4. Record success/failure on the breaker
        """
        try:
            self.circuit_breaker.before_call()
        except CircuitBreakerOpenError as exc:
            logger.warning("Skipping %s: %s", self.name, exc.message)
            return ProviderExhausted(provider=self.name, error=exc)

        prompt = build_prompt(transcript, domain, self.generation.transcript_max_chars)
        start_time = time.time()

        try:
            result = await self._generate_from_prompt(prompt, domain)
        except Exception as exc:
            logger.error("Unexpected %s provider error: %s", self.name, exc, exc_info=True)
            result = ProviderExhausted(
                provider=self.name,
                error=GenerationError(
                    f"Unexpected provider error: {exc}",
                    provider=self.name,
                    context={"error_type": type(exc).__name__},
                ),
            )

        duration_ms = (time.time() - start_time) * 1000
        if isinstance(result, ProviderSuccess):
            self.circuit_breaker.record_success()
            logger.info(
                "%s produced a %s note with model=%s in %.0fms",
                self.name,
                Domain(domain).value,
                result.model,
                duration_ms,
            )
        else:
            self.circuit_breaker.record_failure()
            logger.warning(
                "%s exhausted after %.0fms: %s", self.name, duration_ms, result.error.message
            )
        return result

    async def _generate_from_prompt(self, prompt: str, domain: Domain) -> ProviderResult:
        return await self._try_candidates(prompt, domain, self._request)

    async def _try_candidates(
        self,
        prompt: str,
        domain: Domain,
        request: RequestFn,
        models: Optional[Sequence[str]] = None,
    ) -> ProviderResult:
        """
        Tries each candidate model in order; first validated note wins.

        Any GenerationError (transport, empty, parse, validation) is logged and
        the loop advances to the next model.
        """
        last_error: Optional[GenerationError] = None

        for model in models if models is not None else self.candidate_models():
            try:
                raw_text = await self._call_with_retry(request, model, prompt, domain)
                note = parse_note_json(raw_text)
                validate_note(note, domain, provider=self.name, model=model)
                return ProviderSuccess(
                    note=normalize_note(note, domain),
                    provider=self.name,
                    model=model,
                )
            except GenerationError as exc:
                if exc.provider is None:
                    exc.provider = self.name
                if exc.model is None:
                    exc.model = model
                last_error = exc
                logger.warning(
                    "%s model %s failed (%s): %s",
                    self.name,
                    model,
                    type(exc).__name__,
                    exc.message,
                )

        if last_error is None:
            last_error = GenerationError("No candidate models configured", provider=self.name)
        return ProviderExhausted(provider=self.name, error=last_error)

    async def _call_with_retry(
        self, request: RequestFn, model: str, prompt: str, domain: Domain
    ) -> str:
        """
        Runs one request under the retry policy.

        Only ProviderTransportError is retried. With the default of one
        attempt this is exactly one call per candidate.
        """
        retrying = AsyncRetrying(
            retry=retry_if_exception_type(ProviderTransportError),
            stop=stop_after_attempt(self.generation.provider_retry_attempts),
            wait=wait_exponential_jitter(
                initial=self.generation.retry_min_wait,
                max=self.generation.retry_max_wait,
                jitter=1,
            ),
            before_sleep=before_sleep_log(logger, logging.WARNING),
            reraise=True,
        )
        async for attempt in retrying:
            with attempt:
                return await request(model, prompt, domain)
        raise ProviderTransportError("Retry loop ended without a result", provider=self.name, model=model)
