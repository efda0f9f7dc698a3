"""
Clinivoice Backend: Custom Exception Hierarchy
===============================================

What:  Application-specific exceptions for the API layer and for the note
       generation pipeline.
How:   Each exception carries a user-facing message and an optional context
       dict. Global handlers (registered in main.py) turn API-level exceptions
       into structured JSON responses. Generation errors never reach those
       handlers: the pipeline catches them and degrades to the next provider
       or to the offline template.

Exception Hierarchy:
    ClinivoiceError (base)
    ├── ValidationError            → 400 Bad Request
    ├── AuthenticationError        → 401 Unauthorized
    ├── EntitlementDeniedError     → 403 Forbidden (reason-coded)
    ├── NotFoundError              → 404 Not Found
    ├── DatabaseError              → 500 Internal Server Error
    └── GenerationError            (internal to the pipeline)
        ├── ProviderTransportError
        │   └── CircuitBreakerOpenError
        ├── ProviderEmptyResponse
        ├── ResponseParseError
        └── NoteValidationError
"""

from typing import Any, Dict, List, Optional


class ClinivoiceError(Exception):
    """
    Base exception for all Clinivoice application errors.

    Attributes:
        message:  User-facing error description (safe to return in API response)
        context:  Additional debug info (logged but not returned to the client
                  unless a handler opts in)
    """

    def __init__(
        self,
        message: str = "An unexpected error occurred",
        context: Optional[Dict[str, Any]] = None,
    ):
        self.message = message
        self.context = context or {}
        super().__init__(self.message)


class ValidationError(ClinivoiceError):
    """Raised when client input fails a business rule (HTTP 400)."""

    def __init__(
        self,
        message: str = "Validation failed",
        field: Optional[str] = None,
        context: Optional[Dict[str, Any]] = None,
    ):
        ctx = context or {}
        if field:
            ctx["field"] = field
        super().__init__(message=message, context=ctx)
        self.field = field


class AuthenticationError(ClinivoiceError):
    """Missing, expired or invalid bearer token (HTTP 401)."""

    def __init__(
        self,
        message: str = "Authentication required",
        context: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message=message, context=context)


class NotFoundError(ClinivoiceError):
    """
    Raised when a requested resource does not exist (HTTP 404).

    SQLAlchemy returns None for missing rows; services convert that None into
    this exception so routes stay free of lookup checks.
    """

    def __init__(
        self,
        resource: str = "resource",
        resource_id: Optional[str] = None,
        context: Optional[Dict[str, Any]] = None,
    ):
        message = f"The requested {resource} was not found"
        if resource_id:
            message = f"{resource} with ID '{resource_id}' was not found"
        ctx = context or {}
        ctx["resource"] = resource
        if resource_id:
            ctx["resource_id"] = resource_id
        super().__init__(message=message, context=ctx)


class EntitlementDeniedError(ClinivoiceError):
    """
    Raised by the API layer when the entitlement gate refuses a request.

    The gate itself returns denials as values; this exception only exists so
    the route can hand the decision to a global handler that renders the
    reason-coded 403 body.

    Attributes:
        reason: one of no_subscription, inactive_subscription,
                subscription_expired, limit_exceeded, locked
        usage:  current month's usage count, when known
        limit:  monthly limit (None means unlimited)
    """

    def __init__(
        self,
        reason: str,
        message: str,
        usage: Optional[int] = None,
        limit: Optional[int] = None,
        context: Optional[Dict[str, Any]] = None,
    ):
        ctx = context or {}
        ctx.update({"reason": reason, "usage": usage, "limit": limit})
        super().__init__(message=message, context=ctx)
        self.reason = reason
        self.usage = usage
        self.limit = limit


class DatabaseError(ClinivoiceError):
    """
    Raised when database operations fail unexpectedly (HTTP 500).

    The message returned to the client is always generic; details are logged
    server-side only.
    """

    def __init__(
        self,
        message: str = "A database error occurred. Please try again later.",
        context: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message=message, context=context)


# ══════════════════════════════════════════════════════════════════════════
# Generation errors (caught inside the pipeline)
# ══════════════════════════════════════════════════════════════════════════


class GenerationError(ClinivoiceError):
    """Base for every failure a provider attempt can produce."""

    def __init__(
        self,
        message: str = "Note generation failed",
        provider: Optional[str] = None,
        model: Optional[str] = None,
        context: Optional[Dict[str, Any]] = None,
    ):
        ctx = context or {}
        if provider:
            ctx["provider"] = provider
        if model:
            ctx["model"] = model
        super().__init__(message=message, context=ctx)
        self.provider = provider
        self.model = model


class ProviderTransportError(GenerationError):
    """Network, HTTP or SDK failure talking to a provider. Retryable."""


class CircuitBreakerOpenError(ProviderTransportError):
    """
    Raised when a provider's circuit breaker is OPEN.

    The provider is skipped without a network call until the recovery timeout
    elapses.
    """

    def __init__(
        self,
        provider: Optional[str] = None,
        recovery_time: int = 60,
        context: Optional[Dict[str, Any]] = None,
    ):
        ctx = context or {}
        ctx["recovery_time"] = recovery_time
        super().__init__(
            message=(
                f"Provider is temporarily disabled after repeated failures; "
                f"retry in approximately {recovery_time} seconds."
            ),
            provider=provider,
            context=ctx,
        )
        self.recovery_time = recovery_time


class ProviderEmptyResponse(GenerationError):
    """The provider answered but returned no text."""


class ResponseParseError(GenerationError):
    """None of the JSON recovery strategies produced an object."""


class NoteValidationError(GenerationError):
    """A parsed note is missing required fields or has them blank."""

    def __init__(
        self,
        missing: List[str],
        domain: str,
        provider: Optional[str] = None,
        model: Optional[str] = None,
    ):
        super().__init__(
            message=f"Missing required {domain} fields: {', '.join(missing)}",
            provider=provider,
            model=model,
            context={"missing": list(missing), "domain": domain},
        )
        self.missing = list(missing)
        self.domain = domain
