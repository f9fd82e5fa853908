"""
Domain-specific exception hierarchy for Eidolon.

All custom exceptions inherit from EidolonError. Each class carries the
HTTP status the API layer answers with, so callers above the core never
need a lookup table of their own.
"""

from typing import Any


class EidolonError(Exception):
    """
    Base exception for all Eidolon errors.

    Attributes:
        message: Human-readable error message
        context: Additional context, safe to expose as "details"
        status_code: HTTP-equivalent status
        retryable: Whether the caller may retry the same request
    """

    status_code: int = 500
    retryable: bool = False

    def __init__(
        self,
        message: str,
        context: dict[str, Any] | None = None,
        status_code: int | None = None,
    ):
        self.message = message
        self.context = context or {}
        if status_code is not None:
            self.status_code = status_code
        super().__init__(message)

    def __str__(self) -> str:
        if self.context:
            context_str = ", ".join(f"{k}={v}" for k, v in self.context.items())
            return f"{self.message} ({context_str})"
        return self.message


# ============================================================================
# Validation / Authorization
# ============================================================================

class ValidationError(EidolonError):
    """Missing or malformed input."""

    status_code = 400

    def __init__(self, message: str, field: str | None = None):
        super().__init__(message, context={"field": field} if field else None)
        self.field = field


class UnauthorizedError(EidolonError):
    """Caller does not own the resource."""

    status_code = 403

    def __init__(self, message: str = "Unauthorized"):
        super().__init__(message)


class ResourceNotFoundError(EidolonError):
    """Resource not found."""

    status_code = 404

    def __init__(self, resource: str, identifier: str):
        super().__init__(
            f"{resource} {identifier} not found",
            context={"resource": resource, "id": identifier},
        )
        self.resource = resource
        self.identifier = identifier


class CharacterNotFoundError(ResourceNotFoundError):
    def __init__(self, author: str, slug: str):
        super().__init__("Character", f"{author}/{slug}")


class SessionNotFoundError(ResourceNotFoundError):
    def __init__(self, session_id: str):
        super().__init__("Session", session_id)


class MemoryNotFoundError(ResourceNotFoundError):
    def __init__(self, memory_id: str):
        super().__init__("Memory", memory_id)


# ============================================================================
# Session Exceptions
# ============================================================================

class NonceRejectedError(EidolonError):
    """
    Presented nonce was wrong, expired or exhausted.

    The session has already been re-initialized when this is raised;
    `fresh_nonce` lets the client retry without another round trip.
    """

    status_code = 401
    retryable = True

    def __init__(self, session_id: str, fresh_nonce: str | None = None):
        super().__init__(
            "Invalid or expired nonce",
            context={"session_id": session_id, "nonce": fresh_nonce},
        )
        self.session_id = session_id
        self.fresh_nonce = fresh_nonce


class ResponseTimeoutError(EidolonError):
    """The conversation turn did not finish in time."""

    status_code = 504
    retryable = True

    def __init__(self, timeout_seconds: float):
        super().__init__(
            "Response timeout",
            context={"timeout": timeout_seconds},
        )
        self.timeout_seconds = timeout_seconds


# ============================================================================
# Component Lifecycle Exceptions
# ============================================================================

class ComponentInitializationError(EidolonError):
    """Component failed to initialize properly."""

    def __init__(self, component_name: str, reason: str):
        super().__init__(
            f"Failed to initialize {component_name}: {reason}",
            context={"component": component_name, "reason": reason}
        )
        self.component_name = component_name


class InvalidModelProviderError(ComponentInitializationError):
    def __init__(self, provider: Any):
        super().__init__("AgentRuntime", f"unsupported model provider '{provider}'")
        self.provider = provider


class MissingDatabaseAdapterError(ComponentInitializationError):
    def __init__(self):
        super().__init__("AgentRuntime", "no database adapter supplied")


# ============================================================================
# Dependency Exceptions
# ============================================================================

class ServiceUnavailableError(EidolonError):
    """A dependency is currently unavailable (as opposed to one call failing)."""

    status_code = 503
    retryable = True


class RetryExhaustedError(EidolonError):
    """A retried operation failed on every attempt."""

    status_code = 502

    def __init__(self, operation: str, attempts: int, last_error: BaseException):
        super().__init__(
            f"{operation} failed after {attempts} attempts: {last_error}",
            context={"operation": operation, "attempts": attempts},
        )
        self.operation = operation
        self.attempts = attempts
        self.last_error = last_error


# ============================================================================
# LLM Exceptions
# ============================================================================

class LLMException(EidolonError):
    """Base class for language model service errors."""

    status_code = 502


class LLMConnectionError(LLMException):
    """Cannot reach LLM service."""

    def __init__(self, url: str, original_error: Exception):
        super().__init__(
            f"Cannot connect to LLM service at {url}",
            context={"url": url, "original": str(original_error)}
        )
        self.url = url
        self.original_error = original_error


class LLMTimeoutError(LLMException):
    """LLM request exceeded timeout."""

    status_code = 504
    retryable = True

    def __init__(self, timeout_seconds: float, url: str):
        super().__init__(
            f"LLM request to {url} exceeded {timeout_seconds}s timeout",
            context={"timeout": timeout_seconds, "url": url}
        )
        self.timeout_seconds = timeout_seconds
        self.url = url


class LLMResponseError(LLMException):
    """Error status or unparseable body from the LLM service."""

    def __init__(self, status_code: int, response_text: str, url: str):
        truncated = response_text[:200] + "..." if len(response_text) > 200 else response_text
        super().__init__(
            f"LLM HTTP {status_code} from {url}: {truncated}",
            context={"status_code": status_code, "url": url}
        )
        self.http_status = status_code
        self.response_text = response_text

    @property
    def transient(self) -> bool:
        return self.http_status == 429 or self.http_status >= 500


# ============================================================================
# Memory / Secrets Exceptions
# ============================================================================

class MemoryWriteError(EidolonError):
    """A memory write required for correctness did not commit."""

    status_code = 500

    def __init__(self, room_id: str, reason: str):
        super().__init__(
            f"Memory write failed for room {room_id}: {reason}",
            context={"room_id": room_id}
        )
        self.room_id = room_id


class SecretsVerificationError(EidolonError):
    """Stored secrets failed signature verification (strict mode only)."""

    status_code = 500

    def __init__(self, character_id: str):
        super().__init__(
            "Character secrets failed verification",
            context={"character_id": character_id}
        )
        self.character_id = character_id
