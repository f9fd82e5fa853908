"""Unit tests for exception hierarchy."""

from eidolon.core.exceptions import (
    CharacterNotFoundError,
    ComponentInitializationError,
    EidolonError,
    InvalidModelProviderError,
    LLMConnectionError,
    LLMException,
    LLMResponseError,
    LLMTimeoutError,
    MemoryNotFoundError,
    MissingDatabaseAdapterError,
    NonceRejectedError,
    ResourceNotFoundError,
    ResponseTimeoutError,
    RetryExhaustedError,
    ServiceUnavailableError,
    ValidationError,
)
from eidolon.core.resilience import CircuitBreakerOpen


def test_eidolon_error_base():
    """Test base exception with context."""
    exc = EidolonError("test error", context={"key": "value"})
    assert exc.message == "test error"
    assert exc.context == {"key": "value"}
    assert exc.status_code == 500
    assert "key=value" in str(exc)


def test_status_code_override():
    exc = EidolonError("teapot", status_code=418)
    assert exc.status_code == 418
    assert EidolonError("plain").status_code == 500


def test_validation_error_carries_field():
    exc = ValidationError("Character name is required", field="name")
    assert exc.status_code == 400
    assert exc.field == "name"
    assert exc.context == {"field": "name"}


def test_not_found_errors():
    assert CharacterNotFoundError("author", "pixel").status_code == 404
    assert "pixel" in str(CharacterNotFoundError("author", "pixel"))
    assert isinstance(MemoryNotFoundError("m1"), ResourceNotFoundError)


def test_nonce_rejected_carries_fresh_nonce():
    """The rejection hands the client the nonce of the re-initialized session."""
    exc = NonceRejectedError("session-1", fresh_nonce="abc")

    assert exc.status_code == 401
    assert exc.retryable is True
    assert exc.fresh_nonce == "abc"
    assert exc.context["nonce"] == "abc"


def test_response_timeout_is_retryable():
    exc = ResponseTimeoutError(30.0)
    assert exc.status_code == 504
    assert exc.retryable is True
    assert "30" in str(exc)


def test_llm_connection_error():
    """Test LLM connection error creation."""
    original = ConnectionError("Network unreachable")
    exc = LLMConnectionError("http://llm.test/v1", original)

    assert exc.url == "http://llm.test/v1"
    assert exc.original_error is original
    assert "llm.test" in str(exc)


def test_llm_timeout_error():
    """Test LLM timeout error."""
    exc = LLMTimeoutError(25.0, "http://llm.test/v1")

    assert exc.timeout_seconds == 25.0
    assert exc.url == "http://llm.test/v1"
    assert "25" in str(exc)


def test_llm_response_error_transient():
    assert LLMResponseError(429, "slow down", "u").transient is True
    assert LLMResponseError(503, "unavailable", "u").transient is True
    assert LLMResponseError(400, "bad request", "u").transient is False


def test_component_initialization_errors():
    """Construction failures name the component and the reason."""
    exc = InvalidModelProviderError("skynet")
    assert isinstance(exc, ComponentInitializationError)
    assert "skynet" in str(exc)
    assert isinstance(MissingDatabaseAdapterError(), ComponentInitializationError)


def test_retry_exhausted_keeps_last_error():
    last = LLMConnectionError("u", ConnectionError("down"))
    exc = RetryExhaustedError("chat", 3, last)
    assert exc.attempts == 3
    assert exc.last_error is last
    assert exc.status_code == 502


def test_exception_inheritance():
    """Test exception hierarchy."""
    assert issubclass(LLMConnectionError, LLMException)
    assert issubclass(LLMTimeoutError, LLMException)
    assert issubclass(LLMException, EidolonError)
    assert issubclass(CircuitBreakerOpen, ServiceUnavailableError)
    assert CircuitBreakerOpen("database", 12.0).status_code == 503
