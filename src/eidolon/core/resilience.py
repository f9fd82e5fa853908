"""
Resilience patterns for durable-store and external service calls.

Implements a circuit breaker and a bounded retry policy to prevent
cascading failures.
"""

import asyncio
import random
import threading
import time
from dataclasses import dataclass
from enum import Enum
from typing import Any, Awaitable, Callable, TypeVar

from loguru import logger

from .exceptions import RetryExhaustedError, ServiceUnavailableError

T = TypeVar('T')


class CircuitState(str, Enum):
    """
    Circuit breaker states.

    State transitions:
        CLOSED -> OPEN (after failure_threshold consecutive failures)
        OPEN -> HALF_OPEN (after reset_timeout)
        HALF_OPEN -> CLOSED (after half_open_max_attempts successes)
        HALF_OPEN -> OPEN (on any failure)
    """
    CLOSED = "closed"        # Normal operation, requests allowed
    OPEN = "open"            # Failing, reject requests immediately
    HALF_OPEN = "half_open"  # Testing recovery, one trial at a time


@dataclass
class CircuitBreakerConfig:
    """Circuit breaker configuration."""
    failure_threshold: int = 5         # Consecutive failures before opening
    reset_timeout: float = 30.0        # Seconds before attempting recovery
    half_open_max_attempts: int = 1    # Successes to close from half-open
    name: str = "circuit"              # For logging
    # Only these count as dependency failures; anything else passes through
    failure_exceptions: tuple[type[BaseException], ...] = (Exception,)


class CircuitBreakerOpen(ServiceUnavailableError):
    """Raised when circuit breaker is open."""

    def __init__(self, circuit_name: str, retry_after: float):
        super().__init__(
            f"Circuit breaker '{circuit_name}' is OPEN. "
            f"Retry after {retry_after:.1f}s",
            context={"circuit": circuit_name, "retry_after": round(retry_after, 1)},
        )
        self.circuit_name = circuit_name
        self.retry_after = retry_after


class CircuitBreaker:
    """
    Circuit breaker guarding an unreliable dependency.

    Two ways in: `execute()` wraps a single awaitable operation, while
    `before_call()` / `record_success()` / `record_failure()` let a caller
    guard a longer unit of work such as a database transaction.

    Example:
        >>> breaker = CircuitBreaker(CircuitBreakerConfig(
        ...     failure_threshold=3,
        ...     reset_timeout=30.0
        ... ))
        >>> try:
        ...     rows = await breaker.execute(lambda: fetch_rows(room_id))
        ... except CircuitBreakerOpen:
        ...     rows = []
    """

    def __init__(
        self,
        config: CircuitBreakerConfig | None = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.config = config or CircuitBreakerConfig()
        self._clock = clock

        self._state = CircuitState.CLOSED
        self._failure_count = 0
        self._success_count = 0
        self._trial_in_flight = False
        self._opened_at: float | None = None
        self._lock = threading.Lock()

        logger.debug(
            f"[{self.config.name}] Circuit breaker initialized: "
            f"failure_threshold={self.config.failure_threshold}, "
            f"reset_timeout={self.config.reset_timeout}s"
        )

    @property
    def state(self) -> CircuitState:
        """Current state, applying the OPEN -> HALF_OPEN transition when due."""
        with self._lock:
            self._maybe_half_open()
            return self._state

    def _maybe_half_open(self) -> None:
        if self._state == CircuitState.OPEN and self._opened_at is not None:
            if self._clock() - self._opened_at >= self.config.reset_timeout:
                logger.info(f"[{self.config.name}] Circuit transitioning to HALF_OPEN")
                self._state = CircuitState.HALF_OPEN
                self._success_count = 0
                self._trial_in_flight = False

    def _retry_after(self) -> float:
        if self._opened_at is None:
            return 0.0
        elapsed = self._clock() - self._opened_at
        return max(0.0, self.config.reset_timeout - elapsed)

    def before_call(self) -> None:
        """
        Admit or reject a call.

        Raises:
            CircuitBreakerOpen: circuit is open, or a half-open trial is
                already running
        """
        with self._lock:
            self._maybe_half_open()
            if self._state == CircuitState.OPEN:
                raise CircuitBreakerOpen(self.config.name, self._retry_after())
            if self._state == CircuitState.HALF_OPEN:
                if self._trial_in_flight:
                    raise CircuitBreakerOpen(self.config.name, 0.0)
                self._trial_in_flight = True

    async def execute(self, operation: Callable[[], Awaitable[T]]) -> T:
        """
        Run `operation` under circuit breaker protection.

        Raises:
            CircuitBreakerOpen: If circuit is open (operation not invoked)
            Exception: Any exception from the operation (after recording)
        """
        self.before_call()
        try:
            result = await operation()
        except self.config.failure_exceptions:
            self.record_failure()
            raise
        except BaseException:
            self.release()
            raise
        self.record_success()
        return result

    def call(self, func: Callable[..., T], *args: Any, **kwargs: Any) -> T:
        """Synchronous variant of `execute`."""
        self.before_call()
        try:
            result = func(*args, **kwargs)
        except self.config.failure_exceptions:
            self.record_failure()
            raise
        except BaseException:
            self.release()
            raise
        self.record_success()
        return result

    def release(self) -> None:
        """Finish an admitted call without counting it either way."""
        with self._lock:
            self._trial_in_flight = False

    def record_success(self) -> None:
        with self._lock:
            self._trial_in_flight = False
            if self._state == CircuitState.HALF_OPEN:
                self._success_count += 1
                logger.debug(
                    f"[{self.config.name}] Success in HALF_OPEN "
                    f"({self._success_count}/{self.config.half_open_max_attempts})"
                )
                if self._success_count >= self.config.half_open_max_attempts:
                    logger.success(f"[{self.config.name}] Circuit closing (recovered)")
                    self._state = CircuitState.CLOSED
                    self._failure_count = 0
                    self._opened_at = None
            elif self._state == CircuitState.CLOSED:
                self._failure_count = 0

    def record_failure(self) -> None:
        with self._lock:
            self._trial_in_flight = False
            self._failure_count += 1

            if self._state == CircuitState.HALF_OPEN:
                logger.warning(f"[{self.config.name}] Circuit re-opening (failed during recovery)")
                self._state = CircuitState.OPEN
                self._opened_at = self._clock()
            elif self._state == CircuitState.CLOSED:
                if self._failure_count >= self.config.failure_threshold:
                    logger.error(
                        f"[{self.config.name}] Circuit opening "
                        f"({self._failure_count} consecutive failures)"
                    )
                    self._state = CircuitState.OPEN
                    self._opened_at = self._clock()

    def get_metrics(self) -> dict[str, Any]:
        with self._lock:
            return {
                "name": self.config.name,
                "state": self._state.value,
                "failure_count": self._failure_count,
                "success_count": self._success_count,
                "retry_after": self._retry_after() if self._state == CircuitState.OPEN else 0.0,
            }

    def reset(self) -> None:
        """Manually reset circuit to CLOSED state."""
        with self._lock:
            logger.info(f"[{self.config.name}] Circuit manually reset")
            self._state = CircuitState.CLOSED
            self._failure_count = 0
            self._success_count = 0
            self._trial_in_flight = False
            self._opened_at = None


@dataclass
class RetryPolicy:
    """
    Bounded exponential backoff.

    Attempt n (0-based) waits base_delay * multiplier**n, capped at max_delay,
    scaled by a random factor in [0.8, 1.2] when jitter is on.

    Example:
        >>> policy = RetryPolicy(max_attempts=3, base_delay=0.5)
        >>> text = await policy.run(
        ...     lambda: client.complete(prompt),
        ...     retry_on=(LLMConnectionError,),
        ...     operation_name="completion",
        ... )
    """
    max_attempts: int = 3
    base_delay: float = 0.5
    multiplier: float = 2.0
    max_delay: float = 10.0
    jitter: bool = True

    def delay_for(self, attempt: int) -> float:
        delay = min(self.base_delay * (self.multiplier ** attempt), self.max_delay)
        if self.jitter:
            delay *= random.uniform(0.8, 1.2)
        return delay

    async def run(
        self,
        operation: Callable[[], Awaitable[T]],
        retry_on: tuple[type[BaseException], ...] = (Exception,),
        should_retry: Callable[[BaseException], bool] | None = None,
        operation_name: str = "operation",
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ) -> T:
        """
        Run `operation`, retrying matching failures.

        Failures outside `retry_on` (or rejected by `should_retry`) propagate
        unchanged on the first occurrence.

        Raises:
            RetryExhaustedError: every attempt failed with a retryable error
        """
        last_error: BaseException | None = None
        attempts = max(1, self.max_attempts)

        for attempt in range(attempts):
            try:
                return await operation()
            except retry_on as e:
                if should_retry is not None and not should_retry(e):
                    raise
                last_error = e

                if attempt == attempts - 1:
                    break

                delay = self.delay_for(attempt)
                logger.warning(
                    f"{operation_name} attempt {attempt + 1}/{attempts} failed: {e}. "
                    f"Retrying in {delay:.2f}s..."
                )
                await sleep(delay)

        logger.error(f"{operation_name}: all {attempts} attempts exhausted")
        raise RetryExhaustedError(operation_name, attempts, last_error)
