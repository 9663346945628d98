"""Retry, timeout and circuit breaker primitives for external calls."""

import asyncio
import logging
import random
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from enum import Enum
from typing import Any, TypeVar

from merge_reviewer.errors import (
    CircuitOpenError,
    ContextLimitError,
    NotEligibleError,
    RateLimitError,
    StepTimeoutError,
    ValidationError,
    is_retryable,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass
class RetryPolicy:
    """Bounded retry settings for one kind of operation."""

    max_retries: int = 3
    base_delay: float = 1.0
    max_delay: float = 30.0
    timeout: float | None = 60.0


async def with_timeout(awaitable: Awaitable[T], seconds: float, operation: str) -> T:
    """Race an awaitable against a timer.

    Args:
        awaitable: Work to run
        seconds: Time budget
        operation: Name used in the timeout error

    Returns:
        The awaitable's result

    Raises:
        StepTimeoutError: If the budget is exceeded
    """
    try:
        return await asyncio.wait_for(awaitable, timeout=seconds)
    except asyncio.TimeoutError as e:
        raise StepTimeoutError(operation, seconds) from e


def backoff_delay(
    attempt: int,
    error: BaseException | None = None,
    base_delay: float = 1.0,
    max_delay: float = 30.0,
) -> float:
    """Compute the delay before the next attempt.

    A server-provided rate-limit hint wins; otherwise exponential backoff
    capped at ``max_delay`` plus up to 10% jitter. The hint is capped at
    ``max_delay`` too.
    """
    if isinstance(error, RateLimitError) and error.retry_after is not None:
        return min(max(0.0, float(error.retry_after)), max_delay)
    delay = min(base_delay * (2**attempt), max_delay)
    return delay + random.uniform(0, delay * 0.1)


async def retry_async(
    operation: Callable[[], Awaitable[T]],
    name: str,
    policy: RetryPolicy | None = None,
    retry_if: Callable[[BaseException], bool] = is_retryable,
) -> T:
    """Run an operation with bounded retries and backoff.

    Context-limit errors are never retried here; callers own the
    reduced-context path.

    Args:
        operation: Zero-argument coroutine factory
        name: Operation name for logs and timeout errors
        policy: Retry settings
        retry_if: Predicate deciding whether an error is transient

    Returns:
        The first successful result

    Raises:
        The last error once retries are exhausted or a permanent error occurs
    """
    policy = policy or RetryPolicy()
    attempts = policy.max_retries + 1

    for attempt in range(attempts):
        try:
            if policy.timeout:
                return await with_timeout(operation(), policy.timeout, name)
            return await operation()
        except ContextLimitError:
            raise
        except Exception as e:
            if not retry_if(e) or attempt == attempts - 1:
                if attempt > 0:
                    logger.error(f"{name} failed after {attempt + 1} attempts: {e}")
                raise
            delay = backoff_delay(attempt, e, policy.base_delay, policy.max_delay)
            logger.warning(
                f"{name} attempt {attempt + 1}/{attempts} failed: {e}; retrying in {delay:.1f}s"
            )
            await asyncio.sleep(delay)

    raise RuntimeError(f"{name} exhausted retries")  # pragma: no cover


class CircuitState(Enum):
    """Circuit breaker states."""

    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"


@dataclass
class CircuitBreakerConfig:
    """Thresholds for a circuit breaker."""

    failure_threshold: int = 5
    recovery_timeout: float = 60.0
    half_open_max_calls: int = 3


class CircuitBreaker:
    """Closed/open/half-open guard around one external dependency.

    CLOSED counts consecutive failures and opens at the threshold. OPEN
    rejects calls until the recovery timeout elapses, then moves to
    HALF_OPEN, which admits up to ``half_open_max_calls`` probes. That many
    successes close the circuit; any probe failure reopens it.
    """

    def __init__(
        self,
        name: str,
        config: CircuitBreakerConfig | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.name = name
        self.config = config or CircuitBreakerConfig()
        self._clock = clock
        self._state = CircuitState.CLOSED
        self._failures = 0
        self._successes = 0
        self._half_open_calls = 0
        self._opened_at: float | None = None
        self._last_failure: str | None = None

    @property
    def state(self) -> CircuitState:
        """Current state, promoting OPEN to HALF_OPEN once recovery is due."""
        if self._state is CircuitState.OPEN and self._opened_at is not None:
            if self._clock() - self._opened_at >= self.config.recovery_timeout:
                logger.info(f"Circuit {self.name} half-open, probing")
                self._state = CircuitState.HALF_OPEN
                self._successes = 0
                self._half_open_calls = 0
        return self._state

    async def call(
        self,
        operation: Callable[[], Awaitable[T]],
        fallback: Callable[[], Awaitable[T]] | None = None,
    ) -> T:
        """Run an operation through the breaker.

        Args:
            operation: Zero-argument coroutine factory
            fallback: Optional coroutine factory used when the call is
                rejected or fails

        Returns:
            The operation's (or fallback's) result

        Raises:
            CircuitOpenError: If the circuit rejects the call and there is no fallback
        """
        state = self.state
        if state is CircuitState.OPEN or (
            state is CircuitState.HALF_OPEN
            and self._half_open_calls >= self.config.half_open_max_calls
        ):
            if fallback is not None:
                logger.warning(f"Circuit {self.name} is open, using fallback")
                return await fallback()
            raise CircuitOpenError(self.name)

        if state is CircuitState.HALF_OPEN:
            self._half_open_calls += 1

        try:
            result = await operation()
        except Exception as e:
            if _counts_as_failure(e):
                self._record_failure(e)
            if fallback is not None:
                logger.warning(f"Circuit {self.name} call failed ({e}), using fallback")
                return await fallback()
            raise

        self._record_success()
        return result

    def _record_success(self) -> None:
        if self._state is CircuitState.HALF_OPEN:
            self._successes += 1
            if self._successes >= self.config.half_open_max_calls:
                logger.info(f"Circuit {self.name} closed after successful probes")
                self._close()
        else:
            self._failures = 0

    def _record_failure(self, error: BaseException) -> None:
        self._last_failure = str(error)
        if self._state is CircuitState.HALF_OPEN:
            logger.warning(f"Circuit {self.name} probe failed, reopening")
            self._open()
            return

        self._failures += 1
        if self._failures >= self.config.failure_threshold:
            logger.error(f"Circuit {self.name} opened after {self._failures} failures")
            self._open()

    def _open(self) -> None:
        self._state = CircuitState.OPEN
        self._opened_at = self._clock()
        self._successes = 0
        self._half_open_calls = 0

    def _close(self) -> None:
        self._state = CircuitState.CLOSED
        self._opened_at = None
        self._failures = 0
        self._successes = 0
        self._half_open_calls = 0

    def reset(self) -> None:
        """Force the breaker back to CLOSED."""
        self._close()
        self._last_failure = None

    def status(self) -> dict[str, Any]:
        """Snapshot of the breaker for health reporting."""
        next_attempt = None
        if self._state is CircuitState.OPEN and self._opened_at is not None:
            next_attempt = max(
                0.0, self._opened_at + self.config.recovery_timeout - self._clock()
            )
        return {
            "name": self.name,
            "state": self.state.value,
            "failures": self._failures,
            "successes": self._successes,
            "last_failure": self._last_failure,
            "seconds_until_probe": next_attempt,
        }


def _counts_as_failure(error: BaseException) -> bool:
    # Caller mistakes and oversize prompts say nothing about the dependency's health
    return not isinstance(error, (ValidationError, NotEligibleError, ContextLimitError))


class CircuitBreakerRegistry:
    """One circuit breaker per external dependency name."""

    def __init__(self, config: CircuitBreakerConfig | None = None) -> None:
        self.config = config or CircuitBreakerConfig()
        self._breakers: dict[str, CircuitBreaker] = {}

    def get(self, name: str) -> CircuitBreaker:
        """Return the breaker for a dependency, creating it on first use."""
        if name not in self._breakers:
            self._breakers[name] = CircuitBreaker(name, self.config)
        return self._breakers[name]

    def status(self) -> dict[str, dict[str, Any]]:
        """Status of every known breaker."""
        return {name: breaker.status() for name, breaker in self._breakers.items()}

    def reset(self, name: str | None = None) -> None:
        """Reset one breaker, or all of them."""
        targets = [self._breakers[name]] if name in self._breakers else []
        if name is None:
            targets = list(self._breakers.values())
        for breaker in targets:
            breaker.reset()
