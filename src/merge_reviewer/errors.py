"""Error taxonomy for the review engine.

Every error raised by the engine derives from ``ReviewEngineError`` and carries
a ``retryable`` flag that the scheduler and the retry helpers consult.
"""

import asyncio

import httpx


class ReviewEngineError(Exception):
    """Base class for review engine errors."""

    retryable: bool = False

    def __init__(self, message: str, *, retryable: bool | None = None) -> None:
        super().__init__(message)
        if retryable is not None:
            self.retryable = retryable


class ValidationError(ReviewEngineError):
    """Raised when input data is malformed or incomplete."""

    pass


class NotEligibleError(ReviewEngineError):
    """Raised when a pull request does not qualify for review.

    This is a business-rule skip, not a failure.
    """

    pass


class ExternalServiceError(ReviewEngineError):
    """Raised when an external collaborator fails."""

    retryable = True

    def __init__(
        self,
        message: str,
        *,
        service: str = "external",
        status_code: int | None = None,
        retryable: bool | None = None,
    ) -> None:
        super().__init__(message, retryable=retryable)
        self.service = service
        self.status_code = status_code


class RateLimitError(ExternalServiceError):
    """Raised when a collaborator reports a rate limit (HTTP 429)."""

    def __init__(
        self,
        message: str = "Rate limit exceeded",
        *,
        service: str = "external",
        retry_after: float | None = None,
    ) -> None:
        super().__init__(message, service=service, status_code=429)
        self.retry_after = retry_after


class ContextLimitError(ExternalServiceError):
    """Raised when a prompt exceeds the model's context window."""

    retryable = False

    def __init__(
        self,
        message: str = "Context length exceeded",
        *,
        service: str = "ai-completion",
        estimated_tokens: int | None = None,
        limit: int | None = None,
    ) -> None:
        super().__init__(message, service=service, status_code=413)
        self.estimated_tokens = estimated_tokens
        self.limit = limit


class CircuitOpenError(ExternalServiceError):
    """Raised when a circuit breaker rejects a call."""

    def __init__(self, name: str) -> None:
        super().__init__(f"Circuit breaker '{name}' is open", service=name)
        self.name = name


class StepTimeoutError(ReviewEngineError):
    """Raised when a step or the whole workflow exceeds its time budget."""

    retryable = True

    def __init__(self, operation: str, timeout_seconds: float) -> None:
        super().__init__(f"{operation} timed out after {timeout_seconds}s")
        self.operation = operation
        self.timeout_seconds = timeout_seconds


class PersistenceError(ReviewEngineError):
    """Raised when the review store fails to read or write."""

    pass


class ResponseParseError(ReviewEngineError):
    """Raised when AI output cannot be turned into structured data."""

    pass


def is_retryable(error: BaseException) -> bool:
    """Classify an error as transient or permanent.

    Args:
        error: The exception to classify

    Returns:
        True if the operation that raised it may be retried
    """
    if isinstance(error, ReviewEngineError):
        return error.retryable
    if isinstance(error, (asyncio.TimeoutError, TimeoutError)):
        return True
    if isinstance(error, httpx.TransportError):
        return True
    return False
