"""HTTP client for an OpenAI-compatible chat completion API."""

import logging
from dataclasses import dataclass
from typing import Any, Protocol

import httpx

from merge_reviewer.errors import ContextLimitError, ExternalServiceError, RateLimitError

logger = logging.getLogger(__name__)

DEFAULT_API_BASE = "https://api.groq.com/openai/v1"
SERVICE_NAME = "ai-completion"


class CompletionClient(Protocol):
    """A single text-completion call returning raw model output."""

    async def complete(self, system_prompt: str, user_prompt: str) -> str: ...


@dataclass
class CompletionConfig:
    """Configuration for the completion client."""

    api_key: str
    base_url: str = DEFAULT_API_BASE
    model: str = "llama-3.3-70b-versatile"
    max_tokens: int = 4096
    temperature: float = 0.3
    timeout: float = 60.0


class HttpCompletionClient:
    """Chat completion client speaking the OpenAI wire format."""

    def __init__(self, config: CompletionConfig, transport: httpx.AsyncBaseTransport | None = None) -> None:
        """Initialize the client.

        Args:
            config: Configuration for the client
            transport: Optional httpx transport (used by tests)
        """
        self.config = config
        self._client = httpx.AsyncClient(
            base_url=config.base_url,
            headers={
                "Authorization": f"Bearer {config.api_key}",
                "Content-Type": "application/json",
            },
            timeout=config.timeout,
            transport=transport,
        )

    async def close(self) -> None:
        """Close the HTTP client."""
        await self._client.aclose()

    async def __aenter__(self) -> "HttpCompletionClient":
        """Async context manager entry."""
        return self

    async def __aexit__(self, *args: Any) -> None:
        """Async context manager exit."""
        await self.close()

    async def complete(self, system_prompt: str, user_prompt: str) -> str:
        """Run one completion.

        Args:
            system_prompt: System instruction
            user_prompt: User prompt

        Returns:
            Raw text content of the first choice

        Raises:
            RateLimitError: On HTTP 429
            ContextLimitError: On HTTP 413 or a context-length error body
            ExternalServiceError: On any other failure
        """
        body = {
            "model": self.config.model,
            "messages": [
                {"role": "system", "content": system_prompt},
                {"role": "user", "content": user_prompt},
            ],
            "max_tokens": self.config.max_tokens,
            "temperature": self.config.temperature,
        }

        logger.debug(f"Requesting completion from {self.config.model}")
        try:
            response = await self._client.post("/chat/completions", json=body)
        except httpx.TimeoutException as e:
            raise ExternalServiceError(f"Completion request timed out: {e}", service=SERVICE_NAME) from e
        except httpx.TransportError as e:
            raise ExternalServiceError(f"Completion request failed: {e}", service=SERVICE_NAME) from e

        self._raise_for_status(response)

        try:
            data = response.json()
            choices = data.get("choices") or []
            content = choices[0].get("message", {}).get("content", "") if choices else ""
        except (ValueError, AttributeError, TypeError, IndexError) as e:
            raise ExternalServiceError(
                f"Malformed completion response: {e}", service=SERVICE_NAME
            ) from e
        if not content:
            raise ExternalServiceError("Completion response had no content", service=SERVICE_NAME)

        usage = data.get("usage", {})
        if usage:
            logger.debug(
                f"Completion used {usage.get('prompt_tokens')} prompt / "
                f"{usage.get('completion_tokens')} completion tokens"
            )
        return content

    def _raise_for_status(self, response: httpx.Response) -> None:
        if response.is_success:
            return

        text = response.text
        if response.status_code == 429:
            raise RateLimitError(
                f"Rate limit exceeded: {text[:200]}",
                service=SERVICE_NAME,
                retry_after=_parse_retry_after(response.headers.get("retry-after")),
            )
        if response.status_code == 413 or "context_length_exceeded" in text:
            raise ContextLimitError(f"Prompt too large: {text[:200]}")
        if response.status_code in (401, 403):
            raise ExternalServiceError(
                "Authentication failed for completion API",
                service=SERVICE_NAME,
                status_code=response.status_code,
                retryable=False,
            )
        raise ExternalServiceError(
            f"Completion API error {response.status_code}: {text[:200]}",
            service=SERVICE_NAME,
            status_code=response.status_code,
            retryable=response.status_code >= 500,
        )


def _parse_retry_after(value: str | None) -> float | None:
    if not value:
        return None
    try:
        return float(value)
    except ValueError:
        return None
