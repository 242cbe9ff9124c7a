"""
Anthropic LLM client implementation.

Wraps AsyncAnthropic and maps SDK errors onto the LLMError hierarchy. Retries
are owned by the router's RetryPolicy, so the SDK's own retries are disabled.
"""

from __future__ import annotations

import time
from typing import Any

import anthropic
from anthropic import AsyncAnthropic

from dr.exceptions import AuthenticationError, LLMError, RateLimitError
from dr.llm.base import LLMRequest, LLMResponse
from dr.logging import get_logger

logger = get_logger(__name__)


class AnthropicClient:
    """Anthropic LLM client using AsyncAnthropic."""

    def __init__(self, api_key: str | None = None, timeout: float = 600.0) -> None:
        """Initialize the Anthropic client.

        Args:
            api_key: Anthropic API key. If None, uses ANTHROPIC_API_KEY env var.
            timeout: Per-request timeout in seconds.
        """
        self._client = AsyncAnthropic(api_key=api_key, timeout=timeout, max_retries=0)
        self._provider = "anthropic"

    @property
    def provider(self) -> str:
        """Name of this provider."""
        return self._provider

    def _convert_messages(
        self, messages: list[dict[str, Any]]
    ) -> tuple[str | None, list[dict[str, Any]]]:
        """Split out the system prompt, which Anthropic takes as a separate param."""
        system_message: str | None = None
        converted: list[dict[str, Any]] = []

        for msg in messages:
            role = msg.get("role", "user")
            content = msg.get("content", "")

            if role == "system":
                system_message = f"{system_message}\n\n{content}" if system_message else content
            elif role == "assistant":
                converted.append({"role": "assistant", "content": content})
            else:
                converted.append({"role": "user", "content": content})

        return system_message, converted

    async def complete(self, request: LLMRequest) -> LLMResponse:
        """Send a completion request.

        Args:
            request: The LLM request.

        Returns:
            LLM response with all text blocks concatenated.

        Raises:
            RateLimitError: On HTTP 429.
            AuthenticationError: On invalid or unauthorized key.
            LLMError: On any other API failure, including timeouts.
        """
        start_time = time.monotonic()
        system_message, messages = self._convert_messages(request.messages)

        params: dict[str, Any] = {
            "model": request.model,
            "messages": messages,
            "max_tokens": request.max_tokens or 4096,
            "temperature": request.temperature,
        }
        if system_message:
            params["system"] = system_message
        if request.stop:
            params["stop_sequences"] = request.stop

        try:
            response = await self._client.messages.create(**params)

        except anthropic.RateLimitError as e:
            retry_after = None
            retry_after_header = e.response.headers.get("retry-after") if e.response else None
            if retry_after_header:
                try:
                    retry_after = float(retry_after_header)
                except ValueError:
                    retry_after = None

            logger.warning("Anthropic rate limit hit", model=request.model, retry_after=retry_after)
            raise RateLimitError(
                str(e), retry_after=retry_after, context={"model": request.model}
            ) from e

        except (anthropic.AuthenticationError, anthropic.PermissionDeniedError) as e:
            raise AuthenticationError(
                f"Anthropic authentication failed: {e}", context={"model": request.model}
            ) from e

        except anthropic.APIError as e:
            raise LLMError(f"Anthropic API error: {e}", context={"model": request.model}) from e

        latency_ms = int((time.monotonic() - start_time) * 1000)

        content = ""
        for block in response.content:
            if block.type == "text":
                content += block.text

        return LLMResponse(
            content=content,
            model=response.model,
            provider=self._provider,
            input_tokens=response.usage.input_tokens,
            output_tokens=response.usage.output_tokens,
            finish_reason=response.stop_reason or "stop",
            latency_ms=latency_ms,
        )

    async def close(self) -> None:
        """Close the client."""
        await self._client.close()
