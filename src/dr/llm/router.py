"""
LLM Router with profile-based model selection.

Routes generation requests to a model by profile, applies the retry policy
and supports dry run mode for testing without API calls.
"""

from __future__ import annotations

import time
from typing import Any

from dr.config import Settings, get_settings
from dr.llm.anthropic_client import AnthropicClient
from dr.llm.base import (
    DRY_RUN_RESPONSES,
    LLMClient,
    LLMRequest,
    LLMResponse,
    Profile,
)
from dr.llm.retry import RetryPolicy
from dr.logging import get_logger

logger = get_logger(__name__)

# Output token limit per profile
PROFILE_MAX_TOKENS: dict[Profile, int] = {
    Profile.DEEP: 8192,
    Profile.BALANCED: 4096,
    Profile.FAST: 2048,
}


class LLMRouter:
    """Routes generation requests to models by profile.

    Features:
    - Profile -> model mapping from settings
    - Bounded retry with exponential backoff (RetryPolicy)
    - Dry run mode with canned responses per task
    - Token usage totals for the process
    """

    def __init__(
        self,
        settings: Settings | None = None,
        client: LLMClient | None = None,
        dry_run: bool | None = None,
        retry_policy: RetryPolicy | None = None,
    ) -> None:
        """Initialize the router.

        Args:
            settings: Application settings. If None, loads from env.
            client: Provider client. If None, an AnthropicClient is created lazily.
            dry_run: Force dry run mode. If None, uses settings.DRY_RUN.
            retry_policy: Retry policy. If None, built from settings.
        """
        self._settings = settings or get_settings()
        self._client = client
        self._dry_run = self._settings.dry_run if dry_run is None else dry_run
        self._retry_policy = retry_policy or RetryPolicy.from_settings(self._settings)

        self._model_map: dict[Profile, str] = {
            Profile.FAST: self._settings.MODEL_FAST,
            Profile.BALANCED: self._settings.MODEL_BALANCED,
            Profile.DEEP: self._settings.MODEL_DEEP,
        }

        self.calls = 0
        self.input_tokens = 0
        self.output_tokens = 0

    @property
    def dry_run(self) -> bool:
        return self._dry_run

    @property
    def retry_policy(self) -> RetryPolicy:
        return self._retry_policy

    def model_for(self, profile: Profile) -> str:
        return self._model_map[profile]

    def _get_client(self) -> LLMClient:
        """Get or create the provider client."""
        if self._client is None:
            self._client = AnthropicClient(
                api_key=self._settings.anthropic_api_key,
                timeout=self._settings.LLM_TIMEOUT_SECONDS,
            )
        return self._client

    async def complete(
        self,
        profile: Profile,
        messages: list[dict[str, Any]],
        task: str | None = None,
        **kwargs: Any,
    ) -> LLMResponse:
        """Send a completion request routed by profile.

        Args:
            profile: Generation profile.
            messages: Chat messages.
            task: Task name for logging and dry runs.
            **kwargs: temperature, max_tokens, stop.

        Returns:
            LLM response.

        Raises:
            GenerationExhaustedError: All attempts failed.
            AuthenticationError: Invalid credentials (not retried).
        """
        model = self.model_for(profile)

        if self._dry_run:
            return self._get_dry_run_response(task, model)

        request = LLMRequest(
            messages=messages,
            model=model,
            temperature=kwargs.get("temperature", 0.7),
            max_tokens=kwargs.get("max_tokens") or PROFILE_MAX_TOKENS[profile],
            stop=kwargs.get("stop"),
        )

        client = self._get_client()
        start_time = time.monotonic()
        response = await self._retry_policy.call(
            client.complete, request, description=f"generate:{task or profile.value}"
        )

        self.calls += 1
        self.input_tokens += response.input_tokens
        self.output_tokens += response.output_tokens

        logger.info(
            "LLM call completed",
            profile=profile.value,
            task=task,
            model=response.model,
            input_tokens=response.input_tokens,
            output_tokens=response.output_tokens,
            latency_ms=int((time.monotonic() - start_time) * 1000),
        )
        return response

    async def generate(
        self,
        prompt: str,
        profile: Profile,
        *,
        task: str | None = None,
    ) -> str:
        """Generate text for a single-prompt request.

        Args:
            prompt: Full prompt text.
            profile: Generation profile.
            task: Task name for logging and dry runs.

        Returns:
            Generated text, stripped.
        """
        response = await self.complete(
            profile, [{"role": "user", "content": prompt}], task=task
        )
        return response.content.strip()

    def _get_dry_run_response(self, task: str | None, model: str) -> LLMResponse:
        """Get a canned response for a task."""
        dry_config = DRY_RUN_RESPONSES.get(task or "default", DRY_RUN_RESPONSES["default"])
        self.calls += 1
        self.input_tokens += dry_config.input_tokens
        self.output_tokens += dry_config.output_tokens

        return LLMResponse(
            content=dry_config.content,
            model=model,
            provider="dry_run",
            input_tokens=dry_config.input_tokens,
            output_tokens=dry_config.output_tokens,
            finish_reason="stop",
            latency_ms=50,
        )

    async def close(self) -> None:
        """Close the provider client."""
        if self._client is not None:
            await self._client.close()
            self._client = None
