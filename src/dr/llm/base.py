"""
Base classes and interfaces for text generation.

This module defines:
- Profile: cost/quality tier a caller asks for
- LLMRequest: Standardized request format
- LLMResponse: Standardized response format
- DRY_RUN_RESPONSES: canned output per task for dry runs
- LLMClient: Protocol for provider clients
- TextGenerator: the generate(prompt, profile) capability the pipelines consume
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any, Protocol, runtime_checkable


class Profile(str, Enum):
    """Generation profile: picks model and output token limit."""

    FAST = "fast"
    BALANCED = "balanced"
    DEEP = "deep"


@dataclass
class LLMRequest:
    """Standardized LLM request format."""

    messages: list[dict[str, Any]]  # [{"role": "system"|"user"|"assistant", "content": "..."}]
    model: str
    temperature: float = 0.7
    max_tokens: int | None = None
    stop: list[str] | None = None


@dataclass
class LLMResponse:
    """Standardized LLM response format."""

    content: str
    model: str
    provider: str
    input_tokens: int
    output_tokens: int
    finish_reason: str = "stop"
    latency_ms: int = 0

    @property
    def total_tokens(self) -> int:
        """Total tokens used."""
        return self.input_tokens + self.output_tokens


@dataclass
class DryRunResponse:
    """Configuration for dry run mode responses."""

    content: str = "This is a dry run response."
    input_tokens: int = 100
    output_tokens: int = 50


# Dry run responses by task name
DRY_RUN_RESPONSES: dict[str, DryRunResponse] = {
    "outline": DryRunResponse(
        content=(
            '{"title": "Dry Run Report", "executive_summary_guidance": "Summarize the key trends.", '
            '"sections": ['
            '{"id": "market-overview", "title": "Market Overview", "description": "Current state", '
            '"search_queries": ["market overview"], "key_points": ["size", "growth"]}, '
            '{"id": "key-players", "title": "Key Players", "description": "Who leads", '
            '"search_queries": ["key players"], "key_points": ["leaders"]}]}'
        ),
        input_tokens=800,
        output_tokens=300,
    ),
    "regenerate_section": DryRunResponse(
        content=(
            '{"id": "regenerated", "title": "Regenerated Section", "description": "New angle", '
            '"search_queries": ["new angle"], "key_points": ["angle"]}'
        ),
        input_tokens=600,
        output_tokens=120,
    ),
    "relevance": DryRunResponse(content='{"relevant": [1, 2, 3]}', input_tokens=1200, output_tokens=20),
    "gaps": DryRunResponse(
        content='{"gaps": [], "follow_up_queries": [], "assessment": "sufficient"}',
        input_tokens=1500,
        output_tokens=60,
    ),
    "analysis": DryRunResponse(
        content="### Overview\n\nDry run analysis of the collected articles [1].",
        input_tokens=4000,
        output_tokens=900,
    ),
    "resynthesis": DryRunResponse(
        content="### Overview\n\nDry run re-synthesis including follow-up material [1].",
        input_tokens=6000,
        output_tokens=1200,
    ),
    "refine": DryRunResponse(
        content="<critique>none</critique>\n<rewrite>\n### Overview\n\nDry run refined analysis [1].\n</rewrite>",
        input_tokens=3000,
        output_tokens=1000,
    ),
    "categorize": DryRunResponse(content="[]", input_tokens=1000, output_tokens=40),
    "summarize": DryRunResponse(content="[]", input_tokens=1500, output_tokens=40),
    "executive_summary": DryRunResponse(
        content="Dry run executive summary.", input_tokens=2000, output_tokens=400
    ),
    "conclusion": DryRunResponse(content="Dry run conclusion.", input_tokens=2000, output_tokens=400),
    "default": DryRunResponse(content="Dry run response.", input_tokens=100, output_tokens=50),
}


@runtime_checkable
class LLMClient(Protocol):
    """Protocol for provider clients."""

    @property
    def provider(self) -> str:
        """Name of this provider (e.g., 'anthropic')."""
        ...

    async def complete(self, request: LLMRequest) -> LLMResponse:
        """Send a completion request.

        Raises:
            LLMError: If the request fails.
        """
        ...

    async def close(self) -> None:
        """Close any open connections."""
        ...


@runtime_checkable
class TextGenerator(Protocol):
    """Text generation capability consumed by the pipelines.

    Implementations apply their own bounded retry. Exhaustion raises, and the
    caller treats it as a hard failure of that call.
    """

    async def generate(
        self,
        prompt: str,
        profile: Profile,
        *,
        task: str | None = None,
    ) -> str:
        """Generate text for a prompt.

        Args:
            prompt: Full prompt text.
            profile: Generation profile.
            task: Short task name used for logging and dry runs.
        """
        ...
