"""
Text generation package.

Provides the generate(prompt, profile) capability used by the pipelines:
- Profile-based model routing (fast / balanced / deep)
- Anthropic client
- Reusable retry policy
- Tolerant decoders for generated JSON and markdown
"""

from dr.llm.base import LLMClient, LLMRequest, LLMResponse, Profile, TextGenerator
from dr.llm.retry import RetryPolicy
from dr.llm.router import PROFILE_MAX_TOKENS, LLMRouter

__all__ = [
    "LLMClient",
    "LLMRequest",
    "LLMResponse",
    "LLMRouter",
    "PROFILE_MAX_TOKENS",
    "Profile",
    "RetryPolicy",
    "TextGenerator",
]
