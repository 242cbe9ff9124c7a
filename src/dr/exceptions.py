"""
Custom exception hierarchy for the research pipelines.

All exceptions inherit from DRError, which provides optional context
for structured error handling and logging.
"""

from __future__ import annotations

from typing import Any


class DRError(Exception):
    """Base exception for all research pipeline errors.

    Attributes:
        message: Human-readable error message.
        context: Optional structured context for logging/debugging.
    """

    def __init__(self, message: str, context: dict[str, Any] | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.context = context or {}

    def __str__(self) -> str:
        if self.context:
            ctx_str = ", ".join(f"{k}={v!r}" for k, v in self.context.items())
            return f"{self.message} ({ctx_str})"
        return self.message

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}({self.message!r}, context={self.context!r})"


class ConfigurationError(DRError):
    """Raised when settings or a topic configuration are invalid or missing."""

    pass


class SearchError(DRError):
    """Raised when a search provider call fails.

    Context should include:
        - provider: The provider name
        - query: The query being searched
    """

    pass


class LLMError(DRError):
    """Raised when a text generation call fails.

    Context should include:
        - model: The model being used
        - profile: The generation profile
    """

    pass


class RateLimitError(LLMError):
    """Rate limit exceeded."""

    def __init__(
        self,
        message: str,
        retry_after: float | None = None,
        context: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message, context)
        self.retry_after = retry_after


class AuthenticationError(LLMError):
    """Authentication failed. Never retried."""

    pass


class GenerationExhaustedError(LLMError):
    """Raised when a generation call failed on every allowed attempt.

    Context should include:
        - attempts: Number of attempts made
        - profile: The generation profile
    """

    pass


class OutlineError(DRError):
    """Raised when an outline cannot be generated or parsed."""

    pass


class StorageError(DRError):
    """Raised when the workspace store cannot read or write.

    Context should include:
        - scope: The storage scope (project or run)
        - key: The key being accessed
    """

    pass


class SectionResearchError(DRError):
    """Raised when one section's refinement fails.

    Isolated to the section: the run continues without it.

    Context should include:
        - section_id: The failing section
        - status: The state the section was in
    """

    pass


class PipelineError(DRError):
    """Raised when a whole run cannot make forward progress.

    Context should include:
        - run_id: The run ID
        - phase: The current phase
    """

    pass


class ReviewCancelledError(DRError):
    """Raised when a pending article review is cancelled or abandoned."""

    pass


class ReviewTimeoutError(ReviewCancelledError):
    """Raised when a pending article review is not answered in time."""

    pass
