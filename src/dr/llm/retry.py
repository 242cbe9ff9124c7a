"""
Reusable retry policy for collaborator calls.

Wraps tenacity's AsyncRetrying so any awaitable factory can be retried with
the same bounded exponential backoff: with the defaults, 2 retries after
3s and 9s.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Awaitable, Callable, TypeVar

from tenacity import (
    AsyncRetrying,
    RetryCallState,
    RetryError,
    retry_if_exception_type,
    retry_if_not_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from dr.config import Settings
from dr.exceptions import AuthenticationError, GenerationExhaustedError, LLMError
from dr.logging import get_logger

logger = get_logger(__name__)

T = TypeVar("T")


@dataclass(frozen=True)
class RetryPolicy:
    """Bounded retry with exponential backoff.

    Attributes:
        max_retries: Retries after the first attempt.
        base_delay: Delay before the first retry, in seconds.
        multiplier: Growth factor between consecutive delays.
        retry_on: Exception types that are retried.
        never_retry: Exception types that fail immediately.
    """

    max_retries: int = 2
    base_delay: float = 3.0
    multiplier: float = 3.0
    retry_on: tuple[type[BaseException], ...] = (LLMError,)
    never_retry: tuple[type[BaseException], ...] = (AuthenticationError,)

    @classmethod
    def from_settings(cls, settings: Settings) -> RetryPolicy:
        return cls(
            max_retries=settings.LLM_MAX_RETRIES,
            base_delay=settings.LLM_BACKOFF_BASE_SECONDS,
            multiplier=settings.LLM_BACKOFF_MULTIPLIER,
        )

    @property
    def max_attempts(self) -> int:
        return self.max_retries + 1

    def delay_for(self, retry_number: int) -> float:
        """Delay before retry ``retry_number`` (1-based)."""
        return self.base_delay * self.multiplier ** (retry_number - 1)

    def _retrying(self, description: str) -> AsyncRetrying:
        def log_retry(state: RetryCallState) -> None:
            exc = state.outcome.exception() if state.outcome else None
            logger.warning(
                "Call failed, retrying",
                call=description,
                attempt=state.attempt_number,
                max_attempts=self.max_attempts,
                wait_seconds=round(state.next_action.sleep, 2) if state.next_action else None,
                error=str(exc),
            )

        return AsyncRetrying(
            retry=(
                retry_if_exception_type(self.retry_on)
                & retry_if_not_exception_type(self.never_retry)
            ),
            wait=wait_exponential(multiplier=self.base_delay, exp_base=self.multiplier),
            stop=stop_after_attempt(self.max_attempts),
            before_sleep=log_retry,
            reraise=False,
        )

    async def call(
        self,
        fn: Callable[..., Awaitable[T]],
        *args: Any,
        description: str = "call",
        **kwargs: Any,
    ) -> T:
        """Call ``fn(*args, **kwargs)`` under this policy.

        Returns:
            The first successful result.

        Raises:
            GenerationExhaustedError: Every attempt failed with a retryable error.
            Exception: A non-retryable error, unchanged.
        """
        try:
            async for attempt in self._retrying(description):
                with attempt:
                    return await fn(*args, **kwargs)
        except RetryError as e:
            last = e.last_attempt.exception()
            logger.error(
                "Retries exhausted",
                call=description,
                attempts=self.max_attempts,
                error=str(last),
            )
            raise GenerationExhaustedError(
                f"{description} failed after {self.max_attempts} attempts: {last}",
                context={"attempts": self.max_attempts, "call": description},
            ) from last
        # Unreachable: AsyncRetrying either returns or raises
        raise AssertionError("retry loop exited without result")
