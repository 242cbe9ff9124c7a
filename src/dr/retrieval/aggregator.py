"""
Failure-tolerant search fan-out.

Runs every provider concurrently, drops failed providers, and deduplicates by
normalized URL keeping the result with the longest body.
"""

from __future__ import annotations

import asyncio
from typing import Awaitable, Callable, Sequence

from dr.logging import get_logger
from dr.retrieval.base import SearchOptions, SearchProvider
from dr.types import SearchResult, normalize_url

logger = get_logger(__name__)

SourceCallback = Callable[[str, int], Awaitable[None]]


def deduplicate_results(results: Sequence[SearchResult]) -> list[SearchResult]:
    """Deduplicate by normalized URL, keeping the longest body.

    First-seen order of URLs is preserved.
    """
    by_url: dict[str, SearchResult] = {}
    for result in results:
        key = normalize_url(result.url)
        existing = by_url.get(key)
        if existing is None or len(result.body) > len(existing.body):
            by_url[key] = result
    return list(by_url.values())


class SearchAggregator:
    """The search capability consumed by the pipelines.

    Example:
        aggregator = SearchAggregator([GoogleNewsProvider(), RssFeedProvider(feeds)])
        results = await aggregator.search(["AI trading"], SearchOptions(max_per_query=10))
    """

    def __init__(
        self,
        providers: Sequence[SearchProvider],
        default_options: SearchOptions | None = None,
    ) -> None:
        self.providers = list(providers)
        self.default_options = default_options or SearchOptions()

    @property
    def name(self) -> str:
        return "aggregate"

    async def search(
        self,
        queries: list[str],
        options: SearchOptions | None = None,
        on_source: SourceCallback | None = None,
    ) -> list[SearchResult]:
        """Search all providers concurrently.

        Args:
            queries: Queries to run.
            options: Result cap and timeout. Defaults to ``default_options``.
            on_source: Awaited with (provider name, result count) per provider.

        Returns:
            Deduplicated results. Empty when every provider failed.
        """
        options = options or self.default_options
        if not queries or not self.providers:
            return []

        async def run_provider(provider: SearchProvider) -> list[SearchResult]:
            return await asyncio.wait_for(
                provider.search(list(queries), options),
                # Providers issue several requests, so allow a few timeouts' worth
                timeout=options.timeout * 3,
            )

        outcomes = await asyncio.gather(
            *(run_provider(p) for p in self.providers), return_exceptions=True
        )

        all_results: list[SearchResult] = []
        for provider, outcome in zip(self.providers, outcomes):
            if isinstance(outcome, BaseException):
                logger.warning(
                    "Search provider failed",
                    provider=provider.name,
                    error=str(outcome) or type(outcome).__name__,
                )
                count = 0
            else:
                all_results.extend(outcome)
                count = len(outcome)
                logger.debug("Search provider returned", provider=provider.name, count=count)

            if on_source is not None:
                await on_source(provider.name, count)

        deduplicated = deduplicate_results(all_results)
        logger.info(
            "Search complete",
            queries=len(queries),
            total=len(all_results),
            deduplicated=len(deduplicated),
        )
        return deduplicated

    async def close(self) -> None:
        """Close providers that hold HTTP clients."""
        for provider in self.providers:
            close = getattr(provider, "close", None)
            if close is not None:
                await close()
