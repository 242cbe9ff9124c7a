"""
Search provider interface.

A search provider turns a list of queries into raw SearchResults. Providers
may fail partially; the aggregator treats any failure as fewer results.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Protocol, runtime_checkable

from dr.types import SearchResult


@dataclass(frozen=True)
class SearchOptions:
    """Per-call search options."""

    max_per_query: int = 20
    timeout: float = 15.0


@runtime_checkable
class SearchProvider(Protocol):
    """Protocol for search providers."""

    @property
    def name(self) -> str:
        """Provider name used in logs and progress events."""
        ...

    async def search(
        self, queries: list[str], options: SearchOptions
    ) -> list[SearchResult]:
        """Search for queries.

        Args:
            queries: Queries to run.
            options: Result cap and timeout.

        Returns:
            Results, possibly fewer than requested.
        """
        ...
