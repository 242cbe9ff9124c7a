"""
RSS-based search providers.

Provides:
- GoogleNewsProvider: Google News RSS search, one request per query
- RssFeedProvider: fixed list of RSS feeds, filtered by nothing (the caller
  applies keyword relevance)

Both use httpx.AsyncClient and parse feeds with BeautifulSoup's XML parser.
"""

from __future__ import annotations

import asyncio
from datetime import datetime, timezone
from email.utils import parsedate_to_datetime
from typing import Sequence
from urllib.parse import quote_plus

import httpx
from bs4 import BeautifulSoup

from dr.exceptions import SearchError
from dr.logging import get_logger
from dr.retrieval.base import SearchOptions
from dr.topic import RssSource
from dr.types import SearchResult, SourceKind

logger = get_logger(__name__)

USER_AGENT = "DeepResearchBot/1.0"

GOOGLE_NEWS_RSS_BASE = "https://news.google.com/rss/search"

# Google News search fan-out cap per call
MAX_QUERIES_PER_CALL = 5


def _parse_pub_date(value: str | None) -> datetime | None:
    if not value:
        return None
    try:
        parsed = parsedate_to_datetime(value)
    except (TypeError, ValueError):
        try:
            parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
        except ValueError:
            return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def _strip_html(fragment: str) -> str:
    if not fragment or "<" not in fragment:
        return (fragment or "").strip()
    return BeautifulSoup(fragment, "html.parser").get_text(" ", strip=True)


def parse_feed(
    xml: str,
    source_name: str,
    source_kind: SourceKind,
    limit: int | None = None,
) -> list[SearchResult]:
    """Parse RSS 2.0 or Atom XML into SearchResults.

    Items without a link are skipped. Google News style ``<source>`` elements
    override ``source_name``.
    """
    soup = BeautifulSoup(xml, "xml")
    items = soup.find_all("item") or soup.find_all("entry")

    results: list[SearchResult] = []
    for item in items:
        link_tag = item.find("link")
        if link_tag is None:
            continue
        link = (link_tag.get_text(strip=True) or link_tag.get("href") or "").strip()
        if not link:
            continue

        title_tag = item.find("title")
        body_tag = item.find("description") or item.find("summary") or item.find("content")
        date_tag = item.find("pubDate") or item.find("published") or item.find("updated")
        source_tag = item.find("source")

        results.append(
            SearchResult(
                title=title_tag.get_text(strip=True) if title_tag else "",
                url=link,
                body=_strip_html(body_tag.get_text() if body_tag else ""),
                published_at=_parse_pub_date(date_tag.get_text(strip=True) if date_tag else None),
                source_name=source_tag.get_text(strip=True) if source_tag else source_name,
                source_kind=source_kind,
            )
        )
        if limit is not None and len(results) >= limit:
            break
    return results


class _FeedClient:
    """Shared lazy httpx client for feed providers."""

    def __init__(self, client: httpx.AsyncClient | None = None) -> None:
        self._client = client

    async def _get_client(self, timeout: float) -> httpx.AsyncClient:
        """Get or create HTTP client."""
        if self._client is None:
            self._client = httpx.AsyncClient(
                timeout=timeout,
                follow_redirects=True,
                headers={"User-Agent": USER_AGENT},
            )
        return self._client

    async def _fetch(self, url: str, options: SearchOptions) -> str:
        client = await self._get_client(options.timeout)
        try:
            response = await client.get(url, timeout=options.timeout)
            response.raise_for_status()
        except httpx.HTTPError as e:
            raise SearchError(f"Feed request failed: {e}", context={"url": url}) from e
        return response.text

    async def close(self) -> None:
        """Close the HTTP client."""
        if self._client:
            await self._client.aclose()
            self._client = None


class GoogleNewsProvider(_FeedClient):
    """Google News RSS search."""

    def __init__(
        self,
        language: str = "en",
        country: str = "US",
        client: httpx.AsyncClient | None = None,
    ) -> None:
        super().__init__(client)
        self.language = language
        self.country = country

    @property
    def name(self) -> str:
        return "google_news"

    def _search_url(self, query: str) -> str:
        lang = self.language
        cc = self.country
        return (
            f"{GOOGLE_NEWS_RSS_BASE}?q={quote_plus(query)}"
            f"&hl={lang}&gl={cc}&ceid={cc}:{lang}"
        )

    async def _search_one(self, query: str, options: SearchOptions) -> list[SearchResult]:
        xml = await self._fetch(self._search_url(query), options)
        return parse_feed(xml, "Google News", SourceKind.NEWS, limit=options.max_per_query)

    async def search(self, queries: list[str], options: SearchOptions) -> list[SearchResult]:
        """Run up to five queries concurrently; failed queries are skipped."""
        batch = queries[:MAX_QUERIES_PER_CALL]
        outcomes = await asyncio.gather(
            *(self._search_one(q, options) for q in batch), return_exceptions=True
        )

        results: list[SearchResult] = []
        seen: set[str] = set()
        for query, outcome in zip(batch, outcomes):
            if isinstance(outcome, BaseException):
                logger.warning("Google News query failed", query=query, error=str(outcome))
                continue
            for result in outcome:
                if result.url not in seen:
                    seen.add(result.url)
                    results.append(result)
        return results


class RssFeedProvider(_FeedClient):
    """Fixed RSS feeds. Queries are ignored; every feed is fetched."""

    def __init__(
        self,
        sources: Sequence[RssSource],
        client: httpx.AsyncClient | None = None,
    ) -> None:
        super().__init__(client)
        self.sources = list(sources)

    @property
    def name(self) -> str:
        return "rss"

    async def _fetch_feed(self, source: RssSource, options: SearchOptions) -> list[SearchResult]:
        xml = await self._fetch(source.url, options)
        return parse_feed(xml, source.name, SourceKind.RSS, limit=options.max_per_query)

    async def search(self, queries: list[str], options: SearchOptions) -> list[SearchResult]:
        outcomes = await asyncio.gather(
            *(self._fetch_feed(s, options) for s in self.sources), return_exceptions=True
        )

        results: list[SearchResult] = []
        for source, outcome in zip(self.sources, outcomes):
            if isinstance(outcome, BaseException):
                logger.warning("RSS feed failed", feed=source.name, error=str(outcome))
                continue
            results.extend(outcome)
        return results
