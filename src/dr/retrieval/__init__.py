"""
Search retrieval package.

- SearchProvider / SearchOptions: provider interface
- SearchAggregator: failure-tolerant fan-out with URL deduplication
- GoogleNewsProvider, RssFeedProvider: httpx + BeautifulSoup feed providers
- match_keywords / is_relevant: topic keyword relevance
"""

from dr.retrieval.aggregator import SearchAggregator, deduplicate_results
from dr.retrieval.base import SearchOptions, SearchProvider
from dr.retrieval.feeds import GoogleNewsProvider, RssFeedProvider, parse_feed
from dr.retrieval.keywords import is_relevant, match_keywords

__all__ = [
    "GoogleNewsProvider",
    "RssFeedProvider",
    "SearchAggregator",
    "SearchOptions",
    "SearchProvider",
    "deduplicate_results",
    "is_relevant",
    "match_keywords",
    "parse_feed",
]
