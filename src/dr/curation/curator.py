"""
Near-duplicate clustering and ranking of candidate articles.

Reduces an oversized candidate set to a bounded top-K:
1. Character-bigram sets of normalized titles
2. Pairwise Jaccard similarity, union-find over pairs above the threshold
3. Independent multi-factor score per article
4. One representative per cluster (first maximal in input order)
5. Representatives sorted by score, first ``max_count`` kept

Deterministic for a fixed input order.
"""

from __future__ import annotations

import math
import re
from dataclasses import dataclass, field
from datetime import datetime
from typing import Mapping, Sequence

from dr.logging import get_logger
from dr.types import Article, utc_now

logger = get_logger(__name__)

SIMILARITY_THRESHOLD = 0.45
DEFAULT_MAX_ARTICLES = 30
DEFAULT_TIER = 5
FRESHNESS_DECAY = 0.3

# Outlet tiers on a 0-10 scale; unknown outlets get DEFAULT_TIER
SOURCE_TIERS: dict[str, int] = {
    # Wire services and majors
    "연합뉴스": 10, "조선일보": 10, "중앙일보": 10, "동아일보": 10, "한국경제": 10,
    "매일경제": 10, "KBS": 10, "MBC": 10, "SBS": 10, "YTN": 10,
    "Reuters": 10, "Associated Press": 10, "AP News": 10, "Bloomberg": 10,
    "The Wall Street Journal": 10, "Financial Times": 10,
    "한겨레": 9, "경향신문": 9, "서울경제": 9, "아시아경제": 9, "파이낸셜뉴스": 9,
    "CNBC": 9, "The New York Times": 9, "BBC": 9,
    "이데일리": 8, "머니투데이": 8, "뉴스1": 8, "뉴시스": 8, "디지털타임스": 8,
    "전자신문": 8, "ZDNet": 8, "IT조선": 8, "블로터": 8, "테크M": 8,
    "TechCrunch": 8, "The Verge": 8,
}

_STRIP_RE = re.compile(r"[\s\-_.,!?'\"()\[\]{}]")


@dataclass(frozen=True)
class ScoreWeights:
    """Weights of the four score terms. Each term is normalized to [0, 1]."""

    source_tier: float = 0.35
    freshness: float = 0.30
    relevance: float = 0.25
    content_length: float = 0.10


@dataclass(frozen=True)
class CurationResult:
    """Output of one curation pass."""

    selected: list[Article] = field(default_factory=list)
    clusters_found: int = 0
    total_before: int = 0
    total_after: int = 0


def bigrams(text: str) -> set[str]:
    """Character bigrams of a title with whitespace and punctuation removed."""
    cleaned = _STRIP_RE.sub("", text.lower())
    return {cleaned[i : i + 2] for i in range(len(cleaned) - 1)}


def jaccard(a: set[str], b: set[str]) -> float:
    if not a or not b:
        return 0.0
    intersection = len(a & b)
    union = len(a) + len(b) - intersection
    return intersection / union if union else 0.0


def title_similarity(a: str, b: str) -> float:
    return jaccard(bigrams(a), bigrams(b))


class UnionFind:
    """Disjoint sets over indices 0..n-1 (parent and rank arrays)."""

    def __init__(self, n: int) -> None:
        self.parent = list(range(n))
        self.rank = [0] * n

    def find(self, i: int) -> int:
        root = i
        while self.parent[root] != root:
            root = self.parent[root]
        # Path compression
        while self.parent[i] != root:
            self.parent[i], i = root, self.parent[i]
        return root

    def union(self, a: int, b: int) -> None:
        root_a, root_b = self.find(a), self.find(b)
        if root_a == root_b:
            return
        if self.rank[root_a] < self.rank[root_b]:
            self.parent[root_a] = root_b
        elif self.rank[root_a] > self.rank[root_b]:
            self.parent[root_b] = root_a
        else:
            self.parent[root_b] = root_a
            self.rank[root_a] += 1

    def groups(self) -> list[list[int]]:
        """Members per set, sets ordered by their smallest member."""
        by_root: dict[int, list[int]] = {}
        for i in range(len(self.parent)):
            by_root.setdefault(self.find(i), []).append(i)
        return list(by_root.values())


class ArticleCurator:
    """Clusters near-duplicate articles and keeps the best of each cluster.

    Args:
        threshold: Minimum title similarity that merges two articles.
        weights: Score term weights.
        source_tiers: Outlet name -> tier (0-10).
        now: Reference time for freshness. Defaults to the time of each call.
    """

    def __init__(
        self,
        threshold: float = SIMILARITY_THRESHOLD,
        weights: ScoreWeights | None = None,
        source_tiers: Mapping[str, int] | None = None,
        now: datetime | None = None,
    ) -> None:
        self.threshold = threshold
        self.weights = weights or ScoreWeights()
        self.source_tiers = dict(SOURCE_TIERS if source_tiers is None else source_tiers)
        self._now = now

    def cluster(self, articles: Sequence[Article]) -> list[list[int]]:
        """Group article indices whose titles are near-duplicates."""
        grams = [bigrams(a.title) for a in articles]
        uf = UnionFind(len(articles))
        for i in range(len(articles)):
            for j in range(i + 1, len(articles)):
                if jaccard(grams[i], grams[j]) >= self.threshold:
                    uf.union(i, j)
        return uf.groups()

    def score(
        self,
        article: Article,
        max_relevance: float,
        max_content_length: int,
        now: datetime | None = None,
    ) -> float:
        """Score one article against the run's maxima."""
        now = now or self._now or utc_now()
        w = self.weights

        tier = self.source_tiers.get(article.source_name, DEFAULT_TIER) / 10
        days = max(0.0, (now - article.collected_at).total_seconds() / 86400)
        freshness = math.exp(-FRESHNESS_DECAY * days)
        relevance = article.relevance_score / max_relevance if max_relevance > 0 else 0.0
        content = (
            min(len(article.body) / max_content_length, 1.0) if max_content_length > 0 else 0.0
        )

        return (
            w.source_tier * tier
            + w.freshness * freshness
            + w.relevance * relevance
            + w.content_length * content
        )

    def curate(
        self, articles: Sequence[Article], max_count: int = DEFAULT_MAX_ARTICLES
    ) -> CurationResult:
        """Deduplicate and rank ``articles``, keeping at most ``max_count``."""
        if not articles:
            return CurationResult()

        now = self._now or utc_now()
        max_relevance = max(a.relevance_score for a in articles)
        max_content_length = max(len(a.body) for a in articles)
        scores = [self.score(a, max_relevance, max_content_length, now) for a in articles]

        clusters = self.cluster(articles)

        representatives: list[int] = []
        for members in clusters:
            best = members[0]
            for i in members[1:]:
                if scores[i] > scores[best]:
                    best = i
            representatives.append(best)

        # sorted() is stable, so equal scores keep cluster order
        ranked = sorted(representatives, key=lambda i: scores[i], reverse=True)
        selected = [articles[i] for i in ranked[:max_count]]

        logger.info(
            "Curation complete",
            before=len(articles),
            after=len(selected),
            clusters=len(clusters),
        )
        return CurationResult(
            selected=selected,
            clusters_found=len(clusters),
            total_before=len(articles),
            total_after=len(selected),
        )


def curate_articles(
    articles: Sequence[Article], max_count: int = DEFAULT_MAX_ARTICLES
) -> CurationResult:
    """Curate with the default threshold and weights."""
    return ArticleCurator().curate(articles, max_count)
