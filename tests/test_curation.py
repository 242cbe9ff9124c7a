"""
Tests for duplicate clustering and article scoring.
"""

from __future__ import annotations

from dataclasses import replace
from datetime import datetime, timedelta, timezone

import pytest

from conftest import make_article
from dr.curation.curator import (
    ArticleCurator,
    ScoreWeights,
    UnionFind,
    bigrams,
    curate_articles,
    title_similarity,
)

NOW = datetime(2026, 10, 15, 12, 0, tzinfo=timezone.utc)

KOREAN_TITLES = [
    "삼성증권 AI 트레이딩 도입",
    "삼성증권, AI 트레이딩 시스템 도입 발표",
    "카카오페이 블록체인 사업",
]


def _articles(titles: list[str]) -> list:
    return [make_article(i, title=t, collected_at=NOW) for i, t in enumerate(titles)]


class TestBigrams:
    """Title normalization and similarity."""

    def test_strips_whitespace_and_punctuation(self) -> None:
        assert bigrams("A-b, c!") == {"ab", "bc"}

    def test_single_character_has_no_bigrams(self) -> None:
        assert bigrams("x") == set()
        assert title_similarity("x", "x") == 0.0

    def test_identical_titles_are_fully_similar(self) -> None:
        assert title_similarity("AI trading", "ai  trading!") == 1.0


class TestUnionFind:
    def test_groups_ordered_by_smallest_member(self) -> None:
        uf = UnionFind(5)
        uf.union(3, 4)
        uf.union(0, 2)
        uf.union(2, 4)

        assert uf.groups() == [[0, 2, 3, 4], [1]]


class TestClustering:
    """Near-duplicate detection."""

    def test_korean_titles_cluster_as_expected(self) -> None:
        curator = ArticleCurator(threshold=0.45, now=NOW)
        articles = _articles(KOREAN_TITLES)

        assert curator.cluster(articles) == [[0, 1], [2]]

    def test_curation_keeps_one_representative_per_cluster(self) -> None:
        curator = ArticleCurator(threshold=0.45, now=NOW)
        articles = _articles(KOREAN_TITLES)

        result = curator.curate(articles, max_count=2)

        selected_urls = {a.url for a in result.selected}
        assert result.total_before == 3
        assert result.total_after == 2
        assert result.clusters_found == 2
        assert articles[2].url in selected_urls
        assert len(selected_urls & {articles[0].url, articles[1].url}) == 1

    def test_curation_is_idempotent(self) -> None:
        curator = ArticleCurator(now=NOW)
        titles = KOREAN_TITLES + [
            "Fed holds rates steady",
            "Fed holds rates steady again",
            "Nasdaq rallies on chip earnings",
        ]
        first = curator.curate(_articles(titles), max_count=10)
        second = curator.curate(first.selected, max_count=10)

        assert second.total_after == second.total_before == first.total_after
        assert [a.id for a in second.selected] == [a.id for a in first.selected]

    def test_best_scored_member_represents_cluster(self) -> None:
        curator = ArticleCurator(now=NOW)
        weak = make_article(1, title="삼성증권 AI 트레이딩 도입", source_name="Unknown Blog",
                            collected_at=NOW)
        strong = make_article(2, title="삼성증권, AI 트레이딩 시스템 도입 발표",
                              source_name="연합뉴스", collected_at=NOW)

        result = curator.curate([weak, strong], max_count=5)

        assert [a.id for a in result.selected] == [strong.id]

    def test_empty_input(self) -> None:
        result = curate_articles([])

        assert result.selected == []
        assert result.total_before == 0


class TestScoring:
    """Score terms and weights."""

    def test_relevance_is_monotonic(self) -> None:
        curator = ArticleCurator(now=NOW)
        base = make_article(1, collected_at=NOW, relevance_score=1.0)

        scores = [
            curator.score(replace(base, relevance_score=r), max_relevance=10.0,
                          max_content_length=100)
            for r in (0.0, 1.0, 2.5, 5.0, 10.0)
        ]

        assert scores == sorted(scores)

    def test_fresher_articles_score_higher(self) -> None:
        curator = ArticleCurator(now=NOW)
        fresh = make_article(1, collected_at=NOW)
        stale = replace(fresh, collected_at=NOW - timedelta(days=5))

        assert curator.score(fresh, 3.0, 100) > curator.score(stale, 3.0, 100)

    def test_unknown_source_uses_default_tier(self) -> None:
        curator = ArticleCurator(weights=ScoreWeights(1.0, 0.0, 0.0, 0.0), now=NOW)

        assert curator.score(make_article(1, source_name="Reuters"), 1, 1) == pytest.approx(1.0)
        assert curator.score(make_article(1, source_name="Nobody"), 1, 1) == pytest.approx(0.5)

    def test_zero_maxima_do_not_divide_by_zero(self) -> None:
        curator = ArticleCurator(now=NOW)
        article = make_article(1, body="", relevance_score=0.0, collected_at=NOW)

        assert curator.score(article, max_relevance=0.0, max_content_length=0) >= 0.0

    def test_custom_weights_are_used(self) -> None:
        curator = ArticleCurator(weights=ScoreWeights(0.0, 0.0, 1.0, 0.0), now=NOW)
        article = make_article(1, relevance_score=2.0, collected_at=NOW)

        assert curator.score(article, max_relevance=4.0, max_content_length=10) == pytest.approx(0.5)
