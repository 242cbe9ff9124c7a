"""
Tests for the per-section research state machine.
"""

from __future__ import annotations

from dataclasses import replace

import pytest

from conftest import FakeGenerator, FakeSearch, make_article, make_result
from dr.exceptions import GenerationExhaustedError
from dr.llm.base import Profile
from dr.research.filters import filter_by_keyword_blacklist, filter_relevant
from dr.research.section import (
    SOURCES_HEADING,
    SectionResearcher,
    SectionResearchOptions,
    merge_articles,
    placeholder_content,
)
from dr.topic import TopicConfig
from dr.types import OutlineSection, SectionStatus

SECTION = OutlineSection(
    id="alpha",
    title="Alpha Markets",
    description="Where volume moves",
    search_queries=("alpha markets", "alpha volume"),
    key_points=("volume",),
)


class StatusRecorder:
    def __init__(self) -> None:
        self.statuses: list[SectionStatus] = []

    async def __call__(self, status: SectionStatus, message: str, sources: int | None) -> None:
        self.statuses.append(status)


class TestPlaceholder:
    """Sections whose search finds nothing."""

    @pytest.mark.asyncio
    async def test_zero_results_yield_placeholder_naming_queries(
        self, topic: TopicConfig
    ) -> None:
        generator = FakeGenerator()
        researcher = SectionResearcher(generator, FakeSearch(), topic)

        result = await researcher.research_section(SECTION)

        assert result.section_id == "alpha"
        assert result.sources == ()
        assert "alpha markets" in result.content
        assert "alpha volume" in result.content
        assert result.content == placeholder_content(SECTION)
        assert generator.calls == []

    def test_placeholder_without_queries(self) -> None:
        section = OutlineSection(id="x", title="X")

        assert "(none)" in placeholder_content(section)


class TestAnalyze:
    """Draft, deepen, refine and cite."""

    @pytest.mark.asyncio
    async def test_full_pass_reports_statuses_in_order(self, topic: TopicConfig) -> None:
        search = FakeSearch(default=[make_result(i) for i in range(4)])
        researcher = SectionResearcher(FakeGenerator(), search, topic)
        recorder = StatusRecorder()

        result = await researcher.research_section(SECTION, recorder)

        assert recorder.statuses == [
            SectionStatus.SEARCHING,
            SectionStatus.ANALYZING,
            SectionStatus.DEEPENING,
            SectionStatus.REFINING,
        ]
        assert result.content.startswith("### Findings\n\nRefined analysis [1].")
        assert SOURCES_HEADING in result.content
        assert "<critique>" not in result.content
        assert len(result.sources) == 4

    @pytest.mark.asyncio
    async def test_profiles_per_step(self, topic: TopicConfig) -> None:
        generator = FakeGenerator()
        search = FakeSearch(default=[make_result(i) for i in range(5)])
        researcher = SectionResearcher(generator, search, topic)

        await researcher.research_section(SECTION)

        assert generator.profiles_for("relevance") == {Profile.FAST}
        assert generator.profiles_for("gaps") == {Profile.FAST}
        assert generator.profiles_for("analysis") == {Profile.DEEP}
        assert generator.profiles_for("refine") == {Profile.DEEP}

    @pytest.mark.asyncio
    async def test_disabled_steps_are_skipped(self, topic: TopicConfig) -> None:
        generator = FakeGenerator()
        search = FakeSearch(default=[make_result(1)])
        researcher = SectionResearcher(
            generator,
            search,
            topic,
            SectionResearchOptions(enable_deepening=False, enable_refinement=False),
        )
        recorder = StatusRecorder()

        result = await researcher.research_section(SECTION, recorder)

        assert SectionStatus.DEEPENING not in recorder.statuses
        assert SectionStatus.REFINING not in recorder.statuses
        assert generator.tasks() == ["analysis"]
        assert result.content.startswith("### Findings\n\nDraft analysis [1].")

    @pytest.mark.asyncio
    async def test_empty_refinement_keeps_draft(self, topic: TopicConfig) -> None:
        generator = FakeGenerator({"refine": "<rewrite></rewrite>"})
        researcher = SectionResearcher(generator, FakeSearch(default=[make_result(1)]), topic)

        result = await researcher.research_section(SECTION)

        assert result.content.startswith("### Findings\n\nDraft analysis [1].")

    @pytest.mark.asyncio
    async def test_generation_failure_propagates(self, topic: TopicConfig) -> None:
        generator = FakeGenerator({"analysis": GenerationExhaustedError("down")})
        researcher = SectionResearcher(generator, FakeSearch(default=[make_result(1)]), topic)

        with pytest.raises(GenerationExhaustedError):
            await researcher.research_section(SECTION)

    @pytest.mark.asyncio
    async def test_duplicate_sources_are_cited_once(self, topic: TopicConfig) -> None:
        dup = make_result(1)
        tracked = replace(dup, url=dup.url + "?utm_source=x")
        researcher = SectionResearcher(
            FakeGenerator(), FakeSearch(default=[dup, tracked]), topic,
            SectionResearchOptions(enable_deepening=False),
        )

        result = await researcher.research_section(SECTION)

        assert len(result.sources) == 1


class TestDeepening:
    """Gap-driven follow-up search."""

    @pytest.mark.asyncio
    async def test_insufficient_verdict_triggers_follow_up(self, topic: TopicConfig) -> None:
        generator = FakeGenerator(
            {
                "gaps": '{"gaps": ["no numbers"], "follow_up_queries": ["alpha numbers"], '
                '"assessment": "insufficient"}'
            }
        )
        search = FakeSearch(
            by_query={"alpha numbers": [make_result(10), make_result(11)]},
            default=[make_result(1), make_result(2)],
        )
        researcher = SectionResearcher(
            generator, search, topic, SectionResearchOptions(enable_refinement=False)
        )

        result = await researcher.research_section(SECTION)

        assert ["alpha numbers"] in search.queries
        assert "resynthesis" in generator.tasks()
        assert result.content.startswith("### Findings\n\nResynthesized analysis [1][2].")
        assert len(result.sources) == 4

    @pytest.mark.asyncio
    async def test_no_new_articles_skips_resynthesis(self, topic: TopicConfig) -> None:
        generator = FakeGenerator(
            {
                "gaps": '{"gaps": ["x"], "follow_up_queries": ["again"], '
                '"assessment": "insufficient"}'
            }
        )
        search = FakeSearch(default=[make_result(1)])
        researcher = SectionResearcher(generator, search, topic)

        await researcher.research_section(SECTION)

        assert "resynthesis" not in generator.tasks()

    @pytest.mark.asyncio
    async def test_unparseable_verdict_assumes_sufficient(self, topic: TopicConfig) -> None:
        generator = FakeGenerator({"gaps": "I think it is fine"})
        search = FakeSearch(default=[make_result(1)])
        researcher = SectionResearcher(generator, search, topic)

        await researcher.research_section(SECTION)

        assert len(search.queries) == 1
        assert "resynthesis" not in generator.tasks()

    def test_merge_articles_dedupes_by_normalized_url(self) -> None:
        a, b = make_article(1), make_article(2)
        again = make_article(1)

        assert merge_articles([a], [again, b]) == [a, b]


class TestFilters:
    """Blacklist and relevance filtering."""

    def test_blacklist_is_case_insensitive(self) -> None:
        articles = [make_article(1, title="Crypto scam alert"), make_article(2)]

        kept = filter_by_keyword_blacklist(articles, ["CRYPTO", " "])

        assert [a.id for a in kept] == [articles[1].id]

    def test_empty_blacklist_keeps_everything(self) -> None:
        articles = [make_article(1)]

        assert filter_by_keyword_blacklist(articles, []) == articles

    @pytest.mark.asyncio
    async def test_small_sets_skip_the_call(self) -> None:
        generator = FakeGenerator()
        candidates = [make_article(i) for i in range(3)]

        kept = await filter_relevant(generator, SECTION, candidates)

        assert kept == candidates
        assert generator.calls == []

    @pytest.mark.asyncio
    async def test_unparseable_verdict_keeps_all(self) -> None:
        generator = FakeGenerator({"relevance": "all of them look fine"})
        candidates = [make_article(i) for i in range(6)]

        assert await filter_relevant(generator, SECTION, candidates) == candidates

    @pytest.mark.asyncio
    async def test_below_floor_falls_back_to_first_items(self) -> None:
        generator = FakeGenerator({"relevance": '{"relevant": [5]}'})
        candidates = [make_article(i) for i in range(6)]

        kept = await filter_relevant(generator, SECTION, candidates)

        assert kept == candidates[:3]

    @pytest.mark.asyncio
    async def test_verdict_selects_items(self) -> None:
        generator = FakeGenerator({"relevance": '```json\n{"relevant": [2, 4, 6, 99]}\n```'})
        candidates = [make_article(i) for i in range(6)]

        kept = await filter_relevant(generator, SECTION, candidates)

        assert kept == [candidates[1], candidates[3], candidates[5]]
