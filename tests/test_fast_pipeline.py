"""
Tests for the fast pipeline (collect, analyze, report).
"""

from __future__ import annotations

import pytest

from conftest import CollectingSink, FakeGenerator, FakeSearch, make_result
from dr.coordinator.fast_pipeline import FastPipeline, FastPipelineOptions
from dr.events import EventChannel
from dr.exceptions import GenerationExhaustedError, SearchError
from dr.llm.base import Profile
from dr.retrieval.aggregator import SearchAggregator
from dr.topic import TopicConfig
from dr.types import FastPhase, ProjectStatus, article_id_for
from dr.workspace.store import ProjectStore

RUN_ID = "fast_test"

# Distinct titles so nothing clusters unless a test wants it to
TITLES = [
    "AI desk adopts trading copilots",
    "Nasdaq lists AI index futures",
    "Brokers race to automate AI compliance",
    "Quant funds rethink AI execution",
    "Retail trading apps add AI advisors",
]


def _results(count: int = 5) -> list:
    return [make_result(i, title=TITLES[i]) for i in range(count)]


def _pipeline(
    store: ProjectStore,
    topic: TopicConfig,
    generator: FakeGenerator,
    sink: CollectingSink,
    providers: list | None = None,
    **options,
) -> FastPipeline:
    search = SearchAggregator(providers or [FakeSearch(default=_results())])
    return FastPipeline(
        store=store,
        topic=topic,
        generator=generator,
        search=search,
        channel=EventChannel(RUN_ID, sink),
        options=FastPipelineOptions(**{"batch_size": 2, **options}),
    )


class TestFastRun:
    """Happy path."""

    @pytest.mark.asyncio
    async def test_phases_run_in_order(
        self,
        project_store: ProjectStore,
        topic: TopicConfig,
        generator: FakeGenerator,
        sink: CollectingSink,
    ) -> None:
        result = await _pipeline(project_store, topic, generator, sink).run()

        assert result.succeeded
        assert sink.phases() == ["collecting", "analyzing", "reporting", "complete"]
        assert sink.events[-1].is_terminal
        assert [e.seq for e in sink.events] == list(range(1, len(sink.events) + 1))
        assert await project_store.get_status() is ProjectStatus.COMPLETE

    @pytest.mark.asyncio
    async def test_counts_and_progress_events(
        self,
        project_store: ProjectStore,
        topic: TopicConfig,
        generator: FakeGenerator,
        sink: CollectingSink,
    ) -> None:
        result = await _pipeline(project_store, topic, generator, sink).run()

        assert result.articles_collected == 5
        assert result.articles_analyzed == 5
        assert sink.of_type("source_search")[0].data == {
            "source": "fake",
            "count": 10,
            "message": "fake: 10 results",
        }
        collection = sink.of_type("collection_progress")[0].data
        assert (collection["total"], collection["relevant"]) == (5, 5)
        # Three batches of at most two articles, two steps each
        assert len(sink.of_type("analysis_batch")) == 6
        last_progress = sink.of_type("analysis_progress")[-1].data
        assert last_progress["analyzed"] == last_progress["total"] == 5
        stats = sink.of_type("stats")[0].data
        assert stats["report_generated"] is True

    @pytest.mark.asyncio
    async def test_digest_is_saved_and_indexed(
        self,
        project_store: ProjectStore,
        topic: TopicConfig,
        generator: FakeGenerator,
        sink: CollectingSink,
    ) -> None:
        result = await _pipeline(project_store, topic, generator, sink).run()

        report = await project_store.get_report(result.report_id)
        assert report is not None
        assert report.startswith("# AI Trading Weekly")
        assert "## 1. Market" in report
        assert "- [AI desk adopts trading copilots](https://news.example.com/story/0)" in report
        assert f"  > Summary of {article_id_for('https://news.example.com/story/0')}" in report

        index = await project_store.get_report_index()
        assert [r.id for r in index] == [result.report_id]
        assert index[0].total_articles == 5
        assert index[0].category_breakdown == {"market": 5}

    @pytest.mark.asyncio
    async def test_analysis_uses_balanced_profile(
        self,
        project_store: ProjectStore,
        topic: TopicConfig,
        generator: FakeGenerator,
        sink: CollectingSink,
    ) -> None:
        await _pipeline(project_store, topic, generator, sink).run()

        assert generator.profiles_for("categorize") == {Profile.BALANCED}
        assert generator.profiles_for("summarize") == {Profile.BALANCED}

    @pytest.mark.asyncio
    async def test_concurrent_batches_analyze_everything(
        self,
        project_store: ProjectStore,
        topic: TopicConfig,
        generator: FakeGenerator,
        sink: CollectingSink,
    ) -> None:
        result = await _pipeline(
            project_store, topic, generator, sink, analysis_concurrency=3
        ).run()

        assert result.articles_analyzed == 5
        assert len(await project_store.get_analyzed()) == 5


class TestCollection:
    """Relevance gating and incremental merge."""

    @pytest.mark.asyncio
    async def test_irrelevant_results_are_dropped(
        self,
        project_store: ProjectStore,
        topic: TopicConfig,
        generator: FakeGenerator,
        sink: CollectingSink,
    ) -> None:
        noise = make_result(99, title="Weather turns sunny", body="Clear skies all week")
        search = FakeSearch(default=[*_results(2), noise])

        result = await _pipeline(project_store, topic, generator, sink, [search]).run()

        assert result.articles_collected == 2
        assert noise.url not in {a.url for a in await project_store.get_articles()}

    @pytest.mark.asyncio
    async def test_second_run_only_adds_new_articles(
        self,
        project_store: ProjectStore,
        topic: TopicConfig,
        sink: CollectingSink,
    ) -> None:
        first = FakeGenerator()
        await _pipeline(project_store, topic, first, CollectingSink()).run()

        second = FakeGenerator()
        result = await _pipeline(project_store, topic, second, sink).run()

        assert result.succeeded
        assert result.articles_collected == 5
        assert sink.of_type("collection_progress")[0].data["relevant"] == 0
        assert "categorize" not in second.tasks()
        assert len(await project_store.get_report_index()) == 1

    @pytest.mark.asyncio
    async def test_failed_provider_is_skipped(
        self,
        project_store: ProjectStore,
        topic: TopicConfig,
        generator: FakeGenerator,
        sink: CollectingSink,
    ) -> None:
        providers = [
            FakeSearch(name="broken", error=SearchError("feed down")),
            FakeSearch(name="good", default=_results(3)),
        ]

        result = await _pipeline(project_store, topic, generator, sink, providers).run()

        assert result.succeeded
        counts = {e.data["source"]: e.data["count"] for e in sink.of_type("source_search")}
        assert counts == {"broken": 0, "good": 6}

    @pytest.mark.asyncio
    async def test_curation_runs_past_threshold(
        self,
        project_store: ProjectStore,
        topic: TopicConfig,
        generator: FakeGenerator,
        sink: CollectingSink,
    ) -> None:
        near_duplicates = [
            make_result(i, title=f"AI trading story number {i}") for i in range(4)
        ]
        search = FakeSearch(default=near_duplicates)

        result = await _pipeline(
            project_store, topic, generator, sink, [search], curation_threshold=3
        ).run()

        curation = sink.of_type("curation_progress")[0].data
        assert (curation["before"], curation["after"]) == (4, 1)
        assert result.articles_analyzed == 1
        assert len(await project_store.get_articles()) == 1

    @pytest.mark.asyncio
    async def test_excluded_articles_are_not_analyzed(
        self,
        project_store: ProjectStore,
        topic: TopicConfig,
        generator: FakeGenerator,
        sink: CollectingSink,
    ) -> None:
        excluded = article_id_for("https://news.example.com/story/0")
        await project_store.save_excluded_ids({excluded})

        result = await _pipeline(project_store, topic, generator, sink).run()

        assert result.articles_analyzed == 4
        assert excluded not in {a.id for a in await project_store.get_analyzed()}


class TestFailure:
    """Any exception halts the run with a terminal error event."""

    @pytest.mark.asyncio
    async def test_analysis_failure_ends_in_error(
        self,
        project_store: ProjectStore,
        topic: TopicConfig,
        sink: CollectingSink,
    ) -> None:
        generator = FakeGenerator({"categorize": GenerationExhaustedError("model down")})

        result = await _pipeline(project_store, topic, generator, sink).run()

        assert result.phase is FastPhase.ERROR
        assert result.error == "model down"
        assert sink.phases()[-1] == "error"
        assert sink.events[-1].message == "Pipeline error: model down"
        assert "reporting" not in sink.phases()
        assert await project_store.get_status() is ProjectStatus.ERROR
        # Collected articles survive for the next attempt
        assert len(await project_store.get_articles()) == 5
        assert await project_store.get_report_index() == []
